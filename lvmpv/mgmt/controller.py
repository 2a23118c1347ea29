"""Shared pieces of the resource controllers: object metadata, keys and a work queue."""

from __future__ import annotations

import abc
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Hashable, Optional

log = logging.getLogger(__name__)


@dataclass
class OwnerReference:
    """Reference from an object to the object that owns it."""

    api_version: str = ""
    kind: str = ""
    name: str = ""
    uid: str = ""
    controller: Optional[bool] = None


@dataclass
class ObjectMeta:
    """Metadata common to all stored resources."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None


@dataclass
class VolumeGroup:
    """An LVM volume group as seen on a node; sizes are in bytes."""

    name: str = ""
    uuid: str = ""
    size: int = 0
    free: int = 0
    lv_count: int = 0
    pv_count: int = 0


@dataclass
class DeletedFinalStateUnknown:
    """An object that was deleted while its final state was not observed."""

    key: str
    obj: Any


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split a ``namespace/name`` key; a bare name has an empty namespace.

    Raises ValueError for keys with more than one slash.
    """
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


def meta_namespace_key(meta: Any) -> str:
    """Return the ``namespace/name`` key of an object or its metadata.

    Accepts ObjectMeta, anything with a ``metadata`` attribute holding one,
    or a DeletedFinalStateUnknown, whose stored key is returned.
    """
    if isinstance(meta, DeletedFinalStateUnknown):
        return meta.key
    if not isinstance(meta, ObjectMeta):
        meta = getattr(meta, "metadata", None)
        if not isinstance(meta, ObjectMeta):
            raise TypeError("object has no meta")
    if meta.namespace:
        return f"{meta.namespace}/{meta.name}"
    return meta.name


class RateLimitingQueue:
    """Work queue that never hands out the same item to two workers at once.

    Items added while being processed are queued again once done.  Retries
    are delayed by the larger of a per-item exponential backoff and an
    overall token bucket.
    """

    def __init__(
        self,
        name: str = "",
        base_delay: float = 0.005,
        max_delay: float = 1000.0,
        qps: float = 10.0,
        burst: int = 100,
    ) -> None:
        self.name = name
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._qps = qps
        self._burst = burst
        self._tokens = float(burst)
        self._last = time.monotonic()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._failures: dict[Hashable, int] = {}
        self._timers: set[threading.Timer] = set()
        self._shutting_down = False
        self._cond = threading.Condition()

    def add(self, item: Hashable) -> None:
        """Queue an item unless it is already waiting."""
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> tuple[Any, bool]:
        """Block until an item is available; return ``(item, shutdown)``."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark an item as processed, queueing it again if it was re-added."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def forget(self, item: Hashable) -> None:
        """Stop tracking retries of an item."""
        with self._cond:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        """Return how many times an item has been re-queued after failing."""
        with self._cond:
            return self._failures.get(item, 0)

    def _when(self, item: Hashable) -> float:
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        backoff = self._base_delay * (2 ** min(failures, 62))
        backoff = min(backoff, self._max_delay)

        now = time.monotonic()
        self._tokens = min(float(self._burst), self._tokens + (now - self._last) * self._qps)
        self._last = now
        self._tokens -= 1
        bucket = max(0.0, -self._tokens / self._qps) if self._qps > 0 else 0.0
        return max(backoff, bucket)

    def add_rate_limited(self, item: Hashable) -> None:
        """Queue an item again after its rate-limited delay."""
        with self._cond:
            if self._shutting_down:
                return
            delay = self._when(item)
        if delay <= 0:
            self.add(item)
            return
        timer = threading.Timer(delay, self._fire, args=(item,))
        timer.daemon = True
        with self._cond:
            self._timers.add(timer)
        timer.start()

    def _fire(self, item: Hashable) -> None:
        with self._cond:
            self._timers = {t for t in self._timers if t.is_alive() and t is not threading.current_thread()}
        self.add(item)

    def shut_down(self) -> None:
        """Stop accepting items and wake all waiting workers."""
        with self._cond:
            self._shutting_down = True
            timers, self._timers = self._timers, set()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()


class Controller(abc.ABC):
    """Base of the controllers: workers take keys off a queue and sync them."""

    def __init__(
        self,
        workqueue: Optional[RateLimitingQueue] = None,
        has_synced: Optional[Callable[[], bool]] = None,
        name: str = "",
    ) -> None:
        self.workqueue = workqueue if workqueue is not None else RateLimitingQueue(name)
        self.has_synced = has_synced if has_synced is not None else (lambda: True)

    @abc.abstractmethod
    def sync_handler(self, key: str) -> None:
        """Bring the resource named by ``key`` to its desired state."""

    def process_next_work_item(self) -> bool:
        """Process one queued key; return False once the queue is shut down."""
        item, shutdown = self.workqueue.get()
        if shutdown:
            return False
        try:
            if not isinstance(item, str):
                self.workqueue.forget(item)
                log.error("expected string in workqueue but got %r", item)
                return True
            try:
                self.sync_handler(item)
            except Exception as exc:
                self.workqueue.add_rate_limited(item)
                log.error("error syncing '%s': %s, requeuing", item, exc)
                return True
            self.workqueue.forget(item)
            log.info("Successfully synced '%s'", item)
        finally:
            self.workqueue.done(item)
        return True

    def run_worker(self) -> None:
        """Process items until the queue is shut down."""
        while self.process_next_work_item():
            pass

    def _wait_for_cache_sync(self, stop: threading.Event) -> bool:
        while not self.has_synced():
            if stop.wait(0.1):
                return False
        return True

    def _start_workers(self, threadiness: int, stop: threading.Event) -> list[threading.Thread]:
        def loop() -> None:
            while not stop.is_set():
                self.run_worker()
                stop.wait(1.0)

        workers = [threading.Thread(target=loop, daemon=True) for _ in range(threadiness)]
        for worker in workers:
            worker.start()
        return workers