"""Controller creating and destroying LVM snapshots owned by this node."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from lvmpv.mgmt.controller import (
    Controller,
    DeletedFinalStateUnknown,
    ObjectMeta,
    RateLimitingQueue,
    meta_namespace_key,
    split_meta_namespace_key,
)

log = logging.getLogger(__name__)

CONTROLLER_AGENT_NAME = "lvmsnap-controller"

STATUS_PENDING = "Pending"
STATUS_READY = "Ready"

# Label holding the name of the volume a snapshot was taken from.
VOL_LABEL_KEY = "openebs.io/persistent-volume"


@dataclass
class LVMSnapshot:
    """Resource describing a snapshot of an LVM volume."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    vol_group: str = ""
    owner_node_id: str = ""
    state: str = ""


class _SnapshotBackend(Protocol):
    """Storage of snapshot resources and the snapshot operations on the node."""

    def get(self, namespace: str, name: str) -> Optional[LVMSnapshot]:
        """Return the snapshot resource, or None when it does not exist."""

    def create_snapshot(self, snap: LVMSnapshot) -> None:
        """Create the snapshot on the node."""

    def destroy_snapshot(self, snap: LVMSnapshot) -> None:
        """Remove the snapshot from the node."""

    def remove_finalizer(self, snap: LVMSnapshot) -> None:
        """Drop the finalizer so the resource can go away."""

    def update_snap_info(self, snap: LVMSnapshot) -> None:
        """Record that the snapshot has been created."""


class SnapController(Controller):
    """Creates pending snapshots and destroys those marked for deletion."""

    def __init__(
        self,
        node_id: str,
        backend: _SnapshotBackend,
        workqueue: Optional[RateLimitingQueue] = None,
        has_synced: Optional[Callable[[], bool]] = None,
    ) -> None:
        super().__init__(
            workqueue if workqueue is not None else RateLimitingQueue("Snap"),
            has_synced,
        )
        self.node_id = node_id
        self.backend = backend

    def is_deletion_candidate(self, snap: LVMSnapshot) -> bool:
        """Return True when the snapshot has been marked for deletion."""
        return snap.metadata.deletion_timestamp is not None

    def sync_handler(self, key: str) -> None:
        """Sync the snapshot named by ``key``.

        Malformed keys and snapshots that no longer exist are logged and dropped.
        """
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            log.error("invalid resource key: %s", key)
            return
        snap = self.backend.get(namespace, name)
        if snap is None:
            log.error("lvm snapshot '%s' has been deleted", key)
            return
        self.sync_snap(copy.deepcopy(snap))

    def sync_snap(self, snap: LVMSnapshot) -> None:
        """Destroy a snapshot marked for deletion, or create a pending one."""
        if self.is_deletion_candidate(snap):
            self.backend.destroy_snapshot(snap)
            self.backend.remove_finalizer(snap)
        elif snap.state == STATUS_PENDING:
            self.backend.create_snapshot(snap)
            self.backend.update_snap_info(snap)

    def enqueue_snap(self, snap: Any) -> None:
        """Queue the ``namespace/name`` key of a snapshot."""
        try:
            key = meta_namespace_key(snap)
        except TypeError as exc:
            log.error("%s", exc)
            return
        self.workqueue.add(key)

    def _owned(self, snap: LVMSnapshot) -> bool:
        return snap.owner_node_id == self.node_id

    @staticmethod
    def _describe(snap: LVMSnapshot) -> str:
        volume = snap.metadata.labels.get(VOL_LABEL_KEY, "")
        return f"{snap.vol_group}/{volume}@{snap.metadata.name}"

    def add_snap(self, obj: Any) -> None:
        """Handle an add event for snapshots owned by this node."""
        if not isinstance(obj, LVMSnapshot):
            log.error("Couldn't get snap object %r", obj)
            return
        if not self._owned(obj):
            return
        log.info("Got add event for Snap %s/%s", obj.vol_group, obj.metadata.name)
        self.enqueue_snap(obj)

    def update_snap(self, old_obj: Any, new_obj: Any) -> None:
        """Handle an update event; only deletions of owned snapshots matter."""
        if not isinstance(new_obj, LVMSnapshot):
            log.error("Couldn't get snap object %r", new_obj)
            return
        if not self._owned(new_obj):
            return
        if self.is_deletion_candidate(new_obj):
            log.info("Got update event for Snap %s", self._describe(new_obj))
            self.enqueue_snap(new_obj)

    def delete_snap(self, obj: Any) -> None:
        """Handle a delete event, unwrapping tombstones."""
        snap = obj
        if not isinstance(snap, LVMSnapshot):
            if not isinstance(obj, DeletedFinalStateUnknown):
                log.error("Couldn't get object from tombstone %r", obj)
                return
            snap = obj.obj
            if not isinstance(snap, LVMSnapshot):
                log.error("Tombstone contained object that is not a lvmsnap %r", obj)
                return
        if not self._owned(snap):
            return
        log.info("Got delete event for Snap %s", self._describe(snap))
        self.enqueue_snap(snap)

    def run(self, threadiness: int, stop: threading.Event) -> None:
        """Start workers and block until ``stop`` is set.

        Raises RuntimeError when the cache never syncs.
        """
        workers: list[threading.Thread] = []
        try:
            log.info("Starting Snap controller")
            log.info("Waiting for informer caches to sync")
            if not self._wait_for_cache_sync(stop):
                raise RuntimeError("failed to wait for caches to sync")
            log.info("Starting Snap workers")
            workers = self._start_workers(threadiness, stop)
            log.info("Started Snap workers")
            stop.wait()
            log.info("Shutting down Snap workers")
        finally:
            self.workqueue.shut_down()
            for worker in workers:
                worker.join()