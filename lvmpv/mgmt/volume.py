"""Controller provisioning and removing LVM volumes owned by this node."""

from __future__ import annotations

import copy
import enum
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Union

from lvmpv.mgmt.controller import (
    Controller,
    DeletedFinalStateUnknown,
    ObjectMeta,
    RateLimitingQueue,
    VolumeGroup,
    meta_namespace_key,
    split_meta_namespace_key,
)

log = logging.getLogger(__name__)

CONTROLLER_AGENT_NAME = "lvmvolume-controller"

STATUS_PENDING = "Pending"
STATUS_READY = "Ready"
STATUS_FAILED = "Failed"

_INTEGER_RE = re.compile(r"[+-]?\d+")


class VolumeErrorCode(str, enum.Enum):
    """Classification of a provisioning failure."""

    INTERNAL = "Internal"
    INSUFFICIENT_CAPACITY = "InsufficientCapacity"


@dataclass
class VolumeError:
    """Why provisioning a volume failed."""

    code: VolumeErrorCode = VolumeErrorCode.INTERNAL
    message: str = ""


class ExecError(Exception):
    """An LVM command failed; ``output`` holds what it printed."""

    def __init__(self, message: str, output: Union[str, bytes] = "") -> None:
        super().__init__(message)
        if isinstance(output, bytes):
            output = output.decode(errors="replace")
        self.output = output


@dataclass
class LVMVolume:
    """Resource describing a logical volume to be provisioned on a node."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    owner_node_id: str = ""
    vol_group: str = ""
    vg_pattern: str = ""
    capacity: str = ""
    thin_provision: str = ""
    state: str = ""
    error: Optional[VolumeError] = None


class _VolumeBackend(Protocol):
    """Storage of volume resources and the volume operations on the node."""

    def get(self, namespace: str, name: str) -> Optional[LVMVolume]:
        """Return the volume resource, or None when it does not exist."""

    def create_volume(self, vol: LVMVolume) -> None:
        """Create the logical volume on the node."""

    def destroy_volume(self, vol: LVMVolume) -> None:
        """Remove the logical volume from the node."""

    def remove_finalizer(self, vol: LVMVolume) -> None:
        """Drop the finalizer so the resource can go away."""

    def update_vol_info(self, vol: LVMVolume, state: str) -> None:
        """Record the provisioning state of the volume."""

    def update_vol_group(self, vol: LVMVolume, vg_name: str) -> LVMVolume:
        """Store the chosen volume group and return the updated resource."""

    def list_volume_groups(self) -> list[VolumeGroup]:
        """Return the volume groups present on the node."""


class VolController(Controller):
    """Provisions pending volumes and destroys those marked for deletion."""

    def __init__(
        self,
        node_id: str,
        backend: _VolumeBackend,
        workqueue: Optional[RateLimitingQueue] = None,
        has_synced: Optional[Callable[[], bool]] = None,
    ) -> None:
        super().__init__(
            workqueue if workqueue is not None else RateLimitingQueue("Vol"),
            has_synced,
        )
        self.node_id = node_id
        self.backend = backend

    def is_deletion_candidate(self, vol: LVMVolume) -> bool:
        """Return True when the volume has been marked for deletion."""
        return vol.metadata.deletion_timestamp is not None

    def sync_handler(self, key: str) -> None:
        """Sync the volume named by ``key``.

        Malformed keys and volumes that no longer exist are logged and dropped.
        """
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            log.error("invalid resource key: %s", key)
            return
        vol = self.backend.get(namespace, name)
        if vol is None:
            log.error("lvmvolume '%s' has been deleted", key)
            return
        self.sync_vol(copy.deepcopy(vol))

    def sync_vol(self, vol: LVMVolume) -> None:
        """Bring a volume to its desired state.

        A volume marked for deletion is destroyed.  A pending volume is created
        in its volume group if one is set, else in the best matching one; when
        every attempt fails the volume is marked failed with the last error.
        """
        if self.is_deletion_candidate(vol):
            self.backend.destroy_volume(vol)
            self.backend.remove_finalizer(vol)
            return

        if vol.state == STATUS_FAILED:
            log.warning(
                "Skipping retrying lvm volume provisioning as its already in failed state: %s",
                vol.error,
            )
            return
        if vol.state == STATUS_READY:
            log.info("lvm volume already provisioned")
            return

        if vol.vol_group:
            try:
                self.backend.create_volume(vol)
            except Exception as exc:
                log.info("creating volume in vg %s failed: %s", vol.vol_group, exc)
            else:
                self.backend.update_vol_info(vol, STATUS_READY)
                return

        vgs = self.get_vg_priority_list(vol)

        err: Exception
        if not vgs:
            err = RuntimeError(
                f"no vg available to serve volume request having "
                f"regex={vol.vg_pattern!r} & capacity={vol.capacity!r}"
            )
            log.error("lvm volume %s - %s", vol.metadata.name, err)
        else:
            for vg in vgs:
                try:
                    vol = self.backend.update_vol_group(vol, vg.name)
                except Exception as exc:
                    log.error("failed to update volGroup to %s: %s", vg.name, exc)
                    raise
                try:
                    self.backend.create_volume(vol)
                except Exception as exc:
                    err = exc
                    continue
                self.backend.update_vol_info(vol, STATUS_READY)
                return

        vol.error = self.transform_lvm_error(err)
        self.backend.update_vol_info(vol, STATUS_FAILED)

    def get_vg_priority_list(self, vol: LVMVolume) -> list[VolumeGroup]:
        """Return the volume groups that can hold the volume, least free space first.

        Raises ValueError for an invalid pattern or capacity and RuntimeError
        when the volume groups cannot be listed.
        """
        try:
            pattern = re.compile(vol.vg_pattern)
        except re.error as exc:
            raise ValueError(
                f"invalid regular expression {vol.vg_pattern} "
                f"for lvm volume {vol.metadata.name}: {exc}"
            ) from exc
        if not _INTEGER_RE.fullmatch(vol.capacity):
            raise ValueError(
                f"invalid requested capacity {vol.capacity} "
                f"for lvm volume {vol.metadata.name}"
            )
        capacity = int(vol.capacity)

        try:
            vgs = list(self.backend.list_volume_groups())
        except Exception as exc:
            raise RuntimeError(f"failed to list vgs available on node: {exc}") from exc

        candidates = [
            vg
            for vg in vgs
            if pattern.search(vg.name)
            and (vol.thin_provision == "yes" or vg.free >= capacity)
        ]
        return sorted(candidates, key=lambda vg: vg.free)

    def transform_lvm_error(self, err: Exception) -> VolumeError:
        """Classify a provisioning error."""
        vol_err = VolumeError(code=VolumeErrorCode.INTERNAL, message=str(err))
        if isinstance(err, ExecError) and "insufficient free space" in err.output.lower():
            vol_err.code = VolumeErrorCode.INSUFFICIENT_CAPACITY
        return vol_err

    def enqueue_vol(self, vol: Any) -> None:
        """Queue the ``namespace/name`` key of a volume."""
        try:
            key = meta_namespace_key(vol)
        except TypeError as exc:
            log.error("%s", exc)
            return
        self.workqueue.add(key)

    def _owned(self, vol: LVMVolume) -> bool:
        return vol.owner_node_id == self.node_id

    def add_vol(self, obj: Any) -> None:
        """Handle an add event for volumes owned by this node."""
        if not isinstance(obj, LVMVolume):
            log.error("Couldn't get Vol object %r", obj)
            return
        if not self._owned(obj):
            return
        log.info("Got add event for Vol %s", obj.metadata.name)
        self.enqueue_vol(obj)

    def update_vol(self, old_obj: Any, new_obj: Any) -> None:
        """Handle an update event; only deletions of owned volumes matter."""
        if not isinstance(new_obj, LVMVolume):
            log.error("Couldn't get Vol object %r", new_obj)
            return
        if not self._owned(new_obj):
            return
        if self.is_deletion_candidate(new_obj):
            log.info("Got update event for deleted Vol %s", new_obj.metadata.name)
            self.enqueue_vol(new_obj)

    def delete_vol(self, obj: Any) -> None:
        """Handle a delete event, unwrapping tombstones."""
        vol = obj
        if not isinstance(vol, LVMVolume):
            if not isinstance(obj, DeletedFinalStateUnknown):
                log.error("Couldn't get object from tombstone %r", obj)
                return
            vol = obj.obj
            if not isinstance(vol, LVMVolume):
                log.error("Tombstone contained object that is not a lvmvolume %r", obj)
                return
        if not self._owned(vol):
            return
        log.info("Got delete event for Vol %s", vol.metadata.name)
        self.enqueue_vol(vol)

    def run(self, threadiness: int, stop: threading.Event) -> None:
        """Start workers and block until ``stop`` is set.

        Raises RuntimeError when the cache never syncs.
        """
        workers: list[threading.Thread] = []
        try:
            log.info("Starting Vol controller")
            log.info("Waiting for informer caches to sync")
            if not self._wait_for_cache_sync(stop):
                raise RuntimeError("failed to wait for caches to sync")
            log.info("Starting Vol workers")
            workers = self._start_workers(threadiness, stop)
            log.info("Started Vol workers")
            stop.wait()
            log.info("Shutting down Vol workers")
        finally:
            self.workqueue.shut_down()
            for worker in workers:
                worker.join()