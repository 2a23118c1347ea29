"""Controller keeping the node's LVMNode resource in line with its volume groups."""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from lvmpv.mgmt.controller import (
    Controller,
    DeletedFinalStateUnknown,
    ObjectMeta,
    OwnerReference,
    RateLimitingQueue,
    VolumeGroup,
    meta_namespace_key,
    split_meta_namespace_key,
)

log = logging.getLogger(__name__)

CONTROLLER_AGENT_NAME = "lvmnode-controller"
DEFAULT_POLL_INTERVAL = 60.0


@dataclass
class LVMNode:
    """Resource describing the volume groups available on one node."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    volume_groups: list[VolumeGroup] = field(default_factory=list)


class NodeStore(Protocol):
    """Storage of LVMNode resources."""

    def get(self, namespace: str, name: str) -> Optional[LVMNode]:
        """Return the node, or None when it does not exist."""

    def create(self, node: LVMNode) -> Any:
        """Store a new node."""

    def update(self, node: LVMNode) -> Any:
        """Replace an existing node."""


class NodeController(Controller):
    """Creates and updates the LVMNode resource of this node."""

    def __init__(
        self,
        node_id: str,
        namespace: str,
        store: NodeStore,
        list_volume_groups: Callable[[], list[VolumeGroup]],
        owner_ref: Optional[OwnerReference] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        workqueue: Optional[RateLimitingQueue] = None,
        has_synced: Optional[Callable[[], bool]] = None,
    ) -> None:
        super().__init__(
            workqueue if workqueue is not None else RateLimitingQueue("Node"),
            has_synced,
        )
        self.node_id = node_id
        self.namespace = namespace
        self.store = store
        self.list_volume_groups = list_volume_groups
        self.owner_ref = owner_ref if owner_ref is not None else OwnerReference()
        self.poll_interval = poll_interval

    def sync_handler(self, key: str) -> None:
        """Sync the node named by ``key``; malformed keys are logged and dropped."""
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            log.error("invalid resource key: %s", key)
            return
        self.sync_node(namespace, name)

    def sync_node(self, namespace: str, name: str) -> None:
        """Create the node resource, or update its owners and volume groups."""
        cached = self.store.get(namespace, name)
        node = copy.deepcopy(cached) if cached is not None else None
        vgs = list(self.list_volume_groups())

        if node is None:
            node = LVMNode(
                metadata=ObjectMeta(
                    name=name,
                    namespace=namespace,
                    owner_references=[dataclasses.replace(self.owner_ref)],
                ),
                volume_groups=vgs,
            )
            log.info("lvm node controller: creating new node object for %s", node)
            try:
                self.store.create(node)
            except Exception as exc:
                raise RuntimeError(f"create lvm node {namespace}/{name}: {exc}") from exc
            log.info("lvm node controller: created node object %s/%s", namespace, name)
            return

        update_required = False
        owner_refs, required = self.is_owner_refs_update_required(node.metadata.owner_references)
        if required:
            log.info(
                "lvm node controller: node owner references updated current=%s, required=%s",
                node.metadata.owner_references,
                owner_refs,
            )
            node.metadata.owner_references = owner_refs
            update_required = True

        if node.volume_groups != vgs:
            log.info(
                "lvm node controller: node volume groups updated current=%s, required=%s",
                node.volume_groups,
                vgs,
            )
            node.volume_groups = vgs
            update_required = True

        if not update_required:
            return

        log.info("lvm node controller: updating node object with %s", node)
        try:
            self.store.update(node)
        except Exception as exc:
            raise RuntimeError(f"update lvm node {namespace}/{name}: {exc}") from exc
        log.info("lvm node controller: updated node object %s/%s", namespace, name)

    def add_node(self, obj: Any) -> None:
        """Handle an add event."""
        if not isinstance(obj, LVMNode):
            log.error("Couldn't get node object %r", obj)
            return
        log.info("Got add event for lvm node %s/%s", obj.metadata.namespace, obj.metadata.name)
        self.enqueue_node(obj)

    def update_node(self, old_obj: Any, new_obj: Any) -> None:
        """Handle an update event."""
        if not isinstance(new_obj, LVMNode):
            log.error("Couldn't get node object %r", new_obj)
            return
        log.info(
            "Got update event for lvm node %s/%s", new_obj.metadata.namespace, new_obj.metadata.name
        )
        self.enqueue_node(new_obj)

    def delete_node(self, obj: Any) -> None:
        """Handle a delete event, unwrapping tombstones."""
        node = obj
        if not isinstance(node, LVMNode):
            if not isinstance(obj, DeletedFinalStateUnknown):
                log.error("Couldn't get object from tombstone %r", obj)
                return
            node = obj.obj
            if not isinstance(node, LVMNode):
                log.error("Tombstone contained object that is not a LVMNode %r", obj)
                return
        log.info("Got delete event for node %s/%s", node.metadata.namespace, node.metadata.name)
        self.enqueue_node(node)

    def enqueue_node(self, node: LVMNode) -> None:
        """Queue the node's key if it is this node's resource."""
        if node.metadata.namespace != self.namespace or node.metadata.name != self.node_id:
            log.warning(
                "skipping lvm node object %s/%s", node.metadata.namespace, node.metadata.name
            )
            return
        self.workqueue.add(meta_namespace_key(node))

    def is_owner_refs_update_required(
        self, owner_refs: list[OwnerReference]
    ) -> tuple[list[OwnerReference], bool]:
        """Return the owner references the node should have and whether they changed."""
        required = self.owner_ref
        refs = [dataclasses.replace(ref) for ref in owner_refs]
        for ref in refs:
            if ref.uid != required.uid:
                continue
            updated = ref.controller != required.controller
            if updated:
                ref.controller = required.controller
            return refs, updated
        refs.append(dataclasses.replace(required))
        return refs, True

    def run(self, threadiness: int, stop: threading.Event) -> None:
        """Start workers and queue this node every poll interval until ``stop`` is set.

        Raises RuntimeError when the cache never syncs.
        """
        workers: list[threading.Thread] = []
        try:
            log.info("Starting Node controller")
            log.info("Waiting for informer caches to sync")
            if not self._wait_for_cache_sync(stop):
                raise RuntimeError("failed to wait for caches to sync")
            log.info("Starting Node workers")
            workers = self._start_workers(threadiness, stop)
            log.info("Started Node workers")
            item = f"{self.namespace}/{self.node_id}"
            while True:
                self.workqueue.add(item)
                if stop.wait(self.poll_interval):
                    log.info("Shutting down Node controller")
                    return
        finally:
            self.workqueue.shut_down()
            for worker in workers:
                worker.join()