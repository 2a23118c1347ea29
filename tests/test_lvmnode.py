import threading

import pytest

from lvmpv.mgmt.controller import (
    DeletedFinalStateUnknown,
    ObjectMeta,
    OwnerReference,
    RateLimitingQueue,
    VolumeGroup,
)
from lvmpv.mgmt.lvmnode import LVMNode, NodeController

NS = "openebs"
NODE = "node-1"


class _Store:
    def __init__(self, node=None, fail=False, on_create=None):
        self.node = node
        self.fail = fail
        self.on_create = on_create
        self.created = []
        self.updated = []

    def get(self, namespace, name):
        return self.node

    def create(self, node):
        if self.fail:
            raise OSError("denied")
        self.created.append(node)
        self.node = node
        if self.on_create:
            self.on_create()

    def update(self, node):
        self.updated.append(node)
        self.node = node


def _owner(controller=True):
    return OwnerReference(api_version="v1", kind="Node", name=NODE, uid="uid-1", controller=controller)


def _controller(store, vgs=None, **kwargs):
    vgs = vgs if vgs is not None else [VolumeGroup(name="vg1", free=10)]
    return NodeController(
        NODE,
        NS,
        store,
        lambda: list(vgs),
        owner_ref=_owner(),
        workqueue=RateLimitingQueue("Node", base_delay=0.0, qps=1e9),
        **kwargs,
    )


def _node(name=NODE, namespace=NS, refs=None, vgs=None):
    return LVMNode(
        metadata=ObjectMeta(name=name, namespace=namespace, owner_references=refs or []),
        volume_groups=vgs or [],
    )


def test_sync_creates_missing_node():
    store = _Store()
    vgs = [VolumeGroup(name="vg1", free=10)]
    _controller(store, vgs).sync_node(NS, NODE)
    created = store.created[0]
    assert created.metadata.name == NODE
    assert created.metadata.namespace == NS
    assert created.metadata.owner_references == [_owner()]
    assert created.volume_groups == vgs


def test_sync_create_error_is_wrapped():
    store = _Store(fail=True)
    with pytest.raises(RuntimeError, match="create lvm node openebs/node-1"):
        _controller(store).sync_node(NS, NODE)


def test_sync_up_to_date_does_nothing():
    vgs = [VolumeGroup(name="vg1", free=10)]
    store = _Store(node=_node(refs=[_owner()], vgs=vgs))
    _controller(store, vgs).sync_node(NS, NODE)
    assert store.updated == []


def test_sync_updates_volume_groups_without_touching_cache():
    cached = _node(refs=[_owner()], vgs=[VolumeGroup(name="old")])
    store = _Store(node=cached)
    new_vgs = [VolumeGroup(name="vg2", free=5)]
    _controller(store, new_vgs).sync_node(NS, NODE)
    assert store.updated[0].volume_groups == new_vgs
    assert cached.volume_groups == [VolumeGroup(name="old")]


def test_sync_handler_ignores_bad_key():
    store = _Store()
    assert _controller(store).sync_handler("a/b/c") is None
    assert store.created == []


def test_owner_refs_unchanged():
    refs, updated = _controller(_Store()).is_owner_refs_update_required([_owner()])
    assert updated is False
    assert refs == [_owner()]


def test_owner_refs_controller_flag_fixed():
    refs, updated = _controller(_Store()).is_owner_refs_update_required([_owner(controller=None)])
    assert updated is True
    assert refs == [_owner()]


def test_owner_refs_appended_when_missing():
    other = OwnerReference(uid="other")
    refs, updated = _controller(_Store()).is_owner_refs_update_required([other])
    assert updated is True
    assert refs == [other, _owner()]


def test_enqueue_filters_other_nodes():
    c = _controller(_Store())
    c.add_node(_node(name="someone-else"))
    c.add_node(_node())
    c.workqueue.shut_down()
    assert c.workqueue.get() == (f"{NS}/{NODE}", False)
    assert c.workqueue.get() == (None, True)


def test_delete_with_tombstone_and_bad_objects():
    c = _controller(_Store())
    c.delete_node("junk")
    c.delete_node(DeletedFinalStateUnknown("x", "junk"))
    c.delete_node(DeletedFinalStateUnknown(f"{NS}/{NODE}", _node()))
    c.update_node(None, "junk")
    c.workqueue.shut_down()
    assert c.workqueue.get() == (f"{NS}/{NODE}", False)
    assert c.workqueue.get() == (None, True)


def test_run_syncs_then_stops():
    stop = threading.Event()
    store = _Store(on_create=stop.set)
    c = _controller(store)
    c.poll_interval = 30.0
    c.run(1, stop)
    assert len(store.created) == 1
    assert c.workqueue.get() == (None, True)


def test_run_fails_when_cache_never_syncs():
    stop = threading.Event()
    stop.set()
    c = _controller(_Store(), has_synced=lambda: False)
    with pytest.raises(RuntimeError, match="failed to wait for caches to sync"):
        c.run(1, stop)