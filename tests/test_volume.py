import dataclasses
import threading
import time
from datetime import datetime

import pytest

from lvmpv.mgmt.controller import (
    DeletedFinalStateUnknown,
    ObjectMeta,
    RateLimitingQueue,
    VolumeGroup,
)
from lvmpv.mgmt.volume import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_READY,
    ExecError,
    LVMVolume,
    VolController,
    VolumeError,
    VolumeErrorCode,
)

NODE = "node-1"
NS = "openebs"


class FakeBackend:
    def __init__(self, vgs=None, failing_vgs=(), volumes=None):
        self.vgs = list(vgs or [])
        self.failing_vgs = set(failing_vgs)
        self.volumes = dict(volumes or {})
        self.created = []
        self.destroyed = []
        self.finalizers_removed = []
        self.infos = []
        self.group_updates = []
        self.list_error = None

    def get(self, namespace, name):
        return self.volumes.get((namespace, name))

    def create_volume(self, vol):
        if vol.vol_group in self.failing_vgs:
            raise ExecError("lvcreate failed", b"Volume group has Insufficient free space")
        self.created.append(vol.vol_group)

    def destroy_volume(self, vol):
        self.destroyed.append(vol.metadata.name)

    def remove_finalizer(self, vol):
        self.finalizers_removed.append(vol.metadata.name)

    def update_vol_info(self, vol, state):
        self.infos.append((vol.vol_group, state, vol.error))

    def update_vol_group(self, vol, vg_name):
        self.group_updates.append(vg_name)
        return dataclasses.replace(vol, vol_group=vg_name)

    def list_volume_groups(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.vgs)


def make_vol(name="pvc-1", **kwargs):
    kwargs.setdefault("owner_node_id", NODE)
    kwargs.setdefault("capacity", "100")
    kwargs.setdefault("vg_pattern", "^lvmvg.*")
    kwargs.setdefault("state", STATUS_PENDING)
    return LVMVolume(metadata=ObjectMeta(name=name, namespace=NS), **kwargs)


def queued(controller):
    controller.workqueue.shut_down()
    items = []
    while True:
        item, shutdown = controller.workqueue.get()
        if shutdown:
            return items
        items.append(item)


VGS = [
    VolumeGroup(name="lvmvg-big", free=1000),
    VolumeGroup(name="other", free=500),
    VolumeGroup(name="lvmvg-small", free=200),
    VolumeGroup(name="lvmvg-tiny", free=50),
]


def test_priority_list_filters_and_orders_by_free_space():
    ctrl = VolController(NODE, FakeBackend(vgs=VGS))
    result = ctrl.get_vg_priority_list(make_vol())
    assert [vg.name for vg in result] == ["lvmvg-small", "lvmvg-big"]


def test_priority_list_thin_ignores_capacity():
    ctrl = VolController(NODE, FakeBackend(vgs=VGS))
    result = ctrl.get_vg_priority_list(make_vol(thin_provision="yes"))
    assert [vg.name for vg in result] == ["lvmvg-tiny", "lvmvg-small", "lvmvg-big"]


def test_priority_list_is_stable_for_equal_free():
    vgs = [VolumeGroup(name="lvmvg-b", free=300), VolumeGroup(name="lvmvg-a", free=300)]
    ctrl = VolController(NODE, FakeBackend(vgs=vgs))
    assert [vg.name for vg in ctrl.get_vg_priority_list(make_vol())] == ["lvmvg-b", "lvmvg-a"]


def test_priority_list_invalid_regex():
    ctrl = VolController(NODE, FakeBackend(vgs=VGS))
    with pytest.raises(ValueError, match="invalid regular expression"):
        ctrl.get_vg_priority_list(make_vol(vg_pattern="("))


@pytest.mark.parametrize("capacity", ["", "10Gi", "1.5"])
def test_priority_list_invalid_capacity(capacity):
    ctrl = VolController(NODE, FakeBackend(vgs=VGS))
    with pytest.raises(ValueError, match="invalid requested capacity"):
        ctrl.get_vg_priority_list(make_vol(capacity=capacity))


def test_priority_list_list_failure():
    backend = FakeBackend()
    backend.list_error = OSError("vgs broke")
    ctrl = VolController(NODE, backend)
    with pytest.raises(RuntimeError, match="failed to list vgs available on node"):
        ctrl.get_vg_priority_list(make_vol())


def test_transform_insufficient_space():
    ctrl = VolController(NODE, FakeBackend())
    err = ExecError("lvcreate failed", "  INSUFFICIENT FREE SPACE: 10 extents")
    result = ctrl.transform_lvm_error(err)
    assert result == VolumeError(VolumeErrorCode.INSUFFICIENT_CAPACITY, "lvcreate failed")


def test_transform_other_errors_are_internal():
    ctrl = VolController(NODE, FakeBackend())
    assert ctrl.transform_lvm_error(RuntimeError("boom")).code is VolumeErrorCode.INTERNAL
    exec_err = ExecError("lvcreate failed", "device busy")
    assert ctrl.transform_lvm_error(exec_err).code is VolumeErrorCode.INTERNAL


def test_sync_deletion_candidate():
    backend = FakeBackend(vgs=VGS)
    ctrl = VolController(NODE, backend)
    vol = make_vol()
    vol.metadata.deletion_timestamp = datetime(2021, 1, 1)
    ctrl.sync_vol(vol)
    assert backend.destroyed == ["pvc-1"]
    assert backend.finalizers_removed == ["pvc-1"]
    assert backend.created == []


@pytest.mark.parametrize("state", [STATUS_FAILED, STATUS_READY])
def test_sync_skips_finished_volumes(state):
    backend = FakeBackend(vgs=VGS)
    VolController(NODE, backend).sync_vol(make_vol(state=state))
    assert backend.created == [] and backend.infos == []


def test_sync_uses_preset_vol_group():
    backend = FakeBackend(vgs=VGS)
    VolController(NODE, backend).sync_vol(make_vol(vol_group="lvmvg-big"))
    assert backend.created == ["lvmvg-big"]
    assert backend.infos == [("lvmvg-big", STATUS_READY, None)]
    assert backend.group_updates == []


def test_sync_falls_back_to_next_vg():
    backend = FakeBackend(vgs=VGS, failing_vgs={"lvmvg-small"})
    VolController(NODE, backend).sync_vol(make_vol())
    assert backend.group_updates == ["lvmvg-small", "lvmvg-big"]
    assert backend.created == ["lvmvg-big"]
    assert backend.infos == [("lvmvg-big", STATUS_READY, None)]


def test_sync_all_vgs_fail_marks_failed():
    backend = FakeBackend(vgs=VGS, failing_vgs={"lvmvg-small", "lvmvg-big"})
    VolController(NODE, backend).sync_vol(make_vol())
    assert len(backend.infos) == 1
    vg, state, error = backend.infos[0]
    assert state == STATUS_FAILED
    assert error.code is VolumeErrorCode.INSUFFICIENT_CAPACITY


def test_sync_no_vg_marks_failed():
    backend = FakeBackend(vgs=VGS)
    VolController(NODE, backend).sync_vol(make_vol(vg_pattern="^nothing$"))
    _, state, error = backend.infos[0]
    assert state == STATUS_FAILED
    assert error.code is VolumeErrorCode.INTERNAL
    assert "no vg available" in error.message


def test_sync_invalid_pattern_raises():
    backend = FakeBackend(vgs=VGS)
    with pytest.raises(ValueError):
        VolController(NODE, backend).sync_vol(make_vol(vg_pattern="["))
    assert backend.infos == []


def test_sync_handler_missing_and_invalid_key():
    backend = FakeBackend(vgs=VGS)
    ctrl = VolController(NODE, backend)
    ctrl.sync_handler(f"{NS}/absent")
    ctrl.sync_handler("a/b/c")
    assert backend.infos == [] and backend.created == []


def test_sync_handler_works_on_copy():
    stored = make_vol()
    backend = FakeBackend(vgs=VGS, volumes={(NS, "pvc-1"): stored})
    VolController(NODE, backend).sync_handler(f"{NS}/pvc-1")
    assert backend.created == ["lvmvg-small"]
    assert stored.vol_group == ""


def test_add_vol_only_owned():
    ctrl = VolController(NODE, FakeBackend())
    ctrl.add_vol(make_vol("mine"))
    ctrl.add_vol(make_vol("theirs", owner_node_id="node-2"))
    ctrl.add_vol("not a volume")
    assert queued(ctrl) == [f"{NS}/mine"]


def test_update_vol_only_deletions():
    ctrl = VolController(NODE, FakeBackend())
    plain = make_vol("plain")
    deleted = make_vol("gone")
    deleted.metadata.deletion_timestamp = datetime(2021, 1, 1)
    ctrl.update_vol(plain, plain)
    ctrl.update_vol(deleted, deleted)
    assert queued(ctrl) == [f"{NS}/gone"]


def test_delete_vol_unwraps_tombstone():
    ctrl = VolController(NODE, FakeBackend())
    ctrl.delete_vol(DeletedFinalStateUnknown(key=f"{NS}/x", obj=make_vol("tomb")))
    ctrl.delete_vol(DeletedFinalStateUnknown(key=f"{NS}/y", obj="junk"))
    ctrl.delete_vol(42)
    assert queued(ctrl) == [f"{NS}/tomb"]


def test_run_fails_when_cache_never_syncs():
    ctrl = VolController(NODE, FakeBackend(), has_synced=lambda: False)
    stop = threading.Event()
    stop.set()
    with pytest.raises(RuntimeError, match="failed to wait for caches to sync"):
        ctrl.run(1, stop)


def test_run_processes_queued_volumes():
    stored = make_vol()
    backend = FakeBackend(vgs=VGS, volumes={(NS, "pvc-1"): stored})
    ctrl = VolController(NODE, backend, workqueue=RateLimitingQueue("Vol"))
    stop = threading.Event()
    runner = threading.Thread(target=ctrl.run, args=(2, stop))
    runner.start()
    ctrl.add_vol(stored)
    deadline = time.monotonic() + 5
    while not backend.infos and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    runner.join(timeout=5)
    assert backend.infos == [("lvmvg-small", STATUS_READY, None)]
    assert not runner.is_alive()