# lvmpv

Building blocks for a node-local LVM volume provisioner: controllers that
bring LVM volume, snapshot and node resources to their desired state, the
response objects handed back to a container orchestrator, and anonymous
usage reporting. It has no third-party dependencies.

## Modules

### `lvmpv.responses`

Data classes for storage replies (`Topology`, `Volume`,
`CreateVolumeResponse`, `DeleteVolumeResponse`,
`ControllerExpandVolumeResponse`, `Timestamp`, `Snapshot`,
`CreateSnapshotResponse`) and the functions that build them:

- `create_volume_response(name, capacity, context, content_source, topology)`:
  a given topology becomes exactly one `Topology` entry.
- `delete_volume_response()`
- `expand_volume_response(capacity_bytes, node_expansion_required)`
- `create_snapshot_response(snapshot_id, source_volume_id, size,
  creation_seconds, creation_nanos, ready_to_use)`: the creation time is set
  only when `creation_seconds` is given; nanoseconds are wrapped to a signed
  32-bit value.

### `lvmpv.version`

`VERSION`, `VERSION_META` and `GIT_COMMIT` are module values filled in at
build time. When they are empty:

- `get()` / `current()` read the `VERSION` file under the directory named by
  the `LVMPV_SOURCE_ROOT` environment variable (empty string on failure);
- `get_build_meta()` reads `BUILDMETA` there and prefixes it with `-`;
- `get_git_commit()` runs `git rev-parse --verify HEAD`.

`verbose()` returns `<version>-<first 7 characters of the commit>` and
`version_details()` returns `lvm-` followed by that. Both raise
`ValueError` when the commit is shorter than 7 characters.

### `lvmpv.usage`

- `size.from_human_size(size)` returns bytes for strings such as
  `"104.5 GB"`; `size.to_giga_units(size)` returns whole gigabytes
  (10⁹ bytes). Multipliers are decimal even for `KiB`, `GiB` and the like.
  Invalid strings raise `ValueError`.
- `ping.parse_duration(value)` parses durations such as `"1h30m"` or
  `"-1.5s"` into nanoseconds. `ping.ping_period()` reads
  `OPENEBS_IO_ANALYTICS_PING_INTERVAL`; missing, malformed, non-positive or
  sub-hour values give the default of 24 hours.
- `versionset.VersionSet` holds cluster facts (id, Kubernetes version and
  architecture, driver version, node type, installer type). `fetch(cluster)`
  queries a `ClusterInfo` object and caches the results in `OPENEBS_IO_*`
  environment variables; `load(cluster, override)` reads them back, fetching
  first when nothing is cached or `override` is true.
- `tracker.Usage` assembles an event: `build`, `with_application`,
  `install_builder`, `set_event`, `set_volume_capacity`, `set_volume_type`,
  `set_replica_count`. `payload()` gives the hit parameters. `send()` posts
  them from a background thread and returns it, but only when the tracking
  ID is valid and `OPENEBS_IO_ANALYTICS_ENDPOINT` names an endpoint;
  otherwise it returns `None`. `tracker.ping_check(cluster, stop)` sends a
  ping event every ping period until the `threading.Event` is set and
  returns how many it sent.

`ClusterInfo` is a protocol you implement: `namespace_uid`,
`server_version`, `os_and_kernel_version` and `number_of_nodes`.

### `lvmpv.mgmt`

- `controller`: `ObjectMeta`, `OwnerReference`, `VolumeGroup`,
  `DeletedFinalStateUnknown`, the key helpers `split_meta_namespace_key` and
  `meta_namespace_key`, and `RateLimitingQueue`, a work queue that never
  hands one item to two workers at once and delays retries by per-item
  exponential back-off or a token bucket, whichever is longer. `Controller`
  is the base class whose workers drain the queue.
- `lvmnode.NodeController` creates this node's `LVMNode` resource, or
  updates its owner references and volume groups when they differ from the
  machine. `run(threadiness, stop)` queues the node every poll interval
  (60 seconds by default).
- `snapshot.SnapController` creates `LVMSnapshot`s in the `Pending` state and
  destroys those marked for deletion, for snapshots owned by its node.
- `volume.VolController` provisions `LVMVolume`s: it first tries the volume
  group already set, then every group whose name matches `vg_pattern` and
  has enough free space (any size for thin volumes), least free space first.
  When none succeeds the volume is marked `Failed` with a `VolumeError`;
  an `ExecError` whose output mentions insufficient free space is coded
  `InsufficientCapacity`.

The controllers do no I/O of their own. You pass in a store or backend
object with the methods they call (`get`, `create`, `update` for nodes;
`get`, `create_snapshot`, `destroy_snapshot`, `remove_finalizer`,
`update_snap_info` for snapshots; `get`, `create_volume`, `destroy_volume`,
`remove_finalizer`, `update_vol_info`, `update_vol_group`,
`list_volume_groups` for volumes) and call the event handlers
(`add_*`, `update_*`, `delete_*`) yourself.

## Examples

```python
from lvmpv.usage.size import to_giga_units

to_giga_units("104.5 GB")   # 104
to_giga_units("1 GiB")      # 1
to_giga_units("1 MB")       # 0
```

```python
from lvmpv.responses import expand_volume_response

response = expand_volume_response(4 * 1024**3, True)
response.capacity_bytes           # 4294967296
response.node_expansion_required  # True
```

```python
import threading

stop = threading.Event()
# controller.run(2, stop)   # blocks with two workers until stop.set()
```

## What it does not do

The package contains no client for a cluster API, runs no LVM commands,
serves no storage RPC endpoint and installs no command. Watching resources,
talking to the cluster and operating on logical volumes are left to the
store, backend and `ClusterInfo` objects you supply.

## Tests

The test suite uses pytest; install the `test` extra to get it.