"""Response objects returned by the volume and snapshot services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

_INT32_RANGE = 1 << 32
_INT32_HALF = 1 << 31


def _to_int32(value: int) -> int:
    """Wrap an integer into the signed 32-bit range."""
    return ((int(value) + _INT32_HALF) % _INT32_RANGE) - _INT32_HALF


@dataclass
class Topology:
    """Accessibility segments of a volume, e.g. the node it lives on."""

    segments: dict[str, str] = field(default_factory=dict)


@dataclass
class Volume:
    """A provisioned volume as reported back to the orchestrator."""

    volume_id: str = ""
    capacity_bytes: int = 0
    volume_context: dict[str, str] = field(default_factory=dict)
    content_source: Any = None
    accessible_topology: list[Topology] = field(default_factory=list)


@dataclass
class CreateVolumeResponse:
    """Reply to a create-volume request."""

    volume: Volume = field(default_factory=Volume)


@dataclass
class DeleteVolumeResponse:
    """Reply to a delete-volume request; it carries no data."""


@dataclass
class ControllerExpandVolumeResponse:
    """Reply to a controller expand-volume request."""

    capacity_bytes: int = 0
    node_expansion_required: bool = False


@dataclass
class Timestamp:
    """A point in time as seconds and nanoseconds since the epoch."""

    seconds: int = 0
    nanos: int = 0


@dataclass
class Snapshot:
    """A snapshot as reported back to the orchestrator."""

    size_bytes: int = 0
    snapshot_id: str = ""
    source_volume_id: str = ""
    creation_time: Optional[Timestamp] = None
    ready_to_use: bool = False


@dataclass
class CreateSnapshotResponse:
    """Reply to a create-snapshot request."""

    snapshot: Snapshot = field(default_factory=Snapshot)


def create_volume_response(
    name: str = "",
    capacity: int = 0,
    context: Optional[Mapping[str, str]] = None,
    content_source: Any = None,
    topology: Optional[Mapping[str, str]] = None,
) -> CreateVolumeResponse:
    """Build a create-volume reply; a topology yields exactly one segment set."""
    volume = Volume(
        volume_id=name,
        capacity_bytes=int(capacity),
        volume_context=dict(context) if context is not None else {},
        content_source=content_source,
    )
    if topology is not None:
        volume.accessible_topology = [Topology(segments=dict(topology))]
    return CreateVolumeResponse(volume=volume)


def delete_volume_response() -> DeleteVolumeResponse:
    """Build an empty delete-volume reply."""
    return DeleteVolumeResponse()


def expand_volume_response(
    capacity_bytes: int = 0, node_expansion_required: bool = False
) -> ControllerExpandVolumeResponse:
    """Build a controller expand-volume reply."""
    return ControllerExpandVolumeResponse(
        capacity_bytes=int(capacity_bytes),
        node_expansion_required=bool(node_expansion_required),
    )


def create_snapshot_response(
    snapshot_id: str = "",
    source_volume_id: str = "",
    size: int = 0,
    creation_seconds: Optional[int] = None,
    creation_nanos: int = 0,
    ready_to_use: bool = False,
) -> CreateSnapshotResponse:
    """Build a create-snapshot reply.

    The creation time is set only when ``creation_seconds`` is given; the
    nanoseconds are stored as a signed 32-bit value.
    """
    creation_time = None
    if creation_seconds is not None:
        creation_time = Timestamp(
            seconds=int(creation_seconds), nanos=_to_int32(creation_nanos)
        )
    return CreateSnapshotResponse(
        snapshot=Snapshot(
            size_bytes=int(size),
            snapshot_id=snapshot_id,
            source_volume_id=source_volume_id,
            creation_time=creation_time,
            ready_to_use=bool(ready_to_use),
        )
    )