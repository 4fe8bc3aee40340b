"""Deterministic topology policy.

This module contains *no* source parsing. Sources produce normalized
:class:`~pytailnet.models.DeviceCreate` records; the functions here decide
how a record set becomes devices, edges and stats.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from pytailnet.models import (
    ConnectionCreate,
    ConnectionStatus,
    Device,
    DeviceCreate,
    DeviceStatus,
    NetworkStats,
    TailnetEnum,
)


class TopologyPolicy(TailnetEnum):
    """How connection edges are generated on a full replace."""

    HUB = "hub"
    """The coordinator links to every other device."""
    MESH = "mesh"
    """Every pair of connected devices is linked."""
    STAR = "star"
    """The first record becomes the coordinator, then hub edges."""


class StaleDevicePolicy(TailnetEnum):
    """What a resync does with devices missing from the latest snapshot."""

    REPLACE = "replace"
    """Drop them; the store mirrors the snapshot exactly."""
    RETAIN = "retain"
    """Keep them, marked disconnected."""


def compute_stats(devices: Iterable[Device], now: datetime) -> NetworkStats:
    """Project device counts by status. Pure; never cached."""
    online = offline = unstable = 0
    for device in devices:
        if device.status == DeviceStatus.CONNECTED:
            online += 1
        elif device.status == DeviceStatus.UNSTABLE:
            unstable += 1
        else:
            offline += 1
    return NetworkStats(
        total_devices=online + offline + unstable,
        online_devices=online,
        offline_devices=offline,
        unstable_devices=unstable,
        last_updated=now,
    )


def prepare_records(records: Sequence[DeviceCreate], policy: TopologyPolicy) -> list[DeviceCreate]:
    """Apply record-level policy effects before installation."""
    if policy != TopologyPolicy.STAR or not records:
        return list(records)
    prepared = [records[0].model_copy(update={"is_coordinator": True})]
    prepared.extend(record.model_copy(update={"is_coordinator": False}) for record in records[1:])
    return prepared


def retain_stale(
    records: Sequence[DeviceCreate],
    existing: Iterable[Device],
) -> tuple[list[DeviceCreate], dict[str, datetime]]:
    """Append devices absent from *records* as disconnected records.

    Also returns the last-seen time of every retained device by external id;
    a device the snapshot no longer lists was not seen by this resync.
    """
    incoming = {record.external_id for record in records}
    retained = list(records)
    last_seen: dict[str, datetime] = {}
    for device in existing:
        if device.external_id in incoming:
            continue
        retained.append(device.to_create().model_copy(update={"status": DeviceStatus.DISCONNECTED}))
        last_seen[device.external_id] = device.last_seen
    return retained, last_seen


def _edge_status(device: Device) -> ConnectionStatus:
    return ConnectionStatus.ACTIVE if device.status == DeviceStatus.CONNECTED else ConnectionStatus.INACTIVE


def plan_connections(devices: Sequence[Device], policy: TopologyPolicy) -> list[ConnectionCreate]:
    """Generate connection edges for an installed device set."""
    if policy == TopologyPolicy.MESH:
        connected = [d for d in devices if d.status == DeviceStatus.CONNECTED]
        return [
            ConnectionCreate(from_device_id=a.id, to_device_id=b.id, status=ConnectionStatus.ACTIVE)
            for i, a in enumerate(connected)
            for b in connected[i + 1 :]
        ]

    coordinator = next((d for d in devices if d.is_coordinator), None)
    if coordinator is None:
        return []
    return [
        ConnectionCreate(from_device_id=coordinator.id, to_device_id=d.id, status=_edge_status(d))
        for d in devices
        if d.id != coordinator.id
    ]
