"""Authoritative in-memory topology store.

This is the only component allowed to mutate devices, connections and
stats. Every mutation is serialized by an internal lock, installs its result
in a single swap, recomputes stats and emits its change events before
returning. Readers never take the lock: they always see either the state
before a mutation or the state after it.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from pytailnet.exceptions import TailnetConflictError, TailnetNotFoundError, TailnetValidationError
from pytailnet.layout import LayoutEngine, Position
from pytailnet.models import (
    Connection,
    ConnectionCreate,
    ConnectionPatch,
    Device,
    DeviceCreate,
    DevicePatch,
    NetworkStats,
    NetworkTopology,
)
from pytailnet.models._base import utcnow
from pytailnet.state.events import (
    ConnectionRemovedEvent,
    ConnectionUpdatedEvent,
    DeviceAddedEvent,
    DeviceRemovedEvent,
    DeviceStatusChangedEvent,
    DeviceUpdatedEvent,
    StatsUpdatedEvent,
    TopologyEvent,
    TopologyReplacedEvent,
)
from pytailnet.state.policy import (
    StaleDevicePolicy,
    TopologyPolicy,
    compute_stats,
    plan_connections,
    prepare_records,
    retain_stale,
)

_logger = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)


def _validate(model_cls: type[TModel], data: TModel | Mapping[str, Any]) -> TModel:
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        raise TailnetValidationError(f"Invalid {model_cls.__name__}: {exc}") from exc


@dataclass(frozen=True)
class _State:
    """One immutable generation of store contents."""

    devices: dict[int, Device] = field(default_factory=dict)
    connections: dict[int, Connection] = field(default_factory=dict)
    stats: NetworkStats = field(default_factory=NetworkStats)


class TopologyStore:
    """Single-writer store for devices, connections and derived stats.

    Parameters
    ----------
    on_event : callable, optional
        Receives every change event, in order, before the mutating call
        returns. Typically :meth:`ChangeBroadcaster.publish`.
    layout : LayoutEngine, optional
        Positions devices on :meth:`replace_all` and :meth:`relayout`.
    clock : callable, optional
        Source of "now" for last-seen and stats timestamps.
    """

    def __init__(
        self,
        *,
        on_event: Callable[[TopologyEvent], None] | None = None,
        layout: LayoutEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._on_event = on_event
        self._layout = layout or LayoutEngine()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = _State(stats=compute_stats((), clock()))
        self._device_ids = itertools.count(1)
        self._connection_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_devices(self) -> list[Device]:
        return list(self._state.devices.values())

    def get_device(self, device_id: int) -> Device | None:
        return self._state.devices.get(device_id)

    def require_device(self, device_id: int) -> Device:
        device = self._state.devices.get(device_id)
        if device is None:
            raise TailnetNotFoundError("Device", device_id)
        return device

    def get_device_by_external_id(self, external_id: str) -> Device | None:
        return next((d for d in self._state.devices.values() if d.external_id == external_id), None)

    def list_connections(self) -> list[Connection]:
        return list(self._state.connections.values())

    def get_connection(self, connection_id: int) -> Connection | None:
        return self._state.connections.get(connection_id)

    def stats(self) -> NetworkStats:
        return self._state.stats

    def snapshot(self) -> NetworkTopology:
        """Devices, connections and stats from the same generation."""
        state = self._state
        return NetworkTopology(
            devices=list(state.devices.values()),
            connections=list(state.connections.values()),
            stats=state.stats,
        )

    # ------------------------------------------------------------------
    # Device mutations
    # ------------------------------------------------------------------

    async def create_device(self, data: DeviceCreate | Mapping[str, Any]) -> Device:
        record = _validate(DeviceCreate, data)
        async with self._lock:
            state = self._state
            if self._find_external(state, record.external_id) is not None:
                raise TailnetConflictError(record.external_id)

            device = Device.from_create(next(self._device_ids), record, last_seen=self._clock())
            devices = {**state.devices, device.id: device}
            stats = self._install(replace(state, devices=devices))
            _logger.debug("Device created id=%d external_id=%s", device.id, device.external_id)
            self._emit(DeviceAddedEvent(device=device))
            self._emit(StatsUpdatedEvent(stats=stats))
            return device

    async def update_device(self, device_id: int, patch: DevicePatch | Mapping[str, Any]) -> Device:
        """Apply a partial patch and refresh ``last_seen``."""
        changes = _validate(DevicePatch, patch).changes()
        async with self._lock:
            state = self._state
            current = state.devices.get(device_id)
            if current is None:
                raise TailnetNotFoundError("Device", device_id)

            new_external = changes.get("external_id")
            if new_external is not None and new_external != current.external_id:
                if self._find_external(state, new_external) is not None:
                    raise TailnetConflictError(new_external)

            device = current.model_copy(update={**changes, "last_seen": self._clock()})
            devices = {**state.devices, device_id: device}
            stats = self._install(replace(state, devices=devices))
            if device.status != current.status:
                _logger.debug("Device %d status %s -> %s", device_id, current.status, device.status)
                self._emit(DeviceStatusChangedEvent(device=device, previous_status=current.status))
            else:
                self._emit(DeviceUpdatedEvent(device=device))
            self._emit(StatsUpdatedEvent(stats=stats))
            return device

    async def delete_device(self, device_id: int) -> Device:
        """Remove a device and every connection referencing it."""
        async with self._lock:
            state = self._state
            device = state.devices.get(device_id)
            if device is None:
                raise TailnetNotFoundError("Device", device_id)

            devices = {k: v for k, v in state.devices.items() if k != device_id}
            connections = {k: v for k, v in state.connections.items() if not v.touches(device_id)}
            removed = sorted(set(state.connections) - set(connections))
            stats = self._install(_State(devices=devices, connections=connections, stats=state.stats))
            _logger.debug("Device %d deleted, cascaded connections=%s", device_id, removed)
            self._emit(DeviceRemovedEvent(device=device, removed_connection_ids=removed))
            self._emit(StatsUpdatedEvent(stats=stats))
            return device

    # ------------------------------------------------------------------
    # Connection mutations
    # ------------------------------------------------------------------

    async def create_connection(self, data: ConnectionCreate | Mapping[str, Any]) -> Connection:
        record = _validate(ConnectionCreate, data)
        async with self._lock:
            state = self._state
            self._check_endpoints(state, record.from_device_id, record.to_device_id)
            connection = Connection(
                id=next(self._connection_ids),
                last_updated=self._clock(),
                **record.model_dump(),
            )
            self._state = replace(state, connections={**state.connections, connection.id: connection})
            self._emit(ConnectionUpdatedEvent(connection=connection))
            return connection

    async def update_connection(self, connection_id: int, patch: ConnectionPatch | Mapping[str, Any]) -> Connection:
        changes = _validate(ConnectionPatch, patch).changes()
        async with self._lock:
            state = self._state
            current = state.connections.get(connection_id)
            if current is None:
                raise TailnetNotFoundError("Connection", connection_id)

            connection = current.model_copy(update={**changes, "last_updated": self._clock()})
            if connection.from_device_id == connection.to_device_id:
                raise TailnetValidationError("a connection needs two distinct devices")
            self._check_endpoints(state, connection.from_device_id, connection.to_device_id)
            self._state = replace(state, connections={**state.connections, connection_id: connection})
            self._emit(ConnectionUpdatedEvent(connection=connection))
            return connection

    async def delete_connection(self, connection_id: int) -> Connection:
        async with self._lock:
            state = self._state
            connection = state.connections.get(connection_id)
            if connection is None:
                raise TailnetNotFoundError("Connection", connection_id)

            connections = {k: v for k, v in state.connections.items() if k != connection_id}
            self._state = replace(state, connections=connections)
            self._emit(ConnectionRemovedEvent(connection=connection))
            return connection

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def replace_all(
        self,
        records: Sequence[DeviceCreate],
        policy: TopologyPolicy = TopologyPolicy.HUB,
        *,
        stale_policy: StaleDevicePolicy = StaleDevicePolicy.REPLACE,
    ) -> NetworkTopology:
        """Clear the store and install *records* as the new device set.

        Ids restart from 1, so internal ids are not continuous across a
        resync; only external ids are. Positions are computed before the
        swap, so the published snapshot already carries them. With
        ``StaleDevicePolicy.RETAIN`` devices missing from *records* are kept
        as disconnected and keep their previous ``last_seen``.

        Raises
        ------
        TailnetConflictError
            *records* contain the same external id twice; nothing changes.
        """
        async with self._lock:
            carried: dict[str, datetime] = {}
            if stale_policy == StaleDevicePolicy.RETAIN:
                records, carried = retain_stale(records, self._state.devices.values())
            prepared = prepare_records(records, policy)
            seen: set[str] = set()
            for record in prepared:
                if record.external_id in seen:
                    raise TailnetConflictError(record.external_id)
                seen.add(record.external_id)

            now = self._clock()
            device_ids = itertools.count(1)
            connection_ids = itertools.count(1)

            devices = [
                Device.from_create(next(device_ids), record, last_seen=carried.get(record.external_id, now))
                for record in prepared
            ]
            connections = [
                Connection(id=next(connection_ids), last_updated=now, **edge.model_dump())
                for edge in plan_connections(devices, policy)
            ]
            positions = await asyncio.to_thread(self._layout.compute, devices, connections)

            self._device_ids = device_ids
            self._connection_ids = connection_ids
            self._install(
                _State(
                    devices={d.id: _place(d, positions) for d in devices},
                    connections={c.id: c for c in connections},
                )
            )
            _logger.info(
                "Topology replaced devices=%d connections=%d policy=%s",
                len(devices),
                len(connections),
                policy,
            )
            snapshot = self.snapshot()
            self._emit(TopologyReplacedEvent(topology=snapshot))
            self._emit(StatsUpdatedEvent(stats=snapshot.stats))
            return snapshot

    async def relayout(self) -> NetworkTopology:
        """Recompute positions for the current devices and connections."""
        async with self._lock:
            state = self._state
            devices = list(state.devices.values())
            positions = await asyncio.to_thread(self._layout.compute, devices, list(state.connections.values()))
            self._state = replace(state, devices={d.id: _place(d, positions) for d in devices})
            snapshot = self.snapshot()
            self._emit(TopologyReplacedEvent(topology=snapshot))
            return snapshot

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find_external(state: _State, external_id: str) -> Device | None:
        return next((d for d in state.devices.values() if d.external_id == external_id), None)

    @staticmethod
    def _check_endpoints(state: _State, *device_ids: int) -> None:
        for device_id in device_ids:
            if device_id not in state.devices:
                raise TailnetNotFoundError("Device", device_id)

    def _install(self, state: _State) -> NetworkStats:
        """Swap in *state* with freshly computed stats."""
        stats = compute_stats(state.devices.values(), self._clock())
        self._state = replace(state, stats=stats)
        return stats

    def _emit(self, event: TopologyEvent) -> None:
        if self._on_event is None:
            return
        self._on_event(event)


def _place(device: Device, positions: Mapping[int, Position]) -> Device:
    position = positions.get(device.id)
    if position is None:
        return device
    x, y = position
    return device.model_copy(update={"x": x, "y": y})
