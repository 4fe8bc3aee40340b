"""Change events published by the topology store.

Every event carries a ``kind`` discriminator and a payload specific to that
kind. :func:`parse_event` turns a wire dict back into the right model.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from pytailnet.models import Connection, Device, DeviceStatus, NetworkStats, NetworkTopology, TailnetEnum, TailnetModel
from pytailnet.models._base import utcnow


class TopologyEventKind(TailnetEnum):
    DEVICE_ADDED = "device_added"
    DEVICE_REMOVED = "device_removed"
    DEVICE_STATUS_CHANGED = "device_status"
    DEVICE_UPDATED = "device_updated"
    CONNECTION_UPDATED = "connection_updated"
    CONNECTION_REMOVED = "connection_removed"
    STATS_UPDATED = "stats_updated"
    TOPOLOGY_REPLACED = "full_topology"


class _TopologyEventBase(TailnetModel):
    emitted_at: datetime = Field(default_factory=utcnow)


class DeviceAddedEvent(_TopologyEventBase):
    kind: Literal["device_added"] = "device_added"
    device: Device


class DeviceRemovedEvent(_TopologyEventBase):
    kind: Literal["device_removed"] = "device_removed"
    device: Device
    removed_connection_ids: list[int] = Field(default_factory=list)


class DeviceStatusChangedEvent(_TopologyEventBase):
    kind: Literal["device_status"] = "device_status"
    device: Device
    previous_status: DeviceStatus


class DeviceUpdatedEvent(_TopologyEventBase):
    kind: Literal["device_updated"] = "device_updated"
    device: Device


class ConnectionUpdatedEvent(_TopologyEventBase):
    kind: Literal["connection_updated"] = "connection_updated"
    connection: Connection


class ConnectionRemovedEvent(_TopologyEventBase):
    kind: Literal["connection_removed"] = "connection_removed"
    connection: Connection


class StatsUpdatedEvent(_TopologyEventBase):
    kind: Literal["stats_updated"] = "stats_updated"
    stats: NetworkStats


class TopologyReplacedEvent(_TopologyEventBase):
    kind: Literal["full_topology"] = "full_topology"
    topology: NetworkTopology


TopologyEvent = Annotated[
    DeviceAddedEvent
    | DeviceRemovedEvent
    | DeviceStatusChangedEvent
    | DeviceUpdatedEvent
    | ConnectionUpdatedEvent
    | ConnectionRemovedEvent
    | StatsUpdatedEvent
    | TopologyReplacedEvent,
    Field(discriminator="kind"),
]

_EVENT_ADAPTER: TypeAdapter[TopologyEvent] = TypeAdapter(TopologyEvent)


def parse_event(payload: dict[str, Any]) -> TopologyEvent:
    """Decode a wire dict (as produced by ``to_wire``) into an event model."""
    return _EVENT_ADAPTER.validate_python(payload)
