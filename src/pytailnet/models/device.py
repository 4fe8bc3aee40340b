"""Device models."""

from __future__ import annotations

from datetime import datetime

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pytailnet.models._base import PatchModel, Tags, TailnetEnum, TailnetModel, Timestamp


class DeviceType(TailnetEnum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    SERVER = "server"
    OTHER = "other"


class DeviceStatus(TailnetEnum):
    CONNECTED = "connected"
    UNSTABLE = "unstable"
    DISCONNECTED = "disconnected"


def _require_text(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("must be non-empty")
    return text


class DeviceCreate(TailnetModel):
    """Validated input for creating a device.

    This is also the normalized record every source produces.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    external_id: str
    """Source-provided identifier, unique among live devices."""
    name: str
    hostname: str
    ip_address: str
    device_type: DeviceType = DeviceType.OTHER
    os: str = "Unknown"
    status: DeviceStatus = DeviceStatus.DISCONNECTED
    tags: Tags = Field(default_factory=list)
    is_coordinator: bool = False

    @field_validator("external_id", "name", "hostname", "ip_address")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        return _require_text(value)


class DevicePatch(PatchModel):
    """Validated partial update; only supplied fields are applied.

    ``id``, ``last_seen`` and the position fields are not patchable.
    """

    external_id: str | None = None
    name: str | None = None
    hostname: str | None = None
    ip_address: str | None = None
    device_type: DeviceType | None = None
    os: str | None = None
    status: DeviceStatus | None = None
    tags: Tags | None = None
    is_coordinator: bool | None = None

    @field_validator("external_id", "name", "hostname", "ip_address")
    @classmethod
    def _non_empty(cls, value: str | None) -> str | None:
        return None if value is None else _require_text(value)


class Device(TailnetModel):
    """A device in the topology."""

    id: int
    external_id: str
    name: str
    hostname: str
    ip_address: str
    device_type: DeviceType
    os: str
    status: DeviceStatus
    last_seen: Timestamp
    tags: Tags = Field(default_factory=list)
    is_coordinator: bool = False
    x: float = 0.0
    """Horizontal position; written only by the layout engine."""
    y: float = 0.0
    """Vertical position; written only by the layout engine."""

    @classmethod
    def from_create(cls, device_id: int, data: DeviceCreate, *, last_seen: datetime) -> Device:
        return cls(id=device_id, last_seen=last_seen, **data.model_dump())

    def to_create(self) -> DeviceCreate:
        """The record this device would be created from."""
        return DeviceCreate.model_validate(self.model_dump(exclude={"id", "last_seen", "x", "y"}))
