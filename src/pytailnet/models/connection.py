"""Connection models."""

from __future__ import annotations

from pydantic import ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from pytailnet.models._base import PatchModel, TailnetEnum, TailnetModel, Timestamp


class ConnectionStatus(TailnetEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConnectionCreate(TailnetModel):
    """Validated input for creating a connection."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    from_device_id: int
    to_device_id: int
    status: ConnectionStatus = ConnectionStatus.ACTIVE

    @model_validator(mode="after")
    def _no_self_loop(self) -> ConnectionCreate:
        if self.from_device_id == self.to_device_id:
            raise ValueError("a connection needs two distinct devices")
        return self


class ConnectionPatch(PatchModel):
    """Validated partial update of a connection."""

    from_device_id: int | None = None
    to_device_id: int | None = None
    status: ConnectionStatus | None = None


class Connection(TailnetModel):
    """A link between two live devices."""

    id: int
    from_device_id: int
    to_device_id: int
    status: ConnectionStatus
    last_updated: Timestamp

    def touches(self, device_id: int) -> bool:
        return device_id in (self.from_device_id, self.to_device_id)
