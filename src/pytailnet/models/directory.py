"""Records read from the directory API and the curated device file."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, ConfigDict, Field
from pydantic.alias_generators import to_camel

from pytailnet.models._base import SourceRecordModel, Tags, TailnetModel, Timestamp


class DirectoryDevice(SourceRecordModel):
    """A device as listed by ``GET /tailnet/{tailnet}/devices``.

    Only the fields the monitor uses are mapped; everything else stays in
    ``raw``.
    """

    id: str = Field(default="", validation_alias=AliasChoices("id", "nodeId"))
    name: str = ""
    hostname: str = ""
    addresses: list[str] = Field(default_factory=list)
    os: str = ""
    online: bool = False
    last_seen: Timestamp = None
    tags: Tags = Field(default_factory=list)
    authorized: bool = True
    client_version: str = ""


class ManualDeviceEntry(SourceRecordModel):
    """One entry of the curated device file."""

    name: str
    hostname: str
    ip_address: str
    os: str | None = None
    device_type: str | None = None
    online: bool | None = None
    status: str | None = None
    """Exact status written by export; takes precedence over ``online``."""
    tags: Tags = Field(default_factory=list)


class ManualDeviceFile(TailnetModel):
    """``{"devices": [...]}`` document of the curated device file."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    devices: list[ManualDeviceEntry] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return {
            "devices": [entry.model_dump(mode="json", by_alias=True, exclude_none=True) for entry in self.devices]
        }
