"""Device sources.

A source turns some external roster into normalized
:class:`~pytailnet.models.DeviceCreate` records. The reconciler only knows
the :class:`Source` protocol and tries sources in priority order; any
failure must surface as :class:`~pytailnet.exceptions.SourceUnavailableError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from pytailnet._constants import DEFAULT_STALENESS_THRESHOLD_S, UNKNOWN
from pytailnet._transport import Transport
from pytailnet.exceptions import SourceUnavailableError, TailnetTransportError, TailnetValidationError
from pytailnet.ingestion.normalize import (
    device_type_from_name,
    device_type_from_os,
    normalize_directory_device,
    safe_str,
)
from pytailnet.models import (
    Device,
    DeviceCreate,
    DeviceStatus,
    DeviceType,
    DirectoryDevice,
    ManualDeviceEntry,
    ManualDeviceFile,
)
from pytailnet.models._base import utcnow

_logger = logging.getLogger(__name__)


class Source(Protocol):
    """Uniform capability of every device source."""

    @property
    def name(self) -> str: ...

    async def fetch(self) -> list[DeviceCreate]: ...


# ------------------------------------------------------------------
# Live directory API
# ------------------------------------------------------------------


def _record_label(item: Any) -> str:
    if isinstance(item, dict):
        return f"id={item.get('id') or item.get('nodeId')!r} name={item.get('name')!r}"
    return f"<{type(item).__name__}>"


class DirectoryApiSource:
    """Devices listed by the directory API for one tailnet."""

    name = "directory-api"

    def __init__(
        self,
        transport: Transport,
        tailnet: str,
        *,
        staleness_threshold: float = DEFAULT_STALENESS_THRESHOLD_S,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._transport = transport
        self._tailnet = tailnet
        self._threshold = staleness_threshold
        self._clock = clock

    async def _get_device_list(self) -> Any:
        try:
            return await self._transport.get_json(f"/tailnet/{self._tailnet}/devices")
        except TailnetTransportError as exc:
            short_name = self._tailnet.removesuffix(".ts.net")
            if exc.status_code != 403 or short_name == self._tailnet:
                raise
            _logger.info("Directory API denied tailnet=%s; retrying as %s", self._tailnet, short_name)
            return await self._transport.get_json(f"/tailnet/{short_name}/devices")

    async def fetch(self) -> list[DeviceCreate]:
        try:
            payload = await self._get_device_list()
        except TailnetTransportError as exc:
            raise SourceUnavailableError(str(exc), source=self.name) from exc

        if not isinstance(payload, dict):
            raise SourceUnavailableError("Directory API returned a non-object body", source=self.name)
        items = payload.get("devices", [])
        if not isinstance(items, list):
            raise SourceUnavailableError("Directory payload has no device list", source=self.name)

        now = self._clock()
        records: list[DeviceCreate] = []
        for item in items:
            # One bad record must not cost the whole roster.
            try:
                device = DirectoryDevice.model_validate(item)
                records.append(normalize_directory_device(device, now=now, threshold_seconds=self._threshold))
            except ValidationError as exc:
                _logger.warning("Skipping malformed directory record %s: %s", _record_label(item), exc)
        _logger.debug("Directory API returned %d devices", len(records))
        return records


# ------------------------------------------------------------------
# Curated device file
# ------------------------------------------------------------------


def _manual_status(entry: ManualDeviceEntry) -> DeviceStatus:
    if entry.status is not None:
        try:
            return DeviceStatus(entry.status)
        except ValueError:
            _logger.debug("Unknown status %r for %s; using online flag", entry.status, entry.name)
    return DeviceStatus.CONNECTED if entry.online else DeviceStatus.DISCONNECTED


def _manual_device_type(entry: ManualDeviceEntry) -> DeviceType:
    if entry.device_type:
        try:
            return DeviceType(entry.device_type)
        except ValueError:
            _logger.debug("Unknown device type %r for %s; guessing", entry.device_type, entry.name)
    return device_type_from_name(entry.name)


def records_from_manual_file(document: ManualDeviceFile) -> list[DeviceCreate]:
    """Convert a curated file into device records. The first entry coordinates."""
    return [
        DeviceCreate(
            external_id=f"manual-{index}",
            name=entry.name,
            hostname=entry.hostname,
            ip_address=entry.ip_address,
            device_type=_manual_device_type(entry),
            os=entry.os or UNKNOWN,
            status=_manual_status(entry),
            tags=entry.tags,
            is_coordinator=index == 1,
        )
        for index, entry in enumerate(document.devices, start=1)
    ]


def manual_file_from_devices(devices: Iterable[Device | DeviceCreate]) -> ManualDeviceFile:
    """Build the curated file document for *devices*."""
    return ManualDeviceFile(
        devices=[
            ManualDeviceEntry(
                name=device.name,
                hostname=device.hostname,
                ip_address=device.ip_address,
                os=device.os,
                device_type=str(device.device_type),
                online=device.status != DeviceStatus.DISCONNECTED,
                status=str(device.status),
                tags=device.tags,
            )
            for device in devices
        ]
    )


class ManualFileSource:
    """Devices from a hand-maintained JSON file.

    File format::

        {"devices": [{"name": ..., "hostname": ..., "ipAddress": ...,
                      "os": ..., "deviceType": ..., "online": ..., "tags": [...]}]}
    """

    name = "manual-file"

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> ManualDeviceFile:
        try:
            text = self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceUnavailableError(f"Cannot read {self._path}: {exc}", source=self.name) from exc
        try:
            return ManualDeviceFile.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise SourceUnavailableError(f"Malformed device file {self._path}: {exc}", source=self.name) from exc

    async def fetch(self) -> list[DeviceCreate]:
        document = await asyncio.to_thread(self._load)
        try:
            records = records_from_manual_file(document)
        except ValidationError as exc:
            raise SourceUnavailableError(f"Invalid entry in {self._path}: {exc}", source=self.name) from exc
        _logger.debug("Loaded %d devices from %s", len(records), self._path)
        return records

    async def export(self, devices: Iterable[Device | DeviceCreate]) -> int:
        """Write *devices* to the file in the format :meth:`fetch` reads."""
        document = manual_file_from_devices(devices)
        text = json.dumps(document.to_document(), indent=2)
        await asyncio.to_thread(self._path.write_text, text, encoding="utf-8")
        _logger.info("Exported %d devices to %s", len(document.devices), self._path)
        return len(document.devices)


# ------------------------------------------------------------------
# Built-in seed set
# ------------------------------------------------------------------

SEED_DEVICES: tuple[DeviceCreate, ...] = (
    DeviceCreate(
        external_id="coord-01",
        name="coordinator",
        hostname="coordinator.ts.net",
        ip_address="100.64.0.1",
        device_type=DeviceType.SERVER,
        os="Linux",
        status=DeviceStatus.CONNECTED,
        tags=["coordinator", "critical"],
        is_coordinator=True,
    ),
    DeviceCreate(
        external_id="desktop-01",
        name="john-macbook",
        hostname="john-macbook.ts.net",
        ip_address="100.64.0.10",
        device_type=DeviceType.DESKTOP,
        os="macOS",
        status=DeviceStatus.CONNECTED,
        tags=["production", "developer"],
    ),
    DeviceCreate(
        external_id="desktop-02",
        name="jane-laptop",
        hostname="jane-laptop.ts.net",
        ip_address="100.64.0.11",
        device_type=DeviceType.DESKTOP,
        os="Windows",
        status=DeviceStatus.CONNECTED,
        tags=["production"],
    ),
    DeviceCreate(
        external_id="mobile-01",
        name="john-iphone",
        hostname="john-iphone.ts.net",
        ip_address="100.64.0.20",
        device_type=DeviceType.MOBILE,
        os="iOS",
        status=DeviceStatus.CONNECTED,
        tags=["mobile"],
    ),
    DeviceCreate(
        external_id="mobile-02",
        name="jane-iphone",
        hostname="jane-iphone.ts.net",
        ip_address="100.64.0.21",
        device_type=DeviceType.MOBILE,
        os="iOS",
        status=DeviceStatus.UNSTABLE,
        tags=["mobile"],
    ),
    DeviceCreate(
        external_id="server-01",
        name="prod-server",
        hostname="prod-server.ts.net",
        ip_address="100.64.0.100",
        device_type=DeviceType.SERVER,
        os="Linux",
        status=DeviceStatus.CONNECTED,
        tags=["production", "server"],
    ),
    DeviceCreate(
        external_id="server-02",
        name="backup-server",
        hostname="backup-server.ts.net",
        ip_address="100.64.0.101",
        device_type=DeviceType.SERVER,
        os="Linux",
        status=DeviceStatus.DISCONNECTED,
        tags=["backup", "server"],
    ),
)


class SeedSource:
    """A fixed sample network; never fails."""

    name = "seed"

    def __init__(self, devices: Iterable[DeviceCreate] = SEED_DEVICES) -> None:
        self._devices = tuple(devices)

    async def fetch(self) -> list[DeviceCreate]:
        return list(self._devices)


# ------------------------------------------------------------------
# Uploaded exports
# ------------------------------------------------------------------


def _first(values: Any) -> str | None:
    if isinstance(values, list) and values:
        return safe_str(values[0])
    return None


def parse_export_document(data: Mapping[str, Any]) -> list[DeviceCreate]:
    """Read a directory export (``devices``) or ``tailscale status --json`` (``Peer``/``Peers``).

    Raises :class:`~pytailnet.exceptions.TailnetValidationError` for
    anything else.
    """
    records: list[DeviceCreate] = []
    try:
        if isinstance(data.get("devices"), list):
            for index, item in enumerate(data["devices"], start=1):
                name = safe_str(item.get("name")) or safe_str(item.get("hostname")) or f"Device {index}"
                os_name = safe_str(item.get("os"))
                records.append(
                    DeviceCreate(
                        external_id=safe_str(item.get("id")) or f"import-{index}",
                        name=name,
                        hostname=safe_str(item.get("hostname")) or name,
                        ip_address=_first(item.get("addresses"))
                        or safe_str(item.get("ipAddress"))
                        or f"100.64.0.{index}",
                        device_type=device_type_from_os(os_name),
                        os=os_name or UNKNOWN,
                        status=DeviceStatus.CONNECTED if item.get("online") else DeviceStatus.DISCONNECTED,
                        tags=item.get("tags") or [],
                        is_coordinator=bool(item.get("isExitNode")),
                    )
                )
            return records

        peers = data.get("Peer") or data.get("Peers")
        if isinstance(peers, Mapping):
            for index, (peer_id, peer) in enumerate(peers.items(), start=1):
                dns_name = safe_str(peer.get("DNSName"))
                name = safe_str(peer.get("HostName")) or (dns_name.split(".")[0] if dns_name else None)
                name = name or f"Device {index}"
                os_name = safe_str(peer.get("OS"))
                records.append(
                    DeviceCreate(
                        external_id=str(peer_id),
                        name=name,
                        hostname=dns_name or name,
                        ip_address=_first(peer.get("TailscaleIPs")) or f"100.64.0.{index}",
                        device_type=device_type_from_os(os_name),
                        os=os_name or UNKNOWN,
                        status=DeviceStatus.CONNECTED if peer.get("Online") else DeviceStatus.DISCONNECTED,
                        tags=peer.get("Tags") or [],
                        is_coordinator=bool(peer.get("ExitNode")),
                    )
                )
            return records
    except (AttributeError, ValidationError) as exc:
        raise TailnetValidationError(f"Invalid export format: {exc}") from exc

    raise TailnetValidationError("Invalid export format: expected 'devices' or 'Peer' entries")
