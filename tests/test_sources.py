from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from pytailnet.exceptions import SourceUnavailableError, TailnetTransportError, TailnetValidationError
from pytailnet.ingestion.sources import (
    SEED_DEVICES,
    DirectoryApiSource,
    ManualFileSource,
    SeedSource,
    parse_export_document,
)
from pytailnet.models import DeviceStatus, DeviceType


def _dt() -> datetime:
    return datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class _FakeTransport:
    def __init__(self, responses: dict[str, Any]) -> None:
        self._responses = responses
        self.calls: list[str] = []

    async def get_json(self, endpoint: str) -> Any:
        self.calls.append(endpoint)
        response = self._responses.get(endpoint)
        if response is None:
            raise TailnetTransportError("HTTP 404", status_code=404, endpoint=endpoint)
        if isinstance(response, Exception):
            raise response
        return response


_DIRECTORY_PAYLOAD = {
    "devices": [
        {
            "id": "n1",
            "name": "hub",
            "hostname": "hub",
            "addresses": ["100.64.0.1"],
            "os": "linux",
            "online": True,
            "lastSeen": "2026-01-01T11:59:00Z",
            "tags": ["tag:coordinator"],
        },
        {
            "id": "n2",
            "name": "phone",
            "hostname": "phone",
            "addresses": ["100.64.0.2"],
            "os": "iOS",
            "online": False,
        },
        {"id": "", "name": "", "hostname": ""},
    ]
}


@pytest.mark.asyncio
async def test_directory_source_normalizes_and_skips_malformed() -> None:
    transport = _FakeTransport({"/tailnet/example.com/devices": _DIRECTORY_PAYLOAD})
    source = DirectoryApiSource(transport, "example.com", clock=_dt)

    records = await source.fetch()

    assert [r.external_id for r in records] == ["n1", "n2"]
    assert records[0].is_coordinator
    assert records[0].status == DeviceStatus.CONNECTED
    assert records[1].device_type == DeviceType.MOBILE
    assert records[1].status == DeviceStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_directory_source_skips_records_with_bad_wire_fields() -> None:
    payload = {
        "devices": [
            {"id": "bad-ts", "name": "old", "hostname": "old", "lastSeen": "yesterday"},
            {"id": "bad-flag", "name": "flaky", "hostname": "flaky", "online": "maybe"},
            "not-a-record",
            {"id": "n1", "name": "hub", "hostname": "hub", "addresses": ["100.64.0.1"], "online": True},
        ]
    }
    transport = _FakeTransport({"/tailnet/corp/devices": payload})

    records = await DirectoryApiSource(transport, "corp", clock=_dt).fetch()

    assert [r.external_id for r in records] == ["n1"]
    assert records[0].status == DeviceStatus.CONNECTED


@pytest.mark.asyncio
async def test_directory_source_rejects_non_list_devices() -> None:
    transport = _FakeTransport({"/tailnet/corp/devices": {"devices": {"n1": {}}}})

    with pytest.raises(SourceUnavailableError):
        await DirectoryApiSource(transport, "corp", clock=_dt).fetch()


@pytest.mark.asyncio
async def test_directory_source_retries_without_ts_net_suffix_on_403() -> None:
    transport = _FakeTransport(
        {
            "/tailnet/corp.ts.net/devices": TailnetTransportError("HTTP 403", status_code=403),
            "/tailnet/corp/devices": {"devices": []},
        }
    )
    source = DirectoryApiSource(transport, "corp.ts.net", clock=_dt)

    records = await source.fetch()

    assert records == []
    assert transport.calls == ["/tailnet/corp.ts.net/devices", "/tailnet/corp/devices"]


@pytest.mark.asyncio
async def test_directory_source_wraps_transport_failures() -> None:
    transport = _FakeTransport({"/tailnet/corp/devices": TailnetTransportError("HTTP 500", status_code=500)})
    source = DirectoryApiSource(transport, "corp", clock=_dt)

    with pytest.raises(SourceUnavailableError) as excinfo:
        await source.fetch()

    assert excinfo.value.source == "directory-api"
    assert transport.calls == ["/tailnet/corp/devices"]


@pytest.mark.asyncio
async def test_directory_source_rejects_non_object_body() -> None:
    transport = _FakeTransport({"/tailnet/corp/devices": ["not", "an", "object"]})

    with pytest.raises(SourceUnavailableError):
        await DirectoryApiSource(transport, "corp").fetch()


@pytest.mark.asyncio
async def test_manual_file_source_loads_entries(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_text(
        json.dumps(
            {
                "devices": [
                    {"name": "gateway", "hostname": "gw", "ipAddress": "100.64.0.1", "online": True},
                    {"name": "build-server", "hostname": "build", "ipAddress": "100.64.0.2", "online": False},
                    {
                        "name": "kiosk",
                        "hostname": "kiosk",
                        "ipAddress": "100.64.0.3",
                        "deviceType": "mobile",
                        "status": "unstable",
                        "tags": ["lobby"],
                    },
                ]
            }
        ),
        encoding="utf-8",
    )

    records = await ManualFileSource(path).fetch()

    assert [r.external_id for r in records] == ["manual-1", "manual-2", "manual-3"]
    assert [r.is_coordinator for r in records] == [True, False, False]
    assert records[0].status == DeviceStatus.CONNECTED
    assert records[1].device_type == DeviceType.SERVER
    assert records[1].status == DeviceStatus.DISCONNECTED
    assert records[2].device_type == DeviceType.MOBILE
    assert records[2].status == DeviceStatus.UNSTABLE
    assert records[0].os == "Unknown"


@pytest.mark.asyncio
async def test_manual_file_source_empty_document_yields_no_devices(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_text("{}", encoding="utf-8")

    assert await ManualFileSource(path).fetch() == []


@pytest.mark.asyncio
async def test_manual_file_source_missing_file_is_unavailable(tmp_path: Path) -> None:
    with pytest.raises(SourceUnavailableError) as excinfo:
        await ManualFileSource(tmp_path / "missing.json").fetch()

    assert excinfo.value.source == "manual-file"


@pytest.mark.asyncio
async def test_manual_file_source_malformed_json_is_unavailable(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(SourceUnavailableError):
        await ManualFileSource(path).fetch()


@pytest.mark.asyncio
async def test_manual_file_source_invalid_utf8_is_unavailable(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_bytes(b'{"devices": [\xff\xfe]}')

    with pytest.raises(SourceUnavailableError) as excinfo:
        await ManualFileSource(path).fetch()

    assert excinfo.value.source == "manual-file"


@pytest.mark.asyncio
async def test_manual_file_source_entry_without_address_is_unavailable(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_text(json.dumps({"devices": [{"name": "x", "hostname": "x"}]}), encoding="utf-8")

    with pytest.raises(SourceUnavailableError):
        await ManualFileSource(path).fetch()


@pytest.mark.asyncio
async def test_manual_file_export_can_be_read_back(tmp_path: Path) -> None:
    source = ManualFileSource(tmp_path / "export.json")

    count = await source.export(SEED_DEVICES)
    records = await source.fetch()

    assert count == len(SEED_DEVICES)
    assert [(r.name, r.hostname, r.ip_address, r.os, r.status, r.device_type, r.tags) for r in records] == [
        (d.name, d.hostname, d.ip_address, d.os, d.status, d.device_type, d.tags) for d in SEED_DEVICES
    ]
    document = json.loads((tmp_path / "export.json").read_text(encoding="utf-8"))
    assert document["devices"][0]["ipAddress"] == "100.64.0.1"


@pytest.mark.asyncio
async def test_seed_source_has_one_coordinator_and_mixed_statuses() -> None:
    records = await SeedSource().fetch()

    assert len(records) == 7
    assert [r.external_id for r in records if r.is_coordinator] == ["coord-01"]
    assert {r.status for r in records} == set(DeviceStatus)


def test_parse_export_document_devices_format() -> None:
    records = parse_export_document(
        {
            "devices": [
                {"id": "d1", "name": "hub", "addresses": ["100.64.0.1"], "os": "linux", "online": True},
                {"hostname": "tablet", "os": "android", "isExitNode": True},
            ]
        }
    )

    assert records[0].external_id == "d1"
    assert records[0].device_type == DeviceType.SERVER
    assert records[0].status == DeviceStatus.CONNECTED
    assert records[1].external_id == "import-2"
    assert records[1].name == "tablet"
    assert records[1].ip_address == "100.64.0.2"
    assert records[1].device_type == DeviceType.MOBILE
    assert records[1].status == DeviceStatus.DISCONNECTED
    assert records[1].is_coordinator


def test_parse_export_document_peer_format() -> None:
    records = parse_export_document(
        {
            "Peer": {
                "nodekey:abc": {
                    "HostName": "",
                    "DNSName": "laptop.example.ts.net.",
                    "TailscaleIPs": ["100.64.0.7"],
                    "OS": "macOS",
                    "Online": True,
                    "ExitNode": False,
                }
            }
        }
    )

    assert len(records) == 1
    record = records[0]
    assert record.external_id == "nodekey:abc"
    assert record.name == "laptop"
    assert record.hostname == "laptop.example.ts.net."
    assert record.ip_address == "100.64.0.7"
    assert record.device_type == DeviceType.DESKTOP
    assert record.status == DeviceStatus.CONNECTED


@pytest.mark.parametrize("document", [{}, {"devices": "nope"}, {"Peer": []}, {"devices": ["bad"]}])
def test_parse_export_document_rejects_unknown_shapes(document: dict[str, Any]) -> None:
    with pytest.raises(TailnetValidationError):
        parse_export_document(document)
