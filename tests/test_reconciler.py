from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import pytest

from pytailnet.exceptions import AllSourcesExhaustedError, SourceTimeoutError, SourceUnavailableError
from pytailnet.ingestion.sources import ManualFileSource, SeedSource
from pytailnet.models import DeviceCreate, DeviceStatus, DeviceType, NetworkTopology
from pytailnet.reconciler import SourceReconciler
from pytailnet.state.events import TopologyEvent, TopologyEventKind
from pytailnet.state.policy import StaleDevicePolicy, TopologyPolicy
from pytailnet.state.store import TopologyStore


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _record(external_id: str, status: DeviceStatus = DeviceStatus.CONNECTED, **kwargs: object) -> DeviceCreate:
    return DeviceCreate(
        external_id=external_id,
        name=external_id,
        hostname=f"{external_id}.ts.net",
        ip_address="100.64.0.1",
        device_type=DeviceType.DESKTOP,
        status=status,
        **kwargs,
    )


class _StaticSource:
    def __init__(self, name: str, records: list[DeviceCreate], *, delay: float = 0.0) -> None:
        self.name = name
        self.records = records
        self.delay = delay
        self.calls = 0

    async def fetch(self) -> list[DeviceCreate]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.records)


class _FailingSource:
    def __init__(self, name: str = "broken") -> None:
        self.name = name
        self.calls = 0

    async def fetch(self) -> list[DeviceCreate]:
        self.calls += 1
        raise SourceUnavailableError("unreachable", source=self.name)


class _CrashingSource:
    def __init__(self, name: str = "crashing") -> None:
        self.name = name
        self.calls = 0

    async def fetch(self) -> list[DeviceCreate]:
        self.calls += 1
        raise RuntimeError("source bug")


class _CrashingStore(TopologyStore):
    def __init__(self) -> None:
        super().__init__(clock=_dt)
        self.calls = 0

    async def replace_all(self, *args: object, **kwargs: object) -> NetworkTopology:
        self.calls += 1
        raise RuntimeError("store bug")


def _store(events: list[TopologyEvent] | None = None) -> TopologyStore:
    return TopologyStore(on_event=events.append if events is not None else None, clock=_dt)


@pytest.mark.asyncio
async def test_falls_through_to_next_source_on_failure() -> None:
    store = _store()
    primary = _FailingSource()
    secondary = _StaticSource("secondary", [_record("a", is_coordinator=True), _record("b")])
    reconciler = SourceReconciler(store, [primary, secondary])

    topology = await reconciler.refresh()

    assert primary.calls == 1
    assert secondary.calls == 1
    assert reconciler.last_source == "secondary"
    assert [d.external_id for d in topology.devices] == ["a", "b"]


@pytest.mark.asyncio
async def test_first_successful_source_wins() -> None:
    store = _store()
    primary = _StaticSource("primary", [_record("a")])
    secondary = _StaticSource("secondary", [_record("b")])
    reconciler = SourceReconciler(store, [primary, secondary])

    await reconciler.refresh()

    assert secondary.calls == 0
    assert [d.external_id for d in store.list_devices()] == ["a"]


@pytest.mark.asyncio
async def test_refresh_exhaustion_raises_and_keeps_last_known_good() -> None:
    events: list[TopologyEvent] = []
    store = _store(events)
    good = _StaticSource("good", [_record("a"), _record("b")])
    reconciler = SourceReconciler(store, [good])
    await reconciler.refresh()
    before = store.snapshot()
    events.clear()

    reconciler = SourceReconciler(store, [_FailingSource("one"), _FailingSource("two")])
    with pytest.raises(AllSourcesExhaustedError) as excinfo:
        await reconciler.refresh()

    assert [f.source for f in excinfo.value.failures] == ["one", "two"]
    assert store.snapshot() == before
    assert events == []


@pytest.mark.asyncio
async def test_refresh_with_no_sources_raises() -> None:
    reconciler = SourceReconciler(_store(), [])

    with pytest.raises(AllSourcesExhaustedError):
        await reconciler.refresh()


@pytest.mark.asyncio
async def test_boot_falls_back_to_seed_when_every_source_fails() -> None:
    store = _store()
    reconciler = SourceReconciler(store, [_FailingSource()], fallback=SeedSource())

    topology = await reconciler.boot()

    assert reconciler.last_source == "seed"
    assert len(topology.devices) == 7
    assert topology.stats.total_devices == 7
    # hub edges from the seed coordinator to the six others
    assert len(topology.connections) == 6


@pytest.mark.asyncio
async def test_boot_falls_back_to_seed_when_manual_file_is_not_utf8(tmp_path: Path) -> None:
    path = tmp_path / "devices.json"
    path.write_bytes(b'{"devices": [\xff\xfe]}')
    store = _store()
    reconciler = SourceReconciler(store, [ManualFileSource(path)], fallback=SeedSource())

    topology = await reconciler.boot()

    assert reconciler.last_source == "seed"
    assert len(topology.devices) == 7

    with pytest.raises(AllSourcesExhaustedError) as excinfo:
        await reconciler.refresh()
    assert [f.source for f in excinfo.value.failures] == ["manual-file"]
    assert store.snapshot() == topology


@pytest.mark.asyncio
async def test_unexpected_source_error_counts_as_failure() -> None:
    crashing = _CrashingSource()
    secondary = _StaticSource("secondary", [_record("a")])
    reconciler = SourceReconciler(_store(), [crashing, secondary])

    topology = await reconciler.refresh()

    assert crashing.calls == 1
    assert reconciler.last_source == "secondary"
    assert [d.external_id for d in topology.devices] == ["a"]

    reconciler = SourceReconciler(_store(), [crashing])
    with pytest.raises(AllSourcesExhaustedError) as excinfo:
        await reconciler.refresh()
    assert excinfo.value.failures[0].source == "crashing"
    assert "RuntimeError" in str(excinfo.value.failures[0])


@pytest.mark.asyncio
async def test_slow_source_times_out_and_next_source_is_used() -> None:
    store = _store()
    slow = _StaticSource("slow", [_record("slow")], delay=5.0)
    fast = _StaticSource("fast", [_record("fast")])
    reconciler = SourceReconciler(store, [slow, fast], source_timeout=0.05)

    await reconciler.refresh()

    assert reconciler.last_source == "fast"
    assert [d.external_id for d in store.list_devices()] == ["fast"]


@pytest.mark.asyncio
async def test_timeout_is_reported_as_source_timeout() -> None:
    reconciler = SourceReconciler(_store(), [_StaticSource("slow", [], delay=5.0)], source_timeout=0.05)

    with pytest.raises(AllSourcesExhaustedError) as excinfo:
        await reconciler.refresh()

    assert isinstance(excinfo.value.failures[0], SourceTimeoutError)
    assert excinfo.value.failures[0].source == "slow"


@pytest.mark.asyncio
async def test_duplicate_records_count_as_source_failure() -> None:
    store = _store()
    dupes = _StaticSource("dupes", [_record("a"), _record("a")])
    fallback = _StaticSource("clean", [_record("c")])
    reconciler = SourceReconciler(store, [dupes, fallback])

    await reconciler.refresh()

    assert reconciler.last_source == "clean"


@pytest.mark.asyncio
async def test_reconciling_unchanged_source_is_idempotent() -> None:
    store = _store()
    source = _StaticSource("static", [_record("hub", is_coordinator=True), _record("a"), _record("b")])
    reconciler = SourceReconciler(store, [source])

    first = await reconciler.refresh()
    second = await reconciler.refresh()

    assert first == second


@pytest.mark.asyncio
async def test_concurrent_refreshes_join_one_run() -> None:
    store = _store()
    source = _StaticSource("static", [_record("a")], delay=0.05)
    reconciler = SourceReconciler(store, [source])

    results = await asyncio.gather(reconciler.refresh(), reconciler.refresh(), reconciler.refresh())

    assert source.calls == 1
    assert results[0] == results[1] == results[2]


@pytest.mark.asyncio
async def test_cancelled_joiner_does_not_abort_shared_run() -> None:
    store = _store()
    source = _StaticSource("static", [_record("a")], delay=0.05)
    reconciler = SourceReconciler(store, [source])

    first = asyncio.create_task(reconciler.refresh())
    await asyncio.sleep(0)
    second = asyncio.create_task(reconciler.refresh())
    await asyncio.sleep(0)
    first.cancel()

    topology = await second
    assert [d.external_id for d in topology.devices] == ["a"]
    assert source.calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("policy", "expected_edges"),
    [
        (TopologyPolicy.HUB, 3),
        (TopologyPolicy.STAR, 3),
        (TopologyPolicy.MESH, 3),
    ],
)
async def test_topology_policies(policy: TopologyPolicy, expected_edges: int) -> None:
    store = _store()
    records = [
        _record("a", is_coordinator=True),
        _record("b"),
        _record("c"),
        _record("d", DeviceStatus.DISCONNECTED),
    ]
    reconciler = SourceReconciler(store, [_StaticSource("static", records)], topology=policy)

    topology = await reconciler.refresh()

    assert len(topology.connections) == expected_edges
    for connection in topology.connections:
        assert store.get_device(connection.from_device_id) is not None
        assert store.get_device(connection.to_device_id) is not None


@pytest.mark.asyncio
async def test_retain_policy_keeps_devices_missing_from_new_snapshot() -> None:
    store = _store()
    source = _StaticSource("static", [_record("a"), _record("b")])
    reconciler = SourceReconciler(store, [source], stale_policy=StaleDevicePolicy.RETAIN)
    await reconciler.refresh()

    source.records = [_record("a")]
    topology = await reconciler.refresh()

    statuses = {d.external_id: d.status for d in topology.devices}
    assert statuses == {"a": DeviceStatus.CONNECTED, "b": DeviceStatus.DISCONNECTED}


@pytest.mark.asyncio
async def test_resync_emits_full_topology_then_stats() -> None:
    events: list[TopologyEvent] = []
    store = _store(events)
    reconciler = SourceReconciler(store, [_StaticSource("static", [_record("a")])])

    await reconciler.refresh()

    assert [e.kind for e in events] == [TopologyEventKind.TOPOLOGY_REPLACED, TopologyEventKind.STATS_UPDATED]


@pytest.mark.asyncio
async def test_import_records_replaces_store() -> None:
    store = _store()
    reconciler = SourceReconciler(store, [])

    await reconciler.import_records([_record("x"), _record("y")])

    assert reconciler.last_source == "import"
    assert [d.external_id for d in store.list_devices()] == ["x", "y"]


@pytest.mark.asyncio
async def test_timer_runs_periodically_until_stopped() -> None:
    store = _store()
    source = _StaticSource("static", [_record("a")])
    reconciler = SourceReconciler(store, [source], interval=0.01)

    reconciler.start()
    await asyncio.sleep(0.1)
    await reconciler.stop()
    calls = source.calls
    await asyncio.sleep(0.05)

    assert calls >= 2
    assert source.calls == calls


@pytest.mark.asyncio
async def test_timer_survives_exhausted_runs() -> None:
    failing = _FailingSource()
    reconciler = SourceReconciler(_store(), [failing], interval=0.01)

    reconciler.start()
    await asyncio.sleep(0.1)
    await reconciler.stop()

    assert failing.calls >= 2


@pytest.mark.asyncio
async def test_timer_survives_unexpected_errors() -> None:
    store = _CrashingStore()
    reconciler = SourceReconciler(store, [_StaticSource("static", [_record("a")])], interval=0.01)

    reconciler.start()
    await asyncio.sleep(0.1)
    await reconciler.stop()

    assert store.calls >= 2
