"""High-level async entry point wiring store, sources, broadcaster and layout."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import aiohttp

from pytailnet._transport import DirectoryTransport, Transport
from pytailnet.broadcast import ChangeBroadcaster, Subscription
from pytailnet.config import TailnetConfig
from pytailnet.exceptions import TailnetError
from pytailnet.ingestion.sources import (
    DirectoryApiSource,
    ManualFileSource,
    SeedSource,
    Source,
    parse_export_document,
)
from pytailnet.layout import LayoutEngine
from pytailnet.models import (
    Connection,
    ConnectionCreate,
    ConnectionPatch,
    Device,
    DeviceCreate,
    DevicePatch,
    DeviceStatus,
    NetworkTopology,
)
from pytailnet.reconciler import SourceReconciler
from pytailnet.state.store import TopologyStore

_logger = logging.getLogger(__name__)


class TailnetMonitor:
    """Live model of a tailnet, kept in sync with its directory.

    Usage::

        async with TailnetMonitor(TailnetConfig.from_env()) as monitor:
            topology = monitor.get_topology()
            async for event in monitor.subscribe():
                ...

    Entering the context builds the source chain, loads the initial
    topology (falling back to the built-in seed set) and starts periodic
    reconciliation. Leaving it stops the timer, ends every subscription and
    closes the HTTP session if the monitor created it.
    """

    def __init__(
        self,
        config: TailnetConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        sources: Sequence[Source] | None = None,
    ) -> None:
        self._config = config or TailnetConfig()
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._custom_sources = list(sources) if sources is not None else None
        self._broadcaster = ChangeBroadcaster(
            queue_size=self._config.subscriber_queue,
            overflow=self._config.overflow_policy,
        )
        self._store = TopologyStore(
            on_event=self._broadcaster.publish,
            layout=LayoutEngine(self._config.layout),
        )
        self._reconciler: SourceReconciler | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TailnetMonitor:
        self._reconciler = SourceReconciler(
            self._store,
            self._build_sources(),
            fallback=SeedSource(),
            topology=self._config.topology,
            stale_policy=self._config.stale_policy,
            source_timeout=self._config.source_timeout,
            interval=self._config.sync_interval,
        )
        try:
            await self._reconciler.boot()
        except BaseException:
            await self._close_session()
            raise
        _logger.info(
            "Monitor started from %s with %d devices",
            self._reconciler.last_source,
            len(self._store.list_devices()),
        )
        self._reconciler.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._reconciler is not None:
            await self._reconciler.stop()
            self._reconciler = None
        self._broadcaster.close()
        await self._close_session()

    def _build_sources(self) -> list[Source]:
        if self._custom_sources is not None:
            return list(self._custom_sources)

        sources: list[Source] = []
        if self._config.api_configured:
            assert self._config.tailnet is not None  # noqa: S101
            sources.append(
                DirectoryApiSource(
                    self._require_transport(),
                    self._config.tailnet,
                    staleness_threshold=self._config.staleness_threshold,
                )
            )
        else:
            _logger.info("Directory API not configured; skipping live source")
        if self._config.manual_file is not None:
            sources.append(ManualFileSource(self._config.manual_file))
        return sources

    def _require_transport(self) -> Transport:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = DirectoryTransport(self._config, self._http_session)
        return self._transport

    async def _close_session(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def _require_reconciler(self) -> SourceReconciler:
        if self._reconciler is None:
            raise TailnetError("Monitor not started. Use 'async with TailnetMonitor(...) as monitor:'")
        return self._reconciler

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def store(self) -> TopologyStore:
        return self._store

    @property
    def broadcaster(self) -> ChangeBroadcaster:
        return self._broadcaster

    def get_topology(self) -> NetworkTopology:
        return self._store.snapshot()

    def list_devices(self) -> list[Device]:
        return self._store.list_devices()

    def get_device(self, device_id: int) -> Device | None:
        return self._store.get_device(device_id)

    def metrics(self) -> dict[DeviceStatus, int]:
        """Device counts by status."""
        return self._store.stats().by_status()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_device(self, data: DeviceCreate | Mapping[str, Any]) -> Device:
        return await self._store.create_device(data)

    async def update_device(self, device_id: int, patch: DevicePatch | Mapping[str, Any]) -> Device:
        return await self._store.update_device(device_id, patch)

    async def delete_device(self, device_id: int) -> Device:
        return await self._store.delete_device(device_id)

    async def create_connection(self, data: ConnectionCreate | Mapping[str, Any]) -> Connection:
        return await self._store.create_connection(data)

    async def update_connection(self, connection_id: int, patch: ConnectionPatch | Mapping[str, Any]) -> Connection:
        return await self._store.update_connection(connection_id, patch)

    async def delete_connection(self, connection_id: int) -> Connection:
        return await self._store.delete_connection(connection_id)

    async def relayout(self) -> NetworkTopology:
        return await self._store.relayout()

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    async def refresh(self) -> NetworkTopology:
        """Reconcile now; raises :class:`AllSourcesExhaustedError` if every source fails."""
        return await self._require_reconciler().refresh()

    async def import_export(self, document: Mapping[str, Any]) -> NetworkTopology:
        """Replace the topology with devices from an uploaded export document."""
        records = parse_export_document(document)
        return await self._require_reconciler().import_records(records)

    async def export_manual_file(self, path: Path | str | None = None) -> int:
        """Write the current roster in the curated-file format."""
        target = path if path is not None else self._config.manual_file
        if target is None:
            raise TailnetError("No manual file path configured")
        return await ManualFileSource(target).export(self._store.list_devices())

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self) -> Subscription:
        """Event stream that starts with the current full topology."""
        return self._broadcaster.subscribe(self._store.snapshot())

    def unsubscribe(self, subscription: Subscription) -> None:
        self._broadcaster.unsubscribe(subscription)
