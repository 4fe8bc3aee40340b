"""Multi-source reconciliation.

Sources are tried in strict priority order and the first one to succeed
wins. Whatever it returns replaces the store contents in one step. Runs are
serialized: a timer tick or refresh request that arrives while a run is in
flight joins that run instead of starting another.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from enum import StrEnum

from pytailnet.exceptions import (
    AllSourcesExhaustedError,
    SourceTimeoutError,
    SourceUnavailableError,
    TailnetConflictError,
)
from pytailnet.ingestion.sources import SeedSource, Source
from pytailnet.models import DeviceCreate, NetworkTopology
from pytailnet.state.policy import StaleDevicePolicy, TopologyPolicy
from pytailnet.state.store import TopologyStore

_logger = logging.getLogger(__name__)


class SyncTrigger(StrEnum):
    BOOT = "boot"
    TIMER = "timer"
    REFRESH = "refresh"


class SourceReconciler:
    """Refresh a :class:`TopologyStore` from an ordered list of sources.

    Parameters
    ----------
    store : TopologyStore
        Store whose contents are replaced on every successful run.
    sources : sequence of Source
        Priority-ordered sources consulted on boot, timer ticks and refresh.
    fallback : Source, optional
        Used only at boot when every source failed. Defaults to the built-in
        seed set.
    topology : TopologyPolicy
        Connection-generation policy applied on install.
    stale_policy : StaleDevicePolicy
        Whether devices missing from the new snapshot are dropped or kept.
    source_timeout : float
        Seconds allowed per source fetch before it counts as failed.
    interval : float
        Seconds between timer-driven runs; ``0`` disables the timer.
    """

    def __init__(
        self,
        store: TopologyStore,
        sources: Sequence[Source],
        *,
        fallback: Source | None = None,
        topology: TopologyPolicy = TopologyPolicy.HUB,
        stale_policy: StaleDevicePolicy = StaleDevicePolicy.REPLACE,
        source_timeout: float = 10.0,
        interval: float = 0.0,
    ) -> None:
        self._store = store
        self._sources = list(sources)
        self._fallback = fallback if fallback is not None else SeedSource()
        self._topology = topology
        self._stale_policy = stale_policy
        self._source_timeout = source_timeout
        self._interval = interval
        self._inflight: asyncio.Task[NetworkTopology] | None = None
        self._timer: asyncio.Task[None] | None = None
        self.last_source: str | None = None

    @property
    def sources(self) -> list[Source]:
        return list(self._sources)

    @property
    def running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def boot(self) -> NetworkTopology:
        """Initial load. Never fails: exhaustion falls through to the fallback source."""
        return await self._join(SyncTrigger.BOOT)

    async def refresh(self) -> NetworkTopology:
        """Explicit refresh.

        Raises
        ------
        AllSourcesExhaustedError
            Every source failed; the store is left unchanged.
        """
        return await self._join(SyncTrigger.REFRESH)

    async def import_records(self, records: Sequence[DeviceCreate]) -> NetworkTopology:
        """Install externally supplied records through the same install path."""
        return await self._install(records, "import")

    def start(self) -> None:
        """Start timer-driven runs, if an interval is configured."""
        if self._interval <= 0 or self._timer is not None:
            return
        self._timer = asyncio.create_task(self._run_timer(), name="pytailnet-reconcile-timer")

    async def stop(self) -> None:
        """Stop the timer and wait for an in-flight run to settle."""
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            inflight.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await inflight

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _join(self, trigger: SyncTrigger) -> NetworkTopology:
        task = self._inflight
        if task is None or task.done():
            task = asyncio.create_task(self._run(trigger), name=f"pytailnet-reconcile-{trigger}")
            self._inflight = task
        else:
            _logger.debug("Reconciliation already in flight; %s joins it", trigger)
        # Shielded so a cancelled caller does not abort the run for other joiners.
        return await asyncio.shield(task)

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._join(SyncTrigger.TIMER)
            except AllSourcesExhaustedError as exc:
                _logger.warning("Periodic reconciliation failed: %s", exc)
            except Exception:
                _logger.exception("Periodic reconciliation crashed; retrying next interval")

    async def _fetch(self, source: Source) -> list[DeviceCreate]:
        try:
            async with asyncio.timeout(self._source_timeout):
                return await source.fetch()
        except TimeoutError as exc:
            raise SourceTimeoutError(
                f"fetch exceeded {self._source_timeout:g}s",
                source=source.name,
            ) from exc

    async def _run(self, trigger: SyncTrigger) -> NetworkTopology:
        failures: list[SourceUnavailableError] = []
        for source in self._sources:
            try:
                records = await self._fetch(source)
            except SourceUnavailableError as exc:
                _logger.warning("Source %s unavailable (%s): %s", source.name, trigger, exc)
                failures.append(exc)
                continue
            except Exception as exc:
                _logger.warning("Source %s failed unexpectedly (%s)", source.name, trigger, exc_info=True)
                failures.append(SourceUnavailableError(f"{type(exc).__name__}: {exc}", source=source.name))
                continue
            _logger.info("Source %s returned %d devices (%s)", source.name, len(records), trigger)
            try:
                return await self._install(records, source.name)
            except TailnetConflictError as exc:
                _logger.warning("Source %s returned duplicate devices: %s", source.name, exc)
                failures.append(SourceUnavailableError(str(exc), source=source.name))

        if trigger != SyncTrigger.BOOT:
            raise AllSourcesExhaustedError(failures)

        _logger.info("No source succeeded at boot; using %s", self._fallback.name)
        records = await self._fallback.fetch()
        return await self._install(records, self._fallback.name)

    async def _install(self, records: Sequence[DeviceCreate], source_name: str) -> NetworkTopology:
        topology = await self._store.replace_all(records, self._topology, stale_policy=self._stale_policy)
        self.last_source = source_name
        return topology
