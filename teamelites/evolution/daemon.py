"""Evolution daemon — runs one generation per interval in the background.

The niche set is re-read before every cycle, so niches that gained an
agent (or that keep going unserved) join the search without a restart.
Uses asyncio tasks for scheduling.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog

from teamelites.events.bus import EventBus
from teamelites.evolution.engine import EvolutionEngine, GenerationReport
from teamelites.registry.store import SwarmStore
from teamelites.routing.niche import parse_niche_key
from teamelites.types import NicheDescriptor

logger = structlog.get_logger()

NichesProvider = Callable[[], list[NicheDescriptor]]


def known_niches(store: SwarmStore, unserved_threshold: int = 3) -> list[NicheDescriptor]:
    """Niches with an elite, a live agent, or chronic routing misses."""
    keys: list[str] = []
    keys.extend(bp.niche.key for bp in store.blueprints)
    keys.extend(a.niche_key for a in store.agents)
    keys.extend(store.chronically_unserved(unserved_threshold))

    niches: list[NicheDescriptor] = []
    seen: set[str] = set()
    for key in keys:
        if key in seen:
            continue
        seen.add(key)
        try:
            niches.append(parse_niche_key(key))
        except ValueError:
            logger.warning("evolution_daemon_bad_niche_key", niche_key=key)
    return niches


class EvolutionDaemon:
    """Background daemon that runs evolution generations on a schedule."""

    def __init__(
        self,
        engine: EvolutionEngine,
        niches_provider: NichesProvider,
        event_bus: EventBus | None = None,
        interval_hours: float | None = None,
    ) -> None:
        self._engine = engine
        self._niches_provider = niches_provider
        self._event_bus = event_bus
        self._interval_hours = (
            interval_hours if interval_hours is not None else engine.config.interval_hours
        )
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Schedule the first generation now and one per interval after that."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._schedule())
        await self._emit("evolution.daemon_started", {"interval_hours": self._interval_hours})

    async def stop(self) -> None:
        """Cancel the schedule; a generation in flight is abandoned."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._emit("evolution.daemon_stopped", {})

    async def run_once(self) -> GenerationReport | None:
        """Initialize missing archive cells, then run one generation."""
        niches = self._niches_provider()
        if not niches:
            logger.info("evolution_daemon_no_niches")
            return None

        await self._engine.initialize_archive(niches)
        report = await self._engine.run_generation(niches)
        logger.info(
            "evolution_daemon_generation_done",
            niches=len(niches),
            generation=report.generation,
            merged=report.merged,
            rejected=report.rejected,
            failed=report.failed,
        )
        return report

    async def _schedule(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("evolution_daemon_cycle_failed", error=str(e))
                await self._emit("evolution.daemon_error", {"error": str(e)})
            await asyncio.sleep(self._interval_hours * 3600)

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(topic, data, source="evolution_daemon")
