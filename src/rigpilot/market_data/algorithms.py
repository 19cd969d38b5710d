"""Algorithm directory -- maps v4 algorithm ids to titles.

Single writer (the hourly refresh, or an on-demand refresh when a rig reports
an id we have never seen), many readers (every rig tick). Readers get the
current mapping without waiting; a refresh replaces it atomically. A stale or
empty mapping only costs a missing label, never a failed tick.
"""

import asyncio
from collections.abc import Mapping
from types import MappingProxyType

from rigpilot.logging import get_logger
from rigpilot.nicehash.client import RigApi

logger = get_logger(__name__)


class AlgorithmDirectory:
    """Cached algorithm id -> title lookup with periodic refresh."""

    def __init__(self, rig_api: RigApi, refresh_interval: float = 3600.0) -> None:
        self._rig_api = rig_api
        self._refresh_interval = refresh_interval
        self._titles: Mapping[int, str] = MappingProxyType({})
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._pending_refresh: asyncio.Task | None = None  # type: ignore[type-arg]

    async def start(self) -> None:
        if self._running:
            logger.warning("algorithm_directory_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info("algorithm_directory_started", refresh_interval=self._refresh_interval)

    async def stop(self) -> None:
        self._running = False
        for task in (self._task, self._pending_refresh):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._pending_refresh = None
        logger.info("algorithm_directory_stopped")

    async def _refresh_loop(self) -> None:
        while self._running:
            await self.refresh()
            if self._running:
                await asyncio.sleep(self._refresh_interval)

    async def refresh(self) -> bool:
        """Fetch the directory once. Returns True if the mapping was replaced."""
        try:
            algorithms = await self._rig_api.get_algorithms()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("algorithm_refresh_failed", error=str(e))
            return False

        titles = {int(algo["id"]): str(algo["title"]) for algo in algorithms}
        if not titles:
            logger.warning("algorithm_refresh_empty")
            return False
        self._titles = MappingProxyType(titles)
        logger.debug("algorithms_updated", count=len(titles))
        return True

    def request_refresh(self) -> None:
        """Schedule a background refresh unless one is already pending."""
        if self._pending_refresh is not None and not self._pending_refresh.done():
            return
        self._pending_refresh = asyncio.create_task(self.refresh())

    @property
    def titles(self) -> Mapping[int, str]:
        """Current id -> title mapping (read-only, possibly empty)."""
        return self._titles
