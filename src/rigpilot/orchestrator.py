"""Fleet orchestrator -- wires rig controllers and the shared services.

Owns one ``RigController`` per rig, keyed by rig id, and one polling task per
rig. Each rig's timer fires every ``poll_interval`` seconds and spawns a tick;
a tick still in progress when the timer fires again is skipped, never
re-entered, so a slow API response cannot stall or double up a rig.

Shared services run as independent tasks:
  - BitcoinRateCache      (ticker refresh, 15 min)
  - PriceWatcher          (BTC price change alerts, 13 s)
  - AlgorithmDirectory    (algorithm titles, 1 h)

The main loop keeps the signing clock in step with NiceHash server time.
"""

from __future__ import annotations

import asyncio
import sqlite3
from decimal import Decimal
from typing import TYPE_CHECKING

from rigpilot.autopilot.state_machine import Autopilot
from rigpilot.config import AppSettings, RuntimeConfig
from rigpilot.events import EventBus
from rigpilot.exceptions import NotSyncedError, RequestFailedError
from rigpilot.logging import get_logger
from rigpilot.market_data.algorithms import AlgorithmDirectory
from rigpilot.market_data.price_watch import PriceWatcher
from rigpilot.market_data.rate_cache import BitcoinRateCache
from rigpilot.models import RigMetrics, RigSummary, Tariff
from rigpilot.nicehash.client import RigApi
from rigpilot.profitability.engine import round_half_up
from rigpilot.profitability.meters import MeterAccumulator
from rigpilot.rig.controller import RigController

if TYPE_CHECKING:
    from rigpilot.data.store import RigStateStore

logger = get_logger(__name__)

# Re-sync NiceHash server time once an hour
_TIME_RESYNC_INTERVAL = 60 * 60


class Orchestrator:
    """Runs the autopilot for every rig on the account.

    Args:
        settings: Application-wide settings.
        rig_api: NiceHash rig client.
        rate_cache: Shared BTC exchange rate cache.
        algorithms: Shared algorithm directory.
        events: Event bus for rig and rate events.
        store: Optional rig state persistence.
        price_watcher: Optional BTC price change alerter.
    """

    def __init__(
        self,
        settings: AppSettings,
        rig_api: RigApi,
        rate_cache: BitcoinRateCache,
        algorithms: AlgorithmDirectory,
        events: EventBus,
        store: RigStateStore | None = None,
        price_watcher: PriceWatcher | None = None,
    ) -> None:
        self._settings = settings
        self._rig_api = rig_api
        self._rate_cache = rate_cache
        self._price_watcher = price_watcher
        self._algorithms = algorithms
        self._events = events
        self._store = store
        self._autopilot = Autopilot(settings.autopilot)
        self._meter = MeterAccumulator()
        self._controllers: dict[str, RigController] = {}
        self._poll_tasks: dict[str, asyncio.Task] = {}  # type: ignore[type-arg]
        self._tick_tasks: dict[str, asyncio.Task] = {}  # type: ignore[type-arg]
        self._running = False
        self._synced = False
        self._last_time_sync: float = 0.0
        self._discovery_pending = True
        self._last_discovery: float | None = None
        self._discovery_failed = False
        self._runtime_config: RuntimeConfig | None = None

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start shared services, register rigs, then run the main loop.

        Blocks until ``stop()`` is called.
        """
        logger.info("orchestrator_starting", rigs=self._settings.nicehash.rig_ids or "discover")
        self._running = True
        await self._sync_time()
        await self._rate_cache.start()
        await self._algorithms.start()
        if self._price_watcher is not None:
            await self._price_watcher.start()

        await self._register_rigs()

        try:
            await self._run_loop()
        finally:
            await self._shutdown()
            logger.info("orchestrator_stopped")

    async def stop(self) -> None:
        """Signal the orchestrator to stop. Rigs are left in their current state."""
        logger.info("orchestrator_stopping")
        self._running = False

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                if not self._synced or loop.time() - self._last_time_sync > _TIME_RESYNC_INTERVAL:
                    was_synced = self._synced
                    await self._sync_time()
                    if self._synced and not was_synced:
                        # Discovery before the first sync could not authenticate
                        self._last_discovery = None
                if self._discovery_pending and self._synced and self._discovery_due(loop.time()):
                    await self._register_rigs()
                await asyncio.sleep(1)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("orchestrator_loop_error", error=str(e), exc_info=True)
                await asyncio.sleep(10)

    async def _sync_time(self) -> None:
        self._last_time_sync = asyncio.get_running_loop().time()
        try:
            await self._rig_api.connect()
        except RequestFailedError as e:
            logger.warning("time_sync_failed", status=e.status, error=str(e))
            return
        self._synced = True

    async def _shutdown(self) -> None:
        for rig_id in list(self._poll_tasks):
            await self._cancel_poll_task(rig_id)
        for rig_id in list(self._tick_tasks):
            await self._cancel_tick_task(rig_id)
        if self._price_watcher is not None:
            await self._price_watcher.stop()
        await self._algorithms.stop()
        await self._rate_cache.stop()

    def set_price_watcher(self, watcher: PriceWatcher) -> None:
        """Set the price watcher (it reads the tariff currency from us)."""
        self._price_watcher = watcher

    @property
    def is_running(self) -> bool:
        """Whether the orchestrator main loop is active."""
        return self._running

    # ──────────────────────────────────────────────
    # Rig registry
    # ──────────────────────────────────────────────

    async def discover_rigs(self) -> list[RigSummary]:
        """Rigs to manage: the configured ids, or every managed rig on the account."""
        configured = self._settings.nicehash.rig_ids
        try:
            rigs = await self._rig_api.get_rigs()
        except (RequestFailedError, NotSyncedError) as e:
            logger.warning("rig_discovery_failed", error=str(e))
            self._discovery_failed = True
            return [RigSummary(rig_id=rig_id, name=rig_id) for rig_id in configured]

        self._discovery_failed = False
        if configured:
            names = {rig.rig_id: rig.name for rig in rigs}
            return [RigSummary(rig_id=rig_id, name=names.get(rig_id, rig_id)) for rig_id in configured]

        managed = [rig for rig in rigs if rig.rig_type != "UNMANAGED"]
        logger.info("rigs_discovered", total=len(rigs), managed=len(managed))
        return managed

    async def _register_rigs(self) -> None:
        """Discover rigs and add any not yet managed.

        Discovery is retried from the main loop while it fails or finds nothing.
        """
        self._last_discovery = asyncio.get_running_loop().time()
        rigs = await self.discover_rigs()
        for rig in rigs:
            await self.add_rig(rig.rig_id, rig.name)
        self._discovery_pending = self._discovery_failed or not rigs

    def _discovery_due(self, now: float) -> bool:
        if self._last_discovery is None:
            return True
        return now - self._last_discovery >= self._settings.autopilot.poll_interval

    async def add_rig(self, rig_id: str, name: str) -> RigController:
        """Register a rig and start polling it. Idempotent per rig id."""
        if rig_id in self._controllers:
            return self._controllers[rig_id]

        controller = RigController(
            rig_id=rig_id,
            name=name,
            rig_api=self._rig_api,
            algorithms=self._algorithms,
            rate_cache=self._rate_cache,
            tariff_provider=self.current_tariff,
            autopilot=self._autopilot,
            events=self._events,
            meter=self._meter,
            store=self._store,
            autopilot_enabled=self._settings.autopilot.enabled,
            min_profitability=self._settings.autopilot.min_profitability,
        )
        if self._store is not None:
            try:
                stored = await self._store.load(rig_id)
            except sqlite3.Error as e:
                logger.warning("rig_state_load_failed", rig_id=rig_id, error=str(e))
                stored = None
            if stored is not None:
                controller.restore(stored)

        self._controllers[rig_id] = controller
        if self._running:
            self._poll_tasks[rig_id] = asyncio.create_task(self._poll_rig(controller))
        logger.info("rig_added", rig_id=rig_id, name=name)
        return controller

    async def remove_rig(self, rig_id: str) -> None:
        """Stop polling a rig, abort its running tick and discard its state.

        The rig gets no command and no save once this returns.
        """
        controller = self._controllers.pop(rig_id, None)
        if controller is None:
            return
        controller.close()
        await self._cancel_poll_task(rig_id)
        await self._cancel_tick_task(rig_id)
        if self._store is not None:
            try:
                await self._store.delete(rig_id)
            except sqlite3.Error as e:
                logger.warning("rig_state_delete_failed", rig_id=rig_id, error=str(e))
        logger.info("rig_removed", rig_id=rig_id)

    def get_controller(self, rig_id: str) -> RigController:
        """Raises KeyError for an unknown rig."""
        return self._controllers[rig_id]

    @property
    def controllers(self) -> list[RigController]:
        return list(self._controllers.values())

    async def _cancel_poll_task(self, rig_id: str) -> None:
        task = self._poll_tasks.pop(rig_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cancel_tick_task(self, rig_id: str) -> None:
        task = self._tick_tasks.pop(rig_id, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ──────────────────────────────────────────────
    # Per-rig polling
    # ──────────────────────────────────────────────

    async def _poll_rig(self, controller: RigController) -> None:
        """Fire a tick for one rig every poll interval."""
        interval = self._settings.autopilot.poll_interval
        while self._running:
            self.schedule_tick(controller)
            await asyncio.sleep(interval)

    def schedule_tick(self, controller: RigController) -> bool:
        """Spawn a tick unless the previous one is still running.

        Returns:
            True if a tick was spawned.
        """
        if controller.is_busy:
            logger.info("rig_tick_skipped_busy", rig_id=controller.rig_id)
            return False
        rig_id = controller.rig_id
        task = asyncio.create_task(self._run_tick(controller))
        self._tick_tasks[rig_id] = task

        def _forget(done: asyncio.Task) -> None:  # type: ignore[type-arg]
            if self._tick_tasks.get(rig_id) is done:
                del self._tick_tasks[rig_id]

        task.add_done_callback(_forget)
        return True

    async def _run_tick(self, controller: RigController) -> None:
        try:
            await controller.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("rig_tick_error", rig_id=controller.rig_id, error=str(e), exc_info=True)

    # ──────────────────────────────────────────────
    # Tariff
    # ──────────────────────────────────────────────

    def current_tariff(self) -> Tariff:
        """Tariff in force right now: settings with the runtime overlay applied."""
        cost = self._settings.tariff.cost_per_kwh
        currency = self._settings.tariff.currency
        rc = self._runtime_config
        if rc is not None:
            if rc.cost_per_kwh is not None:
                cost = rc.cost_per_kwh
            if rc.currency is not None:
                currency = rc.currency
        return Tariff(cost_per_kwh=cost, currency=currency.upper())

    @property
    def runtime_config(self) -> RuntimeConfig | None:
        """Current runtime config overlay, if set."""
        return self._runtime_config

    @runtime_config.setter
    def runtime_config(self, config: RuntimeConfig) -> None:
        self._runtime_config = config
        logger.info("runtime_config_updated", config=str(config))

    # ──────────────────────────────────────────────
    # Status
    # ──────────────────────────────────────────────

    def get_rig_metrics(self) -> list[RigMetrics]:
        """Latest metrics of every rig that has completed a tick."""
        return [c.metrics for c in self._controllers.values() if c.metrics is not None]

    def fleet_summary(self) -> dict:
        """Sum of per-rig metrics across the fleet.

        ``profit_pct`` is None when the fleet has no power cost to compare
        against.
        """
        metrics = self.get_rig_metrics()
        total = len(self._controllers)
        mining = sum(1 for m in metrics if m.mining)

        revenue_mbtc = sum((m.profit_mbtc for m in metrics), Decimal("0"))
        cost_mbtc = sum((m.cost_mbtc for m in metrics), Decimal("0"))
        profit_pct = None
        if cost_mbtc > 0:
            profit_pct = round_half_up((revenue_mbtc - cost_mbtc) / cost_mbtc * 100)

        return {
            "rigs_mining": f"{mining}/{total}",
            "hashrate_mh": round(sum(m.hashrate_mh for m in metrics), 2),
            "power_w": round(sum(m.power_w for m in metrics), 2),
            "profit_mbtc": revenue_mbtc,
            "profit_local": sum((m.profit_local for m in metrics), Decimal("0")),
            "cost_mbtc": cost_mbtc,
            "cost_local": sum((m.cost_local for m in metrics), Decimal("0")),
            "profit_pct": profit_pct,
            "energy_kwh": sum((m.meters.energy_kwh for m in metrics), Decimal("0")),
            "revenue_mbtc_total": sum((m.meters.revenue_mbtc for m in metrics), Decimal("0")),
            "cost_mbtc_total": sum((m.meters.cost_mbtc for m in metrics), Decimal("0")),
            "revenue_local_total": sum((m.meters.revenue_local for m in metrics), Decimal("0")),
            "cost_local_total": sum((m.meters.cost_local for m in metrics), Decimal("0")),
        }

    def get_status(self) -> dict:
        """Return current orchestrator status."""
        tariff = self.current_tariff()
        return {
            "running": self._running,
            "synced": self._synced,
            "rigs": len(self._controllers),
            "tariff": tariff.cost_per_kwh,
            "currency": tariff.currency,
            "rate_updated_at": self._rate_cache.updated_at,
        }
