"""Per-rig control loop tick.

One ``RigController`` exists per rig and is the only thing that mutates that
rig's ``AutopilotState`` and meters. Each tick:

  1. FETCH: rig details from the API (failure aborts the tick)
  2. NORMALIZE: payload -> MetricsSnapshot (unmanaged rig = no-op)
  3. EVALUATE: revenue, cost, net profit % for the current tariff and rate
  4. METER: integrate energy/revenue/cost since the previous tick
  5. DECIDE: autopilot start/stop
  6. ACT: issue the command (failure logged, metrics still published)
  7. PUBLISH: status change and metrics events, persist state

``last_sync_at`` advances at the end of every tick, failed or not, so a long
outage is never integrated into the meters afterwards.
"""

import asyncio
import sqlite3
from collections.abc import Callable
from decimal import Decimal

from rigpilot.autopilot.state_machine import (
    Autopilot,
    AutopilotDecision,
    AutopilotState,
    RigCommand,
)
from rigpilot.data.store import RigStateStore, StoredRigState
from rigpilot.events import EventBus, RigMetricsUpdated, RigStatusChanged
from rigpilot.exceptions import (
    IndeterminateProfitabilityError,
    NotManagedError,
    NotSyncedError,
    RequestFailedError,
)
from rigpilot.logging import bind_rig_context, clear_rig_context, get_logger
from rigpilot.market_data.algorithms import AlgorithmDirectory
from rigpilot.market_data.rate_cache import BitcoinRateCache
from rigpilot.models import (
    CumulativeMeters,
    MetricsSnapshot,
    PowerMode,
    RigMetrics,
    Tariff,
    now_ms,
)
from rigpilot.nicehash.client import RigApi
from rigpilot.profitability.engine import ProfitabilityResult, evaluate
from rigpilot.profitability.meters import MeterAccumulator
from rigpilot.telemetry.normalizer import normalize

logger = get_logger(__name__)

_OFF_STATUSES = frozenset({"STOPPED", "OFFLINE"})


class RigController:
    """Drives one rig: telemetry in, autopilot decisions and metrics out.

    Args:
        rig_id: NiceHash rig id.
        name: Display name.
        rig_api: Telemetry source and command sink.
        algorithms: Shared algorithm directory (read-only here).
        rate_cache: Shared BTC rate cache (read-only here).
        tariff_provider: Returns the tariff in force right now.
        autopilot: Decision policy.
        events: Event sink for status changes and metrics.
        meter: Cumulative meter integrator.
        store: Optional persistence for state that survives restarts.
        autopilot_enabled: Whether the autopilot may start/stop this rig.
        min_profitability: Net profit % below which the rig is stopped.
    """

    def __init__(
        self,
        rig_id: str,
        name: str,
        rig_api: RigApi,
        algorithms: AlgorithmDirectory,
        rate_cache: BitcoinRateCache,
        tariff_provider: Callable[[], Tariff],
        autopilot: Autopilot,
        events: EventBus,
        meter: MeterAccumulator | None = None,
        store: RigStateStore | None = None,
        autopilot_enabled: bool = False,
        min_profitability: Decimal = Decimal("0"),
    ) -> None:
        self.rig_id = rig_id
        self.name = name
        self._rig_api = rig_api
        self._algorithms = algorithms
        self._rate_cache = rate_cache
        self._tariff_provider = tariff_provider
        self._autopilot = autopilot
        self._events = events
        self._meter = meter or MeterAccumulator()
        self._store = store
        self.autopilot_enabled = autopilot_enabled
        self.min_profitability = min_profitability
        self.state = AutopilotState()
        self.meters = CumulativeMeters()
        self._last_status: str | None = None
        self._has_ticked = False
        self._metrics: RigMetrics | None = None
        self._tick_lock = asyncio.Lock()
        self._closed = False

    # ──────────────────────────────────────────────
    # State restore / persist
    # ──────────────────────────────────────────────

    def restore(self, stored: StoredRigState) -> None:
        """Adopt state persisted by a previous run."""
        self.autopilot_enabled = stored.autopilot_enabled
        self.min_profitability = stored.min_profitability
        self.state.learned_tariff_limit = stored.learned_tariff_limit
        self.state.last_mined_at = stored.last_mined_at
        self.meters = stored.meters
        logger.info(
            "rig_state_restored",
            rig_id=self.rig_id,
            tariff_limit=str(stored.learned_tariff_limit),
            energy_kwh=str(stored.meters.energy_kwh),
        )

    def close(self) -> None:
        """Retire the rig: no further commands, saves or metrics."""
        self._closed = True

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def persist(self) -> None:
        if self._store is None or self._closed:
            return
        try:
            await self._store.save(
                StoredRigState(
                    rig_id=self.rig_id,
                    name=self.name,
                    autopilot_enabled=self.autopilot_enabled,
                    min_profitability=self.min_profitability,
                    learned_tariff_limit=self.state.learned_tariff_limit,
                    last_mined_at=self.state.last_mined_at,
                    meters=self.meters,
                )
            )
        except sqlite3.Error as e:
            logger.warning("rig_state_persist_failed", rig_id=self.rig_id, error=str(e))

    # ──────────────────────────────────────────────
    # Tick
    # ──────────────────────────────────────────────

    @property
    def is_busy(self) -> bool:
        """True while a tick is in progress."""
        return self._tick_lock.locked()

    @property
    def metrics(self) -> RigMetrics | None:
        """Metrics published by the last completed tick."""
        return self._metrics

    async def tick(self, now: int | None = None) -> RigMetrics | None:
        """Run one control-loop iteration.

        Returns:
            The published metrics, or None if the tick was aborted
            (fetch failure, unmanaged rig, or the rig was removed).
        """
        if self._closed:
            return None
        async with self._tick_lock:
            now = now if now is not None else now_ms()
            bind_rig_context(self.rig_id, self.name)
            try:
                return await self._tick(now)
            finally:
                self.state.last_sync_at = now
                self._has_ticked = True
                clear_rig_context()

    async def _tick(self, now: int) -> RigMetrics | None:
        # 1. FETCH
        try:
            details = await self._rig_api.get_rig_details(self.rig_id)
        except (RequestFailedError, NotSyncedError) as e:
            logger.warning("rig_details_fetch_failed", error=str(e))
            return None

        # 2. NORMALIZE
        try:
            snapshot = normalize(details, self._algorithms.titles)
        except NotManagedError as e:
            logger.info("rig_not_managed", reason=str(e))
            return None
        if self._closed:
            logger.info("rig_removed_during_tick")
            return None
        if snapshot.unknown_algorithm_ids:
            self._algorithms.request_refresh()

        await self._publish_status_change(snapshot.miner_status)

        # 3. EVALUATE
        tariff = self._tariff_provider()
        rate = self._rate_cache.get_rate(tariff.currency)
        result = evaluate(snapshot, snapshot.daily_revenue_btc, tariff, rate)

        # 4-5. METER + DECIDE
        if not snapshot.is_mining:
            self._meter.accumulate(
                self.meters,
                self.state.last_sync_at,
                now,
                snapshot.power_usage_w,
                Decimal("0"),
                Decimal("0"),
                result.mbtc_price,
            )
            decision = self._autopilot.on_idle(
                self.state,
                enabled=self.autopilot_enabled,
                tariff=tariff.cost_per_kwh,
                now_ms=now,
            )
        else:
            self._meter.accumulate(
                self.meters,
                self.state.last_sync_at,
                now,
                snapshot.power_usage_w,
                result.revenue_mbtc,
                result.cost_mbtc,
                result.mbtc_price,
            )
            try:
                profit_pct: int | None = result.require_profit_pct()
            except IndeterminateProfitabilityError as e:
                logger.debug("profitability_indeterminate", reason=str(e))
                profit_pct = None
            decision = self._autopilot.on_mining(
                self.state,
                enabled=self.autopilot_enabled,
                tariff=tariff.cost_per_kwh,
                profit_pct=profit_pct,
                has_hashrate=snapshot.hashrate_mh > 0,
                min_profitability=self.min_profitability,
                now_ms=now,
            )

        logger.info(
            "rig_tick",
            status=snapshot.miner_status,
            algorithm=snapshot.algorithm_label,
            hashrate_mh=round(snapshot.hashrate_mh, 2),
            power_w=round(snapshot.power_usage_w, 2),
            tariff=str(tariff.cost_per_kwh),
            tariff_limit=str(self.state.learned_tariff_limit),
            revenue_mbtc=str(result.revenue_mbtc),
            cost_mbtc=str(result.cost_mbtc),
            profit_pct=result.profit_pct,
            rolling_profit_pct=str(self.state.rolling_profit_pct),
            phase=decision.phase.value,
            decision=decision.reason,
        )

        # 6. ACT
        if decision.command is not None:
            await self._issue(decision.command)

        # 7. PUBLISH
        if self._closed:
            return None
        metrics = self._build_metrics(snapshot, result, decision, now)
        self._metrics = metrics
        await self.persist()
        await self._events.publish(RigMetricsUpdated(metrics))
        return metrics

    async def _publish_status_change(self, status: str | None) -> None:
        previous = self._last_status
        self._last_status = status
        if not self._has_ticked or previous is None or previous == status:
            return
        logger.info("rig_status_changed", previous=previous, status=status)
        await self._events.publish(
            RigStatusChanged(rig_id=self.rig_id, name=self.name, status=status, previous=previous)
        )

    async def _issue(self, command: RigCommand) -> bool:
        if self._closed:
            return False
        try:
            await self._rig_api.set_rig_status(self.rig_id, command is RigCommand.START)
        except (RequestFailedError, NotSyncedError) as e:
            logger.warning("rig_command_failed", command=command.value, error=str(e))
            return False
        return True

    def _build_metrics(
        self,
        snapshot: MetricsSnapshot,
        result: ProfitabilityResult,
        decision: AutopilotDecision,
        now: int,
    ) -> RigMetrics:
        metrics = RigMetrics(
            rig_id=self.rig_id,
            name=self.name,
            status=snapshot.miner_status,
            power_mode=snapshot.power_mode,
            is_on=snapshot.miner_status not in _OFF_STATUSES,
            mining=snapshot.is_mining,
            algorithm=snapshot.algorithm_label,
            hashrate_mh=round(snapshot.hashrate_mh, 2),
            power_w=round(snapshot.power_usage_w, 2),
            temperature=snapshot.max_temperature,
            load=snapshot.load,
            autopilot_enabled=self.autopilot_enabled,
            autopilot_phase=decision.phase.value,
            min_profitability=self.min_profitability,
            rolling_profit_pct=self.state.rolling_profit_pct,
            tariff_limit=self.state.learned_tariff_limit,
            meters=CumulativeMeters(**vars(self.meters)),
            updated_at=now,
        )
        if snapshot.is_mining:
            metrics.profit_mbtc = result.revenue_mbtc
            metrics.profit_local = result.revenue_local or Decimal("0")
            metrics.cost_mbtc = result.cost_mbtc or Decimal("0")
            metrics.cost_local = result.cost_local or Decimal("0")
            metrics.profit_pct = result.profit_pct or 0
        return metrics

    # ──────────────────────────────────────────────
    # Owner commands
    # ──────────────────────────────────────────────

    async def set_power(self, on: bool) -> None:
        """Manually start or stop the rig.

        Raises:
            RequestFailedError: If the command is rejected.
        """
        logger.info("rig_manual_power", rig_id=self.rig_id, on=on)
        await self._rig_api.set_rig_status(self.rig_id, on)

    async def set_autopilot(self, enabled: bool) -> None:
        """Enable or disable the autopilot.

        Enabling starts the rig so profitability can be assessed; disabling
        stops it.
        """
        self.autopilot_enabled = enabled
        await self.persist()
        logger.info("rig_autopilot_set", rig_id=self.rig_id, enabled=enabled)
        await self._rig_api.set_rig_status(self.rig_id, enabled)

    async def set_min_profitability(self, value: Decimal) -> None:
        """Change the stop threshold and re-benchmark under it.

        The learned tariff limit is kept.
        """
        self.min_profitability = value
        await self.persist()
        decision = self._autopilot.rebenchmark(self.state, now_ms())
        if decision.command is not None:
            await self._rig_api.set_rig_status(self.rig_id, decision.command is RigCommand.START)

    async def set_power_mode(self, mode: PowerMode) -> None:
        await self._rig_api.set_rig_power_mode(self.rig_id, mode)
