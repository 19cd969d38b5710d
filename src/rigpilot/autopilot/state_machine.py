"""Autopilot profitability control loop.

Decides, tick by tick, whether a rig should be mining given its net
profitability and the electricity tariff.

Phases (derived from ``AutopilotState``):
  IDLE          not mining; averaging window cleared
  BENCHMARKING  mining, inside the benchmark window since ``benchmark_started_at``
  STEADY        mining, past the window; stop/limit decisions are actionable

Averaging is an EMA with window N (default 7 ticks):

    rolling = rolling * (N - 1) / N + current / N

A rig is stopped only when BOTH the rolling average and the current reading
are below the minimum profitability, so a single noisy reading never flips it.
On a stop the current tariff becomes the learned tariff limit; while idle the
rig is restarted only when the tariff drops below that limit, there is no
limit yet, or it has not mined for ``rebenchmark_hours`` (a stale negative
verdict must not keep the rig off forever). While profitable the limit rises
to any higher tariff the rig has proven itself at.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from rigpilot.config import AutopilotSettings
from rigpilot.logging import get_logger

logger = get_logger(__name__)

#: Precision limit for the rolling average (12 decimal places).
_EMA_QUANTIZE = Decimal("0.000000000001")

_MS_PER_MINUTE = 60_000
_MS_PER_HOUR = 3_600_000


class AutopilotPhase(str, Enum):
    """Where a rig is in its mining/benchmark cycle."""

    IDLE = "idle"
    BENCHMARKING = "benchmarking"
    STEADY = "steady"


class RigCommand(str, Enum):
    """Command the autopilot wants issued to the rig."""

    START = "start"
    STOP = "stop"


@dataclass
class AutopilotState:
    """Per-rig autopilot memory. Owned exclusively by that rig's controller.

    ``rolling_profit_pct`` is only meaningful while ``benchmark_started_at``
    is set; both are cleared whenever the rig is seen not mining.
    """

    rolling_profit_pct: Decimal = Decimal("0")
    benchmark_started_at: int | None = None
    learned_tariff_limit: Decimal | None = None
    last_mined_at: int | None = None
    last_sync_at: int | None = None

    def phase(self, now_ms: int, benchmark_window_ms: int) -> AutopilotPhase:
        if self.benchmark_started_at is None:
            return AutopilotPhase.IDLE
        if now_ms - self.benchmark_started_at > benchmark_window_ms:
            return AutopilotPhase.STEADY
        return AutopilotPhase.BENCHMARKING

    def clear_benchmark(self) -> None:
        self.rolling_profit_pct = Decimal("0")
        self.benchmark_started_at = None


@dataclass(frozen=True)
class AutopilotDecision:
    """Outcome of one autopilot evaluation."""

    phase: AutopilotPhase
    command: RigCommand | None = None
    reason: str = ""


class Autopilot:
    """Stateless autopilot policy; all memory lives in ``AutopilotState``.

    Args:
        settings: Window sizes and timeouts.
    """

    def __init__(self, settings: AutopilotSettings) -> None:
        self._window = Decimal(settings.smoothing_window)
        self._benchmark_window_ms = settings.benchmark_minutes * _MS_PER_MINUTE
        self._rebenchmark_after_ms = settings.rebenchmark_hours * _MS_PER_HOUR

    @property
    def benchmark_window_ms(self) -> int:
        return self._benchmark_window_ms

    def update_rolling(self, state: AutopilotState, profit_pct: int, now_ms: int) -> Decimal:
        """Seed or update the rolling average with this tick's profit percentage."""
        current = Decimal(profit_pct)
        if state.benchmark_started_at is None:
            state.benchmark_started_at = now_ms
            state.rolling_profit_pct = current
        else:
            state.rolling_profit_pct = (
                state.rolling_profit_pct * (self._window - 1) / self._window
                + current / self._window
            ).quantize(_EMA_QUANTIZE)
        return state.rolling_profit_pct

    def should_start(
        self, state: AutopilotState, tariff: Decimal | None, now_ms: int
    ) -> tuple[bool, str]:
        """Whether an idle rig may be (re)started, and why."""
        limit = state.learned_tariff_limit
        if limit is None:
            return True, "no_tariff_limit"
        if tariff is not None and tariff < limit:
            return True, "tariff_below_limit"
        if state.last_mined_at is None:
            return True, "never_mined"
        if now_ms - state.last_mined_at > self._rebenchmark_after_ms:
            return True, "rebenchmark_timeout"
        return False, "tariff_at_or_above_limit"

    def on_idle(
        self,
        state: AutopilotState,
        *,
        enabled: bool,
        tariff: Decimal | None,
        now_ms: int,
    ) -> AutopilotDecision:
        """Handle a tick where the rig is not mining."""
        state.clear_benchmark()
        if not enabled:
            return AutopilotDecision(AutopilotPhase.IDLE, reason="autopilot_disabled")

        start, reason = self.should_start(state, tariff, now_ms)
        if not start:
            return AutopilotDecision(AutopilotPhase.IDLE, reason=reason)

        logger.info(
            "autopilot_starting_rig",
            reason=reason,
            tariff=str(tariff),
            tariff_limit=str(state.learned_tariff_limit),
        )
        return AutopilotDecision(AutopilotPhase.IDLE, RigCommand.START, reason)

    def on_mining(
        self,
        state: AutopilotState,
        *,
        enabled: bool,
        tariff: Decimal | None,
        profit_pct: int | None,
        has_hashrate: bool,
        min_profitability: Decimal,
        now_ms: int,
    ) -> AutopilotDecision:
        """Handle a tick where the rig reports at least one mining device.

        Args:
            state: The rig's autopilot state (mutated).
            enabled: Whether autopilot may issue commands.
            tariff: Current tariff per kWh.
            profit_pct: Current net profit %, None if indeterminate.
            has_hashrate: False while the rig waits for a job.
            min_profitability: Stop threshold in percent.
            now_ms: Tick timestamp.
        """
        state.last_mined_at = now_ms
        window = self._benchmark_window_ms

        if not has_hashrate:
            return AutopilotDecision(state.phase(now_ms, window), reason="waiting_for_job")
        if profit_pct is None:
            return AutopilotDecision(state.phase(now_ms, window), reason="indeterminate_profitability")

        rolling = self.update_rolling(state, profit_pct, now_ms)
        phase = state.phase(now_ms, window)
        if phase is not AutopilotPhase.STEADY:
            return AutopilotDecision(phase, reason="benchmarking")

        current = Decimal(profit_pct)
        if rolling < min_profitability and current < min_profitability:
            previous_limit = state.learned_tariff_limit
            state.learned_tariff_limit = tariff
            logger.info(
                "rig_not_profitable",
                profit_pct=profit_pct,
                rolling_profit_pct=str(rolling),
                min_profitability=str(min_profitability),
                tariff_limit=str(tariff),
                previous_tariff_limit=str(previous_limit),
            )
            if enabled:
                return AutopilotDecision(phase, RigCommand.STOP, "unprofitable")
            return AutopilotDecision(phase, reason="unprofitable_autopilot_disabled")

        if tariff is not None and (
            state.learned_tariff_limit is None or tariff > state.learned_tariff_limit
        ):
            logger.info(
                "raising_tariff_limit",
                tariff_limit=str(tariff),
                previous_tariff_limit=str(state.learned_tariff_limit),
            )
            state.learned_tariff_limit = tariff
        return AutopilotDecision(phase, reason="profitable")

    def rebenchmark(self, state: AutopilotState, now_ms: int) -> AutopilotDecision:
        """Force a fresh benchmark (e.g. after the minimum profitability changed).

        Issues START regardless of phase; the learned tariff limit is kept.
        """
        logger.info(
            "autopilot_rebenchmark",
            tariff_limit=str(state.learned_tariff_limit),
        )
        return AutopilotDecision(
            state.phase(now_ms, self._benchmark_window_ms), RigCommand.START, "rebenchmark"
        )
