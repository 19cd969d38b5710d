"""Cumulative energy, revenue and cost metering.

Integrates the instantaneous readings of each tick over the wall-clock time
since the previous tick. Local-currency totals are priced at accumulation
time and never recomputed when the exchange rate moves later.
"""

from decimal import Decimal

from rigpilot.logging import get_logger
from rigpilot.models import CumulativeMeters

logger = get_logger(__name__)

_MS_PER_HOUR = Decimal("3600000")
_HOURS_PER_DAY = Decimal("24")
_W_PER_KW = Decimal("1000")


class MeterAccumulator:
    """Adds one tick's worth of energy, revenue and cost to a rig's meters."""

    def accumulate(
        self,
        meters: CumulativeMeters,
        last_sync_at: int | None,
        now_ms: int,
        power_usage_w: float,
        revenue_mbtc_per_day: Decimal,
        cost_mbtc_per_day: Decimal | None,
        mbtc_price: Decimal | None,
    ) -> Decimal:
        """Integrate readings over ``now_ms - last_sync_at`` into ``meters``.

        Nothing is added on the very first tick (``last_sync_at`` is None) or
        when the clock went backwards.

        Args:
            meters: Running totals, mutated in place.
            last_sync_at: Timestamp of the previous tick, or None.
            now_ms: Timestamp of this tick.
            power_usage_w: Current power draw.
            revenue_mbtc_per_day: Current revenue rate.
            cost_mbtc_per_day: Current cost rate, None if unknown.
            mbtc_price: Local currency per mBTC, None if unknown.

        Returns:
            Elapsed hours that were integrated (0 when nothing was added).
        """
        if last_sync_at is None or now_ms <= last_sync_at:
            return Decimal("0")

        elapsed_hours = Decimal(now_ms - last_sync_at) / _MS_PER_HOUR
        elapsed_days = elapsed_hours / _HOURS_PER_DAY

        energy_add = Decimal(str(power_usage_w)) / _W_PER_KW * elapsed_hours
        revenue_add = max(revenue_mbtc_per_day, Decimal("0")) * elapsed_days
        cost_add = max(cost_mbtc_per_day or Decimal("0"), Decimal("0")) * elapsed_days

        meters.energy_kwh += max(energy_add, Decimal("0"))
        meters.revenue_mbtc += revenue_add
        meters.cost_mbtc += cost_add
        if mbtc_price is not None:
            meters.revenue_local += revenue_add * mbtc_price
            meters.cost_local += cost_add * mbtc_price

        logger.debug(
            "meters_accumulated",
            elapsed_hours=str(elapsed_hours),
            energy_add_kwh=str(energy_add),
            revenue_add_mbtc=str(revenue_add),
            cost_add_mbtc=str(cost_add),
            energy_kwh=str(meters.energy_kwh),
        )
        return elapsed_hours
