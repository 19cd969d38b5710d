"""Per-tick profitability evaluation.

Revenue comes from NiceHash in BTC/day; power cost comes from the tariff in
local currency/day. Both are expressed in mBTC/day so that net profitability
can be stated as a percentage of cost:

    profit_pct = round((revenue_mbtc - cost_mbtc) / cost_mbtc * 100)

The percentage is only defined when cost is positive. When the tariff or the
exchange rate is missing the result is indeterminate, and the autopilot must
not act on it.

Tiny but positive costs produce very large percentages; no clamping is applied.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from rigpilot.exceptions import IndeterminateProfitabilityError
from rigpilot.models import ExchangeRate, MetricsSnapshot, Tariff

_MBTC_PER_BTC = Decimal("1000")
_HOURS_PER_DAY = Decimal("24")
_W_PER_KW = Decimal("1000")


@dataclass(frozen=True)
class ProfitabilityResult:
    """Revenue, cost and net profitability for one tick.

    ``None`` marks a value that could not be computed this tick.
    """

    revenue_mbtc: Decimal
    revenue_local: Decimal | None
    cost_local: Decimal | None
    cost_mbtc: Decimal | None
    mbtc_price: Decimal | None  # local currency per mBTC
    profit_pct: int | None

    @property
    def is_determinate(self) -> bool:
        return self.profit_pct is not None

    def require_profit_pct(self) -> int:
        """Return the net profit percentage.

        Raises:
            IndeterminateProfitabilityError: If cost is zero or tariff/rate is missing.
        """
        if self.profit_pct is None:
            raise IndeterminateProfitabilityError(
                f"cost_mbtc={self.cost_mbtc} mbtc_price={self.mbtc_price}"
            )
        return self.profit_pct


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def daily_power_cost(tariff_per_kwh: Decimal, power_usage_w: float) -> Decimal:
    """Local-currency cost of running ``power_usage_w`` for 24 hours."""
    return tariff_per_kwh * Decimal(str(power_usage_w)) / _W_PER_KW * _HOURS_PER_DAY


def evaluate(
    snapshot: MetricsSnapshot,
    daily_revenue_btc: Decimal,
    tariff: Tariff,
    rate: ExchangeRate | None,
) -> ProfitabilityResult:
    """Derive revenue, cost and net profit percentage for a snapshot.

    Args:
        snapshot: Normalized telemetry for this tick.
        daily_revenue_btc: Provider-reported revenue in BTC/day.
        tariff: Current electricity tariff.
        rate: BTC price in the tariff currency, or None if not known yet.

    Returns:
        A ``ProfitabilityResult``; fields that cannot be computed are None.
    """
    revenue_mbtc = daily_revenue_btc * _MBTC_PER_BTC
    if snapshot.mining_devices == 0 or snapshot.hashrate_mh == 0:
        # Online but idle or waiting for a job: idle time earns nothing.
        revenue_mbtc = Decimal("0")

    mbtc_price: Decimal | None = None
    if rate is not None and rate.instant_price > 0:
        mbtc_price = rate.mbtc_price

    revenue_local = revenue_mbtc * mbtc_price if mbtc_price is not None else None

    cost_local: Decimal | None = None
    if tariff.cost_per_kwh is not None:
        cost_local = daily_power_cost(tariff.cost_per_kwh, snapshot.power_usage_w)

    cost_mbtc: Decimal | None = None
    if cost_local is not None and mbtc_price is not None:
        cost_mbtc = cost_local / mbtc_price

    profit_pct: int | None = None
    if cost_mbtc is not None and cost_mbtc > 0:
        profit_pct = round_half_up((revenue_mbtc - cost_mbtc) / cost_mbtc * 100)

    return ProfitabilityResult(
        revenue_mbtc=revenue_mbtc,
        revenue_local=revenue_local,
        cost_local=cost_local,
        cost_mbtc=cost_mbtc,
        mbtc_price=mbtc_price,
        profit_pct=profit_pct,
    )
