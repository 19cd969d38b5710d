"""Tests for cumulative energy/revenue/cost metering."""

from decimal import Decimal

from rigpilot.models import CumulativeMeters
from rigpilot.profitability.meters import MeterAccumulator

HOUR_MS = 3_600_000
T0 = 1_700_000_000_000


def test_one_hour_at_1000w_is_one_kwh() -> None:
    meters = CumulativeMeters()
    elapsed = MeterAccumulator().accumulate(
        meters, T0, T0 + HOUR_MS, 1000.0, Decimal("0"), Decimal("0"), None
    )
    assert elapsed == Decimal("1")
    assert meters.energy_kwh == Decimal("1.0")


def test_first_tick_adds_nothing() -> None:
    meters = CumulativeMeters()
    elapsed = MeterAccumulator().accumulate(
        meters, None, T0, 1000.0, Decimal("24"), Decimal("24"), Decimal("60")
    )
    assert elapsed == Decimal("0")
    assert meters == CumulativeMeters()


def test_clock_going_backwards_adds_nothing() -> None:
    meters = CumulativeMeters()
    MeterAccumulator().accumulate(meters, T0, T0 - 1, 1000.0, Decimal("24"), Decimal("24"), None)
    assert meters == CumulativeMeters()


def test_revenue_and_cost_prorated_per_day() -> None:
    meters = CumulativeMeters()
    # 24 mBTC/day revenue, 12 mBTC/day cost, for 6 hours at $60/mBTC
    MeterAccumulator().accumulate(
        meters, T0, T0 + 6 * HOUR_MS, 500.0, Decimal("24"), Decimal("12"), Decimal("60")
    )
    assert meters.energy_kwh == Decimal("3")
    assert meters.revenue_mbtc == Decimal("6")
    assert meters.cost_mbtc == Decimal("3")
    assert meters.revenue_local == Decimal("360")
    assert meters.cost_local == Decimal("180")


def test_local_totals_priced_at_accumulation_time() -> None:
    meters = CumulativeMeters()
    acc = MeterAccumulator()
    acc.accumulate(meters, T0, T0 + 24 * HOUR_MS, 0.0, Decimal("1"), Decimal("0"), Decimal("60"))
    acc.accumulate(meters, T0 + 24 * HOUR_MS, T0 + 48 * HOUR_MS, 0.0, Decimal("1"), Decimal("0"), Decimal("30"))
    assert meters.revenue_mbtc == Decimal("2")
    assert meters.revenue_local == Decimal("90")


def test_unknown_price_skips_local_totals() -> None:
    meters = CumulativeMeters()
    MeterAccumulator().accumulate(
        meters, T0, T0 + 24 * HOUR_MS, 100.0, Decimal("1"), None, None
    )
    assert meters.revenue_mbtc == Decimal("1")
    assert meters.cost_mbtc == Decimal("0")
    assert meters.revenue_local == Decimal("0")


def test_totals_never_decrease() -> None:
    meters = CumulativeMeters()
    acc = MeterAccumulator()
    acc.accumulate(meters, T0, T0 + HOUR_MS, 100.0, Decimal("24"), Decimal("24"), Decimal("1"))
    before = CumulativeMeters(**vars(meters))
    acc.accumulate(meters, T0 + HOUR_MS, T0 + 2 * HOUR_MS, -50.0, Decimal("-5"), Decimal("-5"), Decimal("1"))
    assert meters.energy_kwh >= before.energy_kwh
    assert meters.revenue_mbtc >= before.revenue_mbtc
    assert meters.cost_mbtc >= before.cost_mbtc
    assert meters.revenue_local >= before.revenue_local
