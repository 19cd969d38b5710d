"""Tests for the per-rig control loop tick.

The legacy rig fixture draws 500 W and earns 0.2 mBTC/day. At $0.10/kWh and
$60,000/BTC its cost is 0.02 mBTC/day, a net profit of 900%.

Tests verify:
- A mining tick publishes metrics with revenue, cost and profit %
- Fetch failures and unmanaged rigs abort the tick without state changes
- A failed command is logged and metrics are still published
- Status changes are published from the second tick on
- Meters integrate across ticks; idle ticks meter energy only
- Owner commands (power, autopilot, min profitability, power mode)
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from rigpilot.autopilot.state_machine import Autopilot
from rigpilot.config import AutopilotSettings
from rigpilot.data.store import RigStateStore, StoredRigState
from rigpilot.events import EventBus, RigMetricsUpdated, RigStatusChanged
from rigpilot.exceptions import RequestFailedError
from rigpilot.market_data.algorithms import AlgorithmDirectory
from rigpilot.market_data.rate_cache import BitcoinRateCache
from rigpilot.models import CumulativeMeters, ExchangeRate, PowerMode, Tariff
from rigpilot.nicehash.client import RigApi
from rigpilot.rig.controller import RigController

MINUTE = 60_000
HOUR = 60 * MINUTE
T0 = 1_700_000_000_000


@pytest.fixture
def rig_api(legacy_payload: dict) -> AsyncMock:
    api = AsyncMock(spec=RigApi)
    api.get_rig_details.return_value = legacy_payload
    return api


@pytest.fixture
def algorithms() -> MagicMock:
    directory = MagicMock(spec=AlgorithmDirectory)
    directory.titles = {20: "DaggerHashimoto"}
    return directory


@pytest.fixture
def rate_cache() -> BitcoinRateCache:
    cache = BitcoinRateCache(http_client=AsyncMock())
    cache.set_rates({"USD": ExchangeRate("USD", Decimal("60000"), "$")})
    return cache


@pytest.fixture
def tariff() -> list[Tariff]:
    return [Tariff(cost_per_kwh=Decimal("0.10"), currency="USD")]


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def received(events: EventBus) -> list:
    seen: list = []

    async def subscriber(event) -> None:
        seen.append(event)

    events.subscribe(subscriber)
    return seen


@pytest.fixture
def controller(rig_api, algorithms, rate_cache, tariff, events) -> RigController:
    return RigController(
        rig_id="rig-1",
        name="Garage",
        rig_api=rig_api,
        algorithms=algorithms,
        rate_cache=rate_cache,
        tariff_provider=lambda: tariff[0],
        autopilot=Autopilot(AutopilotSettings()),
        events=events,
        autopilot_enabled=True,
    )


class TestMiningTick:
    @pytest.mark.asyncio
    async def test_publishes_metrics(self, controller: RigController, received: list) -> None:
        metrics = await controller.tick(T0)

        assert metrics is not None
        assert metrics.mining is True
        assert metrics.is_on is True
        assert metrics.algorithm == "DaggerHashimoto"
        assert metrics.hashrate_mh == 120.0
        assert metrics.power_w == 500.0
        assert metrics.temperature == 70.0
        assert metrics.profit_mbtc == Decimal("0.2")
        assert metrics.cost_mbtc == Decimal("0.02")
        assert metrics.profit_local == Decimal("12")
        assert metrics.cost_local == Decimal("1.2")
        assert metrics.profit_pct == 900
        assert metrics.autopilot_phase == "benchmarking"
        assert metrics.power_mode == "HIGH"
        assert controller.metrics is metrics
        assert [type(e) for e in received] == [RigMetricsUpdated]
        assert received[0].metrics is metrics

    @pytest.mark.asyncio
    async def test_no_command_while_benchmarking(self, controller: RigController, rig_api: AsyncMock) -> None:
        await controller.tick(T0)
        rig_api.set_rig_status.assert_not_awaited()
        assert controller.state.benchmark_started_at == T0
        assert controller.state.last_mined_at == T0

    @pytest.mark.asyncio
    async def test_profitable_steady_rig_learns_limit(self, controller: RigController) -> None:
        for i in range(9):
            await controller.tick(T0 + i * MINUTE)
        assert controller.metrics.autopilot_phase == "steady"
        assert controller.state.learned_tariff_limit == Decimal("0.10")

    @pytest.mark.asyncio
    async def test_unprofitable_steady_rig_is_stopped(
        self, controller: RigController, rig_api: AsyncMock, tariff: list
    ) -> None:
        # $10/kWh: 2 mBTC/day cost against 0.2 mBTC/day revenue = -90%
        tariff[0] = Tariff(cost_per_kwh=Decimal("10"), currency="USD")
        for i in range(9):
            await controller.tick(T0 + i * MINUTE)
        rig_api.set_rig_status.assert_awaited_once_with("rig-1", False)
        assert controller.state.learned_tariff_limit == Decimal("10")
        assert controller.metrics.profit_pct == -90

    @pytest.mark.asyncio
    async def test_failed_command_still_publishes_metrics(
        self, controller: RigController, rig_api: AsyncMock, tariff: list, received: list
    ) -> None:
        tariff[0] = Tariff(cost_per_kwh=Decimal("10"), currency="USD")
        rig_api.set_rig_status.side_effect = RequestFailedError(500, "nope")
        for i in range(9):
            metrics = await controller.tick(T0 + i * MINUTE)
        assert metrics is not None
        assert len([e for e in received if isinstance(e, RigMetricsUpdated)]) == 9

    @pytest.mark.asyncio
    async def test_indeterminate_profitability_never_acts(
        self, controller: RigController, rig_api: AsyncMock, tariff: list
    ) -> None:
        tariff[0] = Tariff(cost_per_kwh=None, currency="USD")
        controller.state.learned_tariff_limit = Decimal("0.10")
        for i in range(12):
            metrics = await controller.tick(T0 + i * MINUTE)
        rig_api.set_rig_status.assert_not_awaited()
        assert controller.state.learned_tariff_limit == Decimal("0.10")
        assert controller.state.benchmark_started_at is None
        assert metrics.profit_pct == 0
        assert metrics.profit_mbtc == Decimal("0.2")

    @pytest.mark.asyncio
    async def test_unknown_algorithm_requests_refresh(
        self, controller: RigController, rig_api: AsyncMock, algorithms: MagicMock, v4_payload: dict
    ) -> None:
        rig_api.get_rig_details.return_value = v4_payload
        metrics = await controller.tick(T0)
        algorithms.request_refresh.assert_called_once()
        assert metrics.algorithm == "DaggerHashimoto"


class TestAbortedTick:
    @pytest.mark.asyncio
    async def test_fetch_failure(self, controller: RigController, rig_api: AsyncMock, received: list) -> None:
        rig_api.get_rig_details.side_effect = RequestFailedError(None, "timeout")
        assert await controller.tick(T0) is None
        assert received == []
        assert controller.state.last_sync_at == T0
        assert controller.state.last_mined_at is None
        assert controller.meters == CumulativeMeters()

    @pytest.mark.asyncio
    async def test_outage_not_integrated(self, controller: RigController, rig_api: AsyncMock, legacy_payload: dict) -> None:
        await controller.tick(T0)
        rig_api.get_rig_details.side_effect = RequestFailedError(503, "down")
        await controller.tick(T0 + 5 * HOUR)
        rig_api.get_rig_details.side_effect = None
        rig_api.get_rig_details.return_value = legacy_payload
        await controller.tick(T0 + 6 * HOUR)
        # Only the last hour at 500 W is metered
        assert controller.meters.energy_kwh == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_unmanaged_rig(self, controller: RigController, rig_api: AsyncMock, received: list) -> None:
        rig_api.get_rig_details.return_value = {"type": "UNMANAGED"}
        assert await controller.tick(T0) is None
        assert received == []
        rig_api.set_rig_status.assert_not_awaited()


class TestIdleTick:
    @pytest.mark.asyncio
    async def test_idle_rig_started_without_limit(
        self, controller: RigController, rig_api: AsyncMock, idle_payload: dict
    ) -> None:
        rig_api.get_rig_details.return_value = idle_payload
        metrics = await controller.tick(T0)
        rig_api.set_rig_status.assert_awaited_once_with("rig-1", True)
        assert metrics.mining is False
        assert metrics.is_on is False
        assert metrics.autopilot_phase == "idle"
        assert metrics.profit_mbtc == Decimal("0")
        assert metrics.profit_pct == 0

    @pytest.mark.asyncio
    async def test_idle_rig_kept_off_above_limit(
        self, controller: RigController, rig_api: AsyncMock, idle_payload: dict
    ) -> None:
        controller.state.learned_tariff_limit = Decimal("0.10")
        controller.state.last_mined_at = T0 - HOUR
        rig_api.get_rig_details.return_value = idle_payload
        await controller.tick(T0)
        rig_api.set_rig_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_idle_meters_energy_only(
        self, controller: RigController, rig_api: AsyncMock, idle_payload: dict
    ) -> None:
        controller.autopilot_enabled = False
        rig_api.get_rig_details.return_value = idle_payload
        await controller.tick(T0)
        await controller.tick(T0 + HOUR)
        assert controller.meters.energy_kwh == Decimal("0.04")
        assert controller.meters.revenue_mbtc == Decimal("0")
        assert controller.meters.cost_mbtc == Decimal("0")


@pytest.mark.asyncio
async def test_meters_accumulate_while_mining(controller: RigController) -> None:
    await controller.tick(T0)
    await controller.tick(T0 + HOUR)
    assert controller.meters.energy_kwh == Decimal("0.5")
    # 0.2 mBTC/day revenue and 0.02 mBTC/day cost over 1/24 day
    assert abs(controller.meters.revenue_mbtc - Decimal("0.2") / 24) < Decimal("1e-20")
    assert abs(controller.meters.cost_mbtc - Decimal("0.02") / 24) < Decimal("1e-20")
    assert abs(controller.meters.revenue_local - Decimal("0.5")) < Decimal("1e-20")
    assert controller.metrics.meters.energy_kwh == Decimal("0.5")


@pytest.mark.asyncio
async def test_status_change_published_from_second_tick(
    controller: RigController, rig_api: AsyncMock, received: list, idle_payload: dict
) -> None:
    controller.autopilot_enabled = False
    await controller.tick(T0)
    assert not any(isinstance(e, RigStatusChanged) for e in received)

    rig_api.get_rig_details.return_value = idle_payload
    await controller.tick(T0 + MINUTE)
    changes = [e for e in received if isinstance(e, RigStatusChanged)]
    assert len(changes) == 1
    assert changes[0].previous == "MINING"
    assert changes[0].status == "STOPPED"
    assert changes[0].rig_id == "rig-1"


@pytest.mark.asyncio
async def test_is_busy_during_tick(controller: RigController, rig_api: AsyncMock, legacy_payload: dict) -> None:
    release = asyncio.Event()

    async def slow_details(rig_id: str) -> dict:
        await release.wait()
        return legacy_payload

    rig_api.get_rig_details.side_effect = slow_details
    task = asyncio.create_task(controller.tick(T0))
    await asyncio.sleep(0)
    assert controller.is_busy
    release.set()
    await task
    assert not controller.is_busy


class TestOwnerCommands:
    @pytest.mark.asyncio
    async def test_set_power(self, controller: RigController, rig_api: AsyncMock) -> None:
        await controller.set_power(False)
        rig_api.set_rig_status.assert_awaited_once_with("rig-1", False)

    @pytest.mark.asyncio
    async def test_disabling_autopilot_stops_rig(self, controller: RigController, rig_api: AsyncMock) -> None:
        await controller.set_autopilot(False)
        assert controller.autopilot_enabled is False
        rig_api.set_rig_status.assert_awaited_once_with("rig-1", False)

    @pytest.mark.asyncio
    async def test_min_profitability_change_rebenchmarks(
        self, controller: RigController, rig_api: AsyncMock
    ) -> None:
        controller.state.learned_tariff_limit = Decimal("0.12")
        await controller.set_min_profitability(Decimal("15"))
        assert controller.min_profitability == Decimal("15")
        assert controller.state.learned_tariff_limit == Decimal("0.12")
        rig_api.set_rig_status.assert_awaited_once_with("rig-1", True)

    @pytest.mark.asyncio
    async def test_set_power_mode(self, controller: RigController, rig_api: AsyncMock) -> None:
        await controller.set_power_mode(PowerMode.MEDIUM)
        rig_api.set_rig_power_mode.assert_awaited_once_with("rig-1", PowerMode.MEDIUM)

    @pytest.mark.asyncio
    async def test_command_failure_propagates(self, controller: RigController, rig_api: AsyncMock) -> None:
        rig_api.set_rig_status.side_effect = RequestFailedError(409, "conflict")
        with pytest.raises(RequestFailedError):
            await controller.set_power(True)


class TestPersistence:
    @pytest.mark.asyncio
    async def test_tick_saves_state(self, controller: RigController) -> None:
        store = AsyncMock(spec=RigStateStore)
        controller._store = store
        await controller.tick(T0)
        saved = store.save.await_args.args[0]
        assert isinstance(saved, StoredRigState)
        assert saved.rig_id == "rig-1"
        assert saved.last_mined_at == T0
        assert saved.autopilot_enabled is True

    def test_restore(self, controller: RigController) -> None:
        controller.restore(StoredRigState(
            rig_id="rig-1",
            name="Garage",
            autopilot_enabled=False,
            min_profitability=Decimal("5"),
            learned_tariff_limit=Decimal("0.2"),
            last_mined_at=T0,
            meters=CumulativeMeters(energy_kwh=Decimal("3")),
        ))
        assert controller.autopilot_enabled is False
        assert controller.min_profitability == Decimal("5")
        assert controller.state.learned_tariff_limit == Decimal("0.2")
        assert controller.state.last_mined_at == T0
        assert controller.meters.energy_kwh == Decimal("3")
