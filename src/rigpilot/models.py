"""Shared data models for the rig autopilot.

Monetary values (tariffs, BTC amounts, exchange rates, costs) use Decimal.
Physical telemetry (watts, MH/s, degrees, load) stays float as reported by the rig.
Timestamps are Unix milliseconds throughout, matching the NiceHash API.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


def now_ms() -> int:
    """Current wall-clock time in Unix milliseconds."""
    return int(time.time() * 1000)


class MinerStatus(str, Enum):
    """Rig-level status as reported by NiceHash (``minerStatus``)."""

    MINING = "MINING"
    BENCHMARKING = "BENCHMARKING"
    STOPPED = "STOPPED"
    OFFLINE = "OFFLINE"
    PENDING = "PENDING"
    ERROR = "ERROR"
    DISABLED = "DISABLED"
    UNKNOWN = "UNKNOWN"


class PowerMode(str, Enum):
    """Rig power mode, controls GPU power limits."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class MetricsSnapshot:
    """Normalized telemetry for one rig at one tick. Immutable once produced."""

    power_usage_w: float
    hashrate_mh: float
    algorithms: tuple[str, ...]
    max_temperature: float
    load: float
    mining_devices: int
    daily_revenue_btc: Decimal
    miner_status: str | None = None
    power_mode: str | None = None
    unknown_algorithm_ids: tuple[int, ...] = ()

    @property
    def algorithm_label(self) -> str:
        """Comma-separated algorithm titles, or '-' when none are known."""
        return ", ".join(self.algorithms) or "-"

    @property
    def is_mining(self) -> bool:
        return self.mining_devices > 0


@dataclass(frozen=True)
class ExchangeRate:
    """BTC price in one local currency."""

    currency: str
    instant_price: Decimal
    symbol: str

    @property
    def mbtc_price(self) -> Decimal:
        """Local currency units per mBTC."""
        return self.instant_price / Decimal("1000")


@dataclass(frozen=True)
class Tariff:
    """Electricity price. ``cost_per_kwh`` is None when the owner has not set one."""

    cost_per_kwh: Decimal | None
    currency: str = "USD"


@dataclass
class CumulativeMeters:
    """Running totals for one rig. Only ever increase."""

    energy_kwh: Decimal = Decimal("0")
    revenue_mbtc: Decimal = Decimal("0")
    cost_mbtc: Decimal = Decimal("0")
    revenue_local: Decimal = Decimal("0")
    cost_local: Decimal = Decimal("0")


@dataclass
class RigSummary:
    """A rig as listed on the account (``/mining/rigs2``)."""

    rig_id: str
    name: str
    rig_type: str | None = None


@dataclass
class RigMetrics:
    """Observable per-rig metrics published after every tick.

    Mirrors what the rig exposes to the outside world: live readings,
    profitability, autopilot state and cumulative meters.
    """

    rig_id: str
    name: str
    status: str | None = None
    power_mode: str | None = None
    is_on: bool = False
    mining: bool = False
    algorithm: str = "-"
    hashrate_mh: float = 0.0
    power_w: float = 0.0
    temperature: float = 0.0
    load: float = 0.0
    profit_mbtc: Decimal = Decimal("0")
    profit_local: Decimal = Decimal("0")
    cost_mbtc: Decimal = Decimal("0")
    cost_local: Decimal = Decimal("0")
    profit_pct: int = 0
    autopilot_enabled: bool = False
    autopilot_phase: str = "idle"
    min_profitability: Decimal = Decimal("0")
    rolling_profit_pct: Decimal = Decimal("0")
    tariff_limit: Decimal | None = None
    meters: CumulativeMeters = field(default_factory=CumulativeMeters)
    updated_at: int = field(default_factory=now_ms)
