"""Configuration system using pydantic-settings with environment variable loading."""

from dataclasses import dataclass
from decimal import Decimal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class NiceHashSettings(BaseSettings):
    """NiceHash API v2 connection settings."""

    model_config = SettingsConfigDict(env_prefix="NICEHASH_")

    api_host: str = "https://api2.nicehash.com"
    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    org_id: str = ""
    locale: str = "en"
    request_timeout: float = 10.0
    rig_ids: list[str] = []  # empty = discover every managed rig on the account


class TariffSettings(BaseSettings):
    """Electricity tariff used for the power cost side of profitability."""

    model_config = SettingsConfigDict(env_prefix="TARIFF_")

    cost_per_kwh: Decimal | None = None  # unset = profitability is indeterminate
    currency: str = "USD"


class AutopilotSettings(BaseSettings):
    """Autopilot start/stop parameters.

    The defaults reproduce the behaviour NiceHash rig owners are used to:
    a 7-tick EMA, a 7-minute benchmark window and a 7-hour forced re-benchmark.
    All fields configurable via AUTOPILOT_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="AUTOPILOT_")

    enabled: bool = False  # default for newly added rigs
    min_profitability: Decimal = Decimal("0")  # net profit % below which a rig stops
    smoothing_window: int = 7  # EMA window in polling ticks
    benchmark_minutes: int = 7
    rebenchmark_hours: int = 7
    poll_interval: float = 60.0  # seconds between rig detail syncs
    algorithm_refresh_interval: float = 3600.0


class RateSettings(BaseSettings):
    """Bitcoin exchange rate polling and price-change alerts."""

    model_config = SettingsConfigDict(env_prefix="RATE_")

    ticker_url: str = "https://blockchain.info/ticker"
    refresh_interval: float = 900.0  # 15 minutes
    watch_interval: float = 13.0
    change_alert_pct: Decimal = Decimal("5")


class StorageSettings(BaseSettings):
    """Per-rig state persistence (learned tariff limit, cumulative meters)."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    enabled: bool = True
    db_path: str = "data/rigpilot.db"


class DashboardSettings(BaseSettings):
    """Dashboard server configuration."""

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True
    update_interval: int = 7  # seconds between fleet summary pushes


@dataclass
class RuntimeConfig:
    """Mutable runtime config overlay. Non-None fields override BaseSettings values.

    Used by the dashboard to change the tariff without restarting.
    Read by the orchestrator every time a rig tick asks for the current tariff.
    """

    cost_per_kwh: Decimal | None = None
    currency: str | None = None


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    nicehash: NiceHashSettings = NiceHashSettings()
    tariff: TariffSettings = TariffSettings()
    autopilot: AutopilotSettings = AutopilotSettings()
    rate: RateSettings = RateSettings()
    storage: StorageSettings = StorageSettings()
    dashboard: DashboardSettings = DashboardSettings()
