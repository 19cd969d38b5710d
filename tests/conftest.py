"""Shared test fixtures for the rig autopilot."""

from decimal import Decimal

import pytest

from rigpilot.config import (
    AppSettings,
    AutopilotSettings,
    DashboardSettings,
    NiceHashSettings,
    StorageSettings,
    TariffSettings,
)


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (dummy API keys, $0.10/kWh, no storage)."""
    return AppSettings(
        log_level="DEBUG",
        nicehash=NiceHashSettings(
            api_key="test-api-key",  # type: ignore[arg-type]
            api_secret="test-api-secret",  # type: ignore[arg-type]
            org_id="test-org",
            rig_ids=["rig-1"],
        ),
        tariff=TariffSettings(cost_per_kwh=Decimal("0.10"), currency="USD"),
        autopilot=AutopilotSettings(enabled=True),
        storage=StorageSettings(enabled=False),
        dashboard=DashboardSettings(enabled=False),
    )


@pytest.fixture
def legacy_payload() -> dict:
    """Rig details with two mining legacy GPUs and one disabled one."""
    return {
        "rigId": "rig-1",
        "name": "Garage",
        "type": "MANAGED",
        "minerStatus": "MINING",
        "rigPowerMode": "HIGH",
        "profitability": 0.0002,
        "devices": [
            {
                "status": {"enumName": "MINING"},
                "temperature": 65,
                "powerUsage": 250,
                "load": 100,
                "speeds": [{"title": "DaggerHashimoto", "speed": "60.5", "displaySuffix": "MH"}],
            },
            {
                "status": {"enumName": "MINING"},
                "temperature": "70 °C",
                "powerUsage": "250",
                "load": 100,
                "speeds": [{"title": "DaggerHashimoto", "speed": "59.5", "displaySuffix": "MH"}],
            },
            {
                "status": {"enumName": "DISABLED"},
                "temperature": 30,
                "powerUsage": 10,
                "load": 0,
                "speeds": [],
            },
        ],
    }


@pytest.fixture
def v4_payload() -> dict:
    """Rig details in the v4 shape: algorithm ids and raw H/s."""
    return {
        "rigId": "rig-2",
        "name": "Basement",
        "type": "MANAGED",
        "minerStatus": "MINING",
        "hasV4Rigs": True,
        "profitability": "0.0001",
        "v4": {
            "devices": [
                {
                    "mdv": {"algorithmsSpeed": [{"algorithm": 20, "speed": "2000000"}]},
                    "odv": [
                        {"key": "Power usage", "value": "300"},
                        {"key": "Temperature", "value": "61"},
                        {"key": "Load", "value": "98"},
                    ],
                },
                {
                    "mdv": {"algorithmsSpeed": [{"algorithm": 99, "speed": "0"}]},
                    "odv": [
                        {"key": "Power usage", "value": "20"},
                        {"key": "Temperature", "value": "40"},
                    ],
                },
            ]
        },
    }


@pytest.fixture
def idle_payload() -> dict:
    """Rig details of a stopped rig drawing idle power."""
    return {
        "rigId": "rig-1",
        "name": "Garage",
        "type": "MANAGED",
        "minerStatus": "STOPPED",
        "profitability": 0,
        "devices": [
            {
                "status": {"enumName": "INACTIVE"},
                "temperature": 35,
                "powerUsage": 40,
                "load": 0,
                "speeds": [],
            },
        ],
    }
