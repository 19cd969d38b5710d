"""Device telemetry shapes found in NiceHash rig-details payloads.

A rig can report "legacy" devices (``devices``), "v4" devices
(``v4.devices``), or both at once. Each shape is parsed into its own
dataclass; together they form the ``Device`` union consumed by the normalizer.
"""

import re
from dataclasses import dataclass, field
from typing import Any

_NUMBER_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")

INACTIVE_STATUSES = frozenset({"DISABLED", "OFFLINE"})


def parse_number(value: Any) -> float:
    """Parse a leading number from telemetry values like ``"120.5"`` or ``"65 °C"``.

    Returns 0.0 when no number can be read.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.match(value)
        if match:
            return float(match.group(1))
    return 0.0


def _status_name(raw: Any) -> str | None:
    if isinstance(raw, dict):
        raw = raw.get("enumName")
    return str(raw).upper() if raw else None


@dataclass(frozen=True)
class SpeedReading:
    """One legacy algorithm speed with its display unit."""

    algorithm: str
    value: float
    unit: str


@dataclass(frozen=True)
class LegacyDevice:
    """A device from the legacy ``devices`` list."""

    status: str | None
    temperature: float
    power_usage_w: float
    load: float
    speeds: tuple[SpeedReading, ...] = ()

    kind = "legacy"

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def is_mining(self) -> bool:
        return self.status == "MINING"


@dataclass(frozen=True)
class AlgorithmReading:
    """One v4 algorithm speed, always in raw H/s."""

    algorithm_id: int
    speed_hs: float


@dataclass(frozen=True)
class V4Device:
    """A device from the ``v4.devices`` list.

    Metrics arrive as labelled key/value pairs (``odv``); only the ones the
    autopilot needs are kept.
    """

    status: str | None
    readings: tuple[AlgorithmReading, ...] = ()
    metrics: dict[str, float] = field(default_factory=dict)

    kind = "v4"

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def power_usage_w(self) -> float:
        return self.metrics.get("Power usage", 0.0)

    @property
    def temperature(self) -> float:
        return self.metrics.get("Temperature", 0.0)

    @property
    def load(self) -> float:
        return self.metrics.get("Load", 0.0)


Device = LegacyDevice | V4Device


def _parse_legacy(raw: dict) -> LegacyDevice:
    speeds = tuple(
        SpeedReading(
            algorithm=str(speed.get("title") or ""),
            value=parse_number(speed.get("speed")),
            unit=str(speed.get("displaySuffix") or "MH"),
        )
        for speed in raw.get("speeds") or []
    )
    return LegacyDevice(
        status=_status_name(raw.get("status")),
        temperature=parse_number(raw.get("temperature")),
        power_usage_w=parse_number(raw.get("powerUsage")),
        load=parse_number(raw.get("load")),
        speeds=speeds,
    )


def _parse_v4(raw: dict) -> V4Device:
    mdv = raw.get("mdv") or {}
    readings = []
    for algo in mdv.get("algorithmsSpeed") or []:
        try:
            algorithm_id = int(algo["algorithm"])
        except (KeyError, TypeError, ValueError):
            continue
        readings.append(AlgorithmReading(algorithm_id, parse_number(algo.get("speed"))))

    metrics: dict[str, float] = {}
    for keypair in raw.get("odv") or []:
        key = keypair.get("key")
        if key in ("Power usage", "Temperature", "Load"):
            metrics[key] = parse_number(keypair.get("value"))

    status = raw.get("status")
    if status is None:
        status = (raw.get("dsv") or {}).get("status")
    return V4Device(status=_status_name(status), readings=tuple(readings), metrics=metrics)


def parse_devices(payload: dict) -> list[Device]:
    """Extract every device from a rig-details payload, legacy ones first."""
    devices: list[Device] = [_parse_legacy(raw) for raw in payload.get("devices") or []]
    v4 = payload.get("v4") or {}
    if payload.get("hasV4Rigs") or v4.get("devices"):
        devices.extend(_parse_v4(raw) for raw in v4.get("devices") or [])
    return devices
