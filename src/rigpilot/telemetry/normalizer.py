"""Rig telemetry normalization.

Folds every device of a rig-details payload into one ``MetricsSnapshot``:
power and load are summed, temperature is the maximum, and every hashrate is
converted to MH/s so that rigs mixing algorithms and units stay comparable.
"""

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation

from rigpilot.exceptions import NotManagedError
from rigpilot.logging import get_logger
from rigpilot.models import MetricsSnapshot
from rigpilot.telemetry.devices import Device, LegacyDevice, V4Device, parse_devices

logger = get_logger(__name__)

#: Multiplier from each display unit to MH (10^6 hashes per second).
UNIT_TO_MH: dict[str, float] = {
    "H": 1 / 1_000_000,
    "kH": 1 / 1_000,
    "MH": 1.0,
    "GH": 1_000.0,
    "TH": 1_000_000.0,
    "PH": 1_000_000_000.0,
    "EH": 1_000_000_000_000.0,
}

_DIVISORS = {"H": 1_000_000, "kH": 1_000}


def to_megahashes(value: float, unit: str) -> float:
    """Convert a hashrate reading to MH/s.

    Sub-MH units are divided rather than multiplied by a fraction so that
    e.g. ``to_megahashes(1_000_000, "H")`` is exactly 1.0.

    Raises:
        ValueError: If ``unit`` is not one of H, kH, MH, GH, TH, PH, EH.
    """
    if unit in _DIVISORS:
        return value / _DIVISORS[unit]
    try:
        return value * UNIT_TO_MH[unit]
    except KeyError:
        raise ValueError(f"Unknown hashrate unit: {unit!r}") from None


def _daily_revenue(payload: dict) -> Decimal:
    raw = payload.get("profitability")
    if raw is None:
        return Decimal("0")
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        logger.warning("invalid_rig_profitability", raw=raw)
        return Decimal("0")


def normalize(payload: dict | None, algorithm_titles: Mapping[int, str]) -> MetricsSnapshot:
    """Normalize a raw rig-details payload into a ``MetricsSnapshot``.

    Args:
        payload: Raw ``/mining/rig2/{rigId}`` response.
        algorithm_titles: Algorithm id -> title lookup for v4 devices. May be
            stale or empty; unknown ids are reported, never fatal.

    Raises:
        NotManagedError: If the rig is unmanaged, untyped, or carries no device
            list at all. An empty list is a managed rig with nothing running.
    """
    if not payload or not payload.get("type") or payload.get("type") == "UNMANAGED":
        raise NotManagedError(f"rig type is {payload.get('type') if payload else None!r}")

    if payload.get("devices") is None and not payload.get("hasV4Rigs"):
        raise NotManagedError("rig reports no device telemetry")
    devices: list[Device] = parse_devices(payload)

    power = 0.0
    hashrate = 0.0
    temperature = 0.0
    load = 0.0
    mining = 0
    algorithms: list[str] = []
    unknown_ids: list[int] = []

    def add_label(title: str) -> None:
        if title and title not in algorithms:
            algorithms.append(title)

    for device in devices:
        if not device.is_active:
            continue

        power += device.power_usage_w
        load += device.load
        temperature = max(temperature, device.temperature)

        if isinstance(device, LegacyDevice):
            if not device.is_mining:
                continue
            mining += 1
            for speed in device.speeds:
                add_label(speed.algorithm)
                try:
                    hashrate += to_megahashes(speed.value, speed.unit)
                except ValueError:
                    logger.warning("unknown_hashrate_unit", unit=speed.unit, algorithm=speed.algorithm)
                    hashrate += speed.value
        elif isinstance(device, V4Device):
            for reading in device.readings:
                title = algorithm_titles.get(reading.algorithm_id)
                if title:
                    add_label(title)
                elif reading.algorithm_id not in unknown_ids:
                    unknown_ids.append(reading.algorithm_id)
                rate = to_megahashes(reading.speed_hs, "H")
                if rate > 0:
                    mining += 1
                hashrate += rate

    return MetricsSnapshot(
        power_usage_w=power,
        hashrate_mh=hashrate,
        algorithms=tuple(algorithms),
        max_temperature=temperature,
        load=load,
        mining_devices=mining,
        daily_revenue_btc=_daily_revenue(payload),
        miner_status=payload.get("minerStatus"),
        power_mode=payload.get("rigPowerMode"),
        unknown_algorithm_ids=tuple(unknown_ids),
    )
