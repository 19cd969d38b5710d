"""Rig telemetry parsing and normalization."""

from rigpilot.telemetry.devices import LegacyDevice, V4Device, parse_devices
from rigpilot.telemetry.normalizer import normalize, to_megahashes

__all__ = ["LegacyDevice", "V4Device", "normalize", "parse_devices", "to_megahashes"]
