"""Autopilot start/stop decision engine."""

from rigpilot.autopilot.state_machine import (
    Autopilot,
    AutopilotDecision,
    AutopilotPhase,
    AutopilotState,
    RigCommand,
)

__all__ = ["Autopilot", "AutopilotDecision", "AutopilotPhase", "AutopilotState", "RigCommand"]
