"""Per-rig control loop."""

from rigpilot.rig.controller import RigController

__all__ = ["RigController"]
