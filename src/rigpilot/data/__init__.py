"""Rig state persistence layer."""

from rigpilot.data.database import StateDatabase
from rigpilot.data.store import RigStateStore, StoredRigState

__all__ = ["RigStateStore", "StateDatabase", "StoredRigState"]
