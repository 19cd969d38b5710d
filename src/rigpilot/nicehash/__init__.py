"""NiceHash API layer -- request signing, time-synced transport and rig client."""

from rigpilot.nicehash.api import NiceHashApi
from rigpilot.nicehash.client import NiceHashClient, RigApi
from rigpilot.nicehash.signing import create_nonce, sign

__all__ = ["NiceHashApi", "NiceHashClient", "RigApi", "create_nonce", "sign"]
