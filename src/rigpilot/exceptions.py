"""Custom exceptions for the rig autopilot.

All API-layer and control-loop exceptions live here
to avoid circular imports between modules.
"""


class RigPilotError(Exception):
    """Base exception for all rigpilot errors."""


class NotSyncedError(RigPilotError):
    """Raised when an authenticated call is attempted before server time sync."""


class RequestFailedError(RigPilotError):
    """Raised when the remote API rejects a request or the network fails.

    ``status`` is the HTTP status code, or None when no response was received.
    """

    def __init__(self, status: int | None, body: str) -> None:
        super().__init__(f"request failed (status={status}): {body[:200]}")
        self.status = status
        self.body = body


class NotManagedError(RigPilotError):
    """Raised when a rig payload carries no usable telemetry (unmanaged rig)."""


class IndeterminateProfitabilityError(RigPilotError):
    """Raised when net profitability cannot be computed (no tariff, rate or cost)."""
