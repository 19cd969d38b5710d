"""In-process event bus for observable rig events.

The control loop publishes; the dashboard WebSocket hub (or anything else)
subscribes. A failing subscriber is logged and skipped so that one broken
consumer never aborts a rig tick.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal

from rigpilot.logging import get_logger
from rigpilot.models import RigMetrics, now_ms

logger = get_logger(__name__)


@dataclass(frozen=True)
class RigStatusChanged:
    """Provider-reported miner status differs from the previous tick."""

    rig_id: str
    name: str
    status: str | None
    previous: str | None
    at: int = field(default_factory=now_ms)

    kind = "rig_status_changed"


@dataclass(frozen=True)
class RigMetricsUpdated:
    """Fresh metrics for one rig after a tick."""

    metrics: RigMetrics
    at: int = field(default_factory=now_ms)

    kind = "rig_metrics_updated"


@dataclass(frozen=True)
class BitcoinRateChanged:
    """BTC price moved by at least the alert threshold."""

    currency: str
    previous_price: Decimal
    price: Decimal
    pct_change: Decimal
    at: int = field(default_factory=now_ms)

    kind = "btc_rate_changed"


Event = RigStatusChanged | RigMetricsUpdated | BitcoinRateChanged
Subscriber = Callable[[Event], Awaitable[None]]


class EventBus:
    """Fan-out of events to async subscribers, in subscription order."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def publish(self, event: Event) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber(event)
            except Exception:
                logger.warning("event_subscriber_failed", event=event.kind, exc_info=True)
