"""BTC price change watcher.

Every ``watch_interval`` seconds, compares the cached rate for the tariff
currency with the last rate it alerted on. When the move reaches the
threshold, publishes a ``BitcoinRateChanged`` event and adopts the new rate as
the reference, so a slow drift still alerts once per threshold step.
"""

import asyncio
from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal

from rigpilot.events import BitcoinRateChanged, EventBus
from rigpilot.logging import get_logger
from rigpilot.market_data.rate_cache import BitcoinRateCache
from rigpilot.models import ExchangeRate

logger = get_logger(__name__)


class PriceWatcher:
    """Alerts on large BTC price moves in the tariff currency.

    Args:
        rate_cache: Source of current rates (read-only).
        events: Where change alerts are published.
        currency_provider: Returns the currency to watch (follows the tariff).
        threshold_pct: Absolute % move that triggers an alert.
        interval: Seconds between checks.
    """

    def __init__(
        self,
        rate_cache: BitcoinRateCache,
        events: EventBus,
        currency_provider: Callable[[], str],
        threshold_pct: Decimal = Decimal("5"),
        interval: float = 13.0,
    ) -> None:
        self._rate_cache = rate_cache
        self._events = events
        self._currency_provider = currency_provider
        self._threshold_pct = threshold_pct
        self._interval = interval
        self._reference: ExchangeRate | None = None
        self._current: ExchangeRate | None = None
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    async def start(self) -> None:
        if self._running:
            logger.warning("price_watcher_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._watch_loop())
        logger.info("price_watcher_started", interval=self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("price_watcher_stopped")

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("price_watch_error", exc_info=True)
            if self._running:
                await asyncio.sleep(self._interval)

    async def check(self) -> BitcoinRateChanged | None:
        """Compare the current rate with the reference; publish on a large move."""
        currency = self._currency_provider()
        rate = self._rate_cache.get_rate(currency)
        self._current = rate
        if rate is None:
            return None

        reference = self._reference
        if reference is None or reference.currency != currency or reference.instant_price <= 0:
            self._reference = rate
            return None

        change = (rate.instant_price - reference.instant_price) / reference.instant_price * 100
        if abs(change) < self._threshold_pct:
            return None

        event = BitcoinRateChanged(
            currency=currency,
            previous_price=reference.instant_price,
            price=rate.instant_price,
            pct_change=change.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
        )
        logger.info(
            "btc_price_changed",
            currency=currency,
            previous_price=str(reference.instant_price),
            price=str(rate.instant_price),
            pct_change=str(event.pct_change),
        )
        self._reference = rate
        await self._events.publish(event)
        return event

    @property
    def current(self) -> ExchangeRate | None:
        """Rate seen at the last check."""
        return self._current
