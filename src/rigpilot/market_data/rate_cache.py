"""Bitcoin exchange rate cache -- polls the blockchain.info ticker.

The ticker returns one entry per currency:
    {"USD": {"15m": 65000.1, "last": 65000.1, "buy": ..., "sell": ..., "symbol": "USD"}, ...}

Failures are logged and swallowed: profitability keeps using the last known
rate, which is acceptable since a rate moves little between polls.
"""

import asyncio
from decimal import Decimal, InvalidOperation

import httpx

from rigpilot.logging import get_logger
from rigpilot.models import ExchangeRate, now_ms

logger = get_logger(__name__)


class BitcoinRateCache:
    """Periodically refreshed BTC price per currency.

    ``get_rate`` is a plain dict read, safe to call from any rig tick while a
    refresh is in flight (a refresh swaps the whole mapping at once).
    """

    def __init__(
        self,
        ticker_url: str = "https://blockchain.info/ticker",
        refresh_interval: float = 900.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._ticker_url = ticker_url
        self._refresh_interval = refresh_interval
        self._client = http_client or httpx.AsyncClient(timeout=10.0)
        self._rates: dict[str, ExchangeRate] = {}
        self._updated_at: int | None = None
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    async def start(self) -> None:
        """Begin refreshing rates in the background."""
        if self._running:
            logger.warning("rate_cache_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info("rate_cache_started", refresh_interval=self._refresh_interval)

    async def stop(self) -> None:
        """Stop refreshing and release the HTTP client."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._client.aclose()
        logger.info("rate_cache_stopped")

    async def _refresh_loop(self) -> None:
        while self._running:
            await self.refresh()
            if self._running:
                await asyncio.sleep(self._refresh_interval)

    async def refresh(self) -> bool:
        """Fetch the ticker once. Returns True if the cache was updated."""
        try:
            response = await self._client.get(self._ticker_url)
            response.raise_for_status()
            ticker = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("rate_refresh_failed", url=self._ticker_url, error=str(e))
            return False

        rates = self.parse_ticker(ticker)
        if not rates:
            logger.warning("rate_refresh_empty", url=self._ticker_url)
            return False

        self._rates = rates
        self._updated_at = now_ms()
        logger.debug("rates_updated", currencies=len(rates))
        return True

    @staticmethod
    def parse_ticker(ticker: object) -> dict[str, ExchangeRate]:
        """Convert a raw ticker payload into ``ExchangeRate`` objects."""
        rates: dict[str, ExchangeRate] = {}
        if not isinstance(ticker, dict):
            return rates
        for currency, entry in ticker.items():
            if not isinstance(entry, dict):
                continue
            raw_price = entry.get("15m", entry.get("last"))
            if raw_price is None:
                continue
            try:
                price = Decimal(str(raw_price))
            except InvalidOperation:
                logger.warning("invalid_rate", currency=currency, raw=raw_price)
                continue
            rates[currency] = ExchangeRate(
                currency=currency,
                instant_price=price,
                symbol=str(entry.get("symbol") or currency),
            )
        return rates

    def get_rate(self, currency: str) -> ExchangeRate | None:
        """Return the cached rate for a currency, or None if unknown. Never raises."""
        return self._rates.get(currency)

    def set_rates(self, rates: dict[str, ExchangeRate]) -> None:
        """Replace the cached rates (used when rates come from elsewhere, e.g. tests)."""
        self._rates = dict(rates)
        self._updated_at = now_ms()

    @property
    def updated_at(self) -> int | None:
        return self._updated_at
