"""Market data layer -- BTC exchange rates, price alerts and the algorithm directory."""

from rigpilot.market_data.algorithms import AlgorithmDirectory
from rigpilot.market_data.price_watch import PriceWatcher
from rigpilot.market_data.rate_cache import BitcoinRateCache

__all__ = ["AlgorithmDirectory", "BitcoinRateCache", "PriceWatcher"]
