"""Profitability evaluation and cumulative metering."""

from rigpilot.profitability.engine import ProfitabilityResult, evaluate
from rigpilot.profitability.meters import MeterAccumulator

__all__ = ["MeterAccumulator", "ProfitabilityResult", "evaluate"]
