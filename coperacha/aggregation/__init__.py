"""
Financial aggregation package.

Merges record-store membership with live ledger reads into balance,
contribution and proposal views.
"""

from coperacha.aggregation.aggregator import FinancialAggregator, NotRegisteredError
from coperacha.aggregation.conversions import amount_to_wei, time_since
from coperacha.aggregation.rates import ExchangeRateService

__all__ = [
    "ExchangeRateService",
    "FinancialAggregator",
    "NotRegisteredError",
    "amount_to_wei",
    "time_since",
]
