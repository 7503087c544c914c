"""Exchange rates: provider client and rate storage."""

from fesync.fx.client import ExchangeRatesClient, MockRateProviderClient, RateProviderClient
from fesync.fx.store import create_rates, find_rate, list_rates, update_rates

__all__ = [
    "RateProviderClient",
    "ExchangeRatesClient",
    "MockRateProviderClient",
    "create_rates",
    "update_rates",
    "find_rate",
    "list_rates",
]
