"""Conversion of shop-currency amounts into the billing currency.

Conversion only ever reads the persisted rate table; rates are refreshed by
``refresh_rates`` from a scheduled job.
"""

import logging
from decimal import Decimal
from typing import Union

from fesync.errors import RateNotFound
from fesync.fx.client import RateProviderClient
from fesync.fx.store import create_rates, find_rate, update_rates
from fesync.models import quantize_money, to_decimal
from fesync.service import DatabaseService

logger = logging.getLogger(__name__)

__all__ = ["CurrencyConverter", "quantize_money", "refresh_rates"]


class CurrencyConverter:
    """Converts amounts to ``billing_currency`` using stored rates."""

    def __init__(self, service: DatabaseService, billing_currency: str = "EUR"):
        self._service = service
        self.billing_currency = billing_currency.upper()

    def convert_to_billing_currency(self, currency: str, amount: Union[Decimal, int, float, str]) -> Decimal:
        """Convert ``amount`` of ``currency`` into the billing currency.

        Raises:
            RateNotFound: If no rate is stored for ``currency``.
        """
        amount = to_decimal(amount)
        code = currency.upper()
        if code == self.billing_currency:
            return quantize_money(amount)

        rate = find_rate(self._service, code)
        if rate is None:
            raise RateNotFound(code, self.billing_currency)
        if rate.base != self.billing_currency:
            # The table is keyed to a single base; a foreign base means a misconfigured refresh.
            raise RateNotFound(code, self.billing_currency)

        return quantize_money(amount / rate.rate)


def refresh_rates(
    service: DatabaseService,
    client: RateProviderClient,
    billing_currency: str = "EUR",
    initial: bool = False,
) -> int:
    """Pull the latest rates for ``billing_currency`` and persist them.

    ``initial`` inserts missing codes only; otherwise every code is updated in
    one transaction.
    """
    rates = client.fetch_rates(billing_currency)
    logger.info("Fetched %d rate(s) based on %s", len(rates), billing_currency)
    if initial:
        return create_rates(service, rates)
    return update_rates(service, rates)
