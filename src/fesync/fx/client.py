"""Exchange-rate provider client with retry and mock support."""

import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

import requests

from fesync.errors import RateProviderError
from fesync.models import CurrencyRate, to_decimal

logger = logging.getLogger(__name__)


class RateProviderClient(ABC):
    """Abstract interface for fetching the latest exchange rates."""

    @abstractmethod
    def fetch_rates(self, base: str) -> list[CurrencyRate]:
        """Fetch the latest rates relative to ``base``.

        Args:
            base: Base currency code, e.g. "EUR".

        Returns:
            One CurrencyRate per quoted currency, e.g. CurrencyRate("USD", Decimal("1.08"), "EUR").
        """


class ExchangeRatesClient(RateProviderClient):
    """HTTP client for an exchangeratesapi-style endpoint with exponential backoff retry.

    ``GET {endpoint}?access_key=...&base=EUR`` answers
    ``{"success": true, "base": "EUR", "rates": {"USD": 1.08, ...}}``.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        max_retries: int = 3,
        base_delay: float = 1.0,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self._endpoint = endpoint
        self._access_key = access_key
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch_rates(self, base: str) -> list[CurrencyRate]:
        params = {"access_key": self._access_key, "base": base}

        for attempt in range(self._max_retries):
            try:
                resp = self._session.get(self._endpoint, params=params, timeout=self._timeout)
                resp.raise_for_status()
                data = resp.json()

                if data.get("success") is False:
                    error = data.get("error", {})
                    raise RateProviderError(
                        f"Rate provider error {error.get('code')}: {error.get('info')}"
                    )

                quoted_base = data.get("base") or base
                return [
                    CurrencyRate(code=code.upper(), rate=to_decimal(rate), base=quoted_base)
                    for code, rate in data["rates"].items()
                ]

            except (requests.RequestException, KeyError, ValueError, RateProviderError) as e:
                if attempt < self._max_retries - 1:
                    delay = self._base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d failed: %s. Retrying in %.1fs...",
                        attempt + 1,
                        e,
                        delay,
                    )
                    time.sleep(delay)
                elif isinstance(e, RateProviderError):
                    raise
                else:
                    status = getattr(getattr(e, "response", None), "status_code", None)
                    raise RateProviderError(f"Currency API request failed: {e}", status) from e


class MockRateProviderClient(RateProviderClient):
    """Mock client returning fixed EUR-based rates for testing."""

    MOCK_RATES = {
        "USD": Decimal("1.08"),
        "GBP": Decimal("0.85"),
        "PLN": Decimal("4.30"),
        "UAH": Decimal("45.10"),
        "EUR": Decimal("1"),
    }

    def fetch_rates(self, base: str) -> list[CurrencyRate]:
        return [CurrencyRate(code=code, rate=rate, base=base) for code, rate in self.MOCK_RATES.items()]
