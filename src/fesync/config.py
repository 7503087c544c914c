"""
Application settings.

Loaded once per process from environment variables and passed explicitly to
the services that need them.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional
from urllib.parse import quote


@dataclass(frozen=True)
class FeePolicy:
    """Commission charged on customized items, in the billing currency."""
    rate: Decimal = Decimal("0.02")
    max_per_unit: Optional[Decimal] = Decimal("4.00")

    def __post_init__(self):
        if self.rate <= 0:
            raise ValueError("fee rate must be > 0")
        if self.max_per_unit is not None and self.max_per_unit <= 0:
            raise ValueError("max fee per unit must be > 0")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///fesync.db"
    app_url: str = ""
    shopify_api_version: str = "2025-07"
    currency_api: str = ""
    currency_api_access_key: str = ""
    billing_currency: str = "EUR"
    fee_policy: FeePolicy = field(default_factory=FeePolicy)
    http_timeout: float = 10.0
    test_billing: bool = False

    def __post_init__(self):
        if len(self.billing_currency) != 3:
            raise ValueError(f"billing_currency must be a 3-letter code, got {self.billing_currency!r}")
        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be > 0")

    def callback_url(self, shop: str) -> str:
        """URL FastEditor posts the asynchronous sale result to."""
        if not self.app_url:
            raise ValueError("SHOPIFY_APP_URL is not set")
        return f"{self.app_url.rstrip('/')}/webhooks/fasteditor-sale-result?shop={quote(shop, safe='')}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        max_fee_raw = env.get("MAX_FEE_PER_UNIT", "4.00").strip()
        fee_policy = FeePolicy(
            rate=_decimal(env.get("FEE_RATE", "0.02"), "FEE_RATE"),
            max_per_unit=_decimal(max_fee_raw, "MAX_FEE_PER_UNIT") if max_fee_raw else None,
        )

        try:
            timeout = float(env.get("HTTP_TIMEOUT", "10"))
        except ValueError:
            raise ValueError(f"HTTP_TIMEOUT must be a number, got {env.get('HTTP_TIMEOUT')!r}")

        return cls(
            database_url=env.get("DATABASE_URL", "sqlite:///fesync.db"),
            app_url=env.get("SHOPIFY_APP_URL", ""),
            shopify_api_version=env.get("SHOPIFY_API_VERSION", "2025-07"),
            currency_api=env.get("CURRENCY_API", ""),
            currency_api_access_key=env.get("CURRENCY_API_ACCESS_KEY", ""),
            billing_currency=env.get("BILLING_CURRENCY", "EUR").upper(),
            fee_policy=fee_policy,
            http_timeout=timeout,
            test_billing=env.get("TEST_BILLING", "").lower() == "true",
        )


def _decimal(raw: str, name: str) -> Decimal:
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}")
