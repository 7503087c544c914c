"""
Persisted records.

Immutable views of database rows. Money is always ``Decimal``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from fesync.timeutil import parse_timestamp

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert a DB or JSON number to Decimal without binary float drift."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(amount: Decimal) -> Decimal:
    """Round to cents, half-up on the decimal representation."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Any) -> Decimal:
    # SQLite's NUMERIC affinity drops trailing zeros ("1.00" reads back as 1).
    return quantize_money(to_decimal(value))


@dataclass(frozen=True)
class OrderLineItemRecord:
    """Ledger entry for one customized line item of a paid order.

    Unique per (shop, order_id, line_item_id). Only the billing fields change
    after creation.
    """
    id: str
    shop: str
    order_id: str
    order_name: str
    line_item_id: str
    quantity: int
    unit_price: Decimal
    currency: str
    project_key: str
    product_id: str
    variant_id: Optional[str]
    usage_fee: Decimal
    created_at: datetime
    billed: bool = False
    billed_at: Optional[datetime] = None
    billing_run_id: Optional[str] = None
    notified_at: Optional[datetime] = None

    @property
    def notified(self) -> bool:
        return self.notified_at is not None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OrderLineItemRecord":
        return cls(
            id=row["id"],
            shop=row["shop"],
            order_id=row["order_id"],
            order_name=row["order_name"],
            line_item_id=row["line_item_id"],
            quantity=int(row["quantity"]),
            unit_price=to_money(row["unit_price"]),
            currency=row["currency"],
            project_key=row["project_key"],
            product_id=row["product_id"],
            variant_id=row["variant_id"],
            usage_fee=to_money(row["usage_fee"]),
            created_at=parse_timestamp(row["created_at"]),
            billed=bool(row["billed"]),
            billed_at=parse_timestamp(row["billed_at"]),
            billing_run_id=row["billing_run_id"],
            notified_at=parse_timestamp(row["notified_at"]),
        )


@dataclass(frozen=True)
class UsageBillingHistoryRecord:
    """Audit entry written once per successful billing run for a shop."""
    id: str
    shop: str
    run_id: str
    total_price: Decimal
    items_count: int
    usage_record_id: Optional[str]
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UsageBillingHistoryRecord":
        return cls(
            id=row["id"],
            shop=row["shop"],
            run_id=row["run_id"],
            total_price=to_money(row["total_price"]),
            items_count=int(row["items_count"]),
            usage_record_id=row["usage_record_id"],
            created_at=parse_timestamp(row["created_at"]),
        )


@dataclass(frozen=True)
class CurrencyRate:
    """1 unit of ``base`` buys ``rate`` units of ``code``."""
    code: str
    rate: Decimal
    base: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CurrencyRate":
        return cls(
            code=row["code"],
            rate=to_decimal(row["rate"]),
            base=row["base"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


@dataclass(frozen=True)
class ShopSettings:
    shop: str
    fasteditor_api_key: Optional[str] = None
    fasteditor_domain: Optional[str] = None
    language: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None

    @property
    def has_fasteditor_credentials(self) -> bool:
        return bool(self.fasteditor_api_key and self.fasteditor_domain)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ShopSettings":
        return cls(
            shop=row["shop"],
            fasteditor_api_key=row["fasteditor_api_key"],
            fasteditor_domain=row["fasteditor_domain"],
            language=row["language"],
            country=row["country"],
            currency=row["currency"],
        )


@dataclass(frozen=True)
class ShopifySession:
    """Offline Admin API credentials for one shop."""
    shop: str
    access_token: str
