"""
Monthly usage billing.

Aggregates a shop's unbilled ledger entries into one Shopify usage charge.
A run first claims the entries under a per-shop lock and commits, then
charges with the run id as idempotency key, then marks the entries billed
and writes the history record. Entries stay unbilled until that last step,
and a run interrupted after the charge is resumed under the same key, so
Shopify never bills an entry twice.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from fesync.clients.shopify import ShopifyClient
from fesync.config import Settings
from fesync.errors import BillingError
from fesync.history import record_billing
from fesync.ledger import OrderItemLedger
from fesync.models import OrderLineItemRecord
from fesync.service import DatabaseService
from fesync.shop_settings import load_offline_session
from fesync.timeutil import one_month_before, utcnow

logger = logging.getLogger(__name__)

BILLING_DESCRIPTION = "Billing for order items customized via FastEditor"


class BillingStatus:
    BILLED = "billed"
    NO_ITEMS = "no_items"
    ZERO_TOTAL = "zero_total"
    NO_SUBSCRIPTION = "no_subscription"
    ALREADY_BILLED = "already_billed"


@dataclass(frozen=True)
class ShopBillingResult:
    shop: str
    status: str
    total: Decimal = Decimal("0")
    items_count: int = 0
    run_id: Optional[str] = None
    usage_record_id: Optional[str] = None


@dataclass
class MonthlyBillingReport:
    since: datetime
    billed: list[ShopBillingResult] = field(default_factory=list)
    skipped: list[ShopBillingResult] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return (
            f"Billed {len(self.billed)} shop(s), skipped {len(self.skipped)}, "
            f"failed {len(self.failed)}"
        )


def calculate_total_usage_fee(items: Iterable[OrderLineItemRecord]) -> Decimal:
    """Sum of the stored, already rounded per-item fees."""
    return sum((item.usage_fee for item in items), Decimal("0"))


ShopifyClientFactory = Callable[[str], ShopifyClient]


class UsageBillingReconciler:
    def __init__(
        self,
        service: DatabaseService,
        settings: Settings,
        shopify_for_shop: Optional[ShopifyClientFactory] = None,
    ):
        self._service = service
        self._settings = settings
        self._ledger = OrderItemLedger(service)
        self._shopify_for_shop = shopify_for_shop or self._default_shopify_client

    def _default_shopify_client(self, shop: str) -> ShopifyClient:
        session = load_offline_session(self._service, shop)
        return ShopifyClient(session, self._settings.shopify_api_version, self._settings.http_timeout)

    def _lock_key(self, shop: str) -> str:
        return f"usage-billing:{shop}"

    def handle_shop_billing(self, shop: str, since: datetime) -> ShopBillingResult:
        """Charge ``shop`` for its unbilled entries created on or after ``since``.

        A run left unfinished by an earlier failure is resumed first, with
        its original run id as the charge's idempotency key.

        Raises:
            BillingError: Shopify rejected the usage charge.
            ShopifyAPIError: The subscription lookup or the charge call failed.
        """
        currency = self._settings.billing_currency
        with self._service.transaction():
            self._service.lock(self._lock_key(shop))

            run_id, items = self._ledger.find_pending_run(shop)
            resumed = run_id is not None
            if not resumed:
                items = self._ledger.find_unbilled_since(shop, since)
                if not items:
                    logger.info("No unbilled items for shop: %s", shop)
                    return ShopBillingResult(shop, BillingStatus.NO_ITEMS)

            total = calculate_total_usage_fee(items)
            if total <= 0:
                logger.info("Total usage fee is %s for shop: %s", total, shop)
                return ShopBillingResult(shop, BillingStatus.ZERO_TOTAL, total, len(items))

            shopify = self._shopify_for_shop(shop)
            line_item_id = shopify.get_usage_subscription_line_item_id(
                include_test=self._settings.test_billing
            )
            if not line_item_id:
                logger.warning("No active subscription for shop: %s", shop)
                return ShopBillingResult(shop, BillingStatus.NO_SUBSCRIPTION, total, len(items))

            if resumed:
                logger.warning("Resuming unfinished billing run %s for shop %s", run_id, shop)
                since = min(item.created_at for item in items)
            else:
                run_id = str(uuid.uuid4())
                self._ledger.claim(shop, [item.id for item in items], run_id)

        try:
            usage_record_id = shopify.create_usage_record(
                BILLING_DESCRIPTION, total, currency, line_item_id, idempotency_key=run_id
            )
        except BillingError:
            # Rejected outright, so nothing was charged under this run id.
            with self._service.transaction():
                self._ledger.release(shop, run_id)
            raise
        logger.info("Created usage record %s for shop %s: %s %s", usage_record_id, shop, total, currency)

        with self._service.transaction():
            self._service.lock(self._lock_key(shop))
            marked = self._ledger.mark_billed(shop, since, [item.id for item in items], run_id)
            if not marked:
                logger.info("Billing run %s for shop %s was finalized by another run", run_id, shop)
                return ShopBillingResult(
                    shop, BillingStatus.ALREADY_BILLED, total, len(items), run_id, usage_record_id
                )
            logger.info("Marked %d customized item(s) as billed for shop: %s", marked, shop)
            record_billing(self._service, shop, run_id, total, len(items), usage_record_id)

        return ShopBillingResult(shop, BillingStatus.BILLED, total, len(items), run_id, usage_record_id)

    def process_monthly_usage_billing(self, now: Optional[datetime] = None) -> MonthlyBillingReport:
        since = one_month_before(now or utcnow())
        report = MonthlyBillingReport(since=since)

        shops = self._ledger.find_shops_with_activity_since(since)
        if not shops:
            logger.info("No shops found with FastEditor activity since %s", since)
            return report

        for shop in shops:
            try:
                result = self.handle_shop_billing(shop, since)
            except Exception as e:
                logger.exception("Usage billing failed for shop %s", shop)
                report.failed[shop] = str(e)
                continue
            if result.status == BillingStatus.BILLED:
                report.billed.append(result)
            else:
                report.skipped.append(result)

        logger.info("Monthly usage billing since %s: %s", since, report.summary())
        return report
