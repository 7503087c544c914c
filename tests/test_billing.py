"""Tests for usage billing reconciliation."""

import threading
from datetime import datetime
from decimal import Decimal

import pytest

from fesync.billing import (
    BILLING_DESCRIPTION,
    BillingStatus,
    UsageBillingReconciler,
    calculate_total_usage_fee,
)
from fesync.errors import BillingError, ShopifyAPIError
from fesync.history import list_for_shop, record_billing
from fesync.ledger import NewLedgerEntry, OrderItemLedger

from conftest import SHOP, FakeShopifyClient

SINCE = datetime(2026, 2, 15)
CREATED = datetime(2026, 3, 1, 12, 0, 0)


def add_items(service, fees, shop=SHOP, created_at=CREATED, order_id="1001"):
    ledger = OrderItemLedger(service)
    for n, fee in enumerate(fees, start=1):
        ledger.add(
            NewLedgerEntry(
                shop=shop,
                order_id=order_id,
                order_name=f"#{order_id}",
                line_item_id=str(n),
                quantity=1,
                unit_price=Decimal("10.00"),
                currency="EUR",
                project_key=f"pk-{n}",
                product_id="555",
                variant_id="777",
                usage_fee=Decimal(fee),
            ),
            created_at=created_at,
        )


@pytest.fixture
def reconciler(db_service, settings, shopify):
    return UsageBillingReconciler(db_service, settings, shopify_for_shop=lambda shop: shopify)


def unbilled(service, shop=SHOP):
    return OrderItemLedger(service).find_unbilled_since(shop, SINCE)


class TestHandleShopBilling:
    def test_aggregates_and_marks_billed(self, reconciler, db_service, shopify):
        add_items(db_service, ["1.50", "2.25", "0.75"])

        result = reconciler.handle_shop_billing(SHOP, SINCE)

        assert result.status == BillingStatus.BILLED
        assert result.total == Decimal("4.50")
        assert result.items_count == 3
        assert shopify.usage_records == [
            (BILLING_DESCRIPTION, Decimal("4.50"), "EUR", "gid://shopify/AppSubscriptionLineItem/1")
        ]
        assert unbilled(db_service) == []
        records = OrderItemLedger(db_service).find_for_order(SHOP, "1001")
        assert {r.billing_run_id for r in records} == {result.run_id}
        assert all(r.billed and r.billed_at is not None for r in records)

        (history,) = list_for_shop(db_service, SHOP)
        assert history.total_price == Decimal("4.50")
        assert history.items_count == 3
        assert history.run_id == result.run_id
        assert history.usage_record_id == "gid://shopify/AppUsageRecord/1"

    def test_no_items(self, reconciler, shopify):
        result = reconciler.handle_shop_billing(SHOP, SINCE)
        assert result.status == BillingStatus.NO_ITEMS
        assert shopify.usage_records == []

    def test_items_before_since_are_ignored(self, reconciler, db_service, shopify):
        add_items(db_service, ["3.00"], created_at=datetime(2026, 1, 1))

        assert reconciler.handle_shop_billing(SHOP, SINCE).status == BillingStatus.NO_ITEMS
        assert shopify.usage_records == []

    def test_no_active_subscription_leaves_items_unbilled(self, reconciler, db_service, shopify):
        shopify.subscription_line_item_id = None
        add_items(db_service, ["1.00", "2.00"])

        result = reconciler.handle_shop_billing(SHOP, SINCE)

        assert result.status == BillingStatus.NO_SUBSCRIPTION
        assert shopify.usage_records == []
        assert len(unbilled(db_service)) == 2
        assert list_for_shop(db_service, SHOP) == []

    @pytest.mark.parametrize(
        "error",
        [BillingError("Usage record rejected: capped amount exceeded"), ShopifyAPIError("timeout")],
    )
    def test_charge_failure_leaves_items_unbilled(self, reconciler, db_service, shopify, error):
        shopify.charge_error = error
        add_items(db_service, ["1.00", "2.00"])

        with pytest.raises(type(error)):
            reconciler.handle_shop_billing(SHOP, SINCE)

        assert len(unbilled(db_service)) == 2
        assert list_for_shop(db_service, SHOP) == []

    def test_rejected_charge_releases_claimed_items(self, reconciler, db_service, shopify):
        shopify.charge_error = BillingError("Usage record rejected: capped amount exceeded")
        add_items(db_service, ["1.00"])

        with pytest.raises(BillingError):
            reconciler.handle_shop_billing(SHOP, SINCE)

        assert OrderItemLedger(db_service).find_pending_run(SHOP) == (None, [])
        assert unbilled(db_service)[0].billing_run_id is None

    def test_charge_transport_failure_retries_with_same_key(self, reconciler, db_service, shopify):
        shopify.charge_error = ShopifyAPIError("timeout")
        add_items(db_service, ["1.00", "2.00"])

        with pytest.raises(ShopifyAPIError):
            reconciler.handle_shop_billing(SHOP, SINCE)
        shopify.charge_error = None
        result = reconciler.handle_shop_billing(SHOP, SINCE)

        assert result.status == BillingStatus.BILLED
        assert result.run_id is not None
        assert shopify.idempotency_keys == [result.run_id]
        assert unbilled(db_service) == []

    def test_failure_after_charge_does_not_charge_twice(self, reconciler, db_service, shopify, monkeypatch):
        add_items(db_service, ["1.00", "2.00"])
        calls = []

        def flaky_record_billing(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise RuntimeError("connection lost")
            return record_billing(*args, **kwargs)

        monkeypatch.setattr("fesync.billing.record_billing", flaky_record_billing)

        with pytest.raises(RuntimeError):
            reconciler.handle_shop_billing(SHOP, SINCE)
        assert len(shopify.usage_records) == 1
        assert len(unbilled(db_service)) == 2

        result = reconciler.handle_shop_billing(SHOP, SINCE)

        assert result.status == BillingStatus.BILLED
        assert result.total == Decimal("3.00")
        assert len(shopify.usage_records) == 1
        assert len(set(shopify.idempotency_keys)) == 1
        assert unbilled(db_service) == []
        (history,) = list_for_shop(db_service, SHOP)
        assert history.usage_record_id == "gid://shopify/AppUsageRecord/1"

    def test_unfinished_run_is_resumed_before_new_items(self, reconciler, db_service, shopify):
        add_items(db_service, ["1.00"], order_id="1001")
        ledger = OrderItemLedger(db_service)
        (pending,) = unbilled(db_service)
        ledger.claim(SHOP, [pending.id], "run-earlier")
        add_items(db_service, ["5.00"], order_id="1002")

        first = reconciler.handle_shop_billing(SHOP, SINCE)
        second = reconciler.handle_shop_billing(SHOP, SINCE)

        assert (first.run_id, first.total) == ("run-earlier", Decimal("1.00"))
        assert second.status == BillingStatus.BILLED
        assert second.total == Decimal("5.00")
        assert shopify.idempotency_keys == ["run-earlier", second.run_id]

    def test_zero_total_is_not_charged(self, reconciler, db_service, shopify):
        add_items(db_service, ["0.00", "0.00"])

        result = reconciler.handle_shop_billing(SHOP, SINCE)

        assert result.status == BillingStatus.ZERO_TOTAL
        assert shopify.usage_records == []
        assert list_for_shop(db_service, SHOP) == []
        assert len(unbilled(db_service)) == 2

    def test_second_run_finds_nothing(self, reconciler, db_service, shopify):
        add_items(db_service, ["1.00"])

        reconciler.handle_shop_billing(SHOP, SINCE)
        second = reconciler.handle_shop_billing(SHOP, SINCE)

        assert second.status == BillingStatus.NO_ITEMS
        assert len(shopify.usage_records) == 1

    def test_overlapping_runs_charge_once(self, reconciler, db_service, shopify):
        shopify.charge_delay = 0.2
        add_items(db_service, ["1.00", "2.00"])
        results, errors = [], []

        def run():
            try:
                results.append(reconciler.handle_shop_billing(SHOP, SINCE))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        statuses = [r.status for r in results]
        assert statuses.count(BillingStatus.BILLED) == 1
        assert set(statuses) <= {BillingStatus.BILLED, BillingStatus.NO_ITEMS, BillingStatus.ALREADY_BILLED}
        assert len(shopify.usage_records) == 1
        assert unbilled(db_service) == []
        assert len(list_for_shop(db_service, SHOP)) == 1


class TestMonthlyRun:
    def test_bills_each_active_shop_and_isolates_failures(self, db_service, settings):
        other = "other-shop.myshopify.com"
        add_items(db_service, ["1.00", "1.50"])
        add_items(db_service, ["5.00"], shop=other)
        clients = {SHOP: FakeShopifyClient(SHOP), other: FakeShopifyClient(other)}
        clients[other].charge_error = BillingError("rejected")
        reconciler = UsageBillingReconciler(db_service, settings, shopify_for_shop=clients.__getitem__)

        report = reconciler.process_monthly_usage_billing(now=datetime(2026, 3, 15))

        assert report.since == SINCE
        assert [r.shop for r in report.billed] == [SHOP]
        assert report.billed[0].total == Decimal("2.50")
        assert list(report.failed) == [other]
        assert not report.ok
        assert len(unbilled(db_service, other)) == 1

    def test_no_activity(self, reconciler):
        report = reconciler.process_monthly_usage_billing(now=datetime(2026, 3, 15))
        assert report.ok
        assert report.billed == [] and report.skipped == []


def test_total_usage_fee_sums_rounded_fees(db_service):
    add_items(db_service, ["0.33", "0.33", "0.34"])
    assert calculate_total_usage_fee(unbilled(db_service)) == Decimal("1.00")
