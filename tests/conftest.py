"""Shared test fixtures."""

import threading
from decimal import Decimal
from typing import Optional

import pytest

from fesync import create_service
from fesync.config import Settings
from fesync.errors import FastEditorAPIError, ShopifyAPIError
from fesync.fx.store import create_rates
from fesync.models import CurrencyRate
from fesync.payloads import parse_order
from fesync.schema import ensure_schema

SHOP = "test-shop.myshopify.com"


@pytest.fixture
def db_service(tmp_path):
    """Provide a fresh SQLite DatabaseService with the app schema for each test."""
    db_path = tmp_path / "test.db"
    service = create_service(f"sqlite:///{db_path}")
    service.connect()
    ensure_schema(service)
    yield service
    service.close()


@pytest.fixture
def settings():
    return Settings(app_url="https://fesync.example.com")


@pytest.fixture
def seeded_rates(db_service):
    create_rates(
        db_service,
        [
            CurrencyRate("USD", Decimal("1.08"), "EUR"),
            CurrencyRate("GBP", Decimal("0.85"), "EUR"),
            CurrencyRate("XTS", Decimal("0.9"), "EUR"),
        ],
    )


@pytest.fixture
def make_order():
    """Build a validated orders/paid payload.

    ``items`` is a list of (line_item_id, price, quantity, project_key or None).
    """

    def _make(items, currency="EUR", order_id="1001", name="#1001", tags=""):
        line_items = []
        for line_item_id, price, quantity, project_key in items:
            properties = []
            if project_key is not None:
                properties = [
                    {"name": "_fasteditor_project_key", "value": project_key},
                    {"name": "_fasteditor_image_url", "value": f"https://cdn.example.com/{project_key}.png"},
                ]
            line_items.append(
                {
                    "id": line_item_id,
                    "quantity": quantity,
                    "price": price,
                    "product_id": 555,
                    "variant_id": 777,
                    "properties": properties,
                }
            )
        address = {
            "name": "Jane Doe",
            "address1": "1 Main St",
            "city": "Vienna",
            "zip": "1010",
            "country": "Austria",
        }
        return parse_order(
            {
                "id": order_id,
                "name": name,
                "currency": currency,
                "tags": tags,
                "line_items": line_items,
                "billing_address": address,
                "shipping_address": address,
                "customer": {"email": "jane@example.com"},
            }
        )

    return _make


class FakeShopifyClient:
    """In-memory stand-in for ShopifyClient."""

    def __init__(self, shop: str = SHOP, subscription_line_item_id: Optional[str] = "gid://shopify/AppSubscriptionLineItem/1"):
        self.shop = shop
        self.subscription_line_item_id = subscription_line_item_id
        self.orders = {}
        self.tag_updates = []
        self.order_metafields = []
        self.metafield_sets = []
        self.usage_records = []
        self.idempotency_keys = []
        self._records_by_key = {}
        self.charge_error: Optional[Exception] = None
        self.charge_delay = 0.0
        self.fail_annotations = False
        self._lock = threading.Lock()

    def get_order(self, order_id):
        return self.orders.get(order_id)

    def find_order_by_name(self, name):
        return next((o for o in self.orders.values() if o.name == name), None)

    def update_order_tags(self, order_id, tags):
        if self.fail_annotations:
            raise ShopifyAPIError("Failed to update order tags: 503", 503)
        self.tag_updates.append((order_id, list(tags)))
        return {}

    def set_order_metafield(self, order_id, namespace, key, type_, value):
        if self.fail_annotations:
            raise ShopifyAPIError("Failed to set order metafield: 503", 503)
        self.order_metafields.append((order_id, namespace, key, type_, value))
        return {}

    def set_metafields(self, metafields):
        if self.fail_annotations:
            raise ShopifyAPIError("metafieldsSet rejected", 503)
        self.metafield_sets.append(metafields)

    def get_usage_subscription_line_item_id(self, include_test=False):
        return self.subscription_line_item_id

    def create_usage_record(
        self, description, amount, currency_code, subscription_line_item_id, idempotency_key=None
    ):
        if self.charge_delay:
            threading.Event().wait(self.charge_delay)
        if self.charge_error is not None:
            raise self.charge_error
        with self._lock:
            self.idempotency_keys.append(idempotency_key)
            if idempotency_key is not None and idempotency_key in self._records_by_key:
                return self._records_by_key[idempotency_key]
            self.usage_records.append((description, amount, currency_code, subscription_line_item_id))
            record_id = f"gid://shopify/AppUsageRecord/{len(self.usage_records)}"
            if idempotency_key is not None:
                self._records_by_key[idempotency_key] = record_id
            return record_id


class FakeFastEditorClient:
    """In-memory stand-in for FastEditorClient."""

    def __init__(self):
        self.notifications = []
        self.error: Optional[Exception] = None

    def send_sale_notification(self, payload):
        self.notifications.append(payload)
        if self.error is not None:
            raise self.error
        return {"status": "accepted"}


@pytest.fixture
def shopify():
    return FakeShopifyClient()


@pytest.fixture
def fasteditor():
    return FakeFastEditorClient()


@pytest.fixture
def failing_fasteditor():
    client = FakeFastEditorClient()
    client.error = FastEditorAPIError("FastEditor sale notification failed for order #1001: 502 - bad gateway", 502)
    return client
