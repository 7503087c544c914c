"""Tests for the FastEditor and Shopify HTTP clients."""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from fesync.clients.fasteditor import FastEditorClient, FastEditorCredentials
from fesync.clients.shopify import ShopifyClient
from fesync.errors import BillingError, FastEditorAPIError, PayloadValidationError, ShopifyAPIError
from fesync.models import ShopifySession, ShopSettings


def _response(payload=None, status=200, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.text = text
    resp.json.return_value = payload
    return resp


@pytest.fixture
def http():
    return MagicMock()


class TestFastEditorClient:
    @pytest.fixture
    def client(self, http):
        return FastEditorClient(FastEditorCredentials("secret", "brand.fasteditor.com"), timeout=5, session=http)

    def test_sale_notification(self, client, http):
        http.request.return_value = _response({"status": "ok"})

        assert client.send_sale_notification({"orderId": "#1001", "orderItems": []}) == {"status": "ok"}

        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        assert (method, url) == ("POST", "https://api.brand.fasteditor.com/webhook/notifyorder")
        assert kwargs["headers"]["X-Api-Key"] == "secret"
        assert kwargs["json"] == {"orderId": "#1001", "orderItems": []}
        assert kwargs["timeout"] == 5

    def test_non_2xx(self, client, http):
        http.request.return_value = _response(status=502, text="bad gateway")

        with pytest.raises(FastEditorAPIError) as exc:
            client.send_sale_notification({"orderId": "#1001"})
        assert exc.value.status_code == 502
        assert "#1001" in str(exc.value)

    def test_timeout(self, client, http):
        http.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(FastEditorAPIError, match="timed out"):
            client.check_integration()

    def test_smart_link(self, client, http):
        http.request.return_value = _response({"url": "https://editor.example.com/x"})

        assert client.create_smart_link({"sku": "777"})["url"] == "https://editor.example.com/x"
        assert http.request.call_args.args[1] == "https://api.brand.fasteditor.com/api/smartlink"

    def test_fetch_product_data(self, client, http):
        http.request.return_value = _response(
            [{"projectKey": "pk-1", "quantity": 2, "customAttributes": {"variantId": 777}, "imageUrl": "https://x/1.png"}]
        )

        product = client.fetch_product_data("https://api.brand.fasteditor.com/api/project/pk-1")

        assert http.request.call_args.args[0] == "GET"
        assert product.project_key == "pk-1"
        assert product.variant_id == "777"

    def test_fetch_product_data_empty(self, client, http):
        http.request.return_value = _response([])
        with pytest.raises(PayloadValidationError):
            client.fetch_product_data("https://api.brand.fasteditor.com/api/project/none")

    def test_credentials_from_settings(self):
        creds = FastEditorCredentials.from_settings(
            ShopSettings("s.myshopify.com", fasteditor_api_key="k", fasteditor_domain="d.com")
        )
        assert creds.base_url == "https://api.d.com"
        with pytest.raises(ValueError):
            FastEditorCredentials.from_settings(ShopSettings("s.myshopify.com"))


ORDER = {
    "id": 1001,
    "name": "#1001",
    "currency": "EUR",
    "tags": "vip",
    "line_items": [{"id": 1, "quantity": 1, "price": "10.00", "properties": None}],
}


class TestShopifyClient:
    @pytest.fixture
    def client(self, http):
        return ShopifyClient(ShopifySession("s.myshopify.com", "shpat_x"), "2025-07", timeout=5, http_session=http)

    def test_get_order(self, client, http):
        http.request.return_value = _response({"order": ORDER})

        order = client.get_order("1001")

        assert order.name == "#1001"
        assert order.line_items[0].properties == []
        method, url = http.request.call_args.args
        assert (method, url) == ("GET", "https://s.myshopify.com/admin/api/2025-07/orders/1001.json")
        assert http.request.call_args.kwargs["headers"]["X-Shopify-Access-Token"] == "shpat_x"

    def test_get_order_not_found(self, client, http):
        http.request.return_value = _response(status=404, text="Not Found")
        assert client.get_order("42") is None

    def test_find_order_by_name(self, client, http):
        http.request.return_value = _response({"orders": []})
        assert client.find_order_by_name("#1001") is None
        assert http.request.call_args.kwargs["params"]["name"] == "#1001"

    def test_update_tags_joins(self, client, http):
        http.request.return_value = _response({"order": {"id": 1001}})

        client.update_order_tags("1001", ["vip", "fasteditor-complete"])

        assert http.request.call_args.kwargs["json"] == {"order": {"id": "1001", "tags": "vip, fasteditor-complete"}}

    def test_set_metafield_error(self, client, http):
        http.request.return_value = _response(status=422, text="invalid type")
        with pytest.raises(ShopifyAPIError) as exc:
            client.set_order_metafield("1001", "fasteditor", "pdf_download_url", "url", "not a url")
        assert exc.value.status_code == 422

    def test_usage_subscription_line_item(self, client, http):
        http.request.return_value = _response(
            {
                "data": {
                    "currentAppInstallation": {
                        "activeSubscriptions": [
                            {"id": "s0", "name": "Other plan", "lineItems": []},
                            {
                                "id": "s1",
                                "name": "Monthly subscription",
                                "lineItems": [
                                    {"id": "li-recurring", "plan": {"pricingDetails": {"__typename": "AppRecurringPricing"}}},
                                    {"id": "li-usage", "plan": {"pricingDetails": {"__typename": "AppUsagePricing"}}},
                                ],
                            },
                        ]
                    }
                }
            }
        )
        assert client.get_usage_subscription_line_item_id() == "li-usage"

    def test_no_active_subscription(self, client, http):
        http.request.return_value = _response({"data": {"currentAppInstallation": {"activeSubscriptions": []}}})
        assert client.get_usage_subscription_line_item_id() is None

    def test_create_usage_record(self, client, http):
        http.request.return_value = _response(
            {"data": {"appUsageRecordCreate": {"userErrors": [], "appUsageRecord": {"id": "gid://shopify/AppUsageRecord/9"}}}}
        )

        record_id = client.create_usage_record("desc", Decimal("4.50"), "EUR", "li-usage", idempotency_key="run-1")

        assert record_id == "gid://shopify/AppUsageRecord/9"
        body = http.request.call_args.kwargs["json"]
        variables = body["variables"]
        assert variables["price"] == {"amount": "4.50", "currencyCode": "EUR"}
        assert variables["idempotencyKey"] == "run-1"
        assert "idempotencyKey: $idempotencyKey" in body["query"]
        assert json.dumps(variables)

    def test_create_usage_record_user_errors(self, client, http):
        http.request.return_value = _response(
            {"data": {"appUsageRecordCreate": {"userErrors": [{"field": "price", "message": "Capped amount exceeded"}], "appUsageRecord": None}}}
        )
        with pytest.raises(BillingError, match="Capped amount exceeded"):
            client.create_usage_record("desc", Decimal("4.50"), "EUR", "li-usage")

    def test_graphql_errors(self, client, http):
        http.request.return_value = _response({"errors": [{"message": "Throttled"}]})
        with pytest.raises(ShopifyAPIError, match="Throttled"):
            client.graphql("query { shop { name } }")

    def test_test_subscription_counts_only_when_allowed(self, client, http):
        http.request.return_value = _response(
            {
                "data": {
                    "currentAppInstallation": {
                        "activeSubscriptions": [
                            {
                                "id": "s1",
                                "name": "Monthly subscription",
                                "test": True,
                                "lineItems": [
                                    {"id": "li-usage", "plan": {"pricingDetails": {"__typename": "AppUsagePricing"}}}
                                ],
                            }
                        ]
                    }
                }
            }
        )
        assert client.get_usage_subscription_line_item_id() is None
        assert client.get_usage_subscription_line_item_id(include_test=True) == "li-usage"
