"""Shopify Admin API client (REST for orders, GraphQL for metafields and billing)."""

import logging
from decimal import Decimal
from typing import Any, Optional

import requests

from fesync.errors import BillingError, ShopifyAPIError
from fesync.models import ShopifySession
from fesync.payloads import ShopifyOrder, parse_order

logger = logging.getLogger(__name__)

USAGE_PLAN_NAME = "Monthly subscription"
USAGE_PRICING_TYPE = "AppUsagePricing"

METAFIELDS_SET = """
mutation MetafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { key namespace }
    userErrors { field message }
  }
}
"""

CURRENT_APP_INSTALLATION = """
query {
  currentAppInstallation {
    activeSubscriptions {
      id
      name
      test
      lineItems {
        id
        plan { pricingDetails { __typename } }
      }
    }
  }
}
"""

CREATE_APP_USAGE_RECORD = """
mutation appUsageRecordCreate(
  $description: String!
  $price: MoneyInput!
  $subscriptionLineItemId: ID!
  $idempotencyKey: String
) {
  appUsageRecordCreate(
    description: $description
    price: $price
    subscriptionLineItemId: $subscriptionLineItemId
    idempotencyKey: $idempotencyKey
  ) {
    userErrors { field message }
    appUsageRecord { id }
  }
}
"""


class ShopifyClient:
    """Admin API access for one shop's offline session."""

    def __init__(
        self,
        session: ShopifySession,
        api_version: str = "2025-07",
        timeout: float = 10.0,
        http_session: Optional[requests.Session] = None,
    ):
        self._shop_session = session
        self._api_version = api_version
        self._timeout = timeout
        self._http = http_session or requests.Session()

    @property
    def shop(self) -> str:
        return self._shop_session.shop

    @property
    def _base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self._api_version}"

    # -- orders (REST) ----------------------------------------------------

    def get_order(self, order_id: str) -> Optional[ShopifyOrder]:
        """Fetch an order by numeric id. Returns None if Shopify answers 404."""
        resp = self._send("GET", f"/orders/{order_id}.json", "get order", allow_not_found=True)
        if resp is None:
            return None
        return parse_order(resp.get("order"))

    def find_order_by_name(self, name: str) -> Optional[ShopifyOrder]:
        data = self._send(
            "GET", "/orders.json", "search orders", params={"name": name, "status": "any", "limit": 1}
        )
        orders = data.get("orders") or []
        return parse_order(orders[0]) if orders else None

    def set_order_metafield(self, order_id: str, namespace: str, key: str, type_: str, value: str) -> dict:
        data = self._send(
            "POST",
            f"/orders/{order_id}/metafields.json",
            "set order metafield",
            json={"metafield": {"namespace": namespace, "key": key, "type": type_, "value": value}},
        )
        return data.get("metafield") or {}

    def get_order_metafields(self, order_id: str) -> list[dict]:
        data = self._send("GET", f"/orders/{order_id}/metafields.json", "get order metafields")
        return data.get("metafields") or []

    def update_order_tags(self, order_id: str, tags: list[str]) -> dict:
        data = self._send(
            "PUT",
            f"/orders/{order_id}.json",
            "update order tags",
            json={"order": {"id": order_id, "tags": ", ".join(tags)}},
        )
        return data.get("order") or {}

    # -- GraphQL ----------------------------------------------------------

    def graphql(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        data = self._send(
            "POST", "/graphql.json", "GraphQL request", json={"query": query, "variables": variables or {}}
        )
        if data.get("errors"):
            raise ShopifyAPIError(f"Shopify GraphQL errors: {data['errors']}")
        return data.get("data") or {}

    def set_metafields(self, metafields: list[dict[str, str]]) -> None:
        data = self.graphql(METAFIELDS_SET, {"metafields": metafields})
        user_errors = (data.get("metafieldsSet") or {}).get("userErrors") or []
        if user_errors:
            raise ShopifyAPIError(f"metafieldsSet rejected: {user_errors}")

    def get_usage_subscription_line_item_id(
        self, plan_name: str = USAGE_PLAN_NAME, include_test: bool = False
    ) -> Optional[str]:
        """Line item id of the active usage-priced subscription, or None.

        Test subscriptions only count when ``include_test`` is set.
        """
        data = self.graphql(CURRENT_APP_INSTALLATION)
        installation = data.get("currentAppInstallation") or {}
        for subscription in installation.get("activeSubscriptions") or []:
            if subscription.get("name") != plan_name:
                continue
            if subscription.get("test") and not include_test:
                continue
            for line_item in subscription.get("lineItems") or []:
                pricing = (line_item.get("plan") or {}).get("pricingDetails") or {}
                if pricing.get("__typename") == USAGE_PRICING_TYPE:
                    return line_item["id"]
        return None

    def create_usage_record(
        self,
        description: str,
        amount: Decimal,
        currency_code: str,
        subscription_line_item_id: str,
        idempotency_key: Optional[str] = None,
    ) -> Optional[str]:
        """Charge ``amount`` against the usage subscription. Returns the usage record id.

        Shopify answers a repeated ``idempotency_key`` with the record it
        already created instead of charging again.
        """
        data = self.graphql(
            CREATE_APP_USAGE_RECORD,
            {
                "description": description,
                "price": {"amount": str(amount), "currencyCode": currency_code},
                "subscriptionLineItemId": subscription_line_item_id,
                "idempotencyKey": idempotency_key,
            },
        )
        result = data.get("appUsageRecordCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            messages = "; ".join(str(e.get("message")) for e in user_errors)
            raise BillingError(f"Usage record rejected for shop {self.shop}: {messages}")
        record = result.get("appUsageRecord") or {}
        return record.get("id")

    def _send(
        self,
        method: str,
        path: str,
        action: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        allow_not_found: bool = False,
    ) -> Optional[dict[str, Any]]:
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._shop_session.access_token,
        }
        try:
            resp = self._http.request(
                method,
                f"{self._base_url}{path}",
                headers=headers,
                params=params,
                json=json,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise ShopifyAPIError(f"Failed to {action} for {self.shop}: {e}") from e

        if allow_not_found and resp.status_code == 404:
            return None
        if not resp.ok:
            raise ShopifyAPIError(
                f"Failed to {action} for {self.shop}: {resp.status_code} - {resp.text}",
                resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ShopifyAPIError(f"Shopify returned invalid JSON for {action}", resp.status_code) from e
