"""
Paid-order processing.

Turns an ``orders/paid`` webhook into ledger entries, one FastEditor sale
notification and order annotations, and applies FastEditor's asynchronous
sale result back onto the order.
"""

import enum
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from fesync.clients.fasteditor import FastEditorClient, FastEditorCredentials
from fesync.clients.shopify import ShopifyClient
from fesync.config import FeePolicy, Settings
from fesync.currency import CurrencyConverter, quantize_money
from fesync.errors import FastEditorAPIError, OrderNotFound, PayloadValidationError, ShopifyAPIError
from fesync.ledger import NewLedgerEntry, OrderItemLedger
from fesync.payloads import PROJECT_KEY_PROPERTY, Address, LineItem, SaleResultCallback, ShopifyOrder
from fesync.service import DatabaseService
from fesync.shop_settings import load_offline_session, require_fasteditor_settings

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "fasteditor"
TAG_PREFIX = "fasteditor-"
PROCESSING_TAG = "fasteditor-processing:{success}/{total}"
COMPLETE_TAG = "fasteditor-complete"


class SaleResultOutcome(enum.Enum):
    COMPLETED = "completed"
    FAILED_UPSTREAM = "failed_upstream"


def extract_customized_items(order: ShopifyOrder) -> list[LineItem]:
    """Line items carrying the FastEditor project key property.

    Raises:
        PayloadValidationError: A customized item has an empty project key.
    """
    items = [item for item in order.line_items if item.is_customized]
    if not items:
        logger.info("No FastEditor custom items found in order %s", order.name)
    for item in items:
        if not item.project_key:
            raise PayloadValidationError(
                f"Line item {item.id} of order {order.name} has an empty {PROJECT_KEY_PROPERTY}"
            )
    return items


def calculate_usage_fee(sale_value: Decimal, quantity: int, policy: FeePolicy) -> Decimal:
    """Commission on ``sale_value`` (already in the billing currency), capped per unit."""
    fee = sale_value * policy.rate
    if policy.max_per_unit is not None:
        fee = min(fee, policy.max_per_unit * quantity)
    return quantize_money(fee)


def replace_fasteditor_tags(existing: str, new_tag: str) -> list[str]:
    """Drop every ``fasteditor-`` tag from ``existing`` and append ``new_tag``."""
    tags = [t.strip() for t in existing.split(",") if t.strip()]
    kept = [t for t in tags if not t.startswith(TAG_PREFIX)]
    kept.append(new_tag)
    return kept


def _contact_block(address: Optional[Address], email: str) -> dict[str, str]:
    address = address or Address()
    return {
        "name": address.name,
        "email": email,
        "address1": address.address1,
        "address2": address.address2 or "",
        "city": address.city,
        "zip": address.zip,
        "country": address.country,
    }


class OrderProcessor:
    def __init__(
        self,
        service: DatabaseService,
        shopify: ShopifyClient,
        fasteditor: FastEditorClient,
        settings: Settings,
        converter: Optional[CurrencyConverter] = None,
    ):
        self._service = service
        self._shopify = shopify
        self._fasteditor = fasteditor
        self._settings = settings
        self._ledger = OrderItemLedger(service)
        self._converter = converter or CurrencyConverter(service, settings.billing_currency)

    @classmethod
    def for_shop(cls, service: DatabaseService, shop: str, settings: Settings) -> "OrderProcessor":
        """Build a processor from the shop's stored session and FastEditor settings.

        Raises:
            SessionNotFound: No offline session with an access token.
            ShopSettingsNotFound: FastEditor is not configured for the shop.
        """
        session = load_offline_session(service, shop)
        shop_settings = require_fasteditor_settings(service, shop)
        shopify = ShopifyClient(session, settings.shopify_api_version, settings.http_timeout)
        fasteditor = FastEditorClient(
            FastEditorCredentials.from_settings(shop_settings), settings.http_timeout
        )
        return cls(service, shopify, fasteditor, settings)

    # -- paid orders --------------------------------------------------------

    def process_paid_order(self, order: ShopifyOrder, shop: str) -> list[dict[str, Any]]:
        """Record fees for the order's customized items and notify FastEditor.

        Returns one result per notification attempt, ``[]`` when the order has
        no customized items.

        Raises:
            PayloadValidationError: A customized item has an empty project key. Nothing is written.
            RateNotFound: No rate for the order currency. Nothing is written.
        """
        items = extract_customized_items(order)
        if not items:
            return []

        item_ids = [item.id for item in items]
        fees = {item.id: self.calculate_item_usage_fee(order.currency, item) for item in items}

        created, duplicates = self._record_items(shop, order, items, fees)
        logger.info(
            "Saved %d customized item(s) of order %s for shop %s (%d already recorded)",
            created,
            order.name,
            shop,
            duplicates,
        )
        if duplicates == len(items) and self._already_notified(shop, order, item_ids):
            logger.info("Order %s was already processed for shop %s. Skipping notification.", order.name, shop)
            return [{"success": True, "items": item_ids, "skipped": True}]

        self._store_order_images(order, items)

        results: list[dict[str, Any]] = []
        try:
            response = self._fasteditor.send_sale_notification(self.build_sale_notification(order, items, shop))
            results.append({"success": True, "items": item_ids, "response": response})
        except FastEditorAPIError as e:
            logger.error("FastEditor API error for order %s: %s", order.name, e)
            results.append({"success": False, "items": item_ids, "error": str(e)})
        else:
            try:
                self._ledger.mark_notified(shop, order.id, item_ids)
            except Exception:
                # A redelivery will notify again.
                logger.exception("Failed to record notification of order %s for shop %s", order.name, shop)

        self._update_processing_status(order, results)
        return results

    def _already_notified(self, shop: str, order: ShopifyOrder, item_ids: list[str]) -> bool:
        notified = {r.line_item_id for r in self._ledger.find_for_order(shop, order.id) if r.notified}
        return all(item_id in notified for item_id in item_ids)

    def calculate_item_usage_fee(self, currency: str, item: LineItem) -> Decimal:
        sale_value = self._converter.convert_to_billing_currency(currency, item.price * item.quantity)
        return calculate_usage_fee(sale_value, item.quantity, self._settings.fee_policy)

    def build_sale_notification(self, order: ShopifyOrder, items: list[LineItem], shop: str) -> dict[str, Any]:
        email = (order.customer.email if order.customer else None) or ""
        return {
            "orderId": order.name,
            "orderItems": [
                {
                    "projectKey": item.project_key,
                    "orderItemId": item.id,
                    "quantity": item.quantity,
                    "totalSaleValue": float(quantize_money(item.price * item.quantity)),
                }
                for item in items
            ],
            "billingInfo": _contact_block(order.billing_address, email),
            "shippingInfo": _contact_block(order.shipping_address, email),
            "callbackUrl": self._settings.callback_url(shop),
        }

    def _record_items(
        self, shop: str, order: ShopifyOrder, items: list[LineItem], fees: dict[str, Decimal]
    ) -> tuple[int, int]:
        created = duplicates = 0
        for item in items:
            entry = NewLedgerEntry(
                shop=shop,
                order_id=order.id,
                order_name=order.name,
                line_item_id=item.id,
                quantity=item.quantity,
                unit_price=item.price,
                currency=order.currency,
                project_key=item.project_key,
                product_id=item.product_id or "",
                variant_id=item.variant_id,
                usage_fee=fees[item.id],
            )
            try:
                if self._ledger.add(entry):
                    created += 1
                else:
                    duplicates += 1
            except Exception:
                # One failing row must not cost the fees of its siblings.
                logger.exception(
                    "Failed to record line item %s of order %s for shop %s", item.id, order.name, shop
                )
        return created, duplicates

    def _store_order_images(self, order: ShopifyOrder, items: list[LineItem]) -> None:
        urls = []
        for item in items:
            if item.image_url:
                urls.append(item.image_url)
            else:
                logger.warning("Missing image url for item %s of order %s", item.id, order.name)
        if not urls:
            return
        try:
            self._shopify.set_metafields(
                [
                    {
                        "key": "order_images",
                        "namespace": METAFIELD_NAMESPACE,
                        "ownerId": order.graphql_id,
                        "type": "list.url",
                        "value": json.dumps(urls),
                    }
                ]
            )
            logger.info("Set order_images metafield for order %s (%d url(s))", order.name, len(urls))
        except ShopifyAPIError as e:
            logger.error("Failed to set order_images metafield for order %s: %s", order.name, e)

    def _update_processing_status(self, order: ShopifyOrder, results: list[dict[str, Any]]) -> None:
        success = sum(1 for r in results if r["success"])
        tag = PROCESSING_TAG.format(success=success, total=len(results))
        try:
            self._shopify.update_order_tags(order.id, replace_fasteditor_tags(order.tags, tag))
            self._shopify.set_order_metafield(
                order.id, METAFIELD_NAMESPACE, "processing_results", "json", json.dumps(results)
            )
        except ShopifyAPIError as e:
            logger.error("Failed to update order %s processing metadata: %s", order.id, e)

    # -- sale results -------------------------------------------------------

    def handle_sale_result(self, callback: SaleResultCallback) -> SaleResultOutcome:
        """Attach FastEditor's production result to the order.

        Raises:
            OrderNotFound: Neither the order id nor the order name matches an order.
        """
        if not callback.succeeded:
            logger.error("FastEditor processing failed for order %s: %s", callback.order_id, callback.message)
            return SaleResultOutcome.FAILED_UPSTREAM

        order = self._resolve_order(callback.order_id)
        completed_at = datetime.now(timezone.utc).replace(microsecond=0).isoformat()

        metafields = [
            ("pdf_download_url", "url", callback.download_url),
            ("processing_complete", "boolean", "true"),
            ("completed_at", "date_time", completed_at),
        ]
        if callback.offering_id:
            metafields.append(("offering_id", "single_line_text_field", callback.offering_id))
        if callback.order_item_id:
            metafields.append(("order_item_id", "single_line_text_field", callback.order_item_id))

        for key, type_, value in metafields:
            self._shopify.set_order_metafield(order.id, METAFIELD_NAMESPACE, key, type_, value)
        self._shopify.update_order_tags(order.id, replace_fasteditor_tags(order.tags, COMPLETE_TAG))

        logger.info("Processed FastEditor result for order %s", callback.order_id)
        return SaleResultOutcome.COMPLETED

    def _resolve_order(self, order_ref: str) -> ShopifyOrder:
        # FastEditor echoes the notification's orderId, which is the order name.
        order = None
        if order_ref.isdigit():
            try:
                order = self._shopify.get_order(order_ref)
            except ShopifyAPIError as e:
                logger.warning("Lookup of order id %s failed, searching by name: %s", order_ref, e)
        if order is None:
            order = self._shopify.find_order_by_name(order_ref)
        if order is None:
            raise OrderNotFound(order_ref)
        return order
