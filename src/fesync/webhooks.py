"""
Webhook handlers.

Framework-neutral: each handler takes the already authenticated shop and
decoded JSON body and returns a ``WebhookResponse`` for the HTTP layer to
send. Shopify retries every non-2xx answer, so handlers acknowledge with 200
unless the request itself is unusable.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fesync.config import Settings
from fesync.erasure import erase_shop
from fesync.errors import OrderNotFound, PayloadValidationError
from fesync.orders import OrderProcessor, SaleResultOutcome
from fesync.payloads import parse_order, parse_sale_result
from fesync.service import DatabaseService

logger = logging.getLogger(__name__)

ProcessorFactory = Callable[[DatabaseService, str, Settings], OrderProcessor]


@dataclass(frozen=True)
class WebhookResponse:
    status: int
    body: str


def handle_orders_paid(
    service: DatabaseService,
    settings: Settings,
    shop: Optional[str],
    payload: Any,
    processor_factory: ProcessorFactory = OrderProcessor.for_shop,
) -> WebhookResponse:
    if not shop:
        logger.error("orders/paid webhook without shop context")
        return WebhookResponse(200, "Missing shop")
    try:
        order = parse_order(payload)
    except PayloadValidationError as e:
        logger.error("Ignoring invalid orders/paid payload for %s: %s", shop, e)
        return WebhookResponse(200, "Invalid order payload")

    logger.info("Processing order %s for shop %s", order.name, shop)
    try:
        processor = processor_factory(service, shop, settings)
        results = processor.process_paid_order(order, shop)
    except Exception:
        # Acknowledge anyway; a retry would not fix it and could resend the notification.
        logger.exception("Error processing order %s for shop %s", order.name, shop)
        return WebhookResponse(200, "Error processed")

    logger.info("Order %s processed. Results: %s", order.name, results)
    return WebhookResponse(200, "OK")


def handle_sale_result(
    service: DatabaseService,
    settings: Settings,
    shop: Optional[str],
    payload: Any,
    processor_factory: ProcessorFactory = OrderProcessor.for_shop,
) -> WebhookResponse:
    """FastEditor's asynchronous result callback. ``shop`` comes from the callback URL query."""
    logger.info("Received FastEditor sale result callback: %s", payload)
    if not isinstance(payload, dict) or not payload.get("order_id"):
        logger.error("Missing order_id in FastEditor callback")
        return WebhookResponse(400, "Missing order_id")
    if not shop:
        logger.error("Missing shop parameter in callback URL")
        return WebhookResponse(400, "Missing shop parameter")

    try:
        callback = parse_sale_result(payload)
    except PayloadValidationError as e:
        logger.error("Invalid FastEditor callback for order %s: %s", payload.get("order_id"), e)
        return WebhookResponse(400, "Invalid callback payload")

    if not callback.succeeded:
        logger.error("FastEditor processing failed for order %s: %s", callback.order_id, callback.message)
        return WebhookResponse(200, "Processing failed")

    try:
        processor = processor_factory(service, shop, settings)
        outcome = processor.handle_sale_result(callback)
    except OrderNotFound as e:
        logger.error("%s in shop %s", e, shop)
        return WebhookResponse(404, "Order not found")
    except Exception:
        logger.exception("Error processing FastEditor sale result for order %s", callback.order_id)
        return WebhookResponse(200, "Error processed")

    if outcome is SaleResultOutcome.FAILED_UPSTREAM:
        return WebhookResponse(200, "Processing failed")
    return WebhookResponse(200, "OK")


def handle_gdpr(service: DatabaseService, topic: str, shop: str) -> WebhookResponse:
    if topic == "customers/data_request":
        logger.info("No customer data stored. Responding to data request for shop: %s", shop)
    elif topic == "customers/redact":
        logger.info("No customer data stored. Ignoring redaction request for shop: %s", shop)
    elif topic == "shop/redact":
        try:
            erase_shop(service, shop)
        except Exception:
            logger.exception("Failed to process shop redaction for %s", shop)
    else:
        logger.warning("Unhandled webhook topic: %s", topic)
        return WebhookResponse(200, "Unhandled webhook topic")
    return WebhookResponse(200, "Webhook received")
