"""Removal of a shop's data on ``shop/redact``."""

import logging

from fesync import history, shop_settings
from fesync.ledger import OrderItemLedger
from fesync.service import DatabaseService

logger = logging.getLogger(__name__)


def erase_shop(service: DatabaseService, shop: str) -> dict[str, int]:
    """Delete everything stored for ``shop`` in one transaction.

    Returns the number of deleted rows per table.
    """
    with service.transaction():
        deleted = {
            "usage_billing_history": history.delete_for_shop(service, shop),
            "order_line_items": OrderItemLedger(service).delete_for_shop(shop),
            "shop_settings": shop_settings.delete_shop_settings(service, shop),
            "shop_sessions": shop_settings.delete_sessions_for_shop(service, shop),
        }
    logger.info("Erased data for shop %s: %s", shop, deleted)
    return deleted
