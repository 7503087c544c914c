"""Order item ledger: one row per customized line item of a paid order.

Uniqueness of (shop, order_id, line_item_id) is enforced by the table's
UNIQUE constraint, so concurrent redeliveries of the same webhook cannot
create two billable rows.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fesync.models import OrderLineItemRecord
from fesync.service import DatabaseService
from fesync.timeutil import to_db_timestamp, utcnow

logger = logging.getLogger(__name__)

LEDGER_TABLE = "order_line_items"
LEDGER_COLUMNS = [
    "id",
    "shop",
    "order_id",
    "order_name",
    "line_item_id",
    "quantity",
    "unit_price",
    "currency",
    "project_key",
    "product_id",
    "variant_id",
    "usage_fee",
    "billed",
    "created_at",
]
LEDGER_CONFLICT_COLUMNS = ["shop", "order_id", "line_item_id"]
SELECT_COLUMNS = ", ".join(LEDGER_COLUMNS + ["billed_at", "billing_run_id", "notified_at"])


@dataclass(frozen=True)
class NewLedgerEntry:
    """Values the order processor supplies for a ledger row."""
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


class OrderItemLedger:
    def __init__(self, service: DatabaseService):
        self._service = service

    def exists(self, shop: str, order_id: str, line_item_id: str) -> bool:
        p = self._service.placeholder
        with self._service.ensure_transaction():
            rows = self._service.execute(
                f"SELECT 1 AS found FROM {LEDGER_TABLE} "
                f"WHERE shop = {p} AND order_id = {p} AND line_item_id = {p}",
                (shop, order_id, line_item_id),
            )
        return bool(rows)

    def add(self, entry: NewLedgerEntry, created_at: Optional[datetime] = None) -> bool:
        """Insert ``entry`` unless it is already recorded.

        Returns True if a row was written, False for a duplicate.
        """
        row = (
            str(uuid.uuid4()),
            entry.shop,
            entry.order_id,
            entry.order_name,
            entry.line_item_id,
            entry.quantity,
            entry.unit_price,
            entry.currency,
            entry.project_key,
            entry.product_id,
            entry.variant_id,
            entry.usage_fee,
            False,
            to_db_timestamp(created_at or utcnow()),
        )
        with self._service.ensure_transaction():
            inserted = self._service.insert_ignore(
                LEDGER_TABLE, LEDGER_COLUMNS, row, LEDGER_CONFLICT_COLUMNS
            )
        if not inserted:
            logger.info(
                "Line item %s of order %s for shop %s already exists. Skipping.",
                entry.line_item_id,
                entry.order_id,
                entry.shop,
            )
        return inserted

    def find_for_order(self, shop: str, order_id: str) -> list[OrderLineItemRecord]:
        p = self._service.placeholder
        with self._service.ensure_transaction():
            rows = self._service.execute(
                f"SELECT {SELECT_COLUMNS} FROM {LEDGER_TABLE} "
                f"WHERE shop = {p} AND order_id = {p} ORDER BY line_item_id",
                (shop, order_id),
            )
        return [OrderLineItemRecord.from_row(row) for row in rows]

    def find_unbilled_since(self, shop: str, since: datetime) -> list[OrderLineItemRecord]:
        """Unbilled entries for ``shop`` created on or after ``since``."""
        p = self._service.placeholder
        with self._service.ensure_transaction():
            rows = self._service.execute(
                f"SELECT {SELECT_COLUMNS} FROM {LEDGER_TABLE} "
                f"WHERE shop = {p} AND created_at >= {p} AND billed = {p} "
                f"ORDER BY created_at, id",
                (shop, to_db_timestamp(since), False),
            )
        return [OrderLineItemRecord.from_row(row) for row in rows]

    def find_shops_with_activity_since(self, since: datetime) -> list[str]:
        p = self._service.placeholder
        with self._service.ensure_transaction():
            rows = self._service.execute(
                f"SELECT DISTINCT shop FROM {LEDGER_TABLE} WHERE created_at >= {p} ORDER BY shop",
                (to_db_timestamp(since),),
            )
        return [row["shop"] for row in rows]

    def mark_notified(self, shop: str, order_id: str, line_item_ids: list[str]) -> int:
        """Record that FastEditor accepted the sale notification for these line items."""
        if not line_item_ids:
            return 0
        p = self._service.placeholder
        id_placeholders = ", ".join(p for _ in line_item_ids)
        with self._service.ensure_transaction():
            return self._service.execute_rowcount(
                f"UPDATE {LEDGER_TABLE} SET notified_at = {p} "
                f"WHERE shop = {p} AND order_id = {p} AND line_item_id IN ({id_placeholders})",
                (to_db_timestamp(utcnow()), shop, order_id, *line_item_ids),
            )

    def find_pending_run(self, shop: str) -> tuple[Optional[str], list[OrderLineItemRecord]]:
        """The oldest billing run that claimed entries but never finalized them.

        Returns ``(None, [])`` when every claimed entry of ``shop`` is billed.
        """
        p = self._service.placeholder
        with self._service.ensure_transaction():
            rows = self._service.execute(
                f"SELECT {SELECT_COLUMNS} FROM {LEDGER_TABLE} "
                f"WHERE shop = {p} AND billed = {p} AND billing_run_id IS NOT NULL "
                f"ORDER BY created_at, id",
                (shop, False),
            )
        if not rows:
            return None, []
        run_id = rows[0]["billing_run_id"]
        return run_id, [OrderLineItemRecord.from_row(row) for row in rows if row["billing_run_id"] == run_id]

    def claim(self, shop: str, item_ids: list[str], run_id: str) -> int:
        """Attribute unclaimed, unbilled entries to ``run_id`` ahead of the charge."""
        if not item_ids:
            return 0
        p = self._service.placeholder
        id_placeholders = ", ".join(p for _ in item_ids)
        with self._service.ensure_transaction():
            return self._service.execute_rowcount(
                f"UPDATE {LEDGER_TABLE} SET billing_run_id = {p} "
                f"WHERE shop = {p} AND billed = {p} AND billing_run_id IS NULL "
                f"AND id IN ({id_placeholders})",
                (run_id, shop, False, *item_ids),
            )

    def release(self, shop: str, run_id: str) -> int:
        """Undo ``claim`` for entries of ``run_id`` that were not billed."""
        p = self._service.placeholder
        with self._service.ensure_transaction():
            return self._service.execute_rowcount(
                f"UPDATE {LEDGER_TABLE} SET billing_run_id = NULL "
                f"WHERE shop = {p} AND billing_run_id = {p} AND billed = {p}",
                (shop, run_id, False),
            )

    def mark_billed(self, shop: str, since: datetime, item_ids: list[str], run_id: str) -> int:
        """Flip the entries claimed by ``run_id`` to billed.

        Only entries still unbilled are touched. Returns the number of entries flipped.
        """
        if not item_ids:
            return 0
        p = self._service.placeholder
        id_placeholders = ", ".join(p for _ in item_ids)
        with self._service.ensure_transaction():
            return self._service.execute_rowcount(
                f"UPDATE {LEDGER_TABLE} SET billed = {p}, billed_at = {p} "
                f"WHERE shop = {p} AND created_at >= {p} AND billed = {p} AND billing_run_id = {p} "
                f"AND id IN ({id_placeholders})",
                (True, to_db_timestamp(utcnow()), shop, to_db_timestamp(since), False, run_id, *item_ids),
            )

    def delete_for_shop(self, shop: str) -> int:
        p = self._service.placeholder
        with self._service.ensure_transaction():
            return self._service.execute_rowcount(
                f"DELETE FROM {LEDGER_TABLE} WHERE shop = {p}", (shop,)
            )

