"""Usage billing history: immutable audit trail of successful billing runs."""

import logging
import uuid
from decimal import Decimal
from typing import Optional

from fesync.models import UsageBillingHistoryRecord
from fesync.service import DatabaseService
from fesync.timeutil import to_db_timestamp, utcnow

logger = logging.getLogger(__name__)

HISTORY_TABLE = "usage_billing_history"
HISTORY_COLUMNS = ["id", "shop", "run_id", "total_price", "items_count", "usage_record_id", "created_at"]


def record_billing(
    service: DatabaseService,
    shop: str,
    run_id: str,
    total_price: Decimal,
    items_count: int,
    usage_record_id: Optional[str] = None,
) -> UsageBillingHistoryRecord:
    record = UsageBillingHistoryRecord(
        id=str(uuid.uuid4()),
        shop=shop,
        run_id=run_id,
        total_price=total_price,
        items_count=items_count,
        usage_record_id=usage_record_id,
        created_at=utcnow(),
    )
    row = (
        record.id,
        record.shop,
        record.run_id,
        record.total_price,
        record.items_count,
        record.usage_record_id,
        to_db_timestamp(record.created_at),
    )
    with service.ensure_transaction():
        service.batch_insert(HISTORY_TABLE, HISTORY_COLUMNS, [row])
    logger.info(
        "Recorded usage billing for shop %s: %s over %d item(s), run %s",
        shop,
        total_price,
        items_count,
        run_id,
    )
    return record


def list_for_shop(service: DatabaseService, shop: str) -> list[UsageBillingHistoryRecord]:
    p = service.placeholder
    with service.ensure_transaction():
        rows = service.execute(
            f"SELECT {', '.join(HISTORY_COLUMNS)} FROM {HISTORY_TABLE} "
            f"WHERE shop = {p} ORDER BY created_at DESC",
            (shop,),
        )
    return [UsageBillingHistoryRecord.from_row(row) for row in rows]


def delete_for_shop(service: DatabaseService, shop: str) -> int:
    p = service.placeholder
    with service.ensure_transaction():
        return service.execute_rowcount(f"DELETE FROM {HISTORY_TABLE} WHERE shop = {p}", (shop,))
