"""Currency rate persistence."""

import logging
from typing import Optional

from fesync.models import CurrencyRate
from fesync.service import DatabaseService
from fesync.timeutil import to_db_timestamp, utcnow

logger = logging.getLogger(__name__)

RATES_TABLE = "currency_rates"
RATES_COLUMNS = ["code", "rate", "base", "created_at", "updated_at"]
RATES_CONFLICT_COLUMNS = ["code"]


def create_rates(service: DatabaseService, rates: list[CurrencyRate]) -> int:
    """Insert rates for codes that are not stored yet.

    Idempotent: ON CONFLICT (code) DO NOTHING. Returns the number of new rows.
    """
    now = to_db_timestamp(utcnow())
    created = 0
    with service.transaction():
        for rate in rates:
            row = (rate.code, rate.rate, rate.base, now, now)
            if service.insert_ignore(RATES_TABLE, RATES_COLUMNS, row, RATES_CONFLICT_COLUMNS):
                created += 1
    logger.info("Created %d currency rate(s) out of %d fetched", created, len(rates))
    return created


def update_rates(service: DatabaseService, rates: list[CurrencyRate]) -> int:
    """Update every rate in a single transaction, inserting codes that are new.

    Either the whole refresh applies or none of it does. Returns the number of
    rows written.
    """
    now = to_db_timestamp(utcnow())
    p = service.placeholder
    written = 0
    with service.transaction():
        for rate in rates:
            updated = service.execute_rowcount(
                f"UPDATE {RATES_TABLE} SET rate = {p}, base = {p}, updated_at = {p} WHERE code = {p}",
                (rate.rate, rate.base, now, rate.code),
            )
            if not updated:
                service.insert_ignore(
                    RATES_TABLE,
                    RATES_COLUMNS,
                    (rate.code, rate.rate, rate.base, now, now),
                    RATES_CONFLICT_COLUMNS,
                )
            written += 1
    logger.info("Updated %d currency rate(s)", written)
    return written


def find_rate(service: DatabaseService, code: str) -> Optional[CurrencyRate]:
    p = service.placeholder
    with service.ensure_transaction():
        rows = service.execute(
            f"SELECT code, rate, base, created_at, updated_at FROM {RATES_TABLE} WHERE code = {p}",
            (code.upper(),),
        )
    return CurrencyRate.from_row(rows[0]) if rows else None


def list_rates(service: DatabaseService) -> list[CurrencyRate]:
    with service.transaction():
        rows = service.execute(
            f"SELECT code, rate, base, created_at, updated_at FROM {RATES_TABLE} ORDER BY code"
        )
    return [CurrencyRate.from_row(row) for row in rows]
