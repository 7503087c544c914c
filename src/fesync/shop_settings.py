"""Per-shop FastEditor settings and offline Admin API sessions.

Both are written by the app's onboarding/OAuth flow; the order and billing
pipelines only read them.
"""

import logging
from typing import Optional

from fesync.errors import SessionNotFound, ShopSettingsNotFound
from fesync.models import ShopifySession, ShopSettings
from fesync.service import DatabaseService
from fesync.timeutil import to_db_timestamp, utcnow

logger = logging.getLogger(__name__)

SETTINGS_TABLE = "shop_settings"
SETTINGS_COLUMNS = [
    "shop",
    "fasteditor_api_key",
    "fasteditor_domain",
    "language",
    "country",
    "currency",
    "created_at",
    "updated_at",
]
SESSIONS_TABLE = "shop_sessions"
SESSIONS_COLUMNS = ["id", "shop", "is_online", "access_token", "scope"]


def get_shop_settings(service: DatabaseService, shop: str) -> Optional[ShopSettings]:
    p = service.placeholder
    with service.ensure_transaction():
        rows = service.execute(
            f"SELECT {', '.join(SETTINGS_COLUMNS)} FROM {SETTINGS_TABLE} WHERE shop = {p}",
            (shop,),
        )
    return ShopSettings.from_row(rows[0]) if rows else None


def require_fasteditor_settings(service: DatabaseService, shop: str) -> ShopSettings:
    """Settings with FastEditor credentials, or ShopSettingsNotFound."""
    settings = get_shop_settings(service, shop)
    if settings is None or not settings.has_fasteditor_credentials:
        raise ShopSettingsNotFound(shop)
    return settings


def save_shop_settings(service: DatabaseService, settings: ShopSettings) -> None:
    # created_at is left out of the upsert so an update keeps the original value.
    now = to_db_timestamp(utcnow())
    p = service.placeholder
    row = (
        settings.shop,
        settings.fasteditor_api_key,
        settings.fasteditor_domain,
        settings.language,
        settings.country,
        settings.currency,
    )
    with service.ensure_transaction():
        updated = service.execute_rowcount(
            f"UPDATE {SETTINGS_TABLE} SET fasteditor_api_key = {p}, fasteditor_domain = {p}, "
            f"language = {p}, country = {p}, currency = {p}, updated_at = {p} WHERE shop = {p}",
            row[1:] + (now, settings.shop),
        )
        if not updated:
            service.batch_insert(SETTINGS_TABLE, SETTINGS_COLUMNS, [row + (now, now)])


def delete_shop_settings(service: DatabaseService, shop: str) -> int:
    p = service.placeholder
    with service.ensure_transaction():
        return service.execute_rowcount(f"DELETE FROM {SETTINGS_TABLE} WHERE shop = {p}", (shop,))


def load_offline_session(service: DatabaseService, shop: str) -> ShopifySession:
    p = service.placeholder
    with service.ensure_transaction():
        rows = service.execute(
            f"SELECT shop, access_token FROM {SESSIONS_TABLE} "
            f"WHERE shop = {p} AND is_online = {p} ORDER BY id LIMIT 1",
            (shop, False),
        )
    if not rows or not rows[0]["access_token"]:
        logger.error("Missing access token or shop in offline session for %s", shop)
        raise SessionNotFound(shop)
    return ShopifySession(shop=rows[0]["shop"], access_token=rows[0]["access_token"])


def save_offline_session(
    service: DatabaseService, session: ShopifySession, scope: Optional[str] = None
) -> None:
    row = (f"offline_{session.shop}", session.shop, False, session.access_token, scope)
    with service.ensure_transaction():
        service.upsert(SESSIONS_TABLE, SESSIONS_COLUMNS, [row], ["id"])


def delete_sessions_for_shop(service: DatabaseService, shop: str) -> int:
    p = service.placeholder
    with service.ensure_transaction():
        return service.execute_rowcount(f"DELETE FROM {SESSIONS_TABLE} WHERE shop = {p}", (shop,))
