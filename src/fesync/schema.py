"""Table schemas."""

from fesync.service import DatabaseService

ORDER_LINE_ITEMS_DDL = """
CREATE TABLE IF NOT EXISTS order_line_items (
    id              VARCHAR(36)   PRIMARY KEY,
    shop            VARCHAR(255)  NOT NULL,
    order_id        VARCHAR(64)   NOT NULL,
    order_name      VARCHAR(64)   NOT NULL,
    line_item_id    VARCHAR(64)   NOT NULL,
    quantity        INTEGER       NOT NULL,
    unit_price      DECIMAL(15,2) NOT NULL,
    currency        VARCHAR(3)    NOT NULL,
    project_key     VARCHAR(64)   NOT NULL,
    product_id      VARCHAR(64)   NOT NULL,
    variant_id      VARCHAR(64),
    usage_fee       DECIMAL(15,2) NOT NULL,
    billed          BOOLEAN       NOT NULL DEFAULT FALSE,
    billed_at       TIMESTAMP,
    billing_run_id  VARCHAR(36),
    notified_at     TIMESTAMP,
    created_at      TIMESTAMP     NOT NULL,
    UNIQUE (shop, order_id, line_item_id)
);
CREATE INDEX IF NOT EXISTS idx_order_line_items_unbilled ON order_line_items(shop, billed, created_at);
CREATE INDEX IF NOT EXISTS idx_order_line_items_created ON order_line_items(created_at);
"""

USAGE_BILLING_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS usage_billing_history (
    id              VARCHAR(36)   PRIMARY KEY,
    shop            VARCHAR(255)  NOT NULL,
    run_id          VARCHAR(36)   NOT NULL UNIQUE,
    total_price     DECIMAL(15,2) NOT NULL,
    items_count     INTEGER       NOT NULL,
    usage_record_id VARCHAR(255),
    created_at      TIMESTAMP     NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_usage_billing_history_shop ON usage_billing_history(shop);
"""

CURRENCY_RATES_DDL = """
CREATE TABLE IF NOT EXISTS currency_rates (
    code            VARCHAR(3)    PRIMARY KEY,
    rate            DECIMAL(18,6) NOT NULL,
    base            VARCHAR(3)    NOT NULL,
    created_at      TIMESTAMP     NOT NULL,
    updated_at      TIMESTAMP     NOT NULL
);
"""

SHOP_SETTINGS_DDL = """
CREATE TABLE IF NOT EXISTS shop_settings (
    shop                VARCHAR(255) PRIMARY KEY,
    fasteditor_api_key  VARCHAR(255),
    fasteditor_domain   VARCHAR(255),
    language            VARCHAR(16),
    country             VARCHAR(2),
    currency            VARCHAR(3),
    created_at          TIMESTAMP    NOT NULL,
    updated_at          TIMESTAMP    NOT NULL
);
"""

SHOP_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS shop_sessions (
    id              VARCHAR(255) PRIMARY KEY,
    shop            VARCHAR(255) NOT NULL,
    is_online       BOOLEAN      NOT NULL DEFAULT FALSE,
    access_token    VARCHAR(255) NOT NULL,
    scope           VARCHAR(1024)
);
CREATE INDEX IF NOT EXISTS idx_shop_sessions_shop ON shop_sessions(shop);
"""

ALL_DDL = (
    ORDER_LINE_ITEMS_DDL,
    USAGE_BILLING_HISTORY_DDL,
    CURRENCY_RATES_DDL,
    SHOP_SETTINGS_DDL,
    SHOP_SESSIONS_DDL,
)


def ensure_schema(service: DatabaseService) -> None:
    """Create every table if it doesn't exist."""
    for ddl in ALL_DDL:
        service.execute_ddl(ddl)
