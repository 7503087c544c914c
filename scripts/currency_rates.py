"""CLI entry point for the currency rate jobs.

Usage:
    python -m scripts.currency_rates create [--db-url sqlite:///fesync.db] [--mock]
    python -m scripts.currency_rates update [--db-url ...] [--mock]
"""

import argparse
import logging
import sys

from fesync import create_service
from fesync.config import Settings
from fesync.cron import create_currency_rates, update_currency_rates
from fesync.fx.client import MockRateProviderClient
from fesync.schema import ensure_schema

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or refresh stored currency rates")
    parser.add_argument("action", choices=["create", "update"], help="create inserts missing codes, update refreshes all")
    parser.add_argument("--db-url", help="Database URL (default: DATABASE_URL)")
    parser.add_argument("--mock", action="store_true", help="Use mock rate provider (for testing)")
    args = parser.parse_args()

    settings = Settings.from_env()
    client = MockRateProviderClient() if args.mock else None
    if client is None and not settings.currency_api:
        logger.error("CURRENCY_API not set. Use --mock for testing.")
        sys.exit(1)

    service = create_service(args.db_url or settings.database_url)
    service.connect()
    try:
        ensure_schema(service)
        job = create_currency_rates if args.action == "create" else update_currency_rates
        result = job(service, settings, client)
        logger.info(result.message)
    finally:
        service.close()

    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()
