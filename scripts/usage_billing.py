"""CLI entry point for the monthly usage billing run.

Usage:
    python -m scripts.usage_billing [--db-url sqlite:///fesync.db]
"""

import argparse
import logging
import sys

from fesync import create_service
from fesync.config import Settings
from fesync.cron import run_usage_billing
from fesync.schema import ensure_schema

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Charge shops for last month's customized items")
    parser.add_argument("--db-url", help="Database URL (default: DATABASE_URL)")
    args = parser.parse_args()

    settings = Settings.from_env()
    service = create_service(args.db_url or settings.database_url)
    service.connect()
    try:
        ensure_schema(service)
        result = run_usage_billing(service, settings)
        logger.info(result.message)
    finally:
        service.close()

    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()
