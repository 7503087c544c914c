"""
Scheduled job triggers.

Each trigger runs one job to completion and reports 200 or 500 so the
scheduler can alert and retry.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fesync.billing import UsageBillingReconciler
from fesync.config import Settings
from fesync.currency import refresh_rates
from fesync.fx.client import ExchangeRatesClient, RateProviderClient
from fesync.service import DatabaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronResult:
    status: int
    message: str

    @property
    def ok(self) -> bool:
        return self.status == 200


def rate_client_from_settings(settings: Settings) -> RateProviderClient:
    if not settings.currency_api:
        raise ValueError("CURRENCY_API is not set")
    return ExchangeRatesClient(
        settings.currency_api,
        settings.currency_api_access_key,
        timeout=settings.http_timeout,
    )


def create_currency_rates(
    service: DatabaseService,
    settings: Settings,
    client: Optional[RateProviderClient] = None,
) -> CronResult:
    return _refresh(service, settings, client, initial=True)


def update_currency_rates(
    service: DatabaseService,
    settings: Settings,
    client: Optional[RateProviderClient] = None,
) -> CronResult:
    return _refresh(service, settings, client, initial=False)


def _refresh(
    service: DatabaseService,
    settings: Settings,
    client: Optional[RateProviderClient],
    initial: bool,
) -> CronResult:
    action = "create" if initial else "update"
    logger.info("Starting currency rate %s...", action)
    try:
        client = client or rate_client_from_settings(settings)
        count = refresh_rates(service, client, settings.billing_currency, initial=initial)
    except Exception as e:
        logger.exception("Failed to %s currency rates", action)
        return CronResult(500, f"Failed to {action} currency rates: {e}")

    logger.info("Currency rate %s wrote %d rate(s)", action, count)
    return CronResult(200, f"Currency rates {action}d: {count}")


def run_usage_billing(
    service: DatabaseService,
    settings: Settings,
    reconciler: Optional[UsageBillingReconciler] = None,
    now: Optional[datetime] = None,
) -> CronResult:
    reconciler = reconciler or UsageBillingReconciler(service, settings)
    try:
        report = reconciler.process_monthly_usage_billing(now)
    except Exception as e:
        logger.exception("Error running monthly usage billing")
        return CronResult(500, f"Usage billing failed: {e}")

    if not report.ok:
        failed = ", ".join(sorted(report.failed))
        return CronResult(500, f"{report.summary()} ({failed})")
    if not report.billed and not report.skipped:
        return CronResult(200, "No shops with FastEditor orders in the last month.")
    return CronResult(200, f"Billing run completed. {report.summary()}")
