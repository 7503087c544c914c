"""Exception hierarchy.

Expected absences (a missing row, a duplicate insert) are reported by return
value at the persistence layer. These exceptions are for conditions that
abort the current unit of work.
"""

from typing import Optional


class FesyncError(Exception):
    """Base class for all fesync errors."""


class PayloadValidationError(FesyncError):
    """An inbound payload failed validation."""


class NotFoundError(FesyncError):
    """A record required by the current unit of work does not exist."""


class RateNotFound(NotFoundError):
    def __init__(self, currency: str, billing_currency: str = "EUR"):
        super().__init__(f"Currency rate for {currency} to {billing_currency} not found")
        self.currency = currency


class ShopSettingsNotFound(NotFoundError):
    def __init__(self, shop: str):
        super().__init__(f"FastEditor settings not found for shop: {shop}")
        self.shop = shop


class SessionNotFound(NotFoundError):
    def __init__(self, shop: str):
        super().__init__(f"No offline session with an access token for shop: {shop}")
        self.shop = shop


class OrderNotFound(NotFoundError):
    def __init__(self, order_ref: str):
        super().__init__(f"Order {order_ref} not found")
        self.order_ref = order_ref


class ExternalServiceError(FesyncError):
    """A call to a third-party HTTP API failed (non-2xx, timeout, connection error)."""

    service = "external"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FastEditorAPIError(ExternalServiceError):
    service = "fasteditor"


class ShopifyAPIError(ExternalServiceError):
    service = "shopify"


class RateProviderError(ExternalServiceError):
    service = "currency-rates"


class BillingError(FesyncError):
    """The platform rejected a usage charge."""
