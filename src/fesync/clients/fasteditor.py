"""FastEditor API client."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from fesync.errors import FastEditorAPIError
from fesync.models import ShopSettings
from fesync.payloads import FastEditorProduct, parse_fasteditor_product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FastEditorCredentials:
    api_key: str
    domain: str

    @property
    def base_url(self) -> str:
        return f"https://api.{self.domain}"

    @classmethod
    def from_settings(cls, settings: ShopSettings) -> "FastEditorCredentials":
        if not settings.has_fasteditor_credentials:
            raise ValueError(f"Shop {settings.shop} has no FastEditor credentials")
        return cls(api_key=settings.fasteditor_api_key, domain=settings.fasteditor_domain)


class FastEditorClient:
    """Calls FastEditor on behalf of one shop.

    Every non-2xx response, timeout or connection error is raised as
    FastEditorAPIError. Nothing is retried here.
    """

    def __init__(
        self,
        credentials: FastEditorCredentials,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self._credentials = credentials
        self._timeout = timeout
        self._session = session or requests.Session()

    def create_smart_link(self, params: dict[str, Any]) -> dict[str, Any]:
        """Create a SmartLink opening the editor for a product variant.

        ``params`` carries ``sku`` and optionally ``userId``, ``language``,
        ``country``, ``currency``, ``customAttributes``, ``quantity``, ``cartUrl``.
        """
        return self._post("/api/smartlink", "createSmartLink", json=params)

    def check_integration(self) -> dict[str, Any]:
        """Validate the credentials with an empty SmartLink request."""
        return self._post("/api/smartlink", "checkShopIntegration")

    def send_sale_notification(self, payload: dict[str, Any]) -> Any:
        return self._post(
            "/webhook/notifyorder",
            f"sale notification for order {payload.get('orderId')}",
            json=payload,
        )

    def fetch_product_data(self, url: str) -> FastEditorProduct:
        data = self._request("GET", url, "fetchProductData")
        return parse_fasteditor_product(data)

    def _post(self, path: str, action: str, json: Optional[dict] = None) -> Any:
        return self._request("POST", f"{self._credentials.base_url}{path}", action, json=json)

    def _request(self, method: str, url: str, action: str, json: Optional[dict] = None) -> Any:
        headers = {"Content-Type": "application/json", "X-Api-Key": self._credentials.api_key}
        try:
            resp = self._session.request(method, url, headers=headers, json=json, timeout=self._timeout)
        except requests.RequestException as e:
            raise FastEditorAPIError(f"FastEditor {action} failed: {e}") from e

        if not resp.ok:
            raise FastEditorAPIError(
                f"FastEditor {action} failed: {resp.status_code} - {resp.text}",
                resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise FastEditorAPIError(f"FastEditor {action} returned invalid JSON", resp.status_code) from e
