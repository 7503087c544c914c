"""
Validated inbound payloads.

Each external interface has a parse function that either returns a typed
model or raises PayloadValidationError.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from fesync.errors import PayloadValidationError

PROJECT_KEY_PROPERTY = "_fasteditor_project_key"
IMAGE_URL_PROPERTY = "_fasteditor_image_url"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)


class LineItemProperty(_Payload):
    name: str
    value: Optional[str] = None


class LineItem(_Payload):
    id: str
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0)
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    properties: List[LineItemProperty] = Field(default_factory=list)

    @field_validator("properties", mode="before")
    @classmethod
    def _null_properties(cls, value: Any) -> Any:
        return [] if value is None else value

    def property_value(self, name: str) -> Optional[str]:
        for prop in self.properties:
            if prop.name == name:
                return prop.value
        return None

    def has_property(self, name: str) -> bool:
        return any(prop.name == name for prop in self.properties)

    @property
    def is_customized(self) -> bool:
        return self.has_property(PROJECT_KEY_PROPERTY)

    @property
    def project_key(self) -> Optional[str]:
        value = self.property_value(PROJECT_KEY_PROPERTY)
        return value.strip() if value and value.strip() else None

    @property
    def image_url(self) -> Optional[str]:
        value = self.property_value(IMAGE_URL_PROPERTY)
        return value.strip() if value and value.strip() else None


class Address(_Payload):
    name: str = ""
    address1: str = ""
    address2: Optional[str] = None
    city: str = ""
    zip: str = ""
    country: str = ""

    @field_validator("name", "address1", "city", "zip", "country", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class Customer(_Payload):
    email: Optional[str] = None


class ShopifyOrder(_Payload):
    """Body of the ``orders/paid`` webhook (REST order representation)."""
    id: str
    name: str
    currency: str = Field(min_length=3, max_length=3)
    line_items: List[LineItem]
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None
    customer: Optional[Customer] = None
    tags: str = ""
    admin_graphql_api_id: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def graphql_id(self) -> str:
        return self.admin_graphql_api_id or f"gid://shopify/Order/{self.id}"


class SaleResultCallback(_Payload):
    """FastEditor's asynchronous result for a notified sale."""
    order_id: str = Field(min_length=1)
    offering_id: Optional[str] = None
    order_item_id: Optional[str] = None
    status: str
    message: Optional[str] = None
    download_url: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @model_validator(mode="after")
    def _download_url_on_success(self) -> "SaleResultCallback":
        if self.succeeded and not self.download_url:
            raise ValueError("download_url is required when status is 'success'")
        return self


class FastEditorProduct(_Payload):
    project_key: str = Field(alias="projectKey")
    quantity: int = Field(gt=0)
    custom_attributes: Dict[str, Any] = Field(default_factory=dict, alias="customAttributes")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    @property
    def variant_id(self) -> Optional[str]:
        value = self.custom_attributes.get("variantId")
        return str(value) if value is not None else None


def _parse(model: type, data: Any, what: str):
    if not isinstance(data, dict):
        raise PayloadValidationError(f"{what} must be a JSON object, got {type(data).__name__}")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise PayloadValidationError(f"Invalid {what}: {e}") from e


def parse_order(data: Any) -> ShopifyOrder:
    return _parse(ShopifyOrder, data, "order payload")


def parse_sale_result(data: Any) -> SaleResultCallback:
    return _parse(SaleResultCallback, data, "sale result callback")


def parse_fasteditor_product(data: Any) -> FastEditorProduct:
    """FastEditor answers with a list of products; the first one is the edited project."""
    if not isinstance(data, list) or not data:
        raise PayloadValidationError("FastEditor returned empty product data")
    product = _parse(FastEditorProduct, data[0], "FastEditor product")
    if not product.variant_id:
        raise PayloadValidationError("FastEditor product is missing customAttributes.variantId")
    return product
