"""
Pydantic models for KiotViet API and webhook payloads.
Field aliases follow KiotViet's wire casing (camelCase for the public API,
PascalCase for webhook notifications).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class KiotVietTokenResponse(BaseModel):
    """Response of the client-credentials grant."""

    access_token: str
    expires_in: int = 3600
    token_type: str = "Bearer"


class RemoteToken(BaseModel):
    """Cached bearer credential."""

    value: str
    expires_at: float


class KiotVietProduct(BaseModel):
    """Product as returned by GET /products."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    code: str | None = None
    name: str | None = None
    full_name: str | None = Field(default=None, alias="fullName")
    category_id: int | None = Field(default=None, alias="categoryId")
    category_name: str | None = Field(default=None, alias="categoryName")
    base_price: float | None = Field(default=None, alias="basePrice")
    description: str | None = None
    images: list[str] = Field(default_factory=list)
    is_active: bool | None = Field(default=None, alias="isActive")
    modified_date: datetime | None = Field(default=None, alias="modifiedDate")

    @field_validator("images", mode="before")
    @classmethod
    def normalize_images(cls, v: Any) -> list[str]:
        # KiotViet returns either plain URLs or {"Image": url} objects
        if not v:
            return []
        if isinstance(v, str):
            v = [v]
        urls = []
        for image in v:
            url = image.get("Image") if isinstance(image, dict) else image
            if isinstance(url, str) and url.strip():
                urls.append(url.strip())
        return urls


class ProductPage(BaseModel):
    """One page of the remote catalog."""

    items: list[KiotVietProduct] = Field(default_factory=list)
    total: int = 0
    invalid_items: int = 0  # Entries that failed validation


class RemoteOrderRef(BaseModel):
    """Identity of an order created on KiotViet."""

    remote_order_id: str
    code: str | None = None


class KiotVietOrderDetail(BaseModel):
    """Order line pushed to POST /orders."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(alias="productId")
    product_code: str | None = Field(default=None, alias="productCode")
    product_name: str | None = Field(default=None, alias="productName")
    quantity: int
    price: int
    note: str | None = None
    is_master: bool = Field(default=True, alias="isMaster")


class KiotVietOrderDelivery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receiver: str
    contact_number: str = Field(alias="contactNumber")
    address: str = ""
    location_name: str = Field(default="", alias="locationName")
    ward_name: str = Field(default="", alias="wardName")


class KiotVietOrderCustomer(BaseModel):
    id: int | None = None
    name: str


class KiotVietOrderPayload(BaseModel):
    """Body of POST /orders."""

    model_config = ConfigDict(populate_by_name=True)

    purchase_date: str = Field(alias="purchaseDate")
    branch_id: int = Field(alias="branchId")
    sale_channel_id: int = Field(alias="saleChannelId")
    discount: int = 0
    description: str = ""
    method: str = "Transfer"
    total_payment: int = Field(default=0, alias="totalPayment")
    customer: KiotVietOrderCustomer
    order_details: list[KiotVietOrderDetail] = Field(alias="orderDetails")
    order_delivery: KiotVietOrderDelivery | None = Field(default=None, alias="orderDelivery")

    def to_wire(self) -> dict[str, Any]:
        """Serialize with KiotViet field names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class WebhookOrderData(BaseModel):
    """A single order record inside a webhook notification."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(alias="Id")
    code: str | None = Field(default=None, alias="Code")
    branch_id: int | None = Field(default=None, alias="BranchId")
    sale_channel_id: int | None = Field(default=None, alias="SaleChannelId")
    status: int | None = Field(default=None, alias="Status")
    status_value: str | None = Field(default=None, alias="StatusValue")
    customer_id: int | None = Field(default=None, alias="CustomerId")
    total: float | None = Field(default=None, alias="Total")
    modified_date: str | None = Field(default=None, alias="ModifiedDate")


class WebhookNotification(BaseModel):
    """
    One notification of the envelope.

    Records are kept raw and validated one at a time by the webhook service, so a
    malformed record never hides the valid ones next to it.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str | None = Field(default=None, alias="Action")
    data: list[Any] = Field(default_factory=list, alias="Data")

    @field_validator("action", mode="before")
    @classmethod
    def coerce_action(cls, v: Any) -> str | None:
        return None if v is None else str(v)

    @field_validator("data", mode="before")
    @classmethod
    def as_list(cls, v: Any) -> list[Any]:
        return _as_list(v)


class WebhookEnvelope(BaseModel):
    """Body of KiotViet's order.update webhook."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = Field(default=None, alias="Id")
    attempt: int | None = Field(default=None, alias="Attempt")
    # Raw notification objects, validated one by one (see WebhookNotification)
    notifications: list[Any] = Field(default_factory=list, alias="Notifications")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str | None:
        return None if v is None else str(v)

    @field_validator("attempt", mode="before")
    @classmethod
    def coerce_attempt(cls, v: Any) -> int | None:
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @field_validator("notifications", mode="before")
    @classmethod
    def as_list(cls, v: Any) -> list[Any]:
        return _as_list(v)
