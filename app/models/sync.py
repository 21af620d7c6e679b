"""
Pydantic models for sync requests and results.
These are returned by the sync services and serialized by the routers as-is.
"""
from pydantic import BaseModel, Field, field_validator


class SyncResult(BaseModel):
    """Aggregate counters of a catalog sync run."""
    mode: str = "full"
    processed: int = 0  # Remote products seen
    filtered: int = 0  # Rejected by the category allow-list
    synced: int = 0  # Created or updated locally
    created: int = 0
    updated: int = 0
    skipped: int = 0  # Missing name or base price
    errors: int = 0  # Per-product failures
    pages: int = 0  # Pages fetched successfully
    failed_pages: int = 0


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    note: str | None = None


class OrderRequest(BaseModel):
    """Website order to create locally and mirror to KiotViet."""
    receiver_full_name: str = Field(min_length=1)
    email: str | None = None
    phone_number: str | None = None
    address_detail: str | None = None
    province: str | None = None
    district: str | None = None
    ward: str | None = None
    note: str | None = None
    items: list[OrderItemRequest] = Field(min_length=1)

    @field_validator("receiver_full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("receiver_full_name must not be blank")
        return v


class OrderSyncResult(BaseModel):
    success: bool = True
    order_id: int
    remote_order_id: str | None = None
    remote_order_code: str | None = None
    remote_synced: bool = False
    remote_error: str | None = None


class WebhookResult(BaseModel):
    success: bool = True
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    message: str | None = None
