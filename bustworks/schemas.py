"""
Pydantic Schemas

Request/Response models for the API.

Several wire names are camelCase (orderId, clayPreviewUrl, paymentLocked);
they are declared as aliases and serialized by alias.
"""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Order Schemas
# ============================================================================

class OrderView(BaseModel):
    """Order fields shown to the customer while polling."""
    id: UUID
    status: str
    email: str
    bust_style: str | None = None
    bust_height_mm: int
    price_cents: int
    filament_color: str | None = None
    preview_attempts: int = 0
    retry_credits: int = 0
    free_attempts_remaining: int = 0
    generation_started_at: datetime | None = None
    meshy_model_attempts: int = 0
    last_error: str | None = None
    clay_preview_url: str | None = Field(default=None, alias="clayPreviewUrl")
    model_glb_url: str | None = Field(default=None, alias="modelGlbUrl")
    model_obj_url: str | None = Field(default=None, alias="modelObjUrl")

    model_config = {"populate_by_name": True}


class OrderStatusResponse(BaseModel):
    """Response of the status poll."""
    order: OrderView
    stage: str
    progress: int | None = None
    message: str | None = None
    payment_locked: bool = Field(default=False, alias="paymentLocked")

    model_config = {"populate_by_name": True}


class OrderCreateResponse(BaseModel):
    """Response after creating an order."""
    order_id: UUID = Field(alias="orderId")
    meshy_image_task_id: str | None = Field(default=None, alias="meshyImageTaskId")
    warning: str | None = None

    model_config = {"populate_by_name": True}


class OrderRetryRequest(BaseModel):
    """Request to regenerate the preview."""
    order_id: UUID = Field(alias="orderId")

    model_config = {"populate_by_name": True}


class OrderRetryResponse(BaseModel):
    """Response after starting a new preview task."""
    ok: bool = True
    meshy_image_task_id: str = Field(alias="meshyImageTaskId")

    model_config = {"populate_by_name": True}


# ============================================================================
# Payment Schemas
# ============================================================================

class CheckoutRequest(BaseModel):
    """Request to start a hosted checkout."""
    order_id: UUID = Field(alias="orderId")
    mode: str = "order"
    filament_color: str | None = None

    model_config = {"populate_by_name": True}


class CheckoutResponse(BaseModel):
    """Hosted checkout redirect target."""
    url: str


class WebhookResponse(BaseModel):
    """Webhook acknowledgement."""
    received: bool = True


# ============================================================================
# Phone Upload Schemas
# ============================================================================

class PhoneUploadTokenResponse(BaseModel):
    """A fresh phone upload token."""
    token: str


class PhoneUploadResponse(BaseModel):
    """Response after a phone uploaded its photo."""
    ok: bool = True
    token: str
    bucket: str
    path: str
    preview_url: str | None = Field(default=None, alias="previewUrl")

    model_config = {"populate_by_name": True}


class PhoneUploadStatusResponse(BaseModel):
    """Whether the phone photo has arrived."""
    status: str  # waiting, uploaded
    token: str
    path: str | None = None
    preview_url: str | None = Field(default=None, alias="previewUrl")

    model_config = {"populate_by_name": True}


# ============================================================================
# Admin Schemas
# ============================================================================

class AdminLoginRequest(BaseModel):
    """Admin password login."""
    password: str = ""
    next: str = "/admin/orders"


class AdminLoginResponse(BaseModel):
    """Admin login result."""
    ok: bool = True
    redirect: str


class AdminOrderResponse(BaseModel):
    """Order row in the admin list."""
    id: UUID
    created_at: datetime
    status: str
    email: str
    bust_height_mm: int
    bust_style: str | None = None
    filament_color: str | None = None
    clay_preview_path: str | None = None
    model_glb_path: str | None = None
    model_obj_path: str | None = None
    ship_name: str | None = None
    ship_email: str | None = None
    ship_phone: str | None = None
    ship_line1: str | None = None
    ship_line2: str | None = None
    ship_city: str | None = None
    ship_region: str | None = None
    ship_postal_code: str | None = None
    ship_country: str | None = None
    preview_url: str | None = Field(default=None, alias="previewUrl")
    glb_url: str | None = Field(default=None, alias="glbUrl")
    obj_url: str | None = Field(default=None, alias="objUrl")

    model_config = {"from_attributes": True, "populate_by_name": True}


class AdminOrderListResponse(BaseModel):
    """List of orders for the admin view."""
    orders: list[AdminOrderResponse]


class AdminStatusUpdate(BaseModel):
    """Operator status change."""
    order_id: UUID = Field(alias="orderId")
    status: str

    model_config = {"populate_by_name": True}


class OkResponse(BaseModel):
    ok: bool = True


class ShippingDetails(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country: str | None = None


class AssetUrls(BaseModel):
    preview_url: str | None = None
    glb_url: str | None = None
    obj_url: str | None = None


class OrderExport(BaseModel):
    """Fulfillment export of one order."""
    order_id: UUID = Field(alias="orderId")
    status: str
    email: str
    bust_height_mm: int
    bust_style: str | None = None
    filament_color: str | None = None
    shipping: ShippingDetails
    assets: AssetUrls
    exported_at: datetime

    model_config = {"populate_by_name": True}


# ============================================================================
# Style Schemas
# ============================================================================

class StylePreset(BaseModel):
    """Style preset information."""
    id: str
    name: str
    description: str


class StyleListResponse(BaseModel):
    """List of available styles."""
    styles: list[StylePreset]


# ============================================================================
# Health/Status Schemas
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    services: dict[str, str] = {}
