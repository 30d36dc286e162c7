"""
Admin Routes

Password login and the operator views: order list, status changes and the
fulfillment export. Everything except login requires the admin cookie.
"""

import hashlib
import hmac
import io
import json
import logging
import uuid
import zipfile
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse

from ..config import get_settings
from ..models import Order, is_paid_status
from ..models.order import OPERATOR_STATUSES
from ..schemas import (
    AdminLoginRequest,
    AdminLoginResponse,
    AdminOrderListResponse,
    AdminOrderResponse,
    AdminStatusUpdate,
    AssetUrls,
    OkResponse,
    OrderExport,
    ShippingDetails,
)
from ..services.orders import OrderRepository, get_order_repository
from ..services.storage import StorageError, StorageService, get_storage_service

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/admin", tags=["admin"])

DEFAULT_REDIRECT = "/admin/orders"


# ============================================================================
# Authentication
# ============================================================================

def admin_token(password: str) -> str:
    """Cookie value proving knowledge of the admin password."""
    return hmac.new(
        password.encode("utf-8"),
        settings.admin_cookie_name.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def require_admin(request: Request) -> None:
    """FastAPI dependency rejecting requests without a valid admin cookie."""
    cookie = request.cookies.get(settings.admin_cookie_name)
    if not settings.admin_password or not cookie:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(cookie, admin_token(settings.admin_password)):
        logger.warning("Rejected admin request with invalid cookie")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/login", response_model=AdminLoginResponse)
async def login(data: AdminLoginRequest, response: Response) -> AdminLoginResponse:
    """Check the admin password and set the session cookie (7 days)."""
    if not settings.admin_password:
        raise HTTPException(status_code=500, detail="ADMIN_PASSWORD is not set")

    if not hmac.compare_digest(data.password.encode("utf-8"), settings.admin_password.encode("utf-8")):
        logger.warning("Failed admin login")
        raise HTTPException(status_code=401, detail="Invalid password")

    response.set_cookie(
        key=settings.admin_cookie_name,
        value=admin_token(settings.admin_password),
        max_age=settings.admin_cookie_max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.admin_cookie_secure,
    )

    # Only same-site paths are followed after login
    redirect = data.next if data.next.startswith("/") and not data.next.startswith("//") else DEFAULT_REDIRECT
    logger.info("Admin logged in")
    return AdminLoginResponse(redirect=redirect)


# ============================================================================
# Helper functions
# ============================================================================

def is_ready_to_print(order: Order) -> bool:
    """Paid, filament chosen and at least one model file stored."""
    return is_paid_status(order.status) and bool(order.filament_color) and order.has_model


def order_to_admin_response(order: Order, storage: StorageService) -> AdminOrderResponse:
    response = AdminOrderResponse.model_validate(order)
    response.preview_url = storage.signed_url_or_none(storage.outputs_bucket, order.clay_preview_path)
    response.glb_url = storage.signed_url_or_none(storage.outputs_bucket, order.model_glb_path)
    response.obj_url = storage.signed_url_or_none(storage.outputs_bucket, order.model_obj_path)
    return response


def order_to_export(order: Order, storage: StorageService) -> OrderExport:
    """Fulfillment record: order details, shipping address and signed asset URLs."""
    return OrderExport(
        order_id=order.id,
        status=order.status,
        email=order.email,
        bust_height_mm=order.bust_height_mm,
        bust_style=order.bust_style,
        filament_color=order.filament_color,
        shipping=ShippingDetails(
            name=order.ship_name,
            email=order.ship_email,
            phone=order.ship_phone,
            line1=order.ship_line1,
            line2=order.ship_line2,
            city=order.ship_city,
            region=order.ship_region,
            postal_code=order.ship_postal_code,
            country=order.ship_country,
        ),
        assets=AssetUrls(
            preview_url=storage.signed_url_or_none(storage.outputs_bucket, order.clay_preview_path),
            glb_url=storage.signed_url_or_none(storage.outputs_bucket, order.model_glb_path),
            obj_url=storage.signed_url_or_none(storage.outputs_bucket, order.model_obj_path),
        ),
        exported_at=datetime.utcnow(),
    )


def parse_order_id(raw: str | None) -> uuid.UUID:
    if not raw or not raw.strip():
        raise HTTPException(status_code=400, detail="Missing orderId")
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        raise HTTPException(status_code=404, detail="Order not found")


# ============================================================================
# Orders
# ============================================================================

@router.get(
    "/orders",
    response_model=AdminOrderListResponse,
    dependencies=[Depends(require_admin)],
)
async def list_orders(
    status: str | None = Query(default=None),
    q: str | None = Query(default=None),
    ready: str | None = Query(default=None),
    repo: OrderRepository = Depends(get_order_repository),
    storage: StorageService = Depends(get_storage_service),
) -> AdminOrderListResponse:
    """
    List the latest orders.

    Filters:
    - status: exact status
    - q: search over id, email and shipping fields
    - ready=1: only orders that can go to the printer
    """
    orders = await repo.list_orders(
        status=(status or "").strip() or None,
        query=(q or "").strip() or None,
    )
    if ready == "1":
        orders = [o for o in orders if is_ready_to_print(o)]

    return AdminOrderListResponse(
        orders=[order_to_admin_response(o, storage) for o in orders]
    )


@router.post(
    "/orders/status",
    response_model=OkResponse,
    dependencies=[Depends(require_admin)],
)
async def update_order_status(
    data: AdminStatusUpdate,
    repo: OrderRepository = Depends(get_order_repository),
) -> OkResponse:
    """Set an order to paid, in_production or shipped."""
    new_status = data.status.strip().lower()
    if new_status not in OPERATOR_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")

    if not await repo.update(data.order_id, status=new_status):
        raise HTTPException(status_code=404, detail="Order not found")

    logger.info("Admin set order %s to %s", data.order_id, new_status)
    return OkResponse()


@router.get("/orders/assets", dependencies=[Depends(require_admin)])
async def export_order_assets(
    order_id: str | None = Query(default=None, alias="orderId"),
    fmt: str = Query(default="json", alias="format"),
    repo: OrderRepository = Depends(get_order_repository),
    storage: StorageService = Depends(get_storage_service),
):
    """
    Export an order for fulfillment.

    format=json returns the metadata with signed asset URLs; format=zip
    bundles the metadata with the stored preview and model files.
    """
    order = await repo.get(parse_order_id(order_id))
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    export = order_to_export(order, storage)
    if fmt != "zip":
        return export

    zip_buffer = io.BytesIO()
    with zipfile.ZipFile(zip_buffer, "w", zipfile.ZIP_DEFLATED) as zip_file:
        zip_file.writestr(
            "order.json",
            json.dumps(export.model_dump(mode="json", by_alias=True), indent=2),
        )
        for path in (order.clay_preview_path, order.model_glb_path, order.model_obj_path):
            if not path:
                continue
            try:
                data = storage.download_bytes(storage.outputs_bucket, path)
            except StorageError:
                logger.warning("Skipping missing asset %s for order %s", path, order.id)
                continue
            zip_file.writestr(path.rsplit("/", 1)[-1], data)

    zip_buffer.seek(0)

    return StreamingResponse(
        zip_buffer,
        media_type="application/zip",
        headers={
            "Content-Disposition": f"attachment; filename=order-{str(order.id)[:8]}.zip"
        },
    )
