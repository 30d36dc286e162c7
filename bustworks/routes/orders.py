"""
Order Routes

Customer-facing endpoints: create an order from a portrait, poll its status
and request a new preview.
"""

import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from ..config import get_settings
from ..models import Order, OrderStatus, is_paid_status
from ..pricing import price_for_size_mm
from ..prompts import STYLE_PRESETS, get_available_styles
from ..schemas import (
    OrderCreateResponse,
    OrderRetryRequest,
    OrderRetryResponse,
    OrderStatusResponse,
    OrderView,
    StyleListResponse,
    StylePreset,
)
from ..services.lifecycle import (
    NoUploadFound,
    OrderLifecycle,
    RetryNotAllowed,
    get_order_lifecycle,
)
from ..services.meshy import MeshyError
from ..services.orders import OrderRepository, get_order_repository
from ..services.storage import StorageError, StorageService, get_storage_service
from .phone_upload import content_type_for, find_phone_photo

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/orders", tags=["orders"])


# ============================================================================
# Helper functions
# ============================================================================

def parse_order_id(raw: str | None) -> uuid.UUID:
    """Parse an order id from a request, raising 400 when missing or malformed."""
    if not raw or not str(raw).strip():
        raise HTTPException(status_code=400, detail="Missing orderId")
    try:
        return uuid.UUID(str(raw).strip())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid orderId")


def free_attempts_remaining(order: Order) -> int:
    allowed = settings.free_preview_attempts + (order.retry_credits or 0)
    return max(0, allowed - (order.preview_attempts or 0))


def order_to_view(order: Order, storage: StorageService) -> OrderView:
    """Convert an Order to the customer view with signed asset URLs."""
    if is_paid_status(order.status):
        last_error = order.meshy_model_last_error
    else:
        last_error = order.meshy_image_last_error

    return OrderView(
        id=order.id,
        status=order.status,
        email=order.email,
        bust_style=order.bust_style,
        bust_height_mm=order.bust_height_mm,
        price_cents=order.price_cents,
        filament_color=order.filament_color,
        preview_attempts=order.preview_attempts or 0,
        retry_credits=order.retry_credits or 0,
        free_attempts_remaining=free_attempts_remaining(order),
        generation_started_at=order.generation_started_at,
        meshy_model_attempts=order.meshy_model_attempts or 0,
        last_error=last_error,
        clay_preview_url=storage.signed_url_or_none(storage.outputs_bucket, order.clay_preview_path),
        model_glb_url=storage.signed_url_or_none(storage.outputs_bucket, order.model_glb_path),
        model_obj_url=storage.signed_url_or_none(storage.outputs_bucket, order.model_obj_path),
    )


async def read_image(image: UploadFile, max_bytes: int) -> bytes | None:
    """Read an uploaded image, or None when it is larger than max_bytes."""
    if image.size is not None and image.size > max_bytes:
        return None
    content = await image.read()
    if len(content) > max_bytes:
        return None
    return content


async def _fail_creation(repo: OrderRepository, order: Order, warning: str) -> OrderCreateResponse:
    """Mark a freshly created order failed and return the 201 warning body."""
    logger.warning("Order %s created without a preview task: %s", order.id, warning)
    await repo.update(
        order.id,
        status=OrderStatus.FAILED.value,
        meshy_image_last_error=warning,
    )
    return OrderCreateResponse(order_id=order.id, warning=warning)


# ============================================================================
# Order creation
# ============================================================================

@router.post(
    "",
    response_model=OrderCreateResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    email: Annotated[str, Form()] = "",
    bust_size: Annotated[str, Form(alias="bustSize")] = "",
    style: Annotated[str, Form()] = "",
    style_hint: Annotated[str, Form(alias="styleHint")] = "",
    notes: Annotated[str, Form()] = "",
    phone_upload_token: Annotated[str, Form(alias="phoneUploadToken")] = "",
    images: Annotated[list[UploadFile] | None, File()] = None,
    repo: OrderRepository = Depends(get_order_repository),
    storage: StorageService = Depends(get_storage_service),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
) -> OrderCreateResponse:
    """
    Create an order from one portrait photo and start its preview.

    The photo comes either as a single `images` file or from a completed
    phone upload (`phoneUploadToken`). The order row is created before the
    photo is stored, so once validation passes the client always gets an
    order id back; later problems are reported as a `warning`.
    """
    email = email.strip()
    style = style.strip().lower()
    phone_upload_token = phone_upload_token.strip()
    images = images or []

    if not email or not bust_size.strip() or not style:
        raise HTTPException(status_code=400, detail="Missing required fields")

    try:
        size_mm = int(bust_size.strip())
        price_cents = price_for_size_mm(size_mm)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid bustSize. Must be 100, 200, or 300.")

    if style not in STYLE_PRESETS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid style. Available: {', '.join(STYLE_PRESETS)}",
        )

    using_direct_upload = len(images) == 1
    using_phone_upload = not images and bool(phone_upload_token)
    if not using_direct_upload and not using_phone_upload:
        raise HTTPException(
            status_code=400,
            detail="Upload 1 image OR upload from phone and then submit.",
        )

    # Created first so the client can always redirect to the order page
    order = await repo.create(
        email=email,
        bust_height_mm=size_mm,
        bust_style=style,
        style_hint=style_hint.strip() or None,
        notes=notes.strip() or None,
        status=OrderStatus.CREATED.value,
        preview_attempts=1,
        generation_started_at=datetime.utcnow(),
        price_cents=price_cents,
        phone_upload_token=phone_upload_token if using_phone_upload else None,
    )

    if using_direct_upload:
        image = images[0]
        content = await read_image(image, settings.max_upload_size_mb * 1024 * 1024)
        if content is None:
            return await _fail_creation(
                repo, order, f"Image must be less than {settings.max_upload_size_mb}MB"
            )
        file_name = Path(image.filename or "upload.jpg").name
        content_type = image.content_type or "image/jpeg"
    else:
        phone_key = find_phone_photo(storage, phone_upload_token)
        if phone_key is None:
            return await _fail_creation(
                repo, order, "No phone photo found yet. Upload from your phone first."
            )
        try:
            content = storage.download_bytes(storage.uploads_bucket, phone_key)
        except StorageError as e:
            return await _fail_creation(repo, order, f"Could not read phone photo: {e}")
        ext = phone_key.rsplit(".", 1)[-1].lower()
        file_name = f"phone-photo.{ext}"
        content_type = content_type_for(ext)

    upload_path = f"{order.id}/{int(time.time() * 1000)}-{file_name}"
    try:
        storage.upload_bytes(storage.uploads_bucket, upload_path, content, content_type)
    except StorageError as e:
        return await _fail_creation(repo, order, f"Upload failed: {e}")

    await repo.add_upload(order.id, upload_path)

    task_id = await lifecycle.start_preview(order, upload_path)
    if task_id is None:
        return OrderCreateResponse(
            order_id=order.id,
            warning="Failed to create the preview generation task",
        )

    return OrderCreateResponse(order_id=order.id, meshy_image_task_id=task_id)


# ============================================================================
# Status polling and retry
# ============================================================================

@router.get("/status", response_model=OrderStatusResponse)
async def order_status(
    order_id: str | None = Query(default=None, alias="orderId"),
    repo: OrderRepository = Depends(get_order_repository),
    storage: StorageService = Depends(get_storage_service),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
) -> OrderStatusResponse:
    """
    Poll an order.

    Each call advances the order by at most one step (provider poll, asset
    transfer, 3D submission) before reporting where it stands.
    """
    order = await repo.get(parse_order_id(order_id))
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    report = await lifecycle.advance(order)

    return OrderStatusResponse(
        order=order_to_view(order, storage),
        stage=report.stage,
        progress=report.progress,
        message=report.message,
        payment_locked=report.payment_locked,
    )


@router.post("/retry", response_model=OrderRetryResponse)
async def retry_order(
    data: OrderRetryRequest,
    repo: OrderRepository = Depends(get_order_repository),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
) -> OrderRetryResponse:
    """Start a new preview from the order's latest uploaded photo."""
    order = await repo.get(data.order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    try:
        task_id = await lifecycle.retry_preview(order)
    except (RetryNotAllowed, NoUploadFound) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to sign image URL: {e}")
    except MeshyError as e:
        logger.warning("Retry for order %s rejected by provider: %s", order.id, e)
        raise HTTPException(status_code=502, detail=f"Failed to create preview task: {e}")

    return OrderRetryResponse(meshy_image_task_id=task_id)


@router.get("/styles", response_model=StyleListResponse)
async def list_styles() -> StyleListResponse:
    """List the available bust style presets."""
    return StyleListResponse(
        styles=[StylePreset(**style) for style in get_available_styles()]
    )
