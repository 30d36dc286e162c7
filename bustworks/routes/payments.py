"""
Payment Routes

Stripe hosted checkout and the webhook that confirms payments.
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from ..config import get_settings
from ..models import is_paid_status
from ..pricing import FILAMENT_COLORS
from ..schemas import CheckoutRequest, CheckoutResponse, WebhookResponse
from ..services.orders import OrderRepository, get_order_repository
from ..services.payments import (
    CHECKOUT_MODES,
    MODE_ORDER,
    CheckoutError,
    PaymentError,
    PaymentGateway,
    WebhookSignatureError,
    apply_webhook_event,
    get_payment_gateway,
)

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/stripe", tags=["payments"])


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    data: CheckoutRequest,
    origin: str | None = Header(default=None),
    repo: OrderRepository = Depends(get_order_repository),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> CheckoutResponse:
    """
    Start a hosted checkout for an order or for one extra preview.

    A filament color sent with the request is saved on the order first,
    unless the order is already paid.
    """
    mode = (data.mode or MODE_ORDER).strip().lower()
    if mode not in CHECKOUT_MODES:
        raise HTTPException(status_code=400, detail=f"Invalid mode. Must be one of: {', '.join(CHECKOUT_MODES)}")

    order = await repo.get(data.order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    filament = (data.filament_color or "").strip()
    if filament:
        if filament not in FILAMENT_COLORS:
            raise HTTPException(status_code=400, detail=f"Invalid filament_color: {filament}")
        if not is_paid_status(order.status) and filament != order.filament_color:
            await repo.update(order.id, filament_color=filament)

    if mode == MODE_ORDER and is_paid_status(order.status):
        raise HTTPException(status_code=400, detail="Order is already paid")

    try:
        url = gateway.create_checkout_session(order, mode, origin or settings.site_url)
    except CheckoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PaymentError as e:
        raise HTTPException(status_code=500, detail=f"Checkout error: {e}")

    return CheckoutResponse(url=url)


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    repo: OrderRepository = Depends(get_order_repository),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> WebhookResponse:
    """
    Receive Stripe events.

    The raw body is verified against the signing secret before anything is
    applied. Events that don't concern an order are acknowledged.
    """
    payload = await request.body()

    try:
        event = gateway.verify_webhook(payload, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Webhook event %s (%s)", event.get("id"), event.get("type"))
    await apply_webhook_event(repo, event)

    return WebhookResponse()
