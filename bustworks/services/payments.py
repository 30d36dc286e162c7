"""
Payment Service

Stripe checkout sessions and webhook handling.

Two purchases go through checkout:
- mode "order": the bust itself; the webhook marks the order paid
- mode "retry": one extra preview generation; the webhook adds a retry credit

Both capture the shipping address and contact details from the session.
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import stripe

from ..config import get_settings
from ..models import Order
from ..pricing import shipping_cents_for_height
from .orders import OrderRepository

logger = logging.getLogger(__name__)
settings = get_settings()

MODE_ORDER = "order"
MODE_RETRY = "retry"
CHECKOUT_MODES = (MODE_ORDER, MODE_RETRY)

CHECKOUT_COMPLETED = "checkout.session.completed"


class PaymentError(Exception):
    """Base error for payment operations."""


class CheckoutError(PaymentError):
    """The order is not in a state that can be checked out."""


class WebhookSignatureError(PaymentError):
    """Missing or invalid webhook signature."""


def pick_metadata(session: dict[str, Any]) -> tuple[str, str]:
    """Order id and checkout mode from session metadata."""
    meta = session.get("metadata") or {}
    order_id = str(meta.get("orderId") or meta.get("order_id") or "").strip()
    mode = str(meta.get("mode") or meta.get("checkoutMode") or MODE_ORDER).strip().lower()
    return order_id, mode


def extract_shipping(session: dict[str, Any]) -> dict[str, str | None]:
    """
    Shipping columns from a checkout session.

    Stripe reports the address under shipping_details or, for some
    account settings, only under customer_details.
    """
    shipping = session.get("shipping_details") or {}
    customer = session.get("customer_details") or {}
    address = shipping.get("address") or customer.get("address") or {}

    return {
        "ship_name": shipping.get("name") or customer.get("name"),
        "ship_email": customer.get("email"),
        "ship_phone": customer.get("phone"),
        "ship_line1": address.get("line1"),
        "ship_line2": address.get("line2"),
        "ship_city": address.get("city"),
        "ship_region": address.get("state"),
        "ship_postal_code": address.get("postal_code"),
        "ship_country": address.get("country"),
    }


class PaymentGateway:
    """Stripe adapter for checkout and webhook verification."""

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret

    def build_checkout_params(self, order: Order, mode: str, origin: str) -> dict[str, Any]:
        """
        Checkout session parameters for an order.

        Raises:
            CheckoutError: The order is not ready to be paid for
        """
        if mode not in CHECKOUT_MODES:
            raise CheckoutError(f"Invalid checkout mode: {mode}")

        height_mm = int(order.bust_height_mm or 0)
        filament = order.filament_color or ""

        if mode == MODE_ORDER:
            if not order.price_cents or order.price_cents <= 0:
                raise CheckoutError("Invalid price_cents on order")
            if not height_mm:
                raise CheckoutError("Missing bust height on order")
            if not filament:
                raise CheckoutError("Choose filament before paying")
            line_item = {
                "price_data": {
                    "currency": settings.currency,
                    "product_data": {"name": f"Custom bust ({height_mm}mm)"},
                    "unit_amount": int(order.price_cents),
                },
                "quantity": 1,
            }
        else:
            line_item = {
                "price_data": {
                    "currency": settings.currency,
                    "product_data": {"name": "Extra preview generation"},
                    "unit_amount": settings.retry_credit_price_cents,
                },
                "quantity": 1,
            }

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [line_item],
            "shipping_address_collection": {"allowed_countries": settings.shipping_countries},
            "phone_number_collection": {"enabled": True},
            "success_url": f"{origin}/order/{order.id}?paid=1",
            "cancel_url": f"{origin}/order/{order.id}?canceled=1",
            "metadata": {
                "orderId": str(order.id),
                "mode": mode,
                "bust_height_mm": str(height_mm or ""),
                "filament_color": filament,
            },
        }

        if mode == MODE_ORDER:
            params["shipping_options"] = [
                {
                    "shipping_rate_data": {
                        "display_name": "Standard shipping",
                        "type": "fixed_amount",
                        "fixed_amount": {
                            "amount": shipping_cents_for_height(height_mm),
                            "currency": settings.currency,
                        },
                        "delivery_estimate": {
                            "minimum": {"unit": "business_day", "value": 3},
                            "maximum": {"unit": "business_day", "value": 7},
                        },
                    }
                }
            ]

        if order.email:
            params["customer_email"] = order.email

        return params

    def create_checkout_session(self, order: Order, mode: str, origin: str) -> str:
        """
        Create a hosted checkout session.

        Returns:
            The checkout URL to redirect the customer to
        """
        if not self.secret_key:
            raise PaymentError("Stripe secret key is not configured")

        params = self.build_checkout_params(order, mode, origin)
        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("Checkout session failed for order %s: %s", order.id, e)
            raise PaymentError(str(e)) from e

        logger.info("Checkout session %s created for order %s (%s)", session.id, order.id, mode)
        return session.url

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Verify a webhook signature and decode the event.

        Raises:
            WebhookSignatureError: Missing header or signature mismatch
        """
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookSignatureError(f"Invalid payload encoding: {e}") from e

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}") from e
        if not isinstance(event, dict):
            raise WebhookSignatureError("Invalid payload")
        return event


async def apply_webhook_event(repo: OrderRepository, event: dict[str, Any]) -> bool:
    """
    Apply a verified webhook event to its order.

    Unrelated event types and sessions without a resolvable order are
    acknowledged and ignored.

    Returns:
        True if an order was updated
    """
    if event.get("type") != CHECKOUT_COMPLETED:
        return False

    session = (event.get("data") or {}).get("object") or {}
    raw_order_id, mode = pick_metadata(session)
    if not raw_order_id:
        logger.info("Ignoring checkout session %s without order id", session.get("id"))
        return False

    try:
        order_id = uuid.UUID(raw_order_id)
    except ValueError:
        logger.warning("Ignoring checkout session with malformed order id %r", raw_order_id)
        return False

    shipping = extract_shipping(session)

    session_id = session.get("id")

    if mode == MODE_ORDER:
        updated = await repo.mark_paid(order_id, session_id, **shipping)
        logger.info("Order %s marked paid (updated=%s)", order_id, updated)
        return updated

    if mode == MODE_RETRY:
        updated = await repo.add_retry_credit(order_id, session_id, **shipping)
        if updated:
            logger.info("Order %s received a retry credit", order_id)
        else:
            logger.warning(
                "No retry credit for order %s (unknown order or session %s already applied)",
                order_id,
                session_id,
            )
        return updated

    logger.info("Ignoring checkout session for order %s with mode %r", order_id, mode)
    return False


# Singleton instance
_payment_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Get or create payment gateway singleton."""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = PaymentGateway()
    return _payment_gateway
