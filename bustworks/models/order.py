"""
Order Model

A bust order: customer parameters, generation state, assets and shipping.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text, Uuid

from bustworks.database import Base


class OrderStatus(str, Enum):
    """Order lifecycle stages."""
    CREATED = "created"
    PROCESSING = "processing"
    PREVIEW_READY = "preview_ready"
    FAILED = "failed"
    PAID = "paid"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"


PAID_STATUSES = frozenset({
    OrderStatus.PAID.value,
    OrderStatus.IN_PRODUCTION.value,
    OrderStatus.SHIPPED.value,
})

# Statuses an operator may set by hand
OPERATOR_STATUSES = PAID_STATUSES

# Statuses from which the customer may request a new preview
RETRYABLE_STATUSES = frozenset({
    OrderStatus.PREVIEW_READY.value,
    OrderStatus.FAILED.value,
    OrderStatus.CREATED.value,
})


def status_value(status: "OrderStatus | str | None") -> str:
    """Normalize an enum member or raw column value to its lower-case string."""
    if isinstance(status, OrderStatus):
        return status.value
    return str(status or "").strip().lower()


def is_paid_status(status: "OrderStatus | str | None") -> bool:
    """True for statuses at or past payment (paid, in_production, shipped)."""
    return status_value(status) in PAID_STATUSES


class Order(Base):
    """
    Bust order model.

    An order tracks:
    - Customer choices (style, size, filament) and the fixed price
    - Preview (image-to-image) and model (image-to-3D) generation tasks
    - Output asset paths in the Outputs bucket
    - Shipping details captured at checkout
    """

    __tablename__ = "orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    status = Column(String(50), default=OrderStatus.CREATED.value, nullable=False, index=True)

    # Customer choices
    email = Column(String(320), nullable=False)
    notes = Column(Text, nullable=True)
    bust_style = Column(String(50), nullable=True)
    style_hint = Column(Text, nullable=True)
    bust_height_mm = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)
    filament_color = Column(String(50), nullable=True)
    phone_upload_token = Column(String(100), nullable=True)

    # Preview attempts
    preview_attempts = Column(Integer, default=0, nullable=False)
    retry_credits = Column(Integer, default=0, nullable=False)
    generation_started_at = Column(DateTime, nullable=True)

    # Preview phase
    meshy_image_task_id = Column(String(100), nullable=True)
    meshy_image_last_error = Column(Text, nullable=True)
    clay_preview_path = Column(Text, nullable=True)

    # Model phase
    meshy_model_task_id = Column(String(100), nullable=True)
    meshy_model_attempts = Column(Integer, default=0, nullable=False)
    meshy_model_last_error = Column(Text, nullable=True)
    model_glb_path = Column(Text, nullable=True)
    model_obj_path = Column(Text, nullable=True)

    # Shipping (from checkout)
    ship_name = Column(String(255), nullable=True)
    ship_email = Column(String(320), nullable=True)
    ship_phone = Column(String(50), nullable=True)
    ship_line1 = Column(String(255), nullable=True)
    ship_line2 = Column(String(255), nullable=True)
    ship_city = Column(String(255), nullable=True)
    ship_region = Column(String(255), nullable=True)
    ship_postal_code = Column(String(50), nullable=True)
    ship_country = Column(String(2), nullable=True)
    last_checkout_session_id = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Order {self.id} status={self.status}>"

    @property
    def has_model(self) -> bool:
        return bool(self.model_glb_path or self.model_obj_path)
