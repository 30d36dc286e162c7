"""
Database Models

SQLAlchemy ORM models for Bustworks.
"""

from bustworks.models.order import Order, OrderStatus, is_paid_status, status_value
from bustworks.models.upload import Upload

__all__ = ["Order", "OrderStatus", "Upload", "is_paid_status", "status_value"]
