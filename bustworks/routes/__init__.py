"""
API Routes

FastAPI routers for Bustworks endpoints.
"""

from .admin import router as admin_router
from .health import router as health_router
from .orders import router as orders_router
from .payments import router as payments_router
from .phone_upload import router as phone_upload_router

__all__ = [
    "admin_router",
    "health_router",
    "orders_router",
    "payments_router",
    "phone_upload_router",
]
