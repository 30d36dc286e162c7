"""
Bustworks API Services

Business logic and external service integrations.
"""

from .storage import StorageService
from .meshy import MeshyClient
from .orders import OrderRepository
from .lifecycle import OrderLifecycle
from .payments import PaymentGateway

__all__ = ["StorageService", "MeshyClient", "OrderRepository", "OrderLifecycle", "PaymentGateway"]
