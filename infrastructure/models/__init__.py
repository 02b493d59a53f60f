"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderStatusHistoryModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderStatusHistoryModel",
]
