"""
Core domain models and order book structures
"""

from .order import (
    Order,
    OrderDraft,
    OrderSide,
    OrderStatus,
    OrderResult,
    ALLOWED_TRANSITIONS,
    ensure_transition,
)
from .trade import Trade
from .history import OrderStatusHistory
from .price_level import PriceLevel
from .order_book import OrderBook

__all__ = [
    "Order",
    "OrderDraft",
    "OrderSide",
    "OrderStatus",
    "OrderResult",
    "ALLOWED_TRANSITIONS",
    "ensure_transition",
    "Trade",
    "OrderStatusHistory",
    "PriceLevel",
    "OrderBook",
]
