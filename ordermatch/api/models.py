"""
Pydantic models for API request/response validation.

This module defines the data models used by the REST API, converting between
wire payloads and the order, trade and history domain records.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.history import OrderStatusHistory
from ..core.order import Order, OrderDraft, OrderResult
from ..core.trade import Trade
from ..utils.validators import validate_order_draft


# ============================================================================
# Request Models
# ============================================================================

class OrderRequest(BaseModel):
    """Request model for submitting a new order."""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "instrument": "PETR4",
            "side": "buy",
            "price": "25.50",
            "quantity": "100",
            "user_id": "1"
        }
    })

    instrument: str = Field(
        ...,
        description="Instrument symbol (e.g., PETR4)",
        min_length=1,
        max_length=20
    )
    side: str = Field(
        ...,
        description="Order side: buy or sell",
        pattern=r'^(buy|sell|BUY|SELL)$'
    )
    price: str = Field(
        ...,
        description="Limit price as decimal string",
        pattern=r'^\d+([.,]\d+)?$'
    )
    quantity: str = Field(
        ...,
        description="Order quantity as whole number string",
        pattern=r'^\d+$'
    )
    user_id: str = Field(..., description="Owning user", min_length=1)

    @field_validator('instrument')
    @classmethod
    def normalize_instrument(cls, v: str) -> str:
        """Instruments are upper-case symbols."""
        return v.strip().upper()

    @field_validator('quantity')
    @classmethod
    def validate_quantity(cls, v: str) -> str:
        """Validate quantity is positive."""
        if int(v) <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @field_validator('price')
    @classmethod
    def validate_price(cls, v: str) -> str:
        """Validate price is positive."""
        if Decimal(v.replace(",", ".")) <= 0:
            raise ValueError("Price must be positive")
        return v

    def to_draft(self, settings=None) -> OrderDraft:
        """
        Convert to a validated order draft.

        Raises:
            ValidationError: If the request breaks configured order limits
        """
        return validate_order_draft(
            instrument=self.instrument,
            side=self.side,
            price=self.price,
            quantity=self.quantity,
            user_id=self.user_id,
            settings=settings,
        )


# ============================================================================
# Response Models
# ============================================================================

class TradeResponse(BaseModel):
    """Response model for a trade."""

    trade_id: Optional[str] = Field(None, description="Trade identifier")
    buying_order_id: str = Field(..., description="Buy order ID")
    selling_order_id: str = Field(..., description="Sell order ID")
    price: str = Field(..., description="Execution price")
    quantity: str = Field(..., description="Executed quantity")
    timestamp: datetime = Field(..., description="Trade execution timestamp")

    @classmethod
    def from_trade(cls, trade: Trade) -> 'TradeResponse':
        """Create from Trade object."""
        return cls(
            trade_id=trade.trade_id,
            buying_order_id=trade.buying_order_id,
            selling_order_id=trade.selling_order_id,
            price=str(trade.price),
            quantity=str(trade.quantity),
            timestamp=trade.timestamp
        )


class HistoryResponse(BaseModel):
    """Response model for one status history entry."""

    history_id: Optional[str] = None
    order_id: str
    status: str
    timestamp: datetime

    @classmethod
    def from_history(cls, entry: OrderStatusHistory) -> 'HistoryResponse':
        return cls(
            history_id=entry.history_id,
            order_id=entry.order_id,
            status=entry.status.value,
            timestamp=entry.timestamp
        )


class OrderStatusResponse(BaseModel):
    """Response model for an order record."""

    order_id: str
    instrument: str
    side: str
    status: str
    price: str
    quantity: str
    filled_quantity: str
    remaining_quantity: str
    user_id: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> 'OrderStatusResponse':
        """Create from Order object."""
        return cls(
            order_id=order.order_id,
            instrument=order.instrument,
            side=order.side.value,
            status=order.status.value,
            price=str(order.price),
            quantity=str(order.quantity),
            filled_quantity=str(order.filled_quantity),
            remaining_quantity=str(order.remaining_quantity),
            user_id=order.user_id,
            created_at=order.created_at,
            updated_at=order.updated_at
        )


class OrderResponse(BaseModel):
    """Response model for order submission."""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "order": {
                "order_id": "7",
                "instrument": "PETR4",
                "side": "BUY",
                "status": "PARTIAL",
                "price": "25.50",
                "quantity": "100",
                "filled_quantity": "60",
                "remaining_quantity": "40",
                "user_id": "1",
                "created_at": "2025-10-25T10:30:45.123456+00:00",
                "updated_at": "2025-10-25T10:30:45.124101+00:00"
            },
            "trades": [
                {
                    "trade_id": "3",
                    "buying_order_id": "7",
                    "selling_order_id": "5",
                    "price": "25.40",
                    "quantity": "60",
                    "timestamp": "2025-10-25T10:30:45.124101+00:00"
                }
            ],
            "message": "Order partially filled: 60/100",
            "timestamp": "2025-10-25T10:30:45.124500+00:00"
        }
    })

    order: OrderStatusResponse = Field(..., description="Order after matching settled")
    trades: List[TradeResponse] = Field(default_factory=list, description="List of trades executed")
    message: str = Field(..., description="Submission outcome")
    timestamp: datetime = Field(..., description="Result timestamp")

    @classmethod
    def from_order_result(cls, result: OrderResult) -> 'OrderResponse':
        """Create from OrderResult object."""
        return cls(
            order=OrderStatusResponse.from_order(result.order),
            trades=[TradeResponse.from_trade(t) for t in result.trades],
            message=result.message,
            timestamp=result.timestamp
        )


class OrderListResponse(BaseModel):
    """One page of orders with pagination metadata."""

    orders: List[OrderStatusResponse]
    page: int
    per_page: int
    items: int = Field(..., description="Total number of matching orders")
    pages: int = Field(..., description="Total number of pages")
    first: int
    last: int
    prev: Optional[int] = None
    next: Optional[int] = None

    @classmethod
    def from_page(cls, page: 'OrderPage') -> 'OrderListResponse':
        return cls(
            orders=[OrderStatusResponse.from_order(o) for o in page.orders],
            page=page.page,
            per_page=page.per_page,
            items=page.items,
            pages=page.pages,
            first=page.first,
            last=page.last,
            prev=page.prev,
            next=page.next
        )


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Check timestamp")
    version: str = Field(..., description="API version")
    store_backend: str = Field(..., description="Configured record store")
    matching_engine: Dict[str, Any] = Field(..., description="Matching engine statistics")


class ErrorResponse(BaseModel):
    """Response model for errors."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    detail: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(..., description="Error timestamp")
