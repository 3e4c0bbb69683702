"""
Trade execution domain model

This module defines the Trade class representing one matched execution
between a buy order and a sell order.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from .order import utc_now, parse_timestamp


@dataclass(frozen=True, slots=True)
class Trade:
    """
    Represents a completed trade execution.

    This class is immutable (frozen=True) to ensure trade integrity.
    Trades are created once and never modified or deleted.

    Attributes:
        buying_order_id: ID of the buy order
        selling_order_id: ID of the sell order
        quantity: Executed quantity
        price: Execution price
        timestamp: Trade execution time
        trade_id: Identifier assigned by the store (None before persistence)
    """

    buying_order_id: str
    selling_order_id: str
    quantity: Decimal
    price: Decimal
    timestamp: datetime = field(default_factory=utc_now)
    trade_id: Optional[str] = None

    def __post_init__(self):
        """
        Post-initialization validation.

        Raises:
            ValueError: If trade parameters are invalid
        """
        if self.price <= 0:
            raise ValueError(f"Price must be positive, got {self.price}")

        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {self.quantity}")

        if self.buying_order_id == self.selling_order_id:
            raise ValueError("An order cannot trade against itself")

    def with_id(self, trade_id: str) -> "Trade":
        return replace(self, trade_id=trade_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the trade to its store record representation."""
        record = {
            "buyingOrderId": self.buying_order_id,
            "sellingOrderId": self.selling_order_id,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "timestamp": self.timestamp.isoformat(),
        }
        if self.trade_id is not None:
            record = {"id": self.trade_id, **record}
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "Trade":
        return cls(
            trade_id=str(record["id"]) if record.get("id") is not None else None,
            buying_order_id=str(record["buyingOrderId"]),
            selling_order_id=str(record["sellingOrderId"]),
            quantity=Decimal(str(record["quantity"])),
            price=Decimal(str(record["price"])),
            timestamp=parse_timestamp(record["timestamp"]),
        )

    def __repr__(self) -> str:
        return (
            f"Trade(id={self.trade_id}, {self.quantity} @ {self.price}, "
            f"buy={self.buying_order_id}, sell={self.selling_order_id})"
        )
