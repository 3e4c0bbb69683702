"""
Order status history entries

Append-only audit records written whenever an order changes status,
including the initial OPEN entry at creation.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from .order import OrderStatus, parse_timestamp


@dataclass(frozen=True, slots=True)
class OrderStatusHistory:
    """
    One status transition of an order.

    Attributes:
        order_id: Order that changed status
        status: Status entered
        timestamp: Time of the transition
        history_id: Identifier assigned by the store (None before persistence)
    """

    order_id: str
    status: OrderStatus
    timestamp: datetime
    history_id: Optional[str] = None

    def with_id(self, history_id: str) -> "OrderStatusHistory":
        return replace(self, history_id=history_id)

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "orderId": self.order_id,
            "status": self.status.label,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.history_id is not None:
            record = {"id": self.history_id, **record}
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "OrderStatusHistory":
        return cls(
            history_id=str(record["id"]) if record.get("id") is not None else None,
            order_id=str(record["orderId"]),
            status=OrderStatus.from_record(record["status"]),
            timestamp=parse_timestamp(record["timestamp"]),
        )
