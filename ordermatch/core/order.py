"""
Order domain model with enums and validation

This module defines the Order record, its side and status enums, and the
status transition table that every lifecycle change is checked against.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, List, TYPE_CHECKING

from ..utils.exceptions import InvalidStateError

if TYPE_CHECKING:
    from .trade import Trade


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp as stored in record stores."""
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OrderSide(Enum):
    """Order side enumeration."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY

    @property
    def label(self) -> str:
        """Value written to store records."""
        return SIDE_LABELS[self]

    @classmethod
    def from_record(cls, value: Any) -> "OrderSide":
        return _decode(cls, SIDE_LABELS, value)

    def __str__(self) -> str:
        return self.value


class OrderStatus(Enum):
    """Order status enumeration."""
    OPEN = "OPEN"            # Resting, nothing executed yet
    PARTIAL = "PARTIAL"      # Partially executed, remainder resting
    FILLED = "FILLED"        # Completely executed
    CANCELLED = "CANCELLED"  # Withdrawn by its owner

    @property
    def is_active(self) -> bool:
        """Active orders can still be matched or cancelled."""
        return self in (OrderStatus.OPEN, OrderStatus.PARTIAL)

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]

    @property
    def label(self) -> str:
        """Value written to store records."""
        return STATUS_LABELS[self]

    @classmethod
    def from_record(cls, value: Any) -> "OrderStatus":
        return _decode(cls, STATUS_LABELS, value)

    def __str__(self) -> str:
        return self.value


# Labels used by the json-server records (db.json)
SIDE_LABELS: Dict[OrderSide, str] = {
    OrderSide.BUY: "Compra",
    OrderSide.SELL: "Venda",
}

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.OPEN: "Aberta",
    OrderStatus.PARTIAL: "Parcial",
    OrderStatus.FILLED: "Executada",
    OrderStatus.CANCELLED: "Cancelada",
}


def _decode(enum_cls, labels: Dict[Any, str], value: Any):
    """Resolve a record label or an enum value, ignoring case."""
    text = str(value).strip().lower()
    for member, label in labels.items():
        if text in (label.lower(), member.value.lower()):
            return member
    raise ValueError(f"Unknown {enum_cls.__name__} {value!r}")


ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.OPEN: frozenset({OrderStatus.PARTIAL, OrderStatus.FILLED, OrderStatus.CANCELLED}),
    OrderStatus.PARTIAL: frozenset({OrderStatus.FILLED, OrderStatus.CANCELLED}),
    OrderStatus.FILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def ensure_transition(order_id: Optional[str], current: OrderStatus, target: OrderStatus) -> None:
    """
    Check a status change against the transition table.

    Raises:
        InvalidStateError: If the transition is not allowed
    """
    if not current.can_transition_to(target):
        raise InvalidStateError(
            f"Order {order_id} is {current.value} and cannot move to {target.value}",
            details={
                "order_id": order_id,
                "status": current.value,
                "requested_status": target.value,
            }
        )


@dataclass(frozen=True)
class OrderDraft:
    """
    A validated order submission that has not been persisted yet.

    Attributes:
        instrument: Symbol of the traded asset (e.g., "PETR4")
        side: Buy or sell
        price: Limit price
        quantity: Order size
        user_id: Owning user
    """
    instrument: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    user_id: str


@dataclass(frozen=True, slots=True)
class Order:
    """
    Represents an order record.

    Orders are immutable values: every state change produces a new record via
    :meth:`apply_fill` or :meth:`cancel`, and the store keeps the latest one.

    Attributes:
        instrument: Symbol of the traded asset
        side: Buy or sell
        price: Limit price
        quantity: Original order size, fixed at creation
        remaining_quantity: Amount yet to be executed
        status: Current lifecycle status
        created_at: Creation time, fixed at creation
        updated_at: Time of the latest state change
        user_id: Owning user
        order_id: Identifier assigned by the store (None before persistence)
    """

    instrument: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    remaining_quantity: Decimal
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    user_id: str
    order_id: Optional[str] = None

    def __post_init__(self):
        self.validate()

    @classmethod
    def open(cls, draft: OrderDraft, now: Optional[datetime] = None) -> "Order":
        """Build the initial OPEN record for a draft."""
        now = now or utc_now()
        return cls(
            instrument=draft.instrument,
            side=draft.side,
            price=draft.price,
            quantity=draft.quantity,
            remaining_quantity=draft.quantity,
            status=OrderStatus.OPEN,
            created_at=now,
            updated_at=now,
            user_id=draft.user_id,
        )

    def validate(self) -> None:
        """
        Validate order fields and the quantity/status correspondence.

        Raises:
            ValueError: If validation fails
        """
        if not self.instrument or not self.instrument.strip():
            raise ValueError("Instrument cannot be empty")

        if self.price <= 0:
            raise ValueError(f"Price must be positive, got {self.price}")

        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {self.quantity}")

        if self.remaining_quantity < 0 or self.remaining_quantity > self.quantity:
            raise ValueError(
                f"Remaining quantity {self.remaining_quantity} outside [0, {self.quantity}]"
            )

        remaining = self.remaining_quantity
        if self.status == OrderStatus.OPEN:
            consistent = remaining == self.quantity
        elif self.status == OrderStatus.PARTIAL:
            consistent = 0 < remaining < self.quantity
        elif self.status == OrderStatus.FILLED:
            consistent = remaining == 0
        else:
            # Cancellation is only reachable from OPEN or PARTIAL
            consistent = remaining > 0

        if not consistent:
            raise ValueError(
                f"Status {self.status.value} inconsistent with remaining "
                f"{remaining}/{self.quantity}"
            )

    def apply_fill(self, quantity: Decimal, now: Optional[datetime] = None) -> "Order":
        """
        Return the record that results from executing ``quantity`` of this order.

        Raises:
            InvalidStateError: If the order is no longer active
            ValueError: If the quantity is not positive or exceeds the remainder
        """
        if not self.status.is_active:
            raise InvalidStateError(
                f"Order {self.order_id} is {self.status.value} and cannot be executed",
                details={"order_id": self.order_id, "status": self.status.value}
            )

        if quantity <= 0:
            raise ValueError(f"Fill quantity must be positive, got {quantity}")

        if quantity > self.remaining_quantity:
            raise ValueError(
                f"Fill quantity {quantity} exceeds remaining {self.remaining_quantity}"
            )

        remaining = self.remaining_quantity - quantity
        status = OrderStatus.FILLED if remaining == 0 else OrderStatus.PARTIAL
        if status != self.status:
            ensure_transition(self.order_id, self.status, status)

        return replace(
            self,
            remaining_quantity=remaining,
            status=status,
            updated_at=now or utc_now(),
        )

    def cancel(self, now: Optional[datetime] = None) -> "Order":
        """
        Return the CANCELLED version of this order.

        Raises:
            InvalidStateError: If the order is FILLED or already CANCELLED
        """
        ensure_transition(self.order_id, self.status, OrderStatus.CANCELLED)
        return replace(self, status=OrderStatus.CANCELLED, updated_at=now or utc_now())

    def with_id(self, order_id: str) -> "Order":
        return replace(self, order_id=order_id)

    def is_price_compatible(self, other: "Order") -> bool:
        """
        Check whether this order can trade against ``other``.

        A buy at Pb and a sell at Ps are compatible iff Pb >= Ps.
        """
        if self.side == other.side:
            return False
        if self.is_buy:
            return self.price >= other.price
        return self.price <= other.price

    @property
    def filled_quantity(self) -> Decimal:
        return self.quantity - self.remaining_quantity

    @property
    def is_buy(self) -> bool:
        return self.side == OrderSide.BUY

    @property
    def is_sell(self) -> bool:
        return self.side == OrderSide.SELL

    @property
    def is_active(self) -> bool:
        """Check if order is active (can still be matched or cancelled)."""
        return self.status.is_active

    def __repr__(self) -> str:
        return (
            f"Order(id={self.order_id}, {self.side.value} {self.quantity} "
            f"{self.instrument} @ {self.price}, status={self.status.value}, "
            f"remaining={self.remaining_quantity})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the order to its store record representation."""
        record = {
            "instrument": self.instrument,
            "side": self.side.label,
            "price": str(self.price),
            "quantity": str(self.quantity),
            "remainingQuantity": str(self.remaining_quantity),
            "status": self.status.label,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "userId": self.user_id,
        }
        if self.order_id is not None:
            record = {"id": self.order_id, **record}
        return record

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "Order":
        """Build an order from its store record representation."""
        return cls(
            order_id=str(record["id"]) if record.get("id") is not None else None,
            instrument=record["instrument"],
            side=OrderSide.from_record(record["side"]),
            price=Decimal(str(record["price"])),
            quantity=Decimal(str(record["quantity"])),
            remaining_quantity=Decimal(str(record["remainingQuantity"])),
            status=OrderStatus.from_record(record["status"]),
            created_at=parse_timestamp(record["createdAt"]),
            updated_at=parse_timestamp(record["updatedAt"]),
            user_id=record["userId"],
        )


@dataclass
class OrderResult:
    """
    Result of an order submission once matching has settled.

    Attributes:
        order: The order as it stands after matching
        trades: Trades generated by the submission
        timestamp: Time when the result was generated
    """
    order: Order
    trades: List["Trade"] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def status(self) -> OrderStatus:
        return self.order.status

    @property
    def message(self) -> str:
        """Human-readable summary of the submission outcome."""
        order = self.order
        if order.status == OrderStatus.FILLED:
            return f"Order fully filled in {len(self.trades)} trade(s)"
        if order.status == OrderStatus.PARTIAL:
            return f"Order partially filled: {order.filled_quantity}/{order.quantity}"
        return "Order added to book"
