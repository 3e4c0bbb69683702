"""
Tests for the order, trade and status history records.

Covers construction invariants, the status transition table and the store
record format.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from ordermatch.core.history import OrderStatusHistory
from ordermatch.core.order import (
    ALLOWED_TRANSITIONS,
    Order,
    OrderDraft,
    OrderResult,
    OrderSide,
    OrderStatus,
    ensure_transition,
    parse_timestamp,
)
from ordermatch.core.trade import Trade
from ordermatch.utils.exceptions import InvalidStateError


T0 = datetime(2024, 3, 1, 14, 30, tzinfo=timezone.utc)


def make_order(side=OrderSide.BUY, price="10.00", quantity="100", order_id="1", now=T0):
    draft = OrderDraft(
        instrument="PETR4",
        side=side,
        price=Decimal(price),
        quantity=Decimal(quantity),
        user_id="7",
    )
    return Order.open(draft, now).with_id(order_id)


class TestOrderCreation:
    """Order construction and validation."""

    def test_open_order_from_draft(self):
        """A new order starts OPEN with nothing executed."""
        order = make_order()

        assert order.status == OrderStatus.OPEN
        assert order.remaining_quantity == order.quantity == Decimal("100")
        assert order.created_at == order.updated_at == T0
        assert order.filled_quantity == Decimal("0")
        assert order.is_active

    def test_order_without_id_before_persistence(self):
        """Drafts become orders without an ID until the store assigns one."""
        draft = OrderDraft("PETR4", OrderSide.SELL, Decimal("5"), Decimal("1"), "7")
        assert Order.open(draft).order_id is None

    def test_non_positive_price_rejected(self):
        """Price must be positive."""
        with pytest.raises(ValueError, match="Price must be positive"):
            make_order(price="0")

    def test_non_positive_quantity_rejected(self):
        """Quantity must be positive."""
        with pytest.raises(ValueError, match="Quantity must be positive"):
            make_order(quantity="-5")

    def test_remaining_above_quantity_rejected(self):
        """Remaining quantity never exceeds the original quantity."""
        with pytest.raises(ValueError, match="outside"):
            Order(
                instrument="PETR4", side=OrderSide.BUY, price=Decimal("10"),
                quantity=Decimal("10"), remaining_quantity=Decimal("11"),
                status=OrderStatus.OPEN, created_at=T0, updated_at=T0, user_id="7",
            )

    @pytest.mark.parametrize("status,remaining", [
        (OrderStatus.OPEN, "5"),
        (OrderStatus.PARTIAL, "10"),
        (OrderStatus.PARTIAL, "0"),
        (OrderStatus.FILLED, "3"),
        (OrderStatus.CANCELLED, "0"),
    ])
    def test_status_must_agree_with_remaining(self, status, remaining):
        """Status and remaining quantity are kept consistent."""
        with pytest.raises(ValueError, match="inconsistent"):
            Order(
                instrument="PETR4", side=OrderSide.BUY, price=Decimal("10"),
                quantity=Decimal("10"), remaining_quantity=Decimal(remaining),
                status=status, created_at=T0, updated_at=T0, user_id="7",
            )


class TestStatusTransitions:
    """The transition table and its enforcement."""

    def test_terminal_statuses(self):
        """FILLED and CANCELLED have no outgoing transitions."""
        assert not ALLOWED_TRANSITIONS[OrderStatus.FILLED]
        assert not ALLOWED_TRANSITIONS[OrderStatus.CANCELLED]
        assert not OrderStatus.FILLED.can_transition_to(OrderStatus.CANCELLED)

    def test_partial_cannot_return_to_open(self):
        """Orders never move back to OPEN."""
        assert OrderStatus.OPEN not in ALLOWED_TRANSITIONS[OrderStatus.PARTIAL]
        with pytest.raises(InvalidStateError):
            ensure_transition("1", OrderStatus.PARTIAL, OrderStatus.OPEN)

    def test_invalid_transition_details(self):
        """The rejected transition is reported in the error details."""
        with pytest.raises(InvalidStateError) as exc_info:
            ensure_transition("9", OrderStatus.FILLED, OrderStatus.CANCELLED)

        assert exc_info.value.details == {
            "order_id": "9",
            "status": "FILLED",
            "requested_status": "CANCELLED",
        }


class TestFillsAndCancellation:
    """State changes produce new records."""

    def test_partial_fill(self):
        """Executing part of an order leaves it PARTIAL."""
        order = make_order()
        later = T0 + timedelta(seconds=1)

        filled = order.apply_fill(Decimal("60"), later)

        assert filled.status == OrderStatus.PARTIAL
        assert filled.remaining_quantity == Decimal("40")
        assert filled.filled_quantity == Decimal("60")
        assert filled.updated_at == later
        assert filled.created_at == T0
        assert order.remaining_quantity == Decimal("100")

    def test_full_fill(self):
        """Executing the remainder fills the order."""
        order = make_order().apply_fill(Decimal("60")).apply_fill(Decimal("40"))

        assert order.status == OrderStatus.FILLED
        assert order.remaining_quantity == Decimal("0")
        assert not order.is_active

    def test_overfill_rejected(self):
        """A fill cannot exceed the remaining quantity."""
        with pytest.raises(ValueError, match="exceeds remaining"):
            make_order().apply_fill(Decimal("101"))

    def test_fill_of_cancelled_order_rejected(self):
        """Cancelled orders are never executed."""
        cancelled = make_order().cancel()
        with pytest.raises(InvalidStateError):
            cancelled.apply_fill(Decimal("1"))

    def test_cancel_partial_keeps_remaining(self):
        """Cancelling keeps the unexecuted quantity on the record."""
        cancelled = make_order().apply_fill(Decimal("30")).cancel()

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.remaining_quantity == Decimal("70")

    def test_cancel_filled_rejected(self):
        """Filled orders cannot be cancelled."""
        filled = make_order().apply_fill(Decimal("100"))
        with pytest.raises(InvalidStateError, match="FILLED"):
            filled.cancel()

    def test_cancel_twice_rejected(self):
        """Cancelled orders cannot be cancelled again."""
        with pytest.raises(InvalidStateError, match="CANCELLED"):
            make_order().cancel().cancel()

    def test_price_compatibility(self):
        """A buy at Pb and a sell at Ps trade iff Pb >= Ps."""
        buy = make_order(OrderSide.BUY, price="10.00")

        assert buy.is_price_compatible(make_order(OrderSide.SELL, price="10.00", order_id="2"))
        assert buy.is_price_compatible(make_order(OrderSide.SELL, price="9.99", order_id="2"))
        assert not buy.is_price_compatible(make_order(OrderSide.SELL, price="10.01", order_id="2"))
        assert not buy.is_price_compatible(make_order(OrderSide.BUY, price="9.00", order_id="2"))


class TestRecordFormat:
    """Conversion to and from store records."""

    def test_order_record_fields(self):
        """Orders use camelCase store fields with decimal strings."""
        record = make_order(price="25.50").to_dict()

        assert record["id"] == "1"
        assert record["remainingQuantity"] == "100"
        assert record["price"] == "25.50"
        assert record["userId"] == "7"
        assert record["side"] == "Compra"
        assert record["status"] == "Aberta"

    def test_order_record_without_id(self):
        """Unpersisted orders carry no id field."""
        draft = OrderDraft("PETR4", OrderSide.SELL, Decimal("5"), Decimal("1"), "7")
        assert "id" not in Order.open(draft).to_dict()

    def test_order_from_json_server_record(self):
        """Numeric ids and Z-suffixed timestamps are accepted."""
        order = Order.from_dict({
            "id": 12,
            "instrument": "VALE3",
            "side": "SELL",
            "price": 61.2,
            "quantity": 300,
            "remainingQuantity": 100,
            "status": "PARTIAL",
            "createdAt": "2024-03-01T14:30:00Z",
            "updatedAt": "2024-03-01T14:31:00Z",
            "userId": "3",
        })

        assert order.order_id == "12"
        assert order.price == Decimal("61.2")
        assert order.filled_quantity == Decimal("200")
        assert order.created_at == T0

    def test_order_from_db_json_record(self):
        """Portuguese side and status labels of db.json records are read."""
        order = Order.from_dict({
            "id": "a1f3",
            "instrument": "PETR4",
            "side": "Compra",
            "price": "30.10",
            "quantity": "100",
            "remainingQuantity": "100",
            "status": "Aberta",
            "createdAt": "2024-03-01T14:30:00.000Z",
            "updatedAt": "2024-03-01T14:30:00.000Z",
            "userId": "1",
        })

        assert order.side == OrderSide.BUY
        assert order.status == OrderStatus.OPEN

    @pytest.mark.parametrize("label,status", [
        ("Aberta", OrderStatus.OPEN),
        ("Parcial", OrderStatus.PARTIAL),
        ("Executada", OrderStatus.FILLED),
        ("cancelada", OrderStatus.CANCELLED),
        ("FILLED", OrderStatus.FILLED),
    ])
    def test_status_labels(self, label, status):
        assert OrderStatus.from_record(label) == status

    def test_unknown_side_label(self):
        with pytest.raises(ValueError, match="Unknown OrderSide"):
            OrderSide.from_record("Troca")

    def test_naive_timestamp_assumed_utc(self):
        """Timestamps without an offset are read as UTC."""
        assert parse_timestamp("2024-03-01T14:30:00") == T0

    def test_trade_record(self):
        """Trades reference both orders."""
        trade = Trade("1", "2", Decimal("10"), Decimal("9.50"), T0, trade_id="4")
        record = trade.to_dict()

        assert record["buyingOrderId"] == "1"
        assert record["sellingOrderId"] == "2"
        assert Trade.from_dict(record) == trade

    def test_trade_against_itself_rejected(self):
        """An order cannot be both buyer and seller."""
        with pytest.raises(ValueError, match="itself"):
            Trade("1", "1", Decimal("10"), Decimal("9.50"))

    def test_history_record(self):
        """History entries keep the order ID and status entered."""
        entry = OrderStatusHistory("5", OrderStatus.PARTIAL, T0, history_id="2")

        assert entry.to_dict() == {
            "id": "2",
            "orderId": "5",
            "status": "Parcial",
            "timestamp": T0.isoformat(),
        }
        assert OrderStatusHistory.from_dict(entry.to_dict()) == entry


class TestOrderResult:
    """Submission result summaries."""

    def test_messages(self):
        """The message reflects the settled status."""
        order = make_order()

        assert OrderResult(order).message == "Order added to book"
        assert "partially" in OrderResult(order.apply_fill(Decimal("10"))).message
        assert OrderResult(order.apply_fill(Decimal("100"))).status == OrderStatus.FILLED
