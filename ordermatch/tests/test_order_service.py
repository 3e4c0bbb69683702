"""
Tests for the order lifecycle service.

Covers creation, cancellation, order queries and concurrent submissions.
"""

import random
import threading

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ordermatch.core.matching_engine import MatchingEngine
from ordermatch.core.order import Order, OrderDraft, OrderSide, OrderStatus
from ordermatch.services.order_service import OrderService
from ordermatch.stores.memory import InMemoryStore
from ordermatch.utils.exceptions import (
    InvalidStateError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)


def draft(side, price, quantity, instrument="PETR4", user_id="1"):
    return OrderDraft(
        instrument=instrument,
        side=side,
        price=Decimal(price),
        quantity=Decimal(quantity),
        user_id=user_id,
    )



class HistoryFailingStore(InMemoryStore):
    """In-memory store that refuses the next standalone history append."""

    def __init__(self):
        super().__init__()
        self.fail_history = False

    def append_history(self, entry):
        if self.fail_history:
            self.fail_history = False
            raise StoreUnavailableError("Store is down")
        return super().append_history(entry)

@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def service(store):
    return OrderService(MatchingEngine(store))


class TestCreateOrder:
    """Order creation."""

    def test_create_persists_open_order(self, service, store):
        """A new order is stored OPEN with one history entry."""
        result = service.create_order(draft(OrderSide.BUY, "25.50", "100"))
        order = result.order

        assert order.order_id is not None
        assert store.get_order(order.order_id) == order
        assert order.status == OrderStatus.OPEN
        assert order.created_at == order.updated_at

        history = store.list_history(order.order_id)
        assert len(history) == 1
        assert history[0].status == OrderStatus.OPEN
        assert history[0].timestamp == order.created_at

    def test_result_reflects_settled_matching(self, service, store):
        """The returned order already includes the fills it took part in."""
        service.create_order(draft(OrderSide.SELL, "25.50", "100"))
        result = service.create_order(draft(OrderSide.BUY, "25.50", "100"))

        assert result.order.status == OrderStatus.FILLED
        assert store.get_order(result.order.order_id) == result.order


    def test_order_persisted_without_history_still_matches(self):
        """An order stored before a failed history write is recovered onto the book."""
        store = HistoryFailingStore()
        engine = MatchingEngine(store)
        service = OrderService(engine)
        service.create_order(draft(OrderSide.BUY, "1.00", "1"))

        store.fail_history = True
        with pytest.raises(StoreUnavailableError):
            service.create_order(draft(OrderSide.SELL, "9.00", "10"))

        sell = [o for o in store.list_orders() if o.side == OrderSide.SELL][0]
        assert sell.status == OrderStatus.OPEN
        assert not engine.get_order_book("PETR4").loaded

        result = service.create_order(draft(OrderSide.BUY, "9.50", "10"))

        assert len(result.trades) == 1
        assert result.trades[0].selling_order_id == sell.order_id
        assert store.get_order(sell.order_id).status == OrderStatus.FILLED

class TestCancelOrder:
    """Order cancellation."""

    def test_cancel_open_order(self, service, store):
        """Cancelling an OPEN order records the transition and frees the book."""
        order = service.create_order(draft(OrderSide.BUY, "10.00", "100")).order

        cancelled = service.cancel_order(order.order_id)

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.remaining_quantity == Decimal("100")
        assert cancelled.updated_at >= order.updated_at
        assert store.get_order(order.order_id) == cancelled
        assert [h.status for h in store.list_history(order.order_id)] == [
            OrderStatus.OPEN, OrderStatus.CANCELLED
        ]
        assert order.order_id not in service.matching_engine.get_order_book("PETR4")

    def test_cancel_partial_order(self, service):
        """PARTIAL orders can be cancelled and keep their remainder."""
        order = service.create_order(draft(OrderSide.BUY, "10.00", "100")).order
        service.create_order(draft(OrderSide.SELL, "10.00", "30"))

        cancelled = service.cancel_order(order.order_id)

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.remaining_quantity == Decimal("70")

    def test_repeated_cancel_fails_without_changes(self, service, store):
        """A second cancel raises InvalidStateError and leaves the store as it was."""
        order = service.create_order(draft(OrderSide.BUY, "10.00", "100")).order
        cancelled = service.cancel_order(order.order_id)
        history_before = store.list_history(order.order_id)

        with pytest.raises(InvalidStateError, match="CANCELLED"):
            service.cancel_order(order.order_id)

        assert store.get_order(order.order_id) == cancelled
        assert store.list_history(order.order_id) == history_before

    def test_cancel_filled_order_fails(self, service):
        """Filled orders cannot be cancelled."""
        order = service.create_order(draft(OrderSide.BUY, "10.00", "100")).order
        service.create_order(draft(OrderSide.SELL, "10.00", "100"))

        with pytest.raises(InvalidStateError, match="FILLED"):
            service.cancel_order(order.order_id)

    def test_cancel_missing_order(self, service):
        """Unknown orders raise NotFoundError."""
        with pytest.raises(NotFoundError):
            service.cancel_order("404")

    def test_cancelled_order_never_matched(self, service, store):
        """An order cancelled before a compatible arrival does not trade."""
        order = service.create_order(draft(OrderSide.SELL, "10.00", "100")).order
        service.cancel_order(order.order_id)

        result = service.create_order(draft(OrderSide.BUY, "10.00", "100"))

        assert result.trades == []
        assert store.list_trades(order.order_id) == []


class TestQueries:
    """Order lookups and listings."""

    @pytest.fixture
    def populated(self, service):
        service.create_order(draft(OrderSide.BUY, "10.00", "100"))
        service.create_order(draft(OrderSide.SELL, "12.00", "50"))
        service.create_order(draft(OrderSide.BUY, "11.00", "10", instrument="VALE3"))
        service.create_order(draft(OrderSide.SELL, "9.50", "40"))
        return service

    def test_get_order(self, service):
        """Orders are fetched by ID."""
        order = service.create_order(draft(OrderSide.BUY, "10.00", "100")).order
        assert service.get_order(order.order_id) == order

    def test_get_missing_order(self, service):
        """Unknown IDs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            service.get_order("nope")

    def test_order_trades_buy_side_first(self, service):
        """Trades where the order bought come before those where it sold."""
        buy = service.create_order(draft(OrderSide.BUY, "10.00", "10")).order
        service.create_order(draft(OrderSide.SELL, "10.00", "10"))

        trades = service.get_order_trades(buy.order_id)
        assert len(trades) == 1
        assert trades[0].buying_order_id == buy.order_id

    def test_history_of_missing_order(self, service):
        """History lookups check that the order exists."""
        with pytest.raises(NotFoundError):
            service.get_order_history("nope")

    def test_filter_by_instrument_and_side(self, populated):
        """Filters combine."""
        page = populated.list_orders(instrument="PETR4", side=OrderSide.BUY)

        assert page.items == 1
        assert page.orders[0].price == Decimal("10.00")

    def test_filter_by_status(self, populated):
        """Only orders in the requested status are listed."""
        page = populated.list_orders(status=OrderStatus.FILLED)

        assert page.items == 1
        assert page.orders[0].side == OrderSide.SELL

    def test_sort_by_price(self, populated):
        """Any order field can be used for sorting."""
        page = populated.list_orders(sort_field="price", sort_direction="asc")

        assert [o.price for o in page.orders] == sorted(o.price for o in page.orders)

    def test_default_sort_newest_first(self, populated):
        """Listings default to the most recent orders first."""
        orders = populated.list_orders().orders

        assert [o.created_at for o in orders] == sorted((o.created_at for o in orders), reverse=True)

    def test_pagination(self, populated):
        """Pages carry json-server style navigation metadata."""
        page = populated.list_orders(per_page=3, page=2, sort_direction="asc")

        assert page.items == 4
        assert page.pages == 2
        assert len(page.orders) == 1
        assert page.prev == 1
        assert page.next is None
        assert page.first == 1
        assert page.last == 2

    def test_empty_listing(self, service):
        """An empty store yields one empty page."""
        page = service.list_orders()

        assert page.items == 0
        assert page.pages == 1
        assert page.orders == []

    def test_date_bounds_are_whole_days(self, service, store):
        """Date filters include the whole first and last day."""
        day = datetime(2024, 3, 1, tzinfo=timezone.utc)
        for created in (day - timedelta(seconds=1), day, day + timedelta(hours=23, minutes=59)):
            store.create_order(Order.open(draft(OrderSide.BUY, "10.00", "1"), created))

        page = service.list_orders(date_from=date(2024, 3, 1), date_to=date(2024, 3, 1))

        assert page.items == 2

    def test_invalid_sort_field(self, service):
        """Sorting by an unknown field is rejected."""
        with pytest.raises(ValidationError, match="Cannot sort"):
            service.list_orders(sort_field="color")

    def test_invalid_paging(self, service):
        """Pages start at 1."""
        with pytest.raises(ValidationError):
            service.list_orders(page=0)


class TestConcurrency:
    """Concurrent submissions and cancellations."""

    def test_concurrent_submissions_stay_consistent(self, service, store):
        """Parallel orders never over-fill and every fill is backed by trades."""
        rng = random.Random(42)
        drafts = [
            draft(
                rng.choice([OrderSide.BUY, OrderSide.SELL]),
                str(rng.choice(["9.90", "10.00", "10.10"])),
                str(rng.randint(1, 50)),
                instrument=rng.choice(["PETR4", "VALE3"]),
            )
            for _ in range(120)
        ]
        errors = []

        def submit(batch):
            try:
                for d in batch:
                    service.create_order(d)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=submit, args=(drafts[i::6],)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        orders = store.list_orders()
        assert len(orders) == 120
        for order in orders:
            traded = sum((t.quantity for t in store.list_trades(order.order_id)), Decimal("0"))
            assert traded == order.filled_quantity
            assert 0 <= order.remaining_quantity <= order.quantity

        for instrument in ("PETR4", "VALE3"):
            book = service.matching_engine.get_order_book(instrument)
            if book.best_bid is not None and book.best_ask is not None:
                assert book.best_bid < book.best_ask

    def test_cancel_racing_match(self, service, store):
        """Either the cancel wins and no trade happens, or the match wins and the cancel fails."""
        resting = service.create_order(draft(OrderSide.SELL, "10.00", "100")).order
        outcome = {}

        def cancel():
            try:
                outcome["cancel"] = service.cancel_order(resting.order_id)
            except InvalidStateError as e:
                outcome["cancel"] = e

        def match():
            outcome["match"] = service.create_order(draft(OrderSide.BUY, "10.00", "100"))

        threads = [threading.Thread(target=cancel), threading.Thread(target=match)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        final = store.get_order(resting.order_id)
        if isinstance(outcome["cancel"], InvalidStateError):
            assert final.status == OrderStatus.FILLED
            assert len(outcome["match"].trades) == 1
        else:
            assert final.status == OrderStatus.CANCELLED
            assert outcome["match"].trades == []
