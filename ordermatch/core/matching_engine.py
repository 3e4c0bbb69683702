"""
Core matching engine with price-time priority execution.

Matches each newly created order against the resting orders of its instrument,
best price first and oldest first within a price, and commits every trade
together with the order updates and status history it causes.
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .history import OrderStatusHistory
from .order import Order, OrderResult, OrderStatus, utc_now
from .order_book import OrderBook
from .trade import Trade
from ..stores.base import OrderStore, StoreCommit
from ..utils.exceptions import NotFoundError, StoreUnavailableError
from ..utils.logger import get_logger


class MatchingEngine:
    """
    Price-time priority matching engine.

    Each instrument has its own in-memory :class:`OrderBook` guarded by the
    book's lock. Matching, order creation and cancellation for an instrument
    all run under that lock, which makes the engine the single writer of every
    resting order's quantity and status. Unrelated instruments match in
    parallel.

    The store is written through: the book is changed only after the store
    accepted the corresponding commit, and a book is rebuilt from the store's
    OPEN/PARTIAL orders the first time its instrument is used.
    """

    def __init__(
        self,
        store: OrderStore,
        lock_timeout: Optional[float] = 5.0,
        log_level: str = "INFO",
    ):
        """
        Initialize the matching engine.

        Args:
            store: Record store for orders, trades and status history
            lock_timeout: Maximum seconds to wait for an order book lock
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        self.store = store
        self.lock_timeout = lock_timeout
        self.order_books: Dict[str, OrderBook] = {}
        self.statistics: Dict[str, Any] = {
            "orders_processed": 0,
            "trades_executed": 0,
            "total_volume": Decimal("0"),
            "orders_filled": 0,
            "orders_partial": 0,
            "orders_cancelled": 0,
        }
        self._books_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self.logger = get_logger(log_level=log_level)

    @contextmanager
    def book_lock(self, instrument: str) -> Iterator[OrderBook]:
        """
        Hold the order book of ``instrument`` exclusively.

        The book is recovered from the store on first use. A store error raised
        inside the block may leave the store ahead of or behind the book, so the
        book is dropped and recovered again on next use.

        Raises:
            LockTimeoutError: If the book lock is not acquired in time
            StoreUnavailableError: If recovery from the store fails
        """
        book = self._get_or_create_order_book(instrument)
        with book.locked(self.lock_timeout):
            if not book.loaded:
                book.load(self.store.list_resting_orders(instrument))
                self.logger.info(f"Recovered {len(book)} resting orders for {instrument}")
            try:
                yield book
            except (StoreUnavailableError, NotFoundError) as e:
                # Nested holders see the same error once the book is dropped
                if book.loaded:
                    book.invalidate()
                    self.logger.log_error(
                        f"Store error on {instrument}, order book will be recovered: {e.message}",
                        instrument=instrument,
                    )
                raise

    def try_execute(self, new_order: Order) -> OrderResult:
        """
        Match a newly created order against its instrument's book.

        Store errors abort the remaining matching. Trades committed before the
        failure stand, and the book is recovered from the store on next use.

        Args:
            new_order: Persisted order, normally OPEN with nothing executed

        Returns:
            OrderResult with the settled order and the trades produced
        """
        trades: List[Trade] = []
        current = new_order

        with self.book_lock(new_order.instrument) as book:
            # Recovery may already have put the incoming order on the book
            book.remove_order(new_order.order_id)
            try:
                remaining = current.remaining_quantity if current.is_active else Decimal("0")

                for candidate in book.candidates(current):
                    if remaining <= 0:
                        break

                    trade_quantity = min(remaining, candidate.remaining_quantity)
                    if trade_quantity <= 0:
                        continue

                    trade, current, _ = self.execute_trade(current, candidate, trade_quantity, book)
                    trades.append(trade)
                    remaining -= trade_quantity
            finally:
                if current.is_active and current.order_id not in book:
                    book.add_order(current)

            self._record_submission(current, trades)

        self.logger.debug(
            f"Order {current.order_id} settled as {current.status.value} "
            f"after {len(trades)} trade(s)"
        )
        return OrderResult(order=current, trades=trades)

    def execute_trade(
        self,
        order_a: Order,
        order_b: Order,
        quantity: Decimal,
        book: Optional[OrderBook] = None,
    ) -> Tuple[Trade, Order, Order]:
        """
        Execute ``quantity`` between two opposite-side orders.

        The trade price is the price of whichever order was created earlier
        (``order_b`` on a tie). The trade, both order updates and the history
        entries of any status change are written as one store commit.

        Args:
            order_a: One side of the trade
            order_b: The other side of the trade
            quantity: Quantity to execute
            book: Order book to update once the commit succeeds

        Returns:
            Tuple of (trade, updated order_a, updated order_b)

        Raises:
            ValueError: If both orders are on the same side
        """
        if order_a.side == order_b.side:
            raise ValueError(
                f"Orders {order_a.order_id} and {order_b.order_id} are both {order_a.side.value}"
            )

        buy_order, sell_order = (order_a, order_b) if order_a.is_buy else (order_b, order_a)
        earlier = order_a if order_a.created_at < order_b.created_at else order_b
        now = self._transition_time(order_a, order_b)

        trade = Trade(
            buying_order_id=buy_order.order_id,
            selling_order_id=sell_order.order_id,
            quantity=quantity,
            price=earlier.price,
            timestamp=now,
        )

        updated_a = order_a.apply_fill(quantity, now)
        updated_b = order_b.apply_fill(quantity, now)

        batch = StoreCommit(
            trades=[trade],
            orders=[updated_a, updated_b],
            previous=[order_a, order_b],
        )
        for before, after in ((order_a, updated_a), (order_b, updated_b)):
            if after.status != before.status:
                batch.history.append(OrderStatusHistory(
                    order_id=after.order_id,
                    status=after.status,
                    timestamp=now,
                ))

        committed = self.store.commit(batch)
        trade = committed.trades[0]
        updated_a, updated_b = committed.orders

        if book is not None:
            book.replace_order(updated_a)
            book.replace_order(updated_b)

        with self._stats_lock:
            self.statistics["trades_executed"] += 1
            self.statistics["total_volume"] += quantity

        self.logger.log_trade_execution(
            trade.trade_id,
            order_a.instrument,
            trade.price,
            trade.quantity,
            trade.buying_order_id,
            trade.selling_order_id,
        )
        for before, after in ((order_a, updated_a), (order_b, updated_b)):
            if after.status != before.status:
                self.logger.log_status_transition(
                    after.order_id, before.status.value, after.status.value
                )

        return trade, updated_a, updated_b

    def withdraw(self, order: Order) -> None:
        """
        Take a cancelled order off its book.

        Callers must hold the instrument's book lock and have committed the
        cancellation to the store.
        """
        book = self.order_books.get(order.instrument)
        if book is not None:
            book.remove_order(order.order_id)
        with self._stats_lock:
            self.statistics["orders_cancelled"] += 1

    def get_order_book(self, instrument: str) -> Optional[OrderBook]:
        """Get order book for an instrument."""
        return self.order_books.get(instrument)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get current engine statistics.

        Returns:
            Dictionary of statistics
        """
        with self._stats_lock:
            stats = self.statistics.copy()
        stats["total_volume"] = str(stats["total_volume"])
        stats["order_books"] = len(self.order_books)
        return stats

    @staticmethod
    def _transition_time(*orders: Order) -> datetime:
        # Never stamp a transition earlier than the orders' last update
        return max([utc_now()] + [order.updated_at for order in orders])

    def _get_or_create_order_book(self, instrument: str) -> OrderBook:
        """Get existing order book or create new one for instrument."""
        with self._books_lock:
            book = self.order_books.get(instrument)
            if book is None:
                book = OrderBook(instrument)
                self.order_books[instrument] = book
                self.logger.info(f"Created new order book for {instrument}")
            return book

    def _record_submission(self, order: Order, trades: List[Trade]) -> None:
        with self._stats_lock:
            self.statistics["orders_processed"] += 1
            if order.status == OrderStatus.FILLED:
                self.statistics["orders_filled"] += 1
            elif order.status == OrderStatus.PARTIAL:
                self.statistics["orders_partial"] += 1
