"""
Order book data structure with price-time priority

This module implements the in-memory order book of one instrument using sorted
dictionaries for price-level management and a registry for O(1) order lookups.
The book is the authoritative matching structure; every change to it is made
after the corresponding store write has succeeded.
"""

import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

from sortedcontainers import SortedDict

from .order import Order, OrderSide
from .price_level import PriceLevel
from ..utils.exceptions import LockTimeoutError


class OrderBook:
    """
    Resting orders of one instrument with price-time priority.

    Bids are kept in descending price order and asks in ascending order, so the
    first level of either side is always the best counterparty for an incoming
    order. Each book owns a reentrant lock; holding it makes the caller the
    single writer of every order resting in this book.

    Attributes:
        instrument: Symbol of the traded asset
        bids: Sorted dictionary of bid price levels (descending)
        asks: Sorted dictionary of ask price levels (ascending)
        order_registry: Fast lookup of resting orders by ID
        loaded: Whether resting orders have been recovered from the store
    """

    def __init__(self, instrument: str):
        self.instrument: str = instrument

        # Bids sorted in descending order (highest price first)
        self.bids: SortedDict = SortedDict(lambda price: -price)

        # Asks sorted in ascending order (lowest price first)
        self.asks: SortedDict = SortedDict()

        self.order_registry: Dict[str, Order] = {}
        self.loaded: bool = False
        self._lock = threading.RLock()

    @contextmanager
    def locked(self, timeout: Optional[float] = None) -> Iterator["OrderBook"]:
        """
        Hold the book lock for the duration of the block.

        Args:
            timeout: Maximum seconds to wait (None waits indefinitely)

        Raises:
            LockTimeoutError: If the lock is not acquired in time
        """
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise LockTimeoutError(
                f"Timed out waiting for the {self.instrument} order book",
                details={"instrument": self.instrument, "timeout": timeout}
            )
        try:
            yield self
        finally:
            self._lock.release()

    def load(self, orders: Iterable[Order]) -> None:
        """
        Rebuild the book from resting orders read from the store.

        Orders are queued oldest first so FIFO priority follows ``created_at``.
        """
        self.bids.clear()
        self.asks.clear()
        self.order_registry.clear()
        for order in sorted(orders, key=lambda o: o.created_at):
            if order.is_active:
                self.add_order(order)
        self.loaded = True

    def invalidate(self) -> None:
        """Drop every resting order and require recovery from the store."""
        self.bids.clear()
        self.asks.clear()
        self.order_registry.clear()
        self.loaded = False

    def add_order(self, order: Order) -> None:
        """
        Rest an order on the book.

        Raises:
            ValueError: If the order is not restable or already on the book
        """
        if order.order_id is None:
            raise ValueError("Cannot rest an order that has not been persisted")

        if order.instrument != self.instrument:
            raise ValueError(
                f"Order instrument {order.instrument} doesn't match book {self.instrument}"
            )

        if not order.is_active:
            raise ValueError(
                f"Cannot rest order {order.order_id} with status {order.status.value}"
            )

        if order.order_id in self.order_registry:
            raise ValueError(f"Order {order.order_id} already exists in book")

        book = self._side(order.side)
        if order.price not in book:
            book[order.price] = PriceLevel(order.price, order.side)
        book[order.price].add_order(order)

        self.order_registry[order.order_id] = order

    def replace_order(self, order: Order) -> None:
        """
        Record a newer version of a resting order.

        Active orders keep their queue position; filled or cancelled ones leave
        the book. Orders that are not resting here are ignored.
        """
        if order.order_id not in self.order_registry:
            return

        if not order.is_active:
            self.remove_order(order.order_id)
            return

        self._side(order.side)[order.price].replace_order(order)
        self.order_registry[order.order_id] = order

    def remove_order(self, order_id: str) -> Optional[Order]:
        """
        Remove an order from the book.

        Returns:
            Removed order or None if not found
        """
        order = self.order_registry.pop(order_id, None)
        if order is None:
            return None

        book = self._side(order.side)
        level = book.get(order.price)
        if level is not None:
            level.remove_order(order_id)
            if level.is_empty():
                del book[order.price]

        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.order_registry.get(order_id)

    def candidates(self, incoming: Order) -> List[Order]:
        """
        Resting counter-orders compatible with ``incoming``, best first.

        Levels are walked from the best price outwards and the walk stops at the
        first incompatible price; within a level orders come oldest first.
        """
        levels = self._side(incoming.side.opposite)
        result: List[Order] = []

        for price, level in levels.items():
            if incoming.is_buy and price > incoming.price:
                break
            if incoming.is_sell and price < incoming.price:
                break
            result.extend(order for order in level if order.is_active)

        return result

    def _side(self, side: OrderSide) -> SortedDict:
        return self.bids if side == OrderSide.BUY else self.asks

    @property
    def best_bid(self) -> Optional[Decimal]:
        if not self.bids:
            return None
        return self.bids.keys()[0]

    @property
    def best_ask(self) -> Optional[Decimal]:
        if not self.asks:
            return None
        return self.asks.keys()[0]

    def __contains__(self, order_id: str) -> bool:
        return order_id in self.order_registry

    def __len__(self) -> int:
        return len(self.order_registry)

    def __repr__(self) -> str:
        return (
            f"OrderBook({self.instrument}: "
            f"{len(self.bids)} bid levels, {len(self.asks)} ask levels, "
            f"best={self.best_bid}/{self.best_ask}, "
            f"{len(self.order_registry)} orders)"
        )
