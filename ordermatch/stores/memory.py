"""
In-memory record store

Thread-safe dictionary-backed store. Every call waits at most
``timeout`` seconds for the store lock and raises StoreUnavailableError
otherwise; :meth:`InMemoryStore.commit` applies a whole batch under one
acquisition so readers never observe half of a trade execution.
"""

import itertools
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .base import OrderFilter, OrderStore, StoreCommit
from ..core.history import OrderStatusHistory
from ..core.order import Order
from ..core.trade import Trade
from ..utils.exceptions import NotFoundError, StoreUnavailableError


class InMemoryStore(OrderStore):
    """
    Order, trade and history records kept in process memory.

    IDs are sequential strings per collection, mirroring what a json-server
    style backend hands out.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._trades: List[Trade] = []
        self._history: List[OrderStatusHistory] = []
        self._order_ids = itertools.count(1)
        self._trade_ids = itertools.count(1)
        self._history_ids = itertools.count(1)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout):
            raise StoreUnavailableError(
                "Timed out waiting for the in-memory store",
                details={"timeout": self.timeout}
            )
        try:
            yield
        finally:
            self._lock.release()

    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        order_filter = order_filter or OrderFilter()
        with self._locked():
            return [order for order in self._orders.values() if order_filter.matches(order)]

    def get_order(self, order_id: str) -> Order:
        with self._locked():
            return self._get(order_id)

    def create_order(self, order: Order) -> Order:
        with self._locked():
            created = order.with_id(str(next(self._order_ids)))
            self._orders[created.order_id] = created
            return created

    def update_order(self, order_id: str, order: Order) -> Order:
        with self._locked():
            self._get(order_id)
            return self._put(order_id, order)

    def append_trade(self, trade: Trade) -> Trade:
        with self._locked():
            return self._append_trade(trade)

    def append_history(self, entry: OrderStatusHistory) -> OrderStatusHistory:
        with self._locked():
            return self._append_history(entry)

    def list_history(self, order_id: str) -> List[OrderStatusHistory]:
        with self._locked():
            return [entry for entry in self._history if entry.order_id == order_id]

    def list_trades(self, order_id: str) -> List[Trade]:
        with self._locked():
            bought = [t for t in self._trades if t.buying_order_id == order_id]
            sold = [t for t in self._trades if t.selling_order_id == order_id]
            return bought + sold

    def commit(self, batch: StoreCommit) -> StoreCommit:
        """Apply the whole batch atomically, or nothing if an order is missing."""
        with self._locked():
            for order in batch.orders:
                self._get(order.order_id)
            return StoreCommit(
                trades=[self._append_trade(trade) for trade in batch.trades],
                orders=[self._put(order.order_id, order) for order in batch.orders],
                history=[self._append_history(entry) for entry in batch.history],
            )

    def _get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError(
                f"Order {order_id} not found",
                details={"order_id": order_id}
            )
        return order

    def _put(self, order_id: str, order: Order) -> Order:
        stored = order if order.order_id == order_id else order.with_id(order_id)
        self._orders[order_id] = stored
        return stored

    def _append_trade(self, trade: Trade) -> Trade:
        stored = trade.with_id(str(next(self._trade_ids)))
        self._trades.append(stored)
        return stored

    def _append_history(self, entry: OrderStatusHistory) -> OrderStatusHistory:
        stored = entry.with_id(str(next(self._history_ids)))
        self._history.append(stored)
        return stored
