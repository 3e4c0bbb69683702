"""
Record store interface

The matching engine and the order service reach persistence only through
:class:`OrderStore`. Implementations decide the transport (in-memory, REST);
all of them report missing records with NotFoundError and transport failures
or timeouts with StoreUnavailableError.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..core.history import OrderStatusHistory
from ..core.order import Order, OrderSide, OrderStatus
from ..core.trade import Trade
from ..utils.exceptions import OrderMatchException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderFilter:
    """
    Criteria for :meth:`OrderStore.list_orders`. Unset fields match anything.

    Attributes:
        order_id: Exact order ID
        instrument: Exact instrument symbol
        side: Order side
        statuses: Accepted statuses
        created_from: Inclusive lower bound on created_at
        created_to: Inclusive upper bound on created_at
    """
    order_id: Optional[str] = None
    instrument: Optional[str] = None
    side: Optional[OrderSide] = None
    statuses: Optional[frozenset] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def matches(self, order: Order) -> bool:
        if self.order_id is not None and order.order_id != self.order_id:
            return False
        if self.instrument is not None and order.instrument != self.instrument:
            return False
        if self.side is not None and order.side != self.side:
            return False
        if self.statuses is not None and order.status not in self.statuses:
            return False
        if self.created_from is not None and order.created_at < self.created_from:
            return False
        if self.created_to is not None and order.created_at > self.created_to:
            return False
        return True


@dataclass
class StoreCommit:
    """
    Writes produced by one logical step (a trade execution or a cancellation).

    Attributes:
        trades: Trades to append
        orders: Complete post-update order records to replace
        history: Status history entries to append
        previous: Records of ``orders`` before the update, in the same order
    """
    trades: List[Trade] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)
    history: List[OrderStatusHistory] = field(default_factory=list)
    previous: List[Order] = field(default_factory=list)


class OrderStore(ABC):
    """Abstract record store for orders, trades and status history."""

    @abstractmethod
    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        """Orders matching the filter, in insertion order."""

    @abstractmethod
    def get_order(self, order_id: str) -> Order:
        """
        Raises:
            NotFoundError: If the order does not exist
        """

    @abstractmethod
    def create_order(self, order: Order) -> Order:
        """Persist a new order and return it with its assigned ID."""

    @abstractmethod
    def update_order(self, order_id: str, order: Order) -> Order:
        """
        Replace the full record of an existing order.

        Raises:
            NotFoundError: If the order does not exist
        """

    @abstractmethod
    def append_trade(self, trade: Trade) -> Trade:
        """Append a trade and return it with its assigned ID."""

    @abstractmethod
    def append_history(self, entry: OrderStatusHistory) -> OrderStatusHistory:
        """Append a status history entry and return it with its assigned ID."""

    @abstractmethod
    def list_history(self, order_id: str) -> List[OrderStatusHistory]:
        """Status history of an order, oldest first."""

    @abstractmethod
    def list_trades(self, order_id: str) -> List[Trade]:
        """Trades in which the order was the buyer, then those where it was the seller."""

    def list_resting_orders(self, instrument: str) -> List[Order]:
        """OPEN and PARTIAL orders of an instrument."""
        return self.list_orders(OrderFilter(
            instrument=instrument,
            statuses=frozenset({OrderStatus.OPEN, OrderStatus.PARTIAL}),
        ))

    def commit(self, batch: StoreCommit) -> StoreCommit:
        """
        Write a batch: order updates first, then trades, then history.

        The default issues one call per record. If an order update or a trade
        fails, the order updates already written are put back to their
        ``previous`` records before the error is raised, so no trade is stored
        without both of its order updates. A failed history append leaves the
        trade and the order updates in place.

        Implementations that can apply the batch atomically override this.
        """
        orders: List[Order] = []
        try:
            for order in batch.orders:
                orders.append(self.update_order(order.order_id, order))
            trades = [self.append_trade(trade) for trade in batch.trades]
        except OrderMatchException:
            self._restore(batch.previous[:len(orders)])
            raise
        history = [self.append_history(entry) for entry in batch.history]
        return StoreCommit(trades=trades, orders=orders, history=history)

    def _restore(self, orders: List[Order]) -> None:
        for order in orders:
            try:
                self.update_order(order.order_id, order)
            except OrderMatchException as e:
                logger.error(
                    f"Order {order.order_id} left in its updated state after a failed commit: {e.message}"
                )

    def close(self) -> None:
        """Release transport resources."""
