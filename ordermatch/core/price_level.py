"""
Time-priority queue of resting orders sharing one price on one side of a book.
"""

from collections import deque
from decimal import Decimal
from typing import Deque, Dict, Iterator, List, Optional

from .order import Order, OrderSide


class PriceLevel:
    """
    Resting orders at one price, oldest first.

    The queue holds order IDs in arrival order while ``_order_map`` holds the
    latest record of each order, so a partially executed order keeps its place
    in the queue when its record is replaced.

    Attributes:
        price: The price level
        side: Buy or sell side
    """

    def __init__(self, price: Decimal, side: OrderSide):
        self.price: Decimal = price
        self.side: OrderSide = side
        self._queue: Deque[str] = deque()
        self._order_map: Dict[str, Order] = {}

    def add_order(self, order: Order) -> None:
        """
        Queue an order behind everything already resting here.

        Raises:
            ValueError: On a price or side mismatch, or a duplicate order id
        """
        if order.price != self.price:
            raise ValueError(
                f"Order {order.order_id} priced {order.price} cannot rest at {self.price}"
            )

        if order.side != self.side:
            raise ValueError(
                f"Order {order.order_id} is {order.side.value}, level is {self.side.value}"
            )

        if order.order_id in self._order_map:
            raise ValueError(f"Order {order.order_id} already exists at this level")

        self._queue.append(order.order_id)
        self._order_map[order.order_id] = order

    def replace_order(self, order: Order) -> None:
        """
        Swap in a newer record of an order without changing its queue position.

        Raises:
            KeyError: If the order is not at this level
        """
        if order.order_id not in self._order_map:
            raise KeyError(order.order_id)
        self._order_map[order.order_id] = order

    def remove_order(self, order_id: str) -> Optional[Order]:
        """
        Drop an order from the queue.

        Returns:
            The removed record, or None if the order is not here
        """
        order = self._order_map.pop(order_id, None)
        if order is None:
            return None
        self._queue.remove(order_id)
        return order

    @property
    def orders(self) -> List[Order]:
        """Snapshot of the orders at this level, oldest first."""
        return [self._order_map[order_id] for order_id in self._queue]

    def __iter__(self) -> Iterator[Order]:
        return iter(self.orders)

    def is_empty(self) -> bool:
        return not self._queue

    @property
    def total_volume(self) -> Decimal:
        """Sum of remaining quantities of all orders at this level."""
        return sum((order.remaining_quantity for order in self._order_map.values()), Decimal("0"))

    @property
    def order_count(self) -> int:
        return len(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    def __repr__(self) -> str:
        return (
            f"PriceLevel(price={self.price}, side={self.side.value}, "
            f"orders={self.order_count}, volume={self.total_volume})"
        )
