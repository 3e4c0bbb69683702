"""
Order Service - Order lifecycle and query operations.

This service sequences order creation and cancellation around the matching
engine and the record store, keeping the status history in step, and serves
the read-side order queries used by the API.
"""

import logging
import math
from dataclasses import dataclass, fields
from datetime import date, datetime, time, timezone
from typing import List, Optional

from ..core.history import OrderStatusHistory
from ..core.matching_engine import MatchingEngine
from ..core.order import Order, OrderDraft, OrderResult, OrderSide, OrderStatus, utc_now
from ..core.trade import Trade
from ..stores.base import OrderFilter, OrderStore, StoreCommit
from ..utils.exceptions import OrderMatchException, ValidationError

SORTABLE_FIELDS = frozenset(f.name for f in fields(Order))


@dataclass
class OrderPage:
    """
    One page of an order listing with json-server style pagination metadata.

    Attributes:
        orders: Orders on this page
        page: Current page number (1-based)
        per_page: Page size
        items: Total number of matching orders
        pages: Total number of pages
        first: First page number
        last: Last page number
        prev: Previous page number or None
        next: Next page number or None
    """
    orders: List[Order]
    page: int
    per_page: int
    items: int
    pages: int
    first: int
    last: int
    prev: Optional[int]
    next: Optional[int]


class OrderService:
    """
    Order lifecycle controller.

    ``create_order`` is synchronous: it returns once matching has settled, so
    the returned order already reflects every trade it took part in.
    """

    def __init__(self, matching_engine: MatchingEngine, store: Optional[OrderStore] = None):
        """
        Initialize order service.

        Args:
            matching_engine: Matching engine instance
            store: Record store (defaults to the engine's store)
        """
        self.matching_engine = matching_engine
        self.store = store or matching_engine.store
        self.logger = logging.getLogger(f"{__name__}.OrderService")
        self.logger.info("OrderService initialized")

    def create_order(self, draft: OrderDraft) -> OrderResult:
        """
        Persist a validated draft and match it.

        The order is written as OPEN with its initial history entry, then handed
        to the matching engine, all while holding the instrument's book so that
        creation order and matching order agree.

        Args:
            draft: Validated order draft

        Returns:
            OrderResult with the settled order and the trades it produced

        Raises:
            StoreUnavailableError: If a store call fails or times out
            LockTimeoutError: If the instrument's book stays busy too long
        """
        self.logger.info(
            f"Submitting order: {draft.side.value} {draft.quantity} "
            f"{draft.instrument} @ {draft.price}"
        )
        engine_logger = self.matching_engine.logger

        try:
            with self.matching_engine.book_lock(draft.instrument):
                now = utc_now()
                order = self.store.create_order(Order.open(draft, now))
                self.store.append_history(OrderStatusHistory(
                    order_id=order.order_id,
                    status=OrderStatus.OPEN,
                    timestamp=now,
                ))
                engine_logger.log_order_submission(
                    order.order_id,
                    order.instrument,
                    order.side.value,
                    order.quantity,
                    order.price,
                    order.user_id,
                )

                result = self.matching_engine.try_execute(order)
        except OrderMatchException as e:
            engine_logger.log_error(f"Error submitting order for {draft.instrument}: {e.message}", e)
            raise

        self.logger.info(
            f"Order {result.order.order_id} submitted. "
            f"Status: {result.order.status.value}, "
            f"Remaining: {result.order.remaining_quantity}/{result.order.quantity}, "
            f"Trades: {len(result.trades)}"
        )
        return result

    def cancel_order(self, order_id: str) -> Order:
        """
        Cancel an OPEN or PARTIAL order.

        Cancellation and matching of the same instrument are serialized by the
        book lock: a cancel that arrives after a match filled the order fails
        with InvalidStateError, and an order cancelled first is never matched.

        Args:
            order_id: ID of the order to cancel

        Returns:
            The cancelled order

        Raises:
            NotFoundError: If the order doesn't exist
            InvalidStateError: If the order is FILLED or already CANCELLED
        """
        self.logger.info(f"Cancelling order {order_id}")
        instrument = self.store.get_order(order_id).instrument

        with self.matching_engine.book_lock(instrument):
            current = self.store.get_order(order_id)
            now = max(utc_now(), current.updated_at)
            cancelled = current.cancel(now)

            committed = self.store.commit(StoreCommit(
                orders=[cancelled],
                history=[OrderStatusHistory(
                    order_id=order_id,
                    status=OrderStatus.CANCELLED,
                    timestamp=now,
                )],
            ))
            cancelled = committed.orders[0]
            self.matching_engine.withdraw(cancelled)

        self.matching_engine.logger.log_order_cancellation(order_id, instrument)
        self.matching_engine.logger.log_status_transition(
            order_id, current.status.value, cancelled.status.value
        )
        return cancelled

    def get_order(self, order_id: str) -> Order:
        """
        Raises:
            NotFoundError: If the order doesn't exist
        """
        return self.store.get_order(order_id)

    def get_order_history(self, order_id: str) -> List[OrderStatusHistory]:
        """Status history of an order, oldest first."""
        self.store.get_order(order_id)
        return self.store.list_history(order_id)

    def get_order_trades(self, order_id: str) -> List[Trade]:
        """Trades where the order bought, followed by trades where it sold."""
        self.store.get_order(order_id)
        return self.store.list_trades(order_id)

    def list_orders(
        self,
        order_id: Optional[str] = None,
        instrument: Optional[str] = None,
        side: Optional[OrderSide] = None,
        status: Optional[OrderStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        sort_field: str = "created_at",
        sort_direction: str = "desc",
        page: int = 1,
        per_page: int = 10,
    ) -> OrderPage:
        """
        Filter, sort and paginate orders.

        Date bounds are inclusive whole days in UTC.

        Raises:
            ValidationError: If the sort field, direction or paging is invalid
        """
        if sort_field not in SORTABLE_FIELDS:
            raise ValidationError(
                f"Cannot sort by {sort_field}",
                details={"sort_field": sort_field, "allowed": sorted(SORTABLE_FIELDS)}
            )
        if sort_direction not in ("asc", "desc"):
            raise ValidationError(
                f"Sort direction must be asc or desc, got {sort_direction}",
                details={"sort_direction": sort_direction}
            )
        if page < 1 or per_page < 1:
            raise ValidationError(
                "Page and page size must be positive",
                details={"page": page, "per_page": per_page}
            )

        order_filter = OrderFilter(
            order_id=order_id,
            instrument=instrument,
            side=side,
            statuses=frozenset({status}) if status is not None else None,
            created_from=_start_of_day(date_from) if date_from else None,
            created_to=_end_of_day(date_to) if date_to else None,
        )
        orders = self.store.list_orders(order_filter)
        orders.sort(key=lambda o: _sort_key(getattr(o, sort_field)), reverse=sort_direction == "desc")

        items = len(orders)
        pages = max(1, math.ceil(items / per_page))
        start = (page - 1) * per_page

        return OrderPage(
            orders=orders[start:start + per_page],
            page=page,
            per_page=per_page,
            items=items,
            pages=pages,
            first=1,
            last=pages,
            prev=page - 1 if page > 1 else None,
            next=page + 1 if page < pages else None,
        )

    def get_statistics(self):
        """Matching engine statistics."""
        return self.matching_engine.get_statistics()


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def _sort_key(value):
    # Enums sort by their value; IDs may be missing only before persistence
    if hasattr(value, "value"):
        return value.value
    if value is None:
        return ""
    return value
