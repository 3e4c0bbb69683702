"""
REST API endpoints for order operations.

Provides endpoints for order creation, cancellation, lookups and listings.
Service exceptions propagate to the application's exception handlers.
Handlers are plain functions so FastAPI runs them in its threadpool, since
the order service blocks on order book locks and store calls.
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..models import (
    ErrorResponse,
    HistoryResponse,
    OrderListResponse,
    OrderRequest,
    OrderResponse,
    OrderStatusResponse,
    TradeResponse,
)
from ...config import get_settings
from ...core.order import OrderSide, OrderStatus
from ...services.order_service import OrderService
from ...utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# Dependency injection for OrderService
# This will be overridden in main.py with actual instance
_order_service: OrderService = None


def get_order_service() -> OrderService:
    """Dependency to get OrderService instance."""
    if _order_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order service not initialized"
        )
    return _order_service


def set_order_service(service: Optional[OrderService]) -> None:
    """Set the global OrderService instance."""
    global _order_service
    _order_service = service


def _parse_enum(enum_type, value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return enum_type(value.strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid {name}: {value}",
            details={name: value, "allowed": [member.value for member in enum_type]}
        )


NOT_FOUND = {404: {"description": "Order not found", "model": ErrorResponse}}


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Create a limit order and match it against the instrument's book. "
                "The response reflects the order after matching settled.",
    responses={
        201: {
            "description": "Order created",
            "model": OrderResponse
        },
        422: {
            "description": "Validation error",
            "model": ErrorResponse
        },
        503: {
            "description": "Record store or order book unavailable",
            "model": ErrorResponse
        }
    }
)
def create_order(
    order_request: OrderRequest,
    order_service: OrderService = Depends(get_order_service)
) -> OrderResponse:
    """
    Create an order.

    **Request Body:**
    - `instrument`: Instrument symbol (e.g., PETR4)
    - `side`: buy or sell
    - `price`: Limit price, at most two decimal places
    - `quantity`: Whole number of units
    - `user_id`: Owning user

    **Example:**
    ```json
    {
      "instrument": "PETR4",
      "side": "buy",
      "price": "25.50",
      "quantity": "100",
      "user_id": "1"
    }
    ```
    """
    logger.info(
        f"Received order request: {order_request.side} {order_request.quantity} "
        f"{order_request.instrument} @ {order_request.price}"
    )

    draft = order_request.to_draft(get_settings())
    result = order_service.create_order(draft)

    logger.info(
        f"Order created: {result.order.order_id}, status={result.order.status.value}"
    )
    return OrderResponse.from_order_result(result)


@router.delete(
    "/{order_id}",
    response_model=OrderStatusResponse,
    summary="Cancel an order",
    description="Cancel an OPEN or PARTIAL order by ID",
    responses={
        **NOT_FOUND,
        409: {
            "description": "Order already filled or cancelled",
            "model": ErrorResponse
        }
    }
)
def cancel_order(
    order_id: str,
    order_service: OrderService = Depends(get_order_service)
) -> OrderStatusResponse:
    """Cancel an existing order."""
    logger.info(f"Cancelling order {order_id}")
    order = order_service.cancel_order(order_id)
    return OrderStatusResponse.from_order(order)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="Filter, sort and paginate orders"
)
def list_orders(
    order_id: Optional[str] = Query(None, alias="id", description="Exact order ID"),
    instrument: Optional[str] = Query(None, description="Instrument symbol"),
    side: Optional[str] = Query(None, description="BUY or SELL"),
    order_status: Optional[str] = Query(None, alias="status", description="Order status"),
    date_from: Optional[date] = Query(None, description="Created on or after this day (UTC)"),
    date_to: Optional[date] = Query(None, description="Created on or before this day (UTC)"),
    sort: str = Query("created_at", description="Order field to sort by"),
    direction: str = Query("desc", description="Sort direction: asc or desc"),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: Optional[int] = Query(None, ge=1, description="Orders per page"),
    order_service: OrderService = Depends(get_order_service)
) -> OrderListResponse:
    """
    List orders.

    **Example:**
    ```
    GET /api/v1/orders?instrument=PETR4&status=OPEN&sort=price&direction=asc&page=2
    ```
    """
    settings = get_settings()
    per_page = min(per_page or settings.default_page_size, settings.max_page_size)

    result = order_service.list_orders(
        order_id=order_id,
        instrument=instrument.strip().upper() if instrument else None,
        side=_parse_enum(OrderSide, side, "side"),
        status=_parse_enum(OrderStatus, order_status, "status"),
        date_from=date_from,
        date_to=date_to,
        sort_field=sort,
        sort_direction=direction.lower(),
        page=page,
        per_page=per_page,
    )
    return OrderListResponse.from_page(result)


@router.get(
    "/{order_id}",
    response_model=OrderStatusResponse,
    summary="Get order",
    description="Retrieve the current record of an order",
    responses=NOT_FOUND
)
def get_order(
    order_id: str,
    order_service: OrderService = Depends(get_order_service)
) -> OrderStatusResponse:
    logger.debug(f"Getting order {order_id}")
    return OrderStatusResponse.from_order(order_service.get_order(order_id))


@router.get(
    "/{order_id}/history",
    response_model=List[HistoryResponse],
    summary="Get order status history",
    responses=NOT_FOUND
)
def get_order_history(
    order_id: str,
    order_service: OrderService = Depends(get_order_service)
) -> List[HistoryResponse]:
    entries = order_service.get_order_history(order_id)
    return [HistoryResponse.from_history(entry) for entry in entries]


@router.get(
    "/{order_id}/trades",
    response_model=List[TradeResponse],
    summary="Get order trades",
    description="Trades where the order bought, followed by trades where it sold",
    responses=NOT_FOUND
)
def get_order_trades(
    order_id: str,
    order_service: OrderService = Depends(get_order_service)
) -> List[TradeResponse]:
    trades = order_service.get_order_trades(order_id)
    return [TradeResponse.from_trade(trade) for trade in trades]
