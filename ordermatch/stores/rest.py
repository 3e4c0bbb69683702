"""
REST record store client

Talks to a json-server style backend exposing ``/orders``, ``/trades`` and
``/orderStatusHistory`` resources. Every request carries a timeout; idempotent
reads are retried by the transport, writes never are.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import OrderFilter, OrderStore
from ..core.history import OrderStatusHistory
from ..core.order import Order
from ..core.trade import Trade
from ..utils.exceptions import NotFoundError, StoreUnavailableError

Record = TypeVar("Record")


class RestStore(OrderStore):
    """Record store backed by a REST API."""

    ORDERS = "/orders"
    TRADES = "/trades"
    HISTORY = "/orderStatusHistory"

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 5.0,
        read_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the REST store client.

        Args:
            base_url: Root URL of the record store
            timeout: Seconds allowed for each request
            read_retries: Transport retries for GET requests
            session: Pre-built session (a retrying one is created otherwise)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self.session = session or self._create_session(read_retries)

    def _create_session(self, read_retries: int) -> requests.Session:
        """Create requests session with retry logic for reads."""
        session = requests.Session()

        retry_strategy = Retry(
            total=read_retries,
            backoff_factor=0.2,
            status_forcelist=[502, 503, 504],
            allowed_methods=["HEAD", "GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=10, pool_maxsize=20)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[List[Tuple[str, str]]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, params=params, json=payload, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise StoreUnavailableError(
                f"Store request timed out: {method} {path}",
                details={"url": url, "timeout": self.timeout}
            ) from e
        except requests.exceptions.RequestException as e:
            raise StoreUnavailableError(
                f"Store request failed: {method} {path}: {e}",
                details={"url": url}
            ) from e

        if response.status_code == 404:
            raise NotFoundError(
                f"Record not found: {path}",
                details={"url": url}
            )

        try:
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            raise StoreUnavailableError(
                f"Store returned {response.status_code} for {method} {path}",
                details={"url": url, "status_code": response.status_code}
            ) from e
        except ValueError as e:
            raise StoreUnavailableError(
                f"Invalid response from store for {method} {path}",
                details={"url": url}
            ) from e

    @staticmethod
    def _records(body: Any) -> List[Dict[str, Any]]:
        # Paginated json-server responses wrap the records in "data"
        if isinstance(body, dict):
            return body.get("data", [])
        return body

    @staticmethod
    def _decode(factory: Callable[[Dict[str, Any]], Record], record: Any) -> Record:
        try:
            return factory(record)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise StoreUnavailableError(
                f"Malformed store record: {e!r}",
                details={"record_id": record.get("id") if isinstance(record, dict) else None}
            ) from e

    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        order_filter = order_filter or OrderFilter()
        params: List[Tuple[str, str]] = []
        if order_filter.order_id is not None:
            params.append(("id", order_filter.order_id))
        if order_filter.instrument is not None:
            params.append(("instrument", order_filter.instrument))
        if order_filter.side is not None:
            params.append(("side", order_filter.side.label))
        if order_filter.statuses is not None:
            params.extend(("status", status.label) for status in sorted(order_filter.statuses, key=lambda s: s.value))
        if order_filter.created_from is not None:
            params.append(("createdAt_gte", order_filter.created_from.isoformat()))
        if order_filter.created_to is not None:
            params.append(("createdAt_lte", order_filter.created_to.isoformat()))

        body = self._request("GET", self.ORDERS, params=params)
        orders = [self._decode(Order.from_dict, record) for record in self._records(body)]
        # The backend may ignore some operators; the filter is the source of truth
        return [order for order in orders if order_filter.matches(order)]

    def get_order(self, order_id: str) -> Order:
        return self._decode(Order.from_dict, self._request("GET", f"{self.ORDERS}/{order_id}"))

    def create_order(self, order: Order) -> Order:
        return self._decode(Order.from_dict, self._request("POST", self.ORDERS, payload=order.to_dict()))

    def update_order(self, order_id: str, order: Order) -> Order:
        payload = {**order.to_dict(), "id": order_id}
        return self._decode(Order.from_dict, self._request("PUT", f"{self.ORDERS}/{order_id}", payload=payload))

    def append_trade(self, trade: Trade) -> Trade:
        return self._decode(Trade.from_dict, self._request("POST", self.TRADES, payload=trade.to_dict()))

    def append_history(self, entry: OrderStatusHistory) -> OrderStatusHistory:
        return self._decode(
            OrderStatusHistory.from_dict,
            self._request("POST", self.HISTORY, payload=entry.to_dict())
        )

    def list_history(self, order_id: str) -> List[OrderStatusHistory]:
        body = self._request("GET", self.HISTORY, params=[("orderId", order_id)])
        return [self._decode(OrderStatusHistory.from_dict, record) for record in self._records(body)]

    def list_trades(self, order_id: str) -> List[Trade]:
        bought = self._request("GET", self.TRADES, params=[("buyingOrderId", order_id)])
        sold = self._request("GET", self.TRADES, params=[("sellingOrderId", order_id)])
        return [
            self._decode(Trade.from_dict, record)
            for record in self._records(bought) + self._records(sold)
        ]

    def close(self) -> None:
        """Close the session."""
        if self.session:
            self.session.close()
