"""
Logging for order lifecycle and execution events.

Order events (submissions, status transitions, cancellations) and trade
executions are written through dedicated child loggers, either as plain text
or as one JSON object per line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """
    Render each record as a single JSON line.

    Order and trade identifiers passed through ``extra`` are promoted to
    top-level keys so log pipelines can join events on them.
    """

    CONTEXT_FIELDS = ("order_id", "trade_id", "instrument", "status", "user_id", "correlation_id")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }

        for key in self.CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = str(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry)


class OrderEventLogger:
    """
    Application logger with helpers for order and trade events.

    ``<name>.orders`` receives lifecycle events and ``<name>.trades`` receives
    executions; with a log directory each also gets its own file, and errors
    are copied to ``errors.log``.
    """

    def __init__(
        self,
        name: str = "ordermatch",
        log_level: str = "INFO",
        log_dir: Optional[Path] = None,
        use_json: bool = False,
    ):
        """
        Args:
            name: Root logger name of the application
            log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files; console only when None
            use_json: Emit JSON lines instead of plain text
        """
        self.use_json = use_json
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.getLevelName(log_level.upper()))
        self.logger.handlers.clear()
        self.logger.propagate = False
        self.logger.addHandler(self._handler(logging.StreamHandler(sys.stdout)))

        self.order_logger = self.logger.getChild("orders")
        self.trade_logger = self.logger.getChild("trades")

        if log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self.logger.addHandler(self._file_handler(log_dir / "ordermatch.log"))
            self.order_logger.addHandler(self._file_handler(log_dir / "orders.log"))
            self.trade_logger.addHandler(self._file_handler(log_dir / "trades.log"))
            self.logger.addHandler(self._file_handler(log_dir / "errors.log", logging.ERROR))

    def _handler(self, handler: logging.Handler) -> logging.Handler:
        if self.use_json:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
        return handler

    def _file_handler(self, path: Path, level: int = logging.NOTSET) -> logging.Handler:
        handler = self._handler(logging.FileHandler(path, encoding="utf-8"))
        handler.setLevel(level)
        return handler

    def log_order_submission(
        self,
        order_id: str,
        instrument: str,
        side: str,
        quantity: Decimal,
        price: Decimal,
        user_id: str,
    ):
        self.order_logger.info(
            f"Order {order_id} created: {side} {quantity} {instrument} @ {price}",
            extra={
                "order_id": order_id,
                "instrument": instrument,
                "user_id": user_id,
                "correlation_id": order_id,
            },
        )

    def log_trade_execution(
        self,
        trade_id: str,
        instrument: str,
        price: Decimal,
        quantity: Decimal,
        buying_order_id: str,
        selling_order_id: str,
    ):
        self.trade_logger.info(
            f"Trade {trade_id}: {quantity} {instrument} @ {price} "
            f"(buy {buying_order_id} / sell {selling_order_id})",
            extra={"trade_id": trade_id, "instrument": instrument},
        )

    def log_status_transition(self, order_id: str, old_status: str, new_status: str):
        self.order_logger.info(
            f"Order {order_id}: {old_status} -> {new_status}",
            extra={"order_id": order_id, "status": new_status},
        )

    def log_order_cancellation(self, order_id: str, instrument: str, reason: str = "requested by owner"):
        self.order_logger.info(
            f"Order {order_id} cancelled ({reason})",
            extra={"order_id": order_id, "instrument": instrument},
        )

    def log_error(self, message: str, exception: Optional[Exception] = None, **context):
        """Log an error, with the traceback of ``exception`` when given."""
        self.logger.error(message, exc_info=exception, extra=context)

    def info(self, message: str, **context):
        self.logger.info(message, extra=context)

    def debug(self, message: str, **context):
        self.logger.debug(message, extra=context)


_logger: Optional[OrderEventLogger] = None


def get_logger(
    name: str = "ordermatch",
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    use_json: bool = False,
) -> OrderEventLogger:
    """
    Return the process-wide event logger, creating it on first use.

    Arguments only take effect on the first call.
    """
    global _logger

    if _logger is None:
        _logger = OrderEventLogger(name, log_level, log_dir, use_json)

    return _logger
