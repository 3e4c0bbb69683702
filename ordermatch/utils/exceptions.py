"""
Custom exceptions for the order matching service

This module defines the hierarchy of exceptions raised by the matching engine,
the order lifecycle service and the record stores.
"""


class OrderMatchException(Exception):
    """Base exception class for all order matching exceptions."""

    def __init__(self, message: str, details: dict = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(OrderMatchException):
    """Raised when an order draft contains malformed or out-of-range values."""
    pass


class NotFoundError(OrderMatchException):
    """Raised when a referenced order or record is absent from the store."""
    pass


class InvalidStateError(OrderMatchException):
    """Raised when an operation is attempted on an order in an incompatible status."""
    pass


class StoreUnavailableError(OrderMatchException):
    """Raised when an underlying store call fails or times out."""
    pass


class LockTimeoutError(OrderMatchException):
    """Raised when an instrument's order book lock cannot be acquired in time."""
    pass
