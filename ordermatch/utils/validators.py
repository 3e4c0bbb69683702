"""
Input validation utilities

This module provides validation functions for order drafts, prices and
quantities. The matching engine and the order service assume their input has
passed through here.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence, Union

from .exceptions import ValidationError
from ..core.order import OrderDraft, OrderSide


def sanitize_decimal(value: Union[str, int, Decimal]) -> Decimal:
    """
    Convert a value to Decimal with proper error handling.

    A comma is accepted as decimal separator.

    Raises:
        ValidationError: If value cannot be converted to a finite Decimal
    """
    if isinstance(value, float):
        raise ValidationError(
            f"Binary floating point values are not accepted: {value}",
            details={"value": value}
        )
    try:
        if isinstance(value, Decimal):
            result = value
        else:
            result = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(
            f"Invalid decimal value: {value}",
            details={"value": str(value), "error": str(e)}
        )
    if not result.is_finite():
        raise ValidationError(f"Invalid decimal value: {value}", details={"value": str(value)})
    return result


def validate_price(
    price: Decimal,
    instrument: str,
    precision: int = 2,
    max_price: Decimal = Decimal("10000000"),
) -> bool:
    """
    Validate a limit price: positive, at most ``precision`` decimal places.

    Raises:
        ValidationError: If the price is invalid
    """
    if price <= 0:
        raise ValidationError(
            f"Price must be positive, got {price}",
            details={"instrument": instrument, "price": str(price)}
        )

    if price > max_price:
        raise ValidationError(
            f"Price {price} exceeds maximum {max_price}",
            details={"instrument": instrument, "price": str(price), "max": str(max_price)}
        )

    if -price.as_tuple().exponent > precision and price != price.quantize(Decimal(1).scaleb(-precision)):
        raise ValidationError(
            f"Price {price} has more than {precision} decimal places",
            details={"instrument": instrument, "price": str(price), "precision": precision}
        )

    return True


def validate_quantity(
    quantity: Decimal,
    instrument: str,
    max_quantity: Decimal = Decimal("1000000"),
) -> bool:
    """
    Validate an order quantity: a positive whole number.

    Raises:
        ValidationError: If quantity is invalid
    """
    if quantity <= 0:
        raise ValidationError(
            f"Quantity must be positive, got {quantity}",
            details={"instrument": instrument, "quantity": str(quantity)}
        )

    if quantity != quantity.to_integral_value():
        raise ValidationError(
            f"Quantity must be a whole number, got {quantity}",
            details={"instrument": instrument, "quantity": str(quantity)}
        )

    if quantity > max_quantity:
        raise ValidationError(
            f"Quantity {quantity} exceeds maximum {max_quantity}",
            details={"instrument": instrument, "quantity": str(quantity), "max": str(max_quantity)}
        )

    return True


def validate_instrument(instrument: str, allowed_instruments: Optional[Sequence[str]] = None) -> bool:
    """
    Validate an instrument symbol.

    Raises:
        ValidationError: If the symbol is empty or not in the allowed list
    """
    if not instrument or not isinstance(instrument, str) or not instrument.strip():
        raise ValidationError(
            f"Invalid instrument: {instrument!r}",
            details={"instrument": instrument}
        )

    if allowed_instruments and instrument not in allowed_instruments:
        raise ValidationError(
            f"Instrument {instrument} is not supported",
            details={"instrument": instrument, "allowed": list(allowed_instruments)}
        )

    return True


def validate_order_draft(
    instrument: str,
    side: Union[str, OrderSide],
    price: Union[str, Decimal],
    quantity: Union[str, int, Decimal],
    user_id: str,
    settings=None,
) -> OrderDraft:
    """
    Validate raw order parameters and build a draft.

    Args:
        instrument: Instrument symbol
        side: BUY or SELL (case-insensitive)
        price: Limit price
        quantity: Order quantity
        user_id: Owning user
        settings: Application settings supplying limits (defaults used if None)

    Returns:
        Validated OrderDraft with the price normalized to two decimal places

    Raises:
        ValidationError: If any parameter is invalid
    """
    precision = settings.price_precision if settings else 2
    max_price = settings.max_price if settings else Decimal("10000000")
    max_quantity = settings.max_order_quantity if settings else Decimal("1000000")
    allowed = settings.supported_instruments if settings else None

    instrument = instrument.strip().upper() if isinstance(instrument, str) else instrument
    validate_instrument(instrument, allowed)

    if isinstance(side, OrderSide):
        order_side = side
    else:
        try:
            order_side = OrderSide(str(side).strip().upper())
        except ValueError:
            raise ValidationError(
                f"Invalid side: {side}",
                details={"side": side, "valid_sides": [s.value for s in OrderSide]}
            )

    validated_price = sanitize_decimal(price)
    validate_price(validated_price, instrument, precision, max_price)

    validated_quantity = sanitize_decimal(quantity)
    validate_quantity(validated_quantity, instrument, max_quantity)

    if not user_id or not str(user_id).strip():
        raise ValidationError("User ID is required", details={"user_id": user_id})

    return OrderDraft(
        instrument=instrument,
        side=order_side,
        price=validated_price.quantize(Decimal(1).scaleb(-precision)),
        quantity=validated_quantity,
        user_id=str(user_id).strip(),
    )
