"""
Module: stock_kernel.db.types
Responsibility: Annotated type aliases and utility functions for quantity
    columns.  Centralizes precision, rounding and parsing so that every
    model, service and selector handles quantities identically.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the stock kernel.  Quantities are Decimal with
      QUANTITY_DECIMAL_PLACES of precision.
    - round_quantity() is the ONLY sanctioned rounding function.
    - quantity_from_value() rejects NaN, infinities and unparseable input.

Failure modes:
    - InvalidQuantityError from quantity_from_value().
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Annotated

from sqlalchemy import String

from stock_kernel.db.base import QUANTITY_PRECISION, QUANTITY_SCALE, QuantityType
from stock_kernel.exceptions import InvalidQuantityError

# Material / BOM quantity: exact, 9 decimal places
Quantity = Annotated[Decimal, QuantityType()]

# Short identifier strings (stage labels, kinds, units)
ShortCode = Annotated[str, String(50)]

# Human-facing names
Name = Annotated[str, String(255)]

# Long text for notes
LongText = Annotated[str, String(4000)]

QUANTITY_DECIMAL_PLACES = QUANTITY_SCALE
DEFAULT_ROUNDING = ROUND_HALF_UP

# Integer digits a Numeric(38, 9) column can hold.
MAX_QUANTITY_INTEGER_DIGITS = QUANTITY_PRECISION - QUANTITY_SCALE

ZERO = Decimal("0")


def round_quantity(
    value: Decimal,
    decimal_places: int = QUANTITY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a quantity to the storage precision."""
    quantizer = Decimal(1).scaleb(-decimal_places)
    with localcontext() as ctx:
        ctx.prec = QUANTITY_PRECISION
        return value.quantize(quantizer, rounding=rounding)


def quantity_from_value(value: object, field: str = "quantity") -> Decimal:
    """
    Parse a caller-supplied quantity into a finite Decimal.

    Accepts Decimal, int and str.  Floats are converted through their
    shortest repr so that 1.5 becomes Decimal("1.5"), not the binary
    expansion.  Booleans are rejected.

    Raises:
        InvalidQuantityError: on None, bool, unparseable or non-finite
            input, or a magnitude the quantity column cannot store.
    """
    if value is None or isinstance(value, bool):
        raise InvalidQuantityError(field, value, "a number is required")
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidQuantityError(field, value, "not a number") from None
    if not parsed.is_finite():
        raise InvalidQuantityError(field, value, "must be finite")
    if parsed != 0 and parsed.adjusted() >= MAX_QUANTITY_INTEGER_DIGITS:
        raise InvalidQuantityError(
            field, value, f"exceeds {MAX_QUANTITY_INTEGER_DIGITS} integer digits"
        )
    return parsed
