"""Amount parsing shared by the rule store, matcher and workflow services."""
from decimal import Decimal, InvalidOperation

from app.core.exceptions import InvalidInputError

CENT = Decimal("0.01")


def to_amount(value, field: str = "amount", allow_none: bool = False) -> Decimal | None:
    """Parse a monetary value to a 2dp Decimal, rejecting negatives.

    Floats go through str() so 4999.99 stays 4999.99. Sub-cent precision is
    rejected, never rounded: 9999.995 must not be compared as 10000.00.
    """
    if value is None:
        if allow_none:
            return None
        raise InvalidInputError(f"{field} is required.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"{field} must be a number, got {value!r}.")
    if not amount.is_finite():
        raise InvalidInputError(f"{field} must be a finite number.")
    if amount < 0:
        raise InvalidInputError(f"{field} cannot be negative.")
    cents = amount.quantize(CENT)
    if cents != amount:
        raise InvalidInputError(f"{field} has more than 2 decimal places: {value!r}.")
    return cents
