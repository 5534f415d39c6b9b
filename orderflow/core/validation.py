"""
Input checks shared by the resource owners.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from orderflow.core.exceptions import InvalidRequestError


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce a money value to ``Decimal``.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``.

    Raises:
        InvalidRequestError: Not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            msg = f"Invalid {field}: {value!r}"
            raise InvalidRequestError(msg) from e
    if not result.is_finite():
        msg = f"Invalid {field}: {value!r}"
        raise InvalidRequestError(msg)
    return result


def require_positive_amount(amount: Any) -> Decimal:
    value = to_decimal(amount)
    if value <= 0:
        msg = "Amount must be greater than zero"
        raise InvalidRequestError(msg, details={"amount": str(value)})
    return value


def require_positive_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        msg = "Quantity must be greater than zero"
        raise InvalidRequestError(msg, details={"quantity": quantity})
    return quantity
