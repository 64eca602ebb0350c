from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """
    Coerce a JSON number or numeric string into a 2-place Decimal.

    Floats go through str() first so 0.1 stays 0.10 instead of the
    binary approximation.

    Raises:
        ValueError: if the value is not numeric (bools are rejected too)
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("not a monetary value")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, (int, float)):
        dec = Decimal(str(value))
    elif isinstance(value, str):
        try:
            dec = Decimal(value.strip().replace(",", "."))
        except InvalidOperation:
            raise ValueError("not a monetary value")
    else:
        raise ValueError("not a monetary value")

    if not dec.is_finite():
        raise ValueError("not a monetary value")
    return dec.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a monetary Decimal as a fixed 2-place string ("12.50")."""
    if value is None:
        return None
    return str(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))
