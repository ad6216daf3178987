"""Input validation utilities for exchange wire data.

Exchanges send prices and sizes as strings, numbers or occasionally junk.
These helpers turn them into floats and reject anything that cannot be a
number.
"""

import math
from typing import Any, Optional, Sequence, Tuple


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


def to_float(value: Any, label: str = "value") -> float:
    """Convert a wire value (str/int/float) to a finite float.

    Raises:
        ValidationError: If the value is missing, non-numeric or not finite
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be numeric, got {value!r}") from exc
    if not math.isfinite(number):
        raise ValidationError(f"{label} must be finite, got {value!r}")
    return number


def optional_float(value: Any) -> Optional[float]:
    """Like `to_float` but returns None instead of raising."""
    try:
        return to_float(value)
    except ValidationError:
        return None


def parse_level(entry: Any) -> Tuple[float, float]:
    """Parse a `[price, quantity, ...]` entry or a `{"price", "quantity"}` dict.

    Extra trailing fields (Kraken timestamps, OKX order counts) are ignored.
    Sign checks are left to the caller, which drops empty levels.
    """
    if isinstance(entry, dict):
        price = entry.get("price")
        quantity = entry.get("quantity", entry.get("qty", entry.get("size")))
    elif isinstance(entry, Sequence) and not isinstance(entry, (str, bytes)) and len(entry) >= 2:
        price, quantity = entry[0], entry[1]
    else:
        raise ValidationError(f"order book level must be [price, quantity], got {entry!r}")
    return to_float(price, "price"), to_float(quantity, "quantity")
