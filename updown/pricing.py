"""
Price scale helpers.

The exchange quotes binary-outcome prices as decimals in (0, 1); the
strategy thresholds and the trade ledger use the 0–100 display scale.
"""

import math

from updown.errors import InvalidPriceError


# Quotes carry at most a few decimals; rounding drops float noise at band edges
PERCENTAGE_DIGITS = 6


def to_percentage(price: float) -> float:
    """Convert an exchange decimal price (0–1) to the 0–100 scale."""
    return round(price * 100, PERCENTAGE_DIGITS)


def to_decimal(percentage: float) -> float:
    """Convert a 0–100 price to the exchange decimal scale."""
    return percentage / 100


def validate_price(price: float, field_name: str = "price") -> float:
    """Check a 0–100 price. Returns it unchanged."""
    if price is None or math.isnan(price):
        raise InvalidPriceError(f"{field_name} is not a number", price=price)
    if price < 0 or price > 100:
        raise InvalidPriceError(f"{field_name} must be between 0 and 100", price=price)
    return price


def validate_decimal_price(price: float, field_name: str = "price") -> float:
    """Check an exchange quote is strictly inside (0, 1). Returns it unchanged."""
    if price is None or math.isnan(price):
        raise InvalidPriceError(f"{field_name} is not a number", price=price)
    if price <= 0 or price >= 1:
        raise InvalidPriceError(
            f"{field_name} must be between 0 and 1 (exclusive)", price=price
        )
    return price
