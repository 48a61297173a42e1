"""
Decimal Precision Utilities for Financial Calculations
Enforces consistent Decimal usage across all monetary operations
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Iterable, Union

from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 28

Numeric = Union[str, int, float, Decimal]


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with proper precision"""

    # Stellar assets carry 7 decimal places
    ASSET_PRECISION = Decimal("0.0000001")
    MAX_AMOUNT = Decimal("9999999999999.9999999")  # fits Numeric(20, 7)

    @classmethod
    def to_decimal(cls, value: Numeric, context: str = "amount") -> Decimal:
        """
        Convert API input to Decimal without going through float.

        Floats go through str() first; booleans are rejected; strings are stripped.
        Raises ValidationError on anything that is not a finite number.
        """
        if value is None or isinstance(value, bool):
            raise ValidationError(f"{context} must be a decimal number")

        if isinstance(value, Decimal):
            decimal_value = value
        else:
            try:
                decimal_value = Decimal(str(value).strip())
            except (InvalidOperation, ValueError):
                raise ValidationError(f"{context} must be a decimal number")

        if not decimal_value.is_finite():
            raise ValidationError(f"{context} must be a decimal number")

        return decimal_value

    @classmethod
    def validate_positive(cls, value: Numeric, context: str = "amount") -> Decimal:
        """Validate that amount is positive, fits the column and has at most 7 places"""
        amount = cls.to_decimal(value, context)

        if amount <= 0:
            raise ValidationError(f"{context} must be positive")
        if amount > cls.MAX_AMOUNT:
            raise ValidationError(f"{context} exceeds the maximum supported amount")
        if amount != amount.quantize(cls.ASSET_PRECISION, rounding=ROUND_HALF_UP):
            raise ValidationError(f"{context} supports at most 7 decimal places")

        return amount

    @classmethod
    def quantize_asset(cls, amount: Numeric) -> Decimal:
        """Quantize amount to asset precision (7 decimal places)"""
        return cls.to_decimal(amount).quantize(cls.ASSET_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def sum_amounts(cls, amounts: Iterable[Numeric]) -> Decimal:
        total = Decimal("0")
        for amount in amounts:
            total += cls.to_decimal(amount, "summand")
        return cls.quantize_asset(total)

    @classmethod
    def meets_ratio(cls, numerator: Decimal, denominator: Decimal, minimum: Decimal) -> bool:
        """
        Exact check of numerator / denominator >= minimum.

        Compares numerator >= minimum * denominator so no division rounding
        can push a borderline ratio over the line.
        """
        if denominator <= 0:
            raise ValidationError("ratio denominator must be positive")
        return numerator >= minimum * denominator

    @classmethod
    def format_amount(cls, amount: Numeric) -> str:
        """Plain string with trailing zeros removed (no scientific notation)"""
        quantized = cls.quantize_asset(amount)
        formatted = f"{quantized:f}"
        if "." in formatted:
            formatted = formatted.rstrip("0").rstrip(".")
        return formatted or "0"
