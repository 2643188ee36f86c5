"""
Integer-safe token amount math.

Amounts are plain Python ints expressed in base units (10^decimals per whole
token). Nothing here ever goes through float or Decimal arithmetic: decimal
strings are split into integer/fractional digits and scaled by hand, so the
result is exact for any precision up to 38 decimals.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .exceptions import AmountRangeError, AmountSyntaxError
from .validators import assert_decimals, assert_non_negative, to_integer, MAX_SAFE_INTEGER

IntegerLike = Union[int, float, str]
DecimalLike = Union[int, float, str]

DECIMAL_PATTERN = re.compile(r"^\d+(?:\.\d+)?$")
NONZERO_DIGIT = re.compile(r"[1-9]")

# floats with more fractional digits than decimals + this are refused
FLOAT_PRECISION_SLACK = 6


class RoundingMode(str, Enum):
    FLOOR = "floor"
    CEIL = "ceil"
    ROUND = "round"


# =============================================================================
# Checked integer helpers
# =============================================================================

def pow10(exponent: int) -> int:
    assert_decimals(exponent, "exponent")
    return 10 ** exponent


def checked_add(lhs: int, rhs: int, label: str = "result") -> int:
    result = lhs + rhs
    assert_non_negative(result, label)
    return result


def checked_subtract(lhs: int, rhs: int, label: str = "result") -> int:
    result = lhs - rhs
    assert_non_negative(result, label)
    return result


def checked_divide(dividend: int, divisor: int, label: str = "result") -> int:
    if divisor == 0:
        raise AmountRangeError("divisor must be non-zero", field_name="divisor")
    result = dividend // divisor
    assert_non_negative(result, label)
    return result


# =============================================================================
# Ratios
# =============================================================================

@dataclass(frozen=True)
class Ratio:
    """Immutable non-negative fraction used for fee and slippage scaling."""
    numerator: int
    denominator: int

    def __post_init__(self) -> None:
        if self.denominator <= 0:
            raise AmountRangeError("denominator must be positive", field_name="denominator")
        assert_non_negative(self.numerator, "numerator")


def create_ratio(numerator: IntegerLike, denominator: IntegerLike) -> Ratio:
    num = to_integer(numerator, "numerator")
    den = to_integer(denominator, "denominator")
    return Ratio(numerator=num, denominator=den)


def _coerce_rounding(rounding: Union[RoundingMode, str, None]) -> RoundingMode:
    if rounding is None:
        return RoundingMode.FLOOR
    try:
        return RoundingMode(rounding)
    except ValueError:
        raise AmountRangeError(f"unknown rounding mode {rounding!r}", field_name="rounding")


def _divide_with_rounding(dividend: int, divisor: int, rounding: RoundingMode) -> int:
    if divisor <= 0:
        raise AmountRangeError("divisor must be positive", field_name="divisor")
    base, remainder = divmod(dividend, divisor)
    if remainder == 0:
        return base
    if rounding is RoundingMode.CEIL:
        return base + 1
    if rounding is RoundingMode.ROUND:
        return base + 1 if remainder * 2 >= divisor else base
    return base


def apply_ratio(
    amount: int,
    ratio: Ratio,
    rounding: Union[RoundingMode, str, None] = None,
) -> int:
    """Return ``amount * numerator / denominator`` under the rounding mode (floor by default)."""
    assert_non_negative(amount, "amount")
    return _divide_with_rounding(amount * ratio.numerator, ratio.denominator, _coerce_rounding(rounding))


# =============================================================================
# Token amounts
# =============================================================================

def _normalize_float_input(value: float, decimals: int, label: str) -> str:
    if value != value or value in (float("inf"), float("-inf")):
        raise AmountRangeError(f"{label} must be a finite number", field_name=label)
    text = repr(value)
    if "e" in text or "E" in text:
        raise AmountRangeError(
            f"{label} cannot use exponential notation; provide a string instead",
            field_name=label,
        )
    _, _, fraction = text.partition(".")
    if len(fraction) > decimals + FLOAT_PRECISION_SLACK:
        raise AmountRangeError(
            f"{label} exceeds safe precision; provide a string instead",
            field_name=label,
        )
    return text


def _decimal_to_base_units(
    value: str,
    decimals: int,
    scale: int,
    rounding: RoundingMode,
    label: str,
) -> int:
    sanitized = value.replace("_", "").strip()
    if sanitized == "":
        raise AmountSyntaxError(f"{label} must not be empty", field_name=label)
    if not DECIMAL_PATTERN.match(sanitized):
        raise AmountSyntaxError(f"{label} must be a non-negative decimal string", field_name=label)

    integer_part, _, fractional_digits = sanitized.partition(".")
    result = int(integer_part or "0") * scale

    if decimals == 0:
        if not fractional_digits:
            return result
        if rounding is RoundingMode.CEIL and NONZERO_DIGIT.search(fractional_digits):
            return result + 1
        if rounding is RoundingMode.ROUND and fractional_digits[0] >= "5":
            return result + 1
        return result

    result += int(fractional_digits[:decimals].ljust(decimals, "0"))

    remainder_digits = fractional_digits[decimals:]
    if remainder_digits:
        if rounding is RoundingMode.CEIL and NONZERO_DIGIT.search(remainder_digits):
            result += 1
        elif rounding is RoundingMode.ROUND and remainder_digits[0] >= "5":
            result += 1

    return result


def _format_base_units(
    amount: int,
    decimals: int,
    scale: int,
    minimum_fraction_digits: int,
    trim_trailing_zeros: bool,
) -> str:
    assert_non_negative(amount, "amount")
    if minimum_fraction_digits < 0 or minimum_fraction_digits > decimals:
        raise AmountRangeError(
            "minimum_fraction_digits must be between 0 and the token decimals",
            field_name="minimum_fraction_digits",
        )
    if decimals == 0:
        return str(amount)

    whole, remainder = divmod(amount, scale)
    fraction = str(remainder).rjust(decimals, "0")
    if trim_trailing_zeros:
        fraction = fraction.rstrip("0")
    if len(fraction) < minimum_fraction_digits:
        fraction = fraction.ljust(minimum_fraction_digits, "0")
    if not fraction:
        return str(whole)
    return f"{whole}.{fraction}"


class TokenAmountMath:
    """
    Conversions and checked arithmetic for one token precision.

    Every entry point re-validates its operands, so an amount that went
    negative somewhere else is caught at the next call instead of being
    formatted or scaled silently.
    """

    def __init__(self, decimals: int):
        assert_decimals(decimals, "decimals")
        self.decimals = decimals
        self.scale = pow10(decimals)

    def __repr__(self) -> str:
        return f"TokenAmountMath(decimals={self.decimals})"

    def from_base_units(self, value: IntegerLike, label: str = "amount") -> int:
        amount = to_integer(value, label)
        assert_non_negative(amount, label)
        return amount

    def from_decimal(
        self,
        value: DecimalLike,
        rounding: Union[RoundingMode, str, None] = None,
        label: str = "value",
    ) -> int:
        """
        Parse a human decimal amount into base units.

        Args:
            value: Decimal string, int, or float. Floats in exponent form are
                rejected; pass a string for very small or large values.
            rounding: What to do with digits beyond ``decimals``.
            label: Name used in error messages.
        """
        mode = _coerce_rounding(rounding)

        if isinstance(value, bool):
            raise AmountSyntaxError(f"{label} must be a number or decimal string", field_name=label)

        if isinstance(value, int):
            return self.from_base_units(value * self.scale, label)

        if isinstance(value, float):
            if value.is_integer():
                if abs(value) > MAX_SAFE_INTEGER:
                    raise AmountRangeError(
                        f"{label} must be within the safe integer range when provided as a number",
                        field_name=label,
                    )
                return self.from_base_units(int(value) * self.scale, label)
            if self.decimals == 0 and value == value and abs(value) != float("inf"):
                raise AmountRangeError(
                    f"{label} cannot include fractional digits for a token with 0 decimals",
                    field_name=label,
                )
            normalized = _normalize_float_input(value, self.decimals, label)
            return _decimal_to_base_units(normalized, self.decimals, self.scale, mode, label)

        if isinstance(value, str):
            return _decimal_to_base_units(value, self.decimals, self.scale, mode, label)

        raise AmountSyntaxError(
            f"{label} must be a number or decimal string, got {type(value).__name__}",
            field_name=label,
        )

    def to_decimal_string(
        self,
        amount: int,
        minimum_fraction_digits: int = 0,
        trim_trailing_zeros: bool = True,
    ) -> str:
        return _format_base_units(
            self.from_base_units(amount),
            self.decimals,
            self.scale,
            minimum_fraction_digits,
            trim_trailing_zeros,
        )

    def add(self, lhs: int, rhs: int) -> int:
        return checked_add(self.from_base_units(lhs), self.from_base_units(rhs))

    def subtract(self, lhs: int, rhs: int) -> int:
        return checked_subtract(self.from_base_units(lhs), self.from_base_units(rhs))

    def multiply_by_ratio(
        self,
        amount: int,
        ratio: Ratio,
        rounding: Union[RoundingMode, str, None] = None,
    ) -> int:
        return apply_ratio(self.from_base_units(amount), ratio, rounding)

    def is_zero(self, amount: int) -> bool:
        return self.from_base_units(amount) == 0

    def compare(self, lhs: int, rhs: int) -> int:
        left = self.from_base_units(lhs)
        right = self.from_base_units(rhs)
        if left > right:
            return 1
        if left < right:
            return -1
        return 0


def create_token_amount(decimals: int) -> TokenAmountMath:
    return TokenAmountMath(decimals)


# =============================================================================
# Lamports
# =============================================================================

class LamportsMath:
    """SOL-denominated view over a 9-decimal TokenAmountMath."""

    def __init__(self) -> None:
        self.raw = TokenAmountMath(9)
        self.decimals = self.raw.decimals
        self.scale = self.raw.scale

    def from_lamports(self, value: IntegerLike, label: str = "lamports") -> int:
        return self.raw.from_base_units(value, label)

    def from_sol(
        self,
        value: DecimalLike,
        rounding: Union[RoundingMode, str, None] = None,
        label: str = "value",
    ) -> int:
        return self.raw.from_decimal(value, rounding=rounding, label=label)

    def to_sol_string(self, amount: int, minimum_fraction_digits: int = 0, trim_trailing_zeros: bool = True) -> str:
        return self.raw.to_decimal_string(amount, minimum_fraction_digits, trim_trailing_zeros)

    def add(self, lhs: int, rhs: int) -> int:
        return self.raw.add(lhs, rhs)

    def subtract(self, lhs: int, rhs: int) -> int:
        return self.raw.subtract(lhs, rhs)

    def multiply_by_ratio(self, amount: int, ratio: Ratio, rounding: Union[RoundingMode, str, None] = None) -> int:
        return self.raw.multiply_by_ratio(amount, ratio, rounding)

    def is_zero(self, amount: int) -> bool:
        return self.raw.is_zero(amount)

    def compare(self, lhs: int, rhs: int) -> int:
        return self.raw.compare(lhs, rhs)


lamports_math = LamportsMath()

LAMPORTS_PER_SOL = lamports_math.scale


def lamports(value: IntegerLike, label: str = "lamports") -> int:
    return lamports_math.from_lamports(value, label)


def lamports_from_sol(value: DecimalLike, rounding: Union[RoundingMode, str, None] = None) -> int:
    return lamports_math.from_sol(value, rounding=rounding)


def lamports_to_sol_string(amount: int, minimum_fraction_digits: int = 0, trim_trailing_zeros: bool = True) -> str:
    return lamports_math.to_sol_string(amount, minimum_fraction_digits, trim_trailing_zeros)


__all__ = [
    "RoundingMode",
    "Ratio",
    "TokenAmountMath",
    "LamportsMath",
    "create_ratio",
    "apply_ratio",
    "create_token_amount",
    "pow10",
    "checked_add",
    "checked_subtract",
    "checked_divide",
    "lamports_math",
    "lamports",
    "lamports_from_sol",
    "lamports_to_sol_string",
    "LAMPORTS_PER_SOL",
]
