import re
from typing import Any, Union

import base58
from solders.pubkey import Pubkey

from .exceptions import (
    AmountRangeError,
    AmountSyntaxError,
    InvalidAddressError,
    InvalidSignatureError,
)

SOLANA_ADDRESS_LENGTH = 32
SOLANA_SIGNATURE_LENGTH = 64

MAX_DECIMALS = 38
MAX_SAFE_INTEGER = 2**53 - 1

INTEGER_PATTERN = re.compile(r"^[-+]?\d+$")

AddressLike = Union[Pubkey, str]

def to_address(value: Any, field_name: str = "address") -> Pubkey:
    if isinstance(value, Pubkey):
        return value

    if not isinstance(value, str):
        raise InvalidAddressError(
            f"{field_name} must be a Pubkey or base58 string, got {type(value).__name__}",
            field_name=field_name,
            invalid_address=str(value)[:50],
        )

    cleaned = value.strip()
    try:
        decoded = base58.b58decode(cleaned)
    except ValueError as e:
        raise InvalidAddressError(
            f"{field_name} is not valid base58: {e}",
            field_name=field_name,
            invalid_address=cleaned[:50],
        )

    if len(decoded) != SOLANA_ADDRESS_LENGTH:
        raise InvalidAddressError(
            f"{field_name} must decode to {SOLANA_ADDRESS_LENGTH} bytes, got {len(decoded)}",
            field_name=field_name,
            invalid_address=cleaned[:50],
        )

    return Pubkey.from_bytes(decoded)

def decode_signature(value: str, field_name: str = "signature") -> bytes:
    try:
        decoded = base58.b58decode(value.strip())
    except ValueError as e:
        raise InvalidSignatureError(
            f"{field_name} is not valid base58: {e}",
            field_name=field_name,
        )

    if len(decoded) != SOLANA_SIGNATURE_LENGTH:
        raise InvalidSignatureError(
            f"{field_name} must decode to {SOLANA_SIGNATURE_LENGTH} bytes, got {len(decoded)}",
            field_name=field_name,
        )

    return decoded

def assert_decimals(decimals: Any, label: str = "decimals") -> None:
    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0 or decimals > MAX_DECIMALS:
        raise AmountRangeError(
            f"{label} must be an integer between 0 and {MAX_DECIMALS}",
            field_name=label,
        )

def assert_non_negative(value: int, label: str = "value") -> None:
    if value < 0:
        raise AmountRangeError(f"{label} must be non-negative", field_name=label)

def assert_in_range(value: int, minimum: int, maximum: int, label: str = "value") -> None:
    if value < minimum or value > maximum:
        raise AmountRangeError(
            f"{label} must be between {minimum} and {maximum}, got {value}",
            field_name=label,
        )

def to_integer(value: Any, label: str = "value") -> int:
    if isinstance(value, bool):
        raise AmountSyntaxError(f"{label} must be an integer, got bool", field_name=label)

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")) or not value.is_integer():
            raise AmountRangeError(
                f"{label} must be a finite integer when provided as a number",
                field_name=label,
            )
        if abs(value) > MAX_SAFE_INTEGER:
            raise AmountRangeError(
                f"{label} must be within the safe integer range when provided as a number",
                field_name=label,
            )
        return int(value)

    if isinstance(value, str):
        trimmed = value.strip()
        if not INTEGER_PATTERN.match(trimmed):
            raise AmountSyntaxError(f"{label} must be an integer string", field_name=label)
        return int(trimmed)

    raise AmountSyntaxError(
        f"{label} must be an integer, got {type(value).__name__}",
        field_name=label,
    )

def is_valid_solana_address(address: Any) -> bool:
    try:
        to_address(address)
        return True
    except InvalidAddressError:
        return False
