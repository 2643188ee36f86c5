"""
Exception hierarchy for the soltx transaction pipeline.

Every error raised by the package derives from SolanaTxError and carries:
- Unique error code for logging and debugging
- Descriptive message
- Optional context dictionary for additional debugging info
- is_recoverable flag indicating if the operation can be retried

RPC/transport failures coming from solana-py are not wrapped; they propagate
unchanged. The one recognised transaction error is
TransactionAlreadyProcessedError, which the SPL transfer helper retries once.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional
from datetime import datetime, timezone


# =============================================================================
# BASE EXCEPTIONS
# =============================================================================

@dataclass
class SolanaTxError(Exception):
    """
    Base exception for all soltx errors.

    Attributes:
        message: Human-readable error description
        error_code: Unique identifier for the error type (e.g., "TX_001")
        context: Optional dictionary with debugging information
        is_recoverable: Whether the operation can be retried
        timestamp: When the error occurred
    """
    message: str
    error_code: str = "GENERAL_001"
    context: dict[str, Any] = field(default_factory=dict)
    is_recoverable: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        """Initialize the exception with the formatted message."""
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message with code and context."""
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base += f" | Context: {context_str}"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "is_recoverable": self.is_recoverable,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        return self.format_message()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"is_recoverable={self.is_recoverable})"
        )


@dataclass
class ConfigurationError(SolanaTxError):
    """Error in package configuration or settings."""
    error_code: str = "CONFIG_001"


@dataclass
class OperationAbortedError(SolanaTxError):
    """The caller's abort signal was set while the operation was in flight."""
    error_code: str = "ABORT_001"
    operation: Optional[str] = None


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================

@dataclass
class ValidationError(SolanaTxError):
    """Base exception for validation errors."""
    error_code: str = "VAL_000"
    field_name: Optional[str] = None


@dataclass
class AmountRangeError(ValidationError):
    """Amount, decimals or ratio outside the permitted range."""
    error_code: str = "VAL_001"


@dataclass
class AmountSyntaxError(ValidationError):
    """Amount string could not be parsed."""
    error_code: str = "VAL_002"


@dataclass
class InvalidAddressError(ValidationError):
    """Invalid Solana address format."""
    error_code: str = "VAL_003"
    invalid_address: Optional[str] = None


@dataclass
class EmptyInstructionsError(ValidationError):
    """No instructions were supplied for a transaction."""
    error_code: str = "VAL_004"


@dataclass
class MissingFeePayerError(ValidationError):
    """Neither a fee payer nor an authority was supplied."""
    error_code: str = "VAL_005"


@dataclass
class MissingAuthorityError(ValidationError):
    """An operation needed an authority and none was available."""
    error_code: str = "VAL_006"


@dataclass
class InvalidSignatureError(ValidationError):
    """Invalid transaction signature format."""
    error_code: str = "VAL_007"


# =============================================================================
# SIGNER EXCEPTIONS
# =============================================================================

@dataclass
class SignerError(SolanaTxError):
    """Base exception for signer capability errors."""
    error_code: str = "SIGNER_000"
    signer_address: Optional[str] = None


@dataclass
class WalletCapabilityError(SignerError):
    """Wallet session exposes neither signing nor sending."""
    error_code: str = "SIGNER_001"


@dataclass
class MissingSignatureError(SignerError):
    """A signer did not produce the signature expected from it."""
    error_code: str = "SIGNER_002"


# =============================================================================
# TRANSACTION EXCEPTIONS
# =============================================================================

@dataclass
class TransactionError(SolanaTxError):
    """Base exception for transaction-related errors."""
    error_code: str = "TX_000"
    logs: list[str] = field(default_factory=list)


@dataclass
class TransactionBuildError(TransactionError):
    """Failed to build or compile a transaction message."""
    error_code: str = "TX_001"


@dataclass
class TransactionSignError(TransactionError):
    """Failed to sign transaction."""
    error_code: str = "TX_002"
    missing_signers: list[str] = field(default_factory=list)


@dataclass
class TransactionAlreadyProcessedError(TransactionError):
    """Transaction was already processed."""
    error_code: str = "TX_005"
    is_recoverable: bool = True


@dataclass
class PrepareRequiredError(TransactionError):
    """Sign or send was requested before any transaction was prepared."""
    error_code: str = "TX_006"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

ALREADY_PROCESSED_MARKERS = (
    "alreadyprocessed",
    "already been processed",
    "already processed",
)


def raise_if_aborted(signal: Optional[asyncio.Event], operation: str = "operation") -> None:
    """Raise OperationAbortedError when the abort signal has been set."""
    if signal is not None and signal.is_set():
        raise OperationAbortedError(f"{operation} was aborted", operation=operation)


def is_already_processed_error(error: BaseException) -> bool:
    """Check whether an error reports an already-processed transaction."""
    if isinstance(error, TransactionAlreadyProcessedError):
        return True
    if isinstance(error, SolanaTxError):
        return False
    text = str(error).lower()
    return any(marker in text for marker in ALREADY_PROCESSED_MARKERS)


# =============================================================================
# EXCEPTION MAPPING
# =============================================================================

ERROR_CODE_MAP: dict[str, type[SolanaTxError]] = {
    "GENERAL_001": SolanaTxError,
    "CONFIG_001": ConfigurationError,
    "ABORT_001": OperationAbortedError,
    "VAL_000": ValidationError,
    "VAL_001": AmountRangeError,
    "VAL_002": AmountSyntaxError,
    "VAL_003": InvalidAddressError,
    "VAL_004": EmptyInstructionsError,
    "VAL_005": MissingFeePayerError,
    "VAL_006": MissingAuthorityError,
    "VAL_007": InvalidSignatureError,
    "SIGNER_000": SignerError,
    "SIGNER_001": WalletCapabilityError,
    "SIGNER_002": MissingSignatureError,
    "TX_000": TransactionError,
    "TX_001": TransactionBuildError,
    "TX_002": TransactionSignError,
    "TX_005": TransactionAlreadyProcessedError,
    "TX_006": PrepareRequiredError,
}


__all__ = [
    "SolanaTxError", "ConfigurationError", "OperationAbortedError",
    "ValidationError", "AmountRangeError", "AmountSyntaxError",
    "InvalidAddressError", "EmptyInstructionsError", "MissingFeePayerError",
    "MissingAuthorityError", "InvalidSignatureError", "SignerError",
    "WalletCapabilityError", "MissingSignatureError", "TransactionError",
    "TransactionBuildError", "TransactionSignError",
    "TransactionAlreadyProcessedError", "PrepareRequiredError",
    "raise_if_aborted", "is_already_processed_error", "ERROR_CODE_MAP",
]
