"""
Compute unit tuning for unsigned transaction messages.

prepare_transaction simulates a message, sizes its compute-unit-limit
instruction from the reported consumption and optionally refreshes the
blockhash lifetime. It neither signs nor submits, and always returns a new
message.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from .message import (
    TransactionMessage,
    create_set_compute_unit_limit_instruction,
    is_compute_unit_limit_instruction,
    transaction_to_base64,
)
from .rpc import SolanaRpc

logger = logging.getLogger(__name__)

DEFAULT_COMPUTE_UNIT_LIMIT_MULTIPLIER = 1.1
DEFAULT_COMPUTE_UNITS = 200_000
MAX_COMPUTE_UNIT_LIMIT = 1_400_000

LogRequest = Callable[[str], None]


@dataclass(frozen=True)
class PrepareTransactionOverrides:
    """Tuner knobs accepted by ``prepare_and_send``; None keeps the default."""
    compute_unit_limit_multiplier: Optional[float] = None
    compute_unit_limit_reset: Optional[bool] = None
    blockhash_reset: Optional[bool] = None
    log_request: Optional[LogRequest] = None


def compute_unit_limit_from_simulation(
    units_consumed: int,
    multiplier: float = DEFAULT_COMPUTE_UNIT_LIMIT_MULTIPLIER,
    fallback: int = DEFAULT_COMPUTE_UNITS,
) -> int:
    if not units_consumed:
        return min(max(1, fallback), MAX_COMPUTE_UNIT_LIMIT)
    # Decimal keeps 500_000 * 1.1 at exactly 550_000
    scaled = Decimal(units_consumed) * Decimal(str(multiplier))
    # the runtime caps a transaction at MAX_COMPUTE_UNIT_LIMIT units
    return min(max(1, math.ceil(scaled)), MAX_COMPUTE_UNIT_LIMIT)


async def estimate_compute_units(rpc: SolanaRpc, message: TransactionMessage) -> int:
    target = message
    if not target.has_lifetime:
        target = target.with_lifetime(await rpc.get_latest_blockhash())

    simulation = await rpc.simulate_transaction(
        transaction_to_base64(target),
        sig_verify=False,
        replace_recent_blockhash=False,
    )
    if not simulation.success:
        logger.warning(f"Simulation reported an error: {simulation.error}")
    return int(simulation.units_consumed or 0)


async def prepare_transaction(
    rpc: SolanaRpc,
    message: TransactionMessage,
    compute_unit_limit_multiplier: float = DEFAULT_COMPUTE_UNIT_LIMIT_MULTIPLIER,
    compute_unit_limit_reset: bool = False,
    blockhash_reset: bool = True,
    log_request: Optional[LogRequest] = None,
    default_compute_units: int = DEFAULT_COMPUTE_UNITS,
) -> TransactionMessage:
    """
    Size the compute unit limit of ``message`` and bind a fresh lifetime.

    Args:
        rpc: RPC adapter used for blockhash and simulation calls
        message: Message with a fee payer; a lifetime is optional
        compute_unit_limit_multiplier: Headroom applied to simulated units
        compute_unit_limit_reset: Re-simulate even if a limit instruction exists
        blockhash_reset: Replace an existing lifetime with a freshly fetched one
        log_request: Called once with the base64 wire form of the result
        default_compute_units: Limit used when simulation reports no consumption

    Returns:
        A new TransactionMessage; the input is not modified
    """
    transaction = message

    instructions = list(transaction.instructions)
    limit_index = next(
        (index for index, ix in enumerate(instructions) if is_compute_unit_limit_instruction(ix)),
        -1,
    )
    if limit_index == -1 or compute_unit_limit_reset:
        consumed = await estimate_compute_units(rpc, transaction)
        units = compute_unit_limit_from_simulation(
            consumed, compute_unit_limit_multiplier, default_compute_units
        )
        logger.debug(f"Compute unit limit set to {units} (simulated {consumed})")
        instruction = create_set_compute_unit_limit_instruction(units)
        if limit_index == -1:
            transaction = transaction.append_instruction(instruction)
        else:
            instructions[limit_index] = instruction
            transaction = transaction.with_instructions(instructions)

    if blockhash_reset or not transaction.has_lifetime:
        transaction = transaction.with_lifetime(await rpc.get_latest_blockhash())

    if log_request is not None:
        log_request(transaction_to_base64(transaction))

    return transaction


async def prepare_transaction_with_overrides(
    rpc: SolanaRpc,
    message: TransactionMessage,
    overrides: Optional[PrepareTransactionOverrides] = None,
    blockhash_reset_default: bool = True,
    default_multiplier: float = DEFAULT_COMPUTE_UNIT_LIMIT_MULTIPLIER,
    default_compute_units: int = DEFAULT_COMPUTE_UNITS,
) -> TransactionMessage:
    overrides = overrides or PrepareTransactionOverrides()
    return await prepare_transaction(
        rpc,
        message,
        compute_unit_limit_multiplier=(
            overrides.compute_unit_limit_multiplier
            if overrides.compute_unit_limit_multiplier is not None
            else default_multiplier
        ),
        compute_unit_limit_reset=bool(overrides.compute_unit_limit_reset),
        blockhash_reset=(
            overrides.blockhash_reset if overrides.blockhash_reset is not None else blockhash_reset_default
        ),
        log_request=overrides.log_request,
        default_compute_units=default_compute_units,
    )


__all__ = [
    "DEFAULT_COMPUTE_UNIT_LIMIT_MULTIPLIER",
    "DEFAULT_COMPUTE_UNITS",
    "MAX_COMPUTE_UNIT_LIMIT",
    "PrepareTransactionOverrides",
    "compute_unit_limit_from_simulation",
    "estimate_compute_units",
    "prepare_transaction",
    "prepare_transaction_with_overrides",
]
