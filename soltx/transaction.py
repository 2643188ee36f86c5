"""
Transaction helper: prepare, sign and submit.

    prepare -> (optional compute unit tuning) -> sign -> submit

prepare resolves every field a transaction needs (commitment, signer mode,
fee payer, version, compute budget prefix, lifetime) once and freezes them
into a PreparedTransaction. sign/to_wire/send only read that snapshot.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .config import SolanaRPCSettings, TransactionSettings, get_settings, resolve_commitment
from .exceptions import (
    EmptyInstructionsError,
    MissingFeePayerError,
    raise_if_aborted,
)
from .message import (
    LEGACY,
    MAX_COMPUTE_UNIT_LIMIT_VALUE,
    MAX_COMPUTE_UNIT_PRICE,
    BlockhashLifetime,
    TransactionInstructionInput,
    TransactionMessage,
    TransactionVersion,
    create_set_compute_unit_limit_instruction,
    create_set_compute_unit_price_instruction,
    instruction_uses_address_lookup,
    is_compute_unit_limit_instruction,
    is_compute_unit_price_instruction,
    transaction_to_base64,
)
from .prepare import PrepareTransactionOverrides, prepare_transaction_with_overrides
from .rpc import SolanaRpc
from .signers import (
    Authority,
    KeypairSigner,
    SignerMode,
    TransactionSendingSigner,
    TransactionSigner,
    resolve_authority,
    sign_and_send_transaction_message_with_signers,
    sign_transaction_message_with_signers,
)
from .validators import assert_in_range, to_address, to_integer

logger = logging.getLogger(__name__)

AUTO_VERSION = "auto"

FeePayerInput = Union[Pubkey, str, TransactionSigner, Keypair]


@dataclass(frozen=True)
class TransactionPrepareRequest:
    instructions: Sequence[TransactionInstructionInput]
    authority: Optional[Authority] = None
    fee_payer: Optional[FeePayerInput] = None
    commitment: Optional[str] = None
    compute_unit_limit: Optional[int] = None
    compute_unit_price: Optional[int] = None
    lifetime: Optional[BlockhashLifetime] = None
    version: Optional[TransactionVersion] = AUTO_VERSION
    signers: Sequence[TransactionSigner] = ()
    abort_signal: Optional[asyncio.Event] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "instructions", tuple(self.instructions))
        object.__setattr__(self, "signers", tuple(self.signers))


@dataclass(frozen=True)
class TransactionPrepareAndSendRequest(TransactionPrepareRequest):
    """``prepare_transaction=False`` skips compute unit tuning."""
    prepare_transaction: Union[bool, PrepareTransactionOverrides, None] = None


@dataclass(frozen=True)
class PreparedTransaction:
    commitment: str
    fee_payer: Pubkey
    instructions: Tuple[TransactionInstructionInput, ...]
    lifetime: BlockhashLifetime
    message: TransactionMessage
    mode: SignerMode
    version: TransactionVersion
    compute_unit_limit: Optional[int] = None
    compute_unit_price: Optional[int] = None


# =============================================================================
# Resolution helpers
# =============================================================================

def resolve_version(
    requested: Optional[TransactionVersion],
    instructions: Sequence[TransactionInstructionInput],
) -> TransactionVersion:
    if requested is not None and requested != AUTO_VERSION:
        return requested
    return 0 if any(instruction_uses_address_lookup(ix) for ix in instructions) else LEGACY


def resolve_fee_payer(
    fee_payer: Optional[FeePayerInput],
    authority_signer: Optional[TransactionSigner],
) -> Tuple[Pubkey, Optional[TransactionSigner]]:
    """Return ``(address, signer)``; signer is None for an address-only fee payer."""
    if fee_payer is None and authority_signer is None:
        raise MissingFeePayerError(
            "A fee payer must be provided via `fee_payer` or `authority`.",
            field_name="fee_payer",
        )
    if isinstance(fee_payer, Keypair):
        fee_payer = KeypairSigner(fee_payer)
    if isinstance(fee_payer, TransactionSigner):
        return fee_payer.address, fee_payer
    if fee_payer is not None:
        address = to_address(fee_payer, "fee_payer")
        if authority_signer is not None and authority_signer.address == address:
            return address, authority_signer
        return address, None
    return authority_signer.address, authority_signer


def _resolve_compute_budget_value(
    value: Optional[int],
    instructions: Sequence[TransactionInstructionInput],
    already_present,
    maximum: int,
    label: str,
) -> Optional[int]:
    if value is None or any(already_present(ix) for ix in instructions):
        return None
    if isinstance(value, float):
        value = int(value)
    resolved = to_integer(value, label)
    assert_in_range(resolved, 0, maximum, label)
    return resolved


async def submit_transaction_message(
    rpc: SolanaRpc,
    message: TransactionMessage,
    mode: SignerMode,
    commitment: Optional[str],
    abort_signal: Optional[asyncio.Event] = None,
    max_retries: Optional[int] = None,
    skip_preflight: Optional[bool] = None,
) -> Signature:
    """Sign and submit ``message``, letting a sending signer submit it itself in ``send`` mode."""
    if mode is SignerMode.SEND:
        signature_bytes = await sign_and_send_transaction_message_with_signers(message, abort_signal)
        return Signature.from_bytes(signature_bytes)

    signed = await sign_transaction_message_with_signers(message, abort_signal)
    raise_if_aborted(abort_signal, "send")
    return await rpc.send_transaction(
        transaction_to_base64(signed),
        preflight_commitment=commitment,
        skip_preflight=skip_preflight,
        max_retries=to_integer(max_retries, "max_retries") if max_retries is not None else None,
    )


# =============================================================================
# Transaction helper
# =============================================================================

class TransactionHelper:
    """
    Builds, signs and submits transactions against one RPC adapter.

    The fallback commitment is read from the RPC settings on every call, so
    a reloaded configuration is picked up without rebuilding the helper.
    """

    def __init__(
        self,
        rpc: SolanaRpc,
        settings: Optional[SolanaRPCSettings] = None,
        transaction_settings: Optional[TransactionSettings] = None,
    ):
        self.rpc = rpc
        self._settings = settings
        self._transaction_settings = transaction_settings

    def fallback_commitment(self) -> str:
        return resolve_commitment(self._settings)

    def transaction_settings(self) -> TransactionSettings:
        if self._transaction_settings is not None:
            return self._transaction_settings
        return get_settings().transaction

    async def prepare(self, request: TransactionPrepareRequest) -> PreparedTransaction:
        if not request.instructions:
            raise EmptyInstructionsError(
                "Add at least one instruction before preparing a transaction.",
                field_name="instructions",
            )

        abort_signal = request.abort_signal
        raise_if_aborted(abort_signal, "prepare")

        commitment = request.commitment or self.fallback_commitment()

        authority_signer: Optional[TransactionSigner] = None
        mode = SignerMode.PARTIAL
        if request.authority is not None:
            resolved = resolve_authority(request.authority, commitment)
            authority_signer = resolved.signer
            mode = resolved.mode

        fee_payer, fee_payer_signer = resolve_fee_payer(request.fee_payer, authority_signer)

        # a sending signer can only submit a transaction it also pays for
        if mode is SignerMode.SEND and not isinstance(fee_payer_signer, TransactionSendingSigner):
            mode = SignerMode.PARTIAL

        base_instructions = list(request.instructions)
        version = resolve_version(request.version, base_instructions)

        compute_unit_limit = _resolve_compute_budget_value(
            request.compute_unit_limit,
            base_instructions,
            is_compute_unit_limit_instruction,
            MAX_COMPUTE_UNIT_LIMIT_VALUE,
            "compute_unit_limit",
        )
        compute_unit_price = _resolve_compute_budget_value(
            request.compute_unit_price,
            base_instructions,
            is_compute_unit_price_instruction,
            MAX_COMPUTE_UNIT_PRICE,
            "compute_unit_price",
        )

        lifetime = request.lifetime
        if lifetime is None:
            lifetime = await self.rpc.get_latest_blockhash(commitment)
        raise_if_aborted(abort_signal, "prepare")

        prefix: List[TransactionInstructionInput] = []
        if compute_unit_limit is not None:
            prefix.append(create_set_compute_unit_limit_instruction(compute_unit_limit))
        if compute_unit_price is not None:
            prefix.append(create_set_compute_unit_price_instruction(compute_unit_price))

        raise_if_aborted(abort_signal, "prepare")

        message = TransactionMessage.create(version)
        if fee_payer_signer is not None:
            message = message.with_fee_payer_signer(fee_payer_signer)
        else:
            message = message.with_fee_payer(fee_payer)
        message = message.append_instructions(prefix + base_instructions).with_lifetime(lifetime)

        extra_signers = list(request.signers)
        if authority_signer is not None and authority_signer is not fee_payer_signer:
            extra_signers.insert(0, authority_signer)
        if extra_signers:
            message = message.with_signers(extra_signers)

        logger.debug(
            f"Prepared {version} transaction with {len(message.instructions)} instructions "
            f"(fee payer {fee_payer}, mode {mode.value})"
        )

        return PreparedTransaction(
            commitment=commitment,
            fee_payer=fee_payer,
            instructions=tuple(base_instructions),
            lifetime=lifetime,
            message=message,
            mode=mode,
            version=version,
            compute_unit_limit=compute_unit_limit,
            compute_unit_price=compute_unit_price,
        )

    async def sign(
        self,
        prepared: PreparedTransaction,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> VersionedTransaction:
        return await sign_transaction_message_with_signers(prepared.message, abort_signal)

    async def to_wire(
        self,
        prepared: PreparedTransaction,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> str:
        signed = await self.sign(prepared, abort_signal=abort_signal)
        return transaction_to_base64(signed)

    async def send(
        self,
        prepared: PreparedTransaction,
        abort_signal: Optional[asyncio.Event] = None,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
        skip_preflight: Optional[bool] = None,
    ) -> Signature:
        if max_retries is None:
            max_retries = self.transaction_settings().send_max_retries

        if prepared.mode is SignerMode.SEND:
            return await submit_transaction_message(
                self.rpc, prepared.message, prepared.mode, commitment or prepared.commitment, abort_signal
            )

        wire = await self.to_wire(prepared, abort_signal=abort_signal)
        raise_if_aborted(abort_signal, "send")
        return await self.rpc.send_transaction(
            wire,
            preflight_commitment=commitment or prepared.commitment,
            skip_preflight=skip_preflight,
            max_retries=to_integer(max_retries, "max_retries") if max_retries is not None else None,
        )

    async def prepare_and_send(
        self,
        request: TransactionPrepareAndSendRequest,
        abort_signal: Optional[asyncio.Event] = None,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
        skip_preflight: Optional[bool] = None,
    ) -> Signature:
        send_options = dict(
            abort_signal=abort_signal,
            commitment=commitment,
            max_retries=max_retries,
            skip_preflight=skip_preflight,
        )
        prepared = await self.prepare(request)

        overrides = getattr(request, "prepare_transaction", None)
        if overrides is False:
            return await self.send(prepared, **send_options)

        settings = self.transaction_settings()
        tuned = await prepare_transaction_with_overrides(
            self.rpc,
            prepared.message,
            overrides if isinstance(overrides, PrepareTransactionOverrides) else None,
            blockhash_reset_default=False,
            default_multiplier=settings.compute_unit_limit_multiplier,
            default_compute_units=settings.default_compute_units,
        )
        prepared = replace(prepared, message=tuned, lifetime=tuned.lifetime)
        return await self.send(prepared, **send_options)


def create_transaction_helper(
    rpc: SolanaRpc,
    settings: Optional[SolanaRPCSettings] = None,
    transaction_settings: Optional[TransactionSettings] = None,
) -> TransactionHelper:
    return TransactionHelper(rpc, settings, transaction_settings)


__all__ = [
    "AUTO_VERSION",
    "TransactionPrepareRequest",
    "TransactionPrepareAndSendRequest",
    "PreparedTransaction",
    "TransactionHelper",
    "create_transaction_helper",
    "resolve_version",
    "resolve_fee_payer",
    "submit_transaction_message",
]
