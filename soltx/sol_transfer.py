import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer

from .amounts import IntegerLike, lamports_math
from .config import SolanaRPCSettings, resolve_commitment
from .exceptions import MissingAuthorityError, raise_if_aborted
from .message import BlockhashLifetime, TransactionMessage, TransactionVersion
from .rpc import SolanaRpc
from .signers import Authority, SignerMode, TransactionSigner, resolve_authority
from .transaction import submit_transaction_message
from .validators import to_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolTransferPrepareConfig:
    """
    SOL transfer request.

    Attributes:
        amount: Lamports to transfer (int, integral float, or integer string)
        authority: Wallet session or signer that funds and pays for the transfer
        destination: Recipient address
        commitment: Overrides the configured commitment
        lifetime: Reuse this blockhash lifetime instead of fetching one
        transaction_version: Message version, v0 unless set
    """
    amount: IntegerLike
    authority: Optional[Authority]
    destination: Union[Pubkey, str]
    commitment: Optional[str] = None
    lifetime: Optional[BlockhashLifetime] = None
    transaction_version: TransactionVersion = 0
    abort_signal: Optional[asyncio.Event] = field(default=None, compare=False)


@dataclass(frozen=True)
class PreparedSolTransfer:
    amount: int
    commitment: str
    lifetime: BlockhashLifetime
    message: TransactionMessage
    mode: SignerMode
    signer: TransactionSigner


class SolTransferHelper:
    """System Program SOL transfers built on the shared sign/submit path."""

    def __init__(self, rpc: SolanaRpc, settings: Optional[SolanaRPCSettings] = None):
        self.rpc = rpc
        self._settings = settings

    async def prepare_transfer(self, config: SolTransferPrepareConfig) -> PreparedSolTransfer:
        if config.authority is None:
            raise MissingAuthorityError("An authority is required to send SOL.", field_name="authority")
        raise_if_aborted(config.abort_signal, "prepare_transfer")
        commitment = config.commitment or resolve_commitment(self._settings)

        lifetime = config.lifetime
        if lifetime is None:
            lifetime = await self.rpc.get_latest_blockhash(commitment)
        raise_if_aborted(config.abort_signal, "prepare_transfer")

        resolved = resolve_authority(config.authority, commitment)
        signer = resolved.signer
        destination = to_address(config.destination, "destination")
        amount = lamports_math.from_lamports(config.amount, "amount")

        instruction = transfer(TransferParams(
            from_pubkey=signer.address,
            to_pubkey=destination,
            lamports=amount,
        ))
        message = (
            TransactionMessage.create(config.transaction_version)
            .with_fee_payer_signer(signer)
            .with_lifetime(lifetime)
            .append_instruction(instruction)
        )

        logger.debug(f"Prepared transfer of {amount} lamports from {signer.address} to {destination}")
        return PreparedSolTransfer(
            amount=amount,
            commitment=commitment,
            lifetime=lifetime,
            message=message,
            mode=resolved.mode,
            signer=signer,
        )

    async def send_prepared_transfer(
        self,
        prepared: PreparedSolTransfer,
        abort_signal: Optional[asyncio.Event] = None,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
        skip_preflight: Optional[bool] = None,
    ) -> Signature:
        return await submit_transaction_message(
            self.rpc,
            prepared.message,
            prepared.mode,
            commitment or prepared.commitment,
            abort_signal=abort_signal,
            max_retries=max_retries,
            skip_preflight=skip_preflight,
        )

    async def send_transfer(
        self,
        config: SolTransferPrepareConfig,
        abort_signal: Optional[asyncio.Event] = None,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
        skip_preflight: Optional[bool] = None,
    ) -> Signature:
        prepared = await self.prepare_transfer(config)
        signature = await self.send_prepared_transfer(
            prepared,
            abort_signal=abort_signal,
            commitment=commitment,
            max_retries=max_retries,
            skip_preflight=skip_preflight,
        )
        logger.info(f"SOL transfer sent: {signature}")
        return signature


def create_sol_transfer_helper(
    rpc: SolanaRpc,
    settings: Optional[SolanaRPCSettings] = None,
) -> SolTransferHelper:
    return SolTransferHelper(rpc, settings)
