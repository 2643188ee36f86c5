"""
SPL token helpers: associated token accounts, balances and transfers.

Transfers use ``transfer_checked`` and, unless told otherwise, create the
destination associated token account when it does not exist yet.
send_transfer retries exactly once when the cluster reports the
transaction as already processed, re-preparing with a fresh blockhash.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Union

from solana.rpc.types import DataSliceOpts
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import TransferCheckedParams, transfer_checked

from .amounts import DecimalLike, TokenAmountMath, create_token_amount
from .config import SolanaRPCSettings, resolve_commitment
from .exceptions import ValidationError, is_already_processed_error, raise_if_aborted
from .message import BlockhashLifetime, TransactionMessage, TransactionVersion
from .rpc import SolanaRpc
from .signers import Authority, SignerMode, TransactionSigner, resolve_authority
from .transaction import submit_transaction_message
from .validators import to_address

logger = logging.getLogger(__name__)

# SPL mint layout: mint_authority option (36) + supply (8), then decimals
MINT_DECIMALS_OFFSET = 44

AddressInput = Union[Pubkey, str]


@dataclass(frozen=True)
class SplTokenHelperConfig:
    mint: AddressInput
    decimals: Optional[int] = None
    token_program: Optional[AddressInput] = None
    associated_token_program: Optional[AddressInput] = None
    commitment: Optional[str] = None


@dataclass(frozen=True)
class SplTokenBalance:
    amount: int
    ata_address: Pubkey
    decimals: int
    exists: bool
    ui_amount: str


@dataclass(frozen=True)
class SplTransferPrepareConfig:
    amount: Union[DecimalLike, int]
    authority: Authority
    destination_owner: AddressInput
    amount_in_base_units: bool = False
    commitment: Optional[str] = None
    destination_token: Optional[AddressInput] = None
    ensure_destination_ata: bool = True
    lifetime: Optional[BlockhashLifetime] = None
    source_owner: Optional[AddressInput] = None
    source_token: Optional[AddressInput] = None
    transaction_version: TransactionVersion = 0
    abort_signal: Optional[asyncio.Event] = field(default=None, compare=False)


@dataclass(frozen=True)
class PreparedSplTransfer:
    amount: int
    commitment: str
    decimals: int
    destination_ata: Pubkey
    lifetime: BlockhashLifetime
    message: TransactionMessage
    mode: SignerMode
    signer: TransactionSigner
    source_ata: Pubkey


def find_associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
    associated_token_program: Pubkey = ASSOCIATED_TOKEN_PROGRAM_ID,
) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        associated_token_program,
    )
    return address


def create_associated_token_account_instruction(
    payer: Pubkey,
    ata: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
    associated_token_program: Pubkey = ASSOCIATED_TOKEN_PROGRAM_ID,
) -> Instruction:
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=token_program, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=associated_token_program, data=bytes([0]), accounts=accounts)


class SplTokenHelper:
    """Account discovery, balances and transfers for a single mint."""

    def __init__(
        self,
        rpc: SolanaRpc,
        config: SplTokenHelperConfig,
        settings: Optional[SolanaRPCSettings] = None,
    ):
        self.rpc = rpc
        self.config = config
        self._settings = settings
        self.mint = to_address(config.mint, "mint")
        self.token_program = (
            to_address(config.token_program, "token_program")
            if config.token_program is not None else TOKEN_PROGRAM_ID
        )
        self.associated_token_program = (
            to_address(config.associated_token_program, "associated_token_program")
            if config.associated_token_program is not None else ASSOCIATED_TOKEN_PROGRAM_ID
        )
        self._decimals: Optional[int] = config.decimals
        self._math: Optional[TokenAmountMath] = None

    def _commitment(self, override: Optional[str]) -> str:
        return override or self.config.commitment or resolve_commitment(self._settings)

    async def resolve_decimals(self, commitment: Optional[str] = None) -> int:
        if self._decimals is not None:
            return self._decimals

        account = await self.rpc.get_account_info(self.mint, commitment=self._commitment(commitment))
        if account is None:
            raise ValidationError(
                f"Mint account {self.mint} was not found",
                field_name="mint",
            )
        data = bytes(account.data)
        if len(data) <= MINT_DECIMALS_OFFSET:
            raise ValidationError(
                f"Account {self.mint} is not a token mint",
                field_name="mint",
            )
        self._decimals = data[MINT_DECIMALS_OFFSET]
        logger.debug(f"Mint {self.mint} uses {self._decimals} decimals")
        return self._decimals

    async def get_token_math(self, commitment: Optional[str] = None) -> TokenAmountMath:
        if self._math is None:
            self._math = create_token_amount(await self.resolve_decimals(commitment))
        return self._math

    def derive_associated_token_address(self, owner: AddressInput) -> Pubkey:
        return find_associated_token_address(
            to_address(owner, "owner"),
            self.mint,
            self.token_program,
            self.associated_token_program,
        )

    async def fetch_balance(self, owner: AddressInput, commitment: Optional[str] = None) -> SplTokenBalance:
        """
        Balance of ``owner``'s associated token account.

        A missing account, or any failure of the balance query, is reported
        as ``exists=False`` with a zero amount.
        """
        ata = self.derive_associated_token_address(owner)
        decimals = await self.resolve_decimals(commitment)
        try:
            balance = await self.rpc.get_token_account_balance(ata, commitment=self._commitment(commitment))
        except Exception as e:
            logger.debug(f"Token balance unavailable for {ata}: {e}")
            return SplTokenBalance(amount=0, ata_address=ata, decimals=decimals, exists=False, ui_amount="0")

        math = await self.get_token_math(commitment)
        return SplTokenBalance(
            amount=math.from_base_units(balance.amount, "balance"),
            ata_address=ata,
            decimals=decimals,
            exists=True,
            ui_amount=balance.ui_amount_string or str(balance.amount),
        )

    async def prepare_transfer(self, config: SplTransferPrepareConfig) -> PreparedSplTransfer:
        raise_if_aborted(config.abort_signal, "prepare_transfer")
        commitment = self._commitment(config.commitment)

        lifetime = config.lifetime
        if lifetime is None:
            lifetime = await self.rpc.get_latest_blockhash(commitment)
        raise_if_aborted(config.abort_signal, "prepare_transfer")

        resolved = resolve_authority(config.authority, commitment)
        signer = resolved.signer
        source_owner = (
            to_address(config.source_owner, "source_owner")
            if config.source_owner is not None else signer.address
        )
        destination_owner = to_address(config.destination_owner, "destination_owner")
        source_ata = (
            to_address(config.source_token, "source_token")
            if config.source_token is not None else self.derive_associated_token_address(source_owner)
        )
        destination_ata = (
            to_address(config.destination_token, "destination_token")
            if config.destination_token is not None else self.derive_associated_token_address(destination_owner)
        )

        math = await self.get_token_math(commitment)
        decimals = await self.resolve_decimals(commitment)
        if config.amount_in_base_units:
            amount = math.from_base_units(config.amount, "amount")
        else:
            amount = math.from_decimal(config.amount, label="amount")

        instructions = []
        if config.ensure_destination_ata:
            existing = await self.rpc.get_account_info(
                destination_ata,
                commitment=commitment,
                data_slice=DataSliceOpts(offset=0, length=0),
                encoding="base64",
            )
            if existing is None:
                logger.info(f"Creating associated token account {destination_ata} for {destination_owner}")
                instructions.append(create_associated_token_account_instruction(
                    payer=signer.address,
                    ata=destination_ata,
                    owner=destination_owner,
                    mint=self.mint,
                    token_program=self.token_program,
                    associated_token_program=self.associated_token_program,
                ))

        instructions.append(transfer_checked(TransferCheckedParams(
            program_id=self.token_program,
            source=source_ata,
            mint=self.mint,
            dest=destination_ata,
            owner=signer.address,
            amount=amount,
            decimals=decimals,
        )))

        message = (
            TransactionMessage.create(config.transaction_version)
            .with_fee_payer_signer(signer)
            .with_lifetime(lifetime)
            .append_instructions(instructions)
        )

        return PreparedSplTransfer(
            amount=amount,
            commitment=commitment,
            decimals=decimals,
            destination_ata=destination_ata,
            lifetime=lifetime,
            message=message,
            mode=resolved.mode,
            signer=signer,
            source_ata=source_ata,
        )

    async def send_prepared_transfer(
        self,
        prepared: PreparedSplTransfer,
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
        config: SplTransferPrepareConfig,
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
        prepared = await self.prepare_transfer(config)
        try:
            return await self.send_prepared_transfer(prepared, **send_options)
        except Exception as e:
            if not is_already_processed_error(e):
                raise
            logger.warning(f"Transfer already processed, retrying once with a fresh blockhash: {e}")

        retried = await self.prepare_transfer(replace(config, lifetime=None))
        return await self.send_prepared_transfer(retried, **send_options)


def create_spl_token_helper(
    rpc: SolanaRpc,
    config: SplTokenHelperConfig,
    settings: Optional[SolanaRPCSettings] = None,
) -> SplTokenHelper:
    return SplTokenHelper(rpc, config, settings)


__all__ = [
    "SplTokenHelperConfig",
    "SplTokenBalance",
    "SplTransferPrepareConfig",
    "PreparedSplTransfer",
    "SplTokenHelper",
    "create_spl_token_helper",
    "find_associated_token_address",
    "create_associated_token_account_instruction",
]
