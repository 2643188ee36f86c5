"""
Client bundle wiring the RPC adapter to the transaction helpers.

Usage:
    async with SolanaClient() as client:
        signature = await client.transaction.prepare_and_send(request)
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from .config import Settings, get_settings
from .controllers import AuthorityProvider, SolTransferController
from .message import TransactionInstructionInput, TransactionMessage
from .pool import TransactionPoolController
from .prepare import LogRequest, prepare_transaction
from .rpc import SolanaRpc
from .sol_transfer import SolTransferHelper
from .spl_token import SplTokenHelper, SplTokenHelperConfig
from .transaction import TransactionHelper

logger = logging.getLogger(__name__)


class SolanaClient:
    """Owns one RPC adapter and lazily creates the helpers bound to it."""

    def __init__(self, settings: Optional[Settings] = None, rpc: Optional[SolanaRpc] = None):
        self._settings = settings
        self._owns_rpc = rpc is None
        self.rpc = rpc if rpc is not None else SolanaRpc.from_settings(self.settings.solana)
        self._transaction: Optional[TransactionHelper] = None
        self._sol_transfer: Optional[SolTransferHelper] = None
        self._spl_tokens: Dict[SplTokenHelperConfig, SplTokenHelper] = {}

    @property
    def settings(self) -> Settings:
        # unset means "follow the live global settings"
        return self._settings if self._settings is not None else get_settings()

    @property
    def transaction(self) -> TransactionHelper:
        if self._transaction is None:
            self._transaction = TransactionHelper(
                self.rpc,
                self._settings.solana if self._settings is not None else None,
                self._settings.transaction if self._settings is not None else None,
            )
        return self._transaction

    @property
    def sol_transfer(self) -> SolTransferHelper:
        if self._sol_transfer is None:
            self._sol_transfer = SolTransferHelper(
                self.rpc,
                self._settings.solana if self._settings is not None else None,
            )
        return self._sol_transfer

    def spl_token(self, config: SplTokenHelperConfig) -> SplTokenHelper:
        helper = self._spl_tokens.get(config)
        if helper is None:
            helper = SplTokenHelper(
                self.rpc,
                config,
                self._settings.solana if self._settings is not None else None,
            )
            self._spl_tokens[config] = helper
        return helper

    async def prepare_transaction(
        self,
        message: TransactionMessage,
        compute_unit_limit_multiplier: Optional[float] = None,
        compute_unit_limit_reset: bool = False,
        blockhash_reset: bool = True,
        log_request: Optional[LogRequest] = None,
    ) -> TransactionMessage:
        tx_settings = self.settings.transaction
        return await prepare_transaction(
            self.rpc,
            message,
            compute_unit_limit_multiplier=(
                compute_unit_limit_multiplier
                if compute_unit_limit_multiplier is not None
                else tx_settings.compute_unit_limit_multiplier
            ),
            compute_unit_limit_reset=compute_unit_limit_reset,
            blockhash_reset=blockhash_reset,
            log_request=log_request,
            default_compute_units=tx_settings.default_compute_units,
        )

    def create_transaction_pool(
        self,
        initial_instructions: Iterable[TransactionInstructionInput] = (),
        blockhash_max_age_ms: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> TransactionPoolController:
        if blockhash_max_age_ms is None:
            blockhash_max_age_ms = self.settings.transaction.blockhash_max_age_ms
        return TransactionPoolController(
            self.transaction,
            initial_instructions=initial_instructions,
            blockhash_max_age_ms=blockhash_max_age_ms,
            clock=clock,
        )

    def create_sol_transfer_controller(
        self,
        authority_provider: Optional[AuthorityProvider] = None,
    ) -> SolTransferController:
        return SolTransferController(self.sol_transfer, authority_provider)

    async def close(self) -> None:
        if self._owns_rpc:
            logger.info("Closing Solana RPC client...")
            await self.rpc.close()

    async def __aenter__(self) -> "SolanaClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_client(settings: Optional[Settings] = None, rpc: Optional[SolanaRpc] = None) -> SolanaClient:
    return SolanaClient(settings, rpc)
