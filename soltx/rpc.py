"""
RPC transport boundary.

SolanaRpc narrows solana-py's AsyncClient to the five calls the pipeline
needs and converts responses into small value types. Transport errors are
not wrapped; the only translation is for a transaction the cluster reports
as already processed, which surfaces as TransactionAlreadyProcessedError.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import DataSliceOpts, TxOpts
from solders.account import Account
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .config import SolanaRPCSettings
from .exceptions import (
    ConfigurationError,
    TransactionAlreadyProcessedError,
    is_already_processed_error,
)
from .message import BlockhashLifetime

logger = logging.getLogger(__name__)

AccountInfo = Account


@dataclass
class SimulationResult:
    success: bool
    units_consumed: Optional[int]
    logs: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class TokenAccountBalance:
    amount: int
    ui_amount_string: str
    decimals: int


def _commitment(value: Optional[str]) -> Optional[Commitment]:
    return Commitment(value) if value is not None else None


def _already_processed(error: Exception) -> TransactionAlreadyProcessedError:
    return TransactionAlreadyProcessedError(
        f"Transaction has already been processed: {error}",
    )


class SolanaRpc:
    """Async RPC adapter used by the transaction pipeline."""

    def __init__(self, client: AsyncClient):
        self.client = client

    @classmethod
    def from_settings(cls, settings: SolanaRPCSettings) -> "SolanaRpc":
        client = AsyncClient(
            str(settings.rpc_url),
            commitment=Commitment(settings.commitment),
            timeout=settings.timeout,
        )
        return cls(client)

    async def close(self) -> None:
        await self.client.close()

    async def get_latest_blockhash(self, commitment: Optional[str] = None) -> BlockhashLifetime:
        response = await self.client.get_latest_blockhash(commitment=_commitment(commitment))
        value = response.value
        logger.debug(f"Fetched blockhash {value.blockhash} (valid until {value.last_valid_block_height})")
        return BlockhashLifetime(
            blockhash=value.blockhash,
            last_valid_block_height=value.last_valid_block_height,
        )

    async def simulate_transaction(
        self,
        wire_base64: str,
        sig_verify: bool = False,
        replace_recent_blockhash: bool = False,
        commitment: Optional[str] = None,
    ) -> SimulationResult:
        # solana-py does not expose replaceRecentBlockhash; the node default is off
        if replace_recent_blockhash:
            raise ConfigurationError(
                "replace_recent_blockhash is not supported by this RPC adapter",
                context={"option": "replace_recent_blockhash"},
            )

        transaction = VersionedTransaction.from_bytes(base64.b64decode(wire_base64))
        try:
            response = await self.client.simulate_transaction(
                transaction,
                sig_verify=sig_verify,
                commitment=_commitment(commitment),
            )
        except RPCException as e:
            if is_already_processed_error(e):
                raise _already_processed(e) from e
            raise

        result = response.value
        return SimulationResult(
            success=result.err is None,
            units_consumed=result.units_consumed,
            logs=list(result.logs or []),
            error=str(result.err) if result.err else None,
        )

    async def send_transaction(
        self,
        wire_base64: str,
        preflight_commitment: Optional[str] = None,
        skip_preflight: Optional[bool] = None,
        max_retries: Optional[int] = None,
    ) -> Signature:
        opts = TxOpts(
            skip_preflight=bool(skip_preflight),
            preflight_commitment=Commitment(preflight_commitment or "confirmed"),
            max_retries=max_retries,
        )
        try:
            response = await self.client.send_raw_transaction(base64.b64decode(wire_base64), opts=opts)
        except RPCException as e:
            if is_already_processed_error(e):
                raise _already_processed(e) from e
            raise

        logger.info(f"Transaction sent: {response.value}")
        return response.value

    async def get_token_account_balance(
        self,
        ata: Pubkey,
        commitment: Optional[str] = None,
    ) -> TokenAccountBalance:
        response = await self.client.get_token_account_balance(ata, commitment=_commitment(commitment))
        value = response.value
        return TokenAccountBalance(
            amount=int(value.amount),
            ui_amount_string=value.ui_amount_string,
            decimals=value.decimals,
        )

    async def get_account_info(
        self,
        address: Pubkey,
        commitment: Optional[str] = None,
        data_slice: Optional[DataSliceOpts] = None,
        encoding: str = "base64",
    ) -> Optional[AccountInfo]:
        response = await self.client.get_account_info(
            address,
            commitment=_commitment(commitment),
            encoding=encoding,
            data_slice=data_slice,
        )
        return response.value


__all__ = [
    "SolanaRpc",
    "SimulationResult",
    "TokenAccountBalance",
    "AccountInfo",
]
