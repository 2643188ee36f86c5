"""Shared fixtures: real keypairs, a fake RPC adapter and fixed settings."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer

from soltx.config import SolanaRPCSettings, TransactionSettings
from soltx.message import BlockhashLifetime
from soltx.rpc import SimulationResult, SolanaRpc
from soltx.signers import KeypairSigner


def make_signature() -> Signature:
    return Keypair().sign_message(b"soltx-test")


def make_transfer(source: Pubkey, destination: Pubkey = None, lamports: int = 1_000):
    return transfer(TransferParams(
        from_pubkey=source,
        to_pubkey=destination or Pubkey.new_unique(),
        lamports=lamports,
    ))


@pytest.fixture
def lifetime():
    return BlockhashLifetime(blockhash=Hash.new_unique(), last_valid_block_height=1_000)


@pytest.fixture
def fresh_lifetime():
    return BlockhashLifetime(blockhash=Hash.new_unique(), last_valid_block_height=2_000)


@pytest.fixture
def sent_signature():
    return make_signature()


@pytest.fixture
def rpc(fresh_lifetime, sent_signature):
    """SolanaRpc stand-in whose calls are AsyncMocks."""
    fake = MagicMock(spec=SolanaRpc)
    fake.get_latest_blockhash = AsyncMock(return_value=fresh_lifetime)
    fake.simulate_transaction = AsyncMock(
        return_value=SimulationResult(success=True, units_consumed=500_000)
    )
    fake.send_transaction = AsyncMock(return_value=sent_signature)
    fake.get_token_account_balance = AsyncMock()
    fake.get_account_info = AsyncMock(return_value=None)
    fake.close = AsyncMock()
    return fake


@pytest.fixture
def rpc_settings():
    return SolanaRPCSettings(commitment="confirmed")


@pytest.fixture
def transaction_settings():
    return TransactionSettings(
        compute_unit_limit_multiplier=1.1,
        default_compute_units=200_000,
        blockhash_max_age_ms=30_000,
        send_max_retries=None,
    )


@pytest.fixture
def payer():
    return Keypair()


@pytest.fixture
def payer_signer(payer):
    return KeypairSigner(payer)


@pytest.fixture
def transfer_ix(payer):
    return make_transfer(payer.pubkey())
