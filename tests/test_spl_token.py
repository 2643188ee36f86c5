"""
Tests for the SPL token helper: associated accounts, balances, transfers
and the already-processed retry.
"""

import asyncio
import struct

import pytest
from solders.account import Account
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from soltx.exceptions import OperationAbortedError, TransactionAlreadyProcessedError, ValidationError
from soltx.rpc import TokenAccountBalance
from soltx.spl_token import (
    MINT_DECIMALS_OFFSET,
    SplTokenHelper,
    SplTokenHelperConfig,
    SplTransferPrepareConfig,
    create_spl_token_helper,
)

from .conftest import make_signature


def mint_account(decimals: int = 6) -> Account:
    data = bytearray(82)
    data[MINT_DECIMALS_OFFSET] = decimals
    return Account(lamports=1_461_600, data=bytes(data), owner=TOKEN_PROGRAM_ID)


@pytest.fixture
def mint():
    return Pubkey.new_unique()


@pytest.fixture
def recipient():
    return Pubkey.new_unique()


@pytest.fixture
def helper(rpc, rpc_settings, mint):
    return SplTokenHelper(rpc, SplTokenHelperConfig(mint=mint), rpc_settings)


@pytest.fixture
def accounts(rpc, mint):
    """Account table served by get_account_info; missing keys read as None."""
    table = {mint: mint_account(6)}

    async def get_account_info(address, **kwargs):
        return table.get(address)

    rpc.get_account_info.side_effect = get_account_info
    return table


class TestAssociatedTokenAccounts:

    def test_address_matches_spl_derivation(self, helper, mint, recipient):
        assert helper.derive_associated_token_address(recipient) == get_associated_token_address(recipient, mint)

    def test_accepts_string_owner(self, helper, recipient):
        assert helper.derive_associated_token_address(str(recipient)) == helper.derive_associated_token_address(recipient)


class TestDecimals:

    @pytest.mark.asyncio
    async def test_decimals_read_from_mint_and_cached(self, helper, rpc, accounts):
        assert await helper.resolve_decimals() == 6
        assert await helper.resolve_decimals() == 6
        assert rpc.get_account_info.await_count == 1

    @pytest.mark.asyncio
    async def test_configured_decimals_skip_lookup(self, rpc, mint):
        helper = SplTokenHelper(rpc, SplTokenHelperConfig(mint=mint, decimals=2))
        assert await helper.resolve_decimals() == 2
        rpc.get_account_info.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_mint(self, helper):
        with pytest.raises(ValidationError, match="not found"):
            await helper.resolve_decimals()

    @pytest.mark.asyncio
    async def test_short_account_is_not_a_mint(self, helper, accounts, mint):
        accounts[mint] = Account(lamports=1, data=bytes(10), owner=TOKEN_PROGRAM_ID)
        with pytest.raises(ValidationError, match="not a token mint"):
            await helper.resolve_decimals()


class TestBalance:

    @pytest.mark.asyncio
    async def test_existing_account(self, helper, rpc, accounts, recipient):
        rpc.get_token_account_balance.return_value = TokenAccountBalance(
            amount=1_500_000, ui_amount_string="1.5", decimals=6
        )

        balance = await helper.fetch_balance(recipient)

        assert balance.exists
        assert balance.amount == 1_500_000
        assert balance.ui_amount == "1.5"
        assert balance.ata_address == helper.derive_associated_token_address(recipient)

    @pytest.mark.asyncio
    async def test_query_failure_reads_as_missing(self, helper, rpc, accounts, recipient):
        rpc.get_token_account_balance.side_effect = RuntimeError("could not find account")

        balance = await helper.fetch_balance(recipient)

        assert not balance.exists
        assert balance.amount == 0
        assert balance.decimals == 6


class TestPrepareTransfer:

    @pytest.mark.asyncio
    async def test_creates_destination_ata_when_missing(self, helper, accounts, payer, mint, recipient):
        config = SplTransferPrepareConfig(amount="1.5", authority=payer, destination_owner=recipient)

        prepared = await helper.prepare_transfer(config)

        create_ix, transfer_ix = prepared.message.instructions
        assert create_ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
        assert bytes(create_ix.data) == bytes([0])
        assert [meta.pubkey for meta in create_ix.accounts][:4] == [
            payer.pubkey(), prepared.destination_ata, recipient, mint,
        ]
        assert transfer_ix.program_id == TOKEN_PROGRAM_ID
        assert prepared.amount == 1_500_000
        assert prepared.decimals == 6
        assert struct.unpack("<Q", bytes(transfer_ix.data)[1:9])[0] == 1_500_000

    @pytest.mark.asyncio
    async def test_existing_destination_needs_single_instruction(self, helper, accounts, payer, recipient):
        destination_ata = helper.derive_associated_token_address(recipient)
        accounts[destination_ata] = Account(lamports=1, data=b"", owner=TOKEN_PROGRAM_ID)

        prepared = await helper.prepare_transfer(
            SplTransferPrepareConfig(amount=2, authority=payer, destination_owner=recipient)
        )

        assert len(prepared.message.instructions) == 1
        assert prepared.amount == 2_000_000

    @pytest.mark.asyncio
    async def test_base_units_and_no_ata_check(self, helper, rpc, accounts, payer, recipient):
        config = SplTransferPrepareConfig(
            amount=15,
            authority=payer,
            destination_owner=recipient,
            amount_in_base_units=True,
            ensure_destination_ata=False,
        )

        prepared = await helper.prepare_transfer(config)

        assert prepared.amount == 15
        assert len(prepared.message.instructions) == 1
        assert rpc.get_account_info.await_count == 1

    @pytest.mark.asyncio
    async def test_source_defaults_to_authority_ata(self, helper, accounts, payer, recipient):
        prepared = await helper.prepare_transfer(
            SplTransferPrepareConfig(amount=1, authority=payer, destination_owner=recipient)
        )
        assert prepared.source_ata == helper.derive_associated_token_address(payer.pubkey())

    @pytest.mark.asyncio
    async def test_abort_before_start(self, helper, rpc, accounts, payer, recipient):
        abort = asyncio.Event()
        abort.set()
        config = SplTransferPrepareConfig(amount=1, authority=payer, destination_owner=recipient, abort_signal=abort)

        with pytest.raises(OperationAbortedError) as exc_info:
            await helper.prepare_transfer(config)

        assert exc_info.value.operation == "prepare_transfer"
        rpc.get_latest_blockhash.assert_not_awaited()
        rpc.get_account_info.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_abort_during_blockhash_fetch(self, helper, rpc, accounts, payer, recipient, fresh_lifetime):
        abort = asyncio.Event()

        async def fetch(commitment=None):
            abort.set()
            return fresh_lifetime

        rpc.get_latest_blockhash.side_effect = fetch
        config = SplTransferPrepareConfig(amount=1, authority=payer, destination_owner=recipient, abort_signal=abort)

        with pytest.raises(OperationAbortedError):
            await helper.prepare_transfer(config)
        rpc.get_latest_blockhash.assert_awaited_once()
        rpc.get_account_info.assert_not_awaited()


class TestSendTransfer:

    @pytest.fixture
    def config(self, payer, recipient, lifetime):
        return SplTransferPrepareConfig(amount=1, authority=payer, destination_owner=recipient, lifetime=lifetime)

    @pytest.mark.asyncio
    async def test_sends_once_on_success(self, helper, rpc, accounts, config, sent_signature):
        assert await helper.send_transfer(config) == sent_signature
        assert rpc.send_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_once_with_fresh_blockhash(self, helper, rpc, accounts, config, fresh_lifetime):
        expected = make_signature()
        rpc.send_transaction.side_effect = [TransactionAlreadyProcessedError("already processed"), expected]

        signature = await helper.send_transfer(config)

        assert signature == expected
        assert rpc.send_transaction.await_count == 2
        rpc.get_latest_blockhash.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_second_already_processed_propagates(self, helper, rpc, accounts, config):
        rpc.send_transaction.side_effect = [
            TransactionAlreadyProcessedError("already processed"),
            TransactionAlreadyProcessedError("already processed"),
        ]

        with pytest.raises(TransactionAlreadyProcessedError):
            await helper.send_transfer(config)
        assert rpc.send_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, helper, rpc, accounts, config):
        rpc.send_transaction.side_effect = RuntimeError("node is behind")

        with pytest.raises(RuntimeError):
            await helper.send_transfer(config)
        assert rpc.send_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_already_processed_text_triggers_retry(self, helper, rpc, accounts, config, sent_signature):
        rpc.send_transaction.side_effect = [
            RuntimeError("Transaction simulation failed: This transaction has already been processed"),
            sent_signature,
        ]

        assert await helper.send_transfer(config) == sent_signature
        assert rpc.send_transaction.await_count == 2


def test_create_spl_token_helper(rpc, mint):
    helper = create_spl_token_helper(rpc, SplTokenHelperConfig(mint=str(mint)))
    assert helper.mint == mint
