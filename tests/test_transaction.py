"""
Tests for the transaction helper: prepare, sign, to_wire, send and
prepare_and_send.
"""

import asyncio
import base64
from unittest.mock import AsyncMock

import pytest
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from soltx.config import SolanaRPCSettings, TransactionSettings
from soltx.exceptions import (
    AmountRangeError,
    EmptyInstructionsError,
    MissingFeePayerError,
    OperationAbortedError,
    ValidationError,
)
from soltx.message import (
    LEGACY,
    LookupTableInstruction,
    create_set_compute_unit_limit_instruction,
    is_compute_unit_limit_instruction,
    is_compute_unit_price_instruction,
    read_compute_unit_limit,
    transaction_to_base64,
)
from soltx.prepare import PrepareTransactionOverrides
from soltx.signers import KeypairSigner, SignerMode, WalletSession
from soltx.transaction import (
    TransactionHelper,
    TransactionPrepareAndSendRequest,
    TransactionPrepareRequest,
    create_transaction_helper,
    resolve_version,
)

from .conftest import make_signature


@pytest.fixture
def helper(rpc, rpc_settings, transaction_settings):
    return TransactionHelper(rpc, rpc_settings, transaction_settings)


def decode_wire(wire: str) -> VersionedTransaction:
    return VersionedTransaction.from_bytes(base64.b64decode(wire))


def send_only_wallet(keypair: Keypair, signature=None) -> WalletSession:
    signature = signature or make_signature()
    return WalletSession(address=keypair.pubkey(), send_transaction=AsyncMock(return_value=str(signature)))


# =============================================================================
# Prepare
# =============================================================================

class TestPrepare:

    @pytest.mark.asyncio
    async def test_empty_instructions_rejected_before_io(self, helper, rpc, payer):
        with pytest.raises(EmptyInstructionsError):
            await helper.prepare(TransactionPrepareRequest(instructions=[], authority=payer))
        rpc.get_latest_blockhash.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fee_payer_required(self, helper, transfer_ix):
        with pytest.raises(MissingFeePayerError, match="fee payer"):
            await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix]))

    @pytest.mark.asyncio
    async def test_authority_becomes_fee_payer(self, helper, payer, transfer_ix, fresh_lifetime):
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=payer))

        assert prepared.fee_payer == payer.pubkey()
        assert prepared.mode == SignerMode.PARTIAL
        assert prepared.lifetime == fresh_lifetime
        assert prepared.message.fee_payer_signer.address == payer.pubkey()
        assert prepared.instructions == (transfer_ix,)

    @pytest.mark.asyncio
    async def test_auto_version_is_legacy_without_lookup_tables(self, helper, payer, transfer_ix):
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=payer))
        assert prepared.version == LEGACY

    @pytest.mark.asyncio
    async def test_auto_version_is_zero_with_lookup_tables(self, helper, payer, transfer_ix):
        table = AddressLookupTableAccount(key=Pubkey.new_unique(), addresses=[])
        request = TransactionPrepareRequest(
            instructions=[LookupTableInstruction(transfer_ix, [table])],
            authority=payer,
        )
        prepared = await helper.prepare(request)
        assert prepared.version == 0

    @pytest.mark.asyncio
    async def test_explicit_version_wins(self, helper, payer, transfer_ix):
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=payer, version=0)
        assert (await helper.prepare(request)).version == 0

    def test_resolve_version_none_means_auto(self, transfer_ix):
        assert resolve_version(None, [transfer_ix]) == LEGACY

    @pytest.mark.asyncio
    async def test_compute_budget_prefix_order(self, helper, payer, transfer_ix):
        request = TransactionPrepareRequest(
            instructions=[transfer_ix],
            authority=payer,
            compute_unit_limit=300_000,
            compute_unit_price=5,
        )

        prepared = await helper.prepare(request)

        instructions = prepared.message.instructions
        assert len(instructions) == 3
        assert read_compute_unit_limit(instructions[0]) == 300_000
        assert is_compute_unit_price_instruction(instructions[1])
        assert instructions[2] == transfer_ix
        assert prepared.compute_unit_limit == 300_000
        assert prepared.compute_unit_price == 5
        assert prepared.instructions == (transfer_ix,)

    @pytest.mark.asyncio
    async def test_existing_limit_not_duplicated(self, helper, payer, transfer_ix):
        existing = create_set_compute_unit_limit_instruction(10_000)
        request = TransactionPrepareRequest(
            instructions=[existing, transfer_ix],
            authority=payer,
            compute_unit_limit=300_000,
        )

        prepared = await helper.prepare(request)

        limits = [ix for ix in prepared.message.instructions if is_compute_unit_limit_instruction(ix)]
        assert limits == [existing]
        assert prepared.compute_unit_limit is None

    @pytest.mark.asyncio
    async def test_repeated_prepare_has_single_limit(self, helper, payer, transfer_ix):
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=payer, compute_unit_limit=300_000)

        for _ in range(2):
            prepared = await helper.prepare(request)
            limits = [ix for ix in prepared.message.instructions if is_compute_unit_limit_instruction(ix)]
            assert len(limits) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field_name,value",
        [
            ("compute_unit_limit", -1),
            ("compute_unit_limit", 2**32),
            ("compute_unit_price", -1),
            ("compute_unit_price", 2**64),
        ],
    )
    async def test_compute_budget_out_of_range_rejected_before_io(
        self, helper, rpc, payer, transfer_ix, field_name, value
    ):
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=payer, **{field_name: value})

        with pytest.raises(ValidationError) as exc_info:
            await helper.prepare(request)

        assert isinstance(exc_info.value, AmountRangeError)
        assert exc_info.value.field_name == field_name
        rpc.get_latest_blockhash.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_compute_budget_upper_bounds_accepted(self, helper, payer, transfer_ix):
        request = TransactionPrepareRequest(
            instructions=[transfer_ix],
            authority=payer,
            compute_unit_limit=2**32 - 1,
            compute_unit_price=2**64 - 1,
        )

        prepared = await helper.prepare(request)

        assert read_compute_unit_limit(prepared.message.instructions[0]) == 2**32 - 1
        assert prepared.compute_unit_price == 2**64 - 1

    @pytest.mark.asyncio
    async def test_fallback_commitment_from_settings(self, rpc, payer, transfer_ix, transaction_settings):
        helper = TransactionHelper(rpc, SolanaRPCSettings(commitment="finalized"), transaction_settings)

        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=payer))

        assert prepared.commitment == "finalized"
        rpc.get_latest_blockhash.assert_awaited_once_with("finalized")

    @pytest.mark.asyncio
    async def test_request_commitment_wins(self, helper, rpc, payer, transfer_ix):
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=payer, commitment="processed")
        prepared = await helper.prepare(request)
        assert prepared.commitment == "processed"
        rpc.get_latest_blockhash.assert_awaited_once_with("processed")

    @pytest.mark.asyncio
    async def test_supplied_lifetime_skips_fetch(self, helper, rpc, payer, transfer_ix, lifetime):
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=payer, lifetime=lifetime)

        prepared = await helper.prepare(request)

        assert prepared.lifetime == lifetime
        rpc.get_latest_blockhash.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_only_wallet_gives_send_mode(self, helper, payer, transfer_ix):
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=send_only_wallet(payer))
        prepared = await helper.prepare(request)
        assert prepared.mode == SignerMode.SEND

    @pytest.mark.asyncio
    async def test_send_mode_downgraded_when_someone_else_pays(self, helper, payer, transfer_ix):
        other_payer = Keypair()
        request = TransactionPrepareRequest(
            instructions=[transfer_ix],
            authority=send_only_wallet(payer),
            fee_payer=other_payer,
        )

        prepared = await helper.prepare(request)

        assert prepared.mode == SignerMode.PARTIAL
        assert prepared.fee_payer == other_payer.pubkey()
        assert payer.pubkey() in [signer.address for signer in prepared.message.get_signers()]

    @pytest.mark.asyncio
    async def test_fee_payer_string_reuses_authority_signer(self, helper, payer, transfer_ix):
        request = TransactionPrepareRequest(
            instructions=[transfer_ix],
            authority=payer,
            fee_payer=str(payer.pubkey()),
        )

        prepared = await helper.prepare(request)

        assert isinstance(prepared.message.fee_payer_signer, KeypairSigner)
        assert len(prepared.message.get_signers()) == 1

    @pytest.mark.asyncio
    async def test_address_only_fee_payer(self, helper, transfer_ix):
        address = Pubkey.new_unique()
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], fee_payer=address))
        assert prepared.fee_payer == address
        assert prepared.message.fee_payer_signer is None

    @pytest.mark.asyncio
    async def test_abort_before_start(self, helper, rpc, payer, transfer_ix):
        abort = asyncio.Event()
        abort.set()
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=payer, abort_signal=abort)

        with pytest.raises(OperationAbortedError):
            await helper.prepare(request)
        rpc.get_latest_blockhash.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_abort_during_blockhash_fetch(self, helper, rpc, payer, transfer_ix, fresh_lifetime):
        abort = asyncio.Event()

        async def fetch(commitment=None):
            abort.set()
            return fresh_lifetime

        rpc.get_latest_blockhash.side_effect = fetch
        request = TransactionPrepareRequest(instructions=[transfer_ix], authority=payer, abort_signal=abort)

        with pytest.raises(OperationAbortedError):
            await helper.prepare(request)


# =============================================================================
# Sign and send
# =============================================================================

class TestSend:

    @pytest.mark.asyncio
    async def test_partial_mode_sends_signed_wire(self, helper, rpc, payer, transfer_ix, sent_signature):
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=payer))

        signature = await helper.send(prepared)

        assert signature == sent_signature
        args, kwargs = rpc.send_transaction.call_args
        transaction = decode_wire(args[0])
        assert transaction.signatures[0].verify(payer.pubkey(), to_bytes_versioned(transaction.message))
        assert kwargs == {"preflight_commitment": "confirmed", "skip_preflight": None, "max_retries": None}

    @pytest.mark.asyncio
    async def test_send_options_forwarded(self, helper, rpc, payer, transfer_ix):
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=payer))

        await helper.send(prepared, commitment="finalized", max_retries=3, skip_preflight=True)

        _, kwargs = rpc.send_transaction.call_args
        assert kwargs == {"preflight_commitment": "finalized", "skip_preflight": True, "max_retries": 3}

    @pytest.mark.asyncio
    async def test_max_retries_default_from_settings(self, rpc, rpc_settings, payer, transfer_ix):
        helper = TransactionHelper(rpc, rpc_settings, TransactionSettings(send_max_retries=5))
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=payer))

        await helper.send(prepared)

        assert rpc.send_transaction.call_args.kwargs["max_retries"] == 5

    @pytest.mark.asyncio
    async def test_send_mode_submits_through_wallet(self, helper, rpc, payer, transfer_ix):
        expected = make_signature()
        wallet = send_only_wallet(payer, expected)
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=wallet))

        signature = await helper.send(prepared)

        assert signature == expected
        wallet.send_transaction.assert_awaited_once()
        rpc.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_to_wire_matches_signed_transaction(self, helper, payer, transfer_ix):
        prepared = await helper.prepare(TransactionPrepareRequest(instructions=[transfer_ix], authority=payer))

        wire = await helper.to_wire(prepared)

        assert wire == transaction_to_base64(await helper.sign(prepared))


class TestPrepareAndSend:

    @pytest.mark.asyncio
    async def test_tunes_without_refetching_blockhash(self, helper, rpc, payer, transfer_ix):
        request = TransactionPrepareAndSendRequest(instructions=[transfer_ix], authority=payer)

        await helper.prepare_and_send(request)

        rpc.simulate_transaction.assert_awaited_once()
        rpc.get_latest_blockhash.assert_awaited_once()
        sent = decode_wire(rpc.send_transaction.call_args.args[0])
        assert len(sent.message.instructions) == 2

    @pytest.mark.asyncio
    async def test_false_skips_tuning(self, helper, rpc, payer, transfer_ix):
        request = TransactionPrepareAndSendRequest(
            instructions=[transfer_ix], authority=payer, prepare_transaction=False
        )

        await helper.prepare_and_send(request)

        rpc.simulate_transaction.assert_not_awaited()
        sent = decode_wire(rpc.send_transaction.call_args.args[0])
        assert len(sent.message.instructions) == 1

    @pytest.mark.asyncio
    async def test_overrides_can_refresh_blockhash(self, helper, rpc, payer, transfer_ix):
        request = TransactionPrepareAndSendRequest(
            instructions=[transfer_ix],
            authority=payer,
            prepare_transaction=PrepareTransactionOverrides(blockhash_reset=True),
        )

        await helper.prepare_and_send(request)

        assert rpc.get_latest_blockhash.await_count == 2

    @pytest.mark.asyncio
    async def test_send_options_reach_rpc(self, helper, rpc, payer, transfer_ix):
        request = TransactionPrepareAndSendRequest(instructions=[transfer_ix], authority=payer)

        await helper.prepare_and_send(request, skip_preflight=True)

        assert rpc.send_transaction.call_args.kwargs["skip_preflight"] is True


def test_create_transaction_helper(rpc):
    helper = create_transaction_helper(rpc)
    assert isinstance(helper, TransactionHelper)
    assert helper.rpc is rpc
