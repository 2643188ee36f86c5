"""
Tests for the SOL transfer controller and the observable state cells.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.pubkey import Pubkey

from soltx.controllers import SolTransferController, create_sol_transfer_controller
from soltx.exceptions import MissingAuthorityError
from soltx.sol_transfer import SolTransferHelper, SolTransferPrepareConfig
from soltx.state import AsyncStatus, Store, create_async_state, create_initial_async_state


@pytest.fixture
def helper(sent_signature):
    fake = MagicMock(spec=SolTransferHelper)
    fake.send_transfer = AsyncMock(return_value=sent_signature)
    return fake


@pytest.fixture
def config():
    return SolTransferPrepareConfig(amount=1_000, authority=None, destination=Pubkey.new_unique())


class TestSolTransferController:

    @pytest.mark.asyncio
    async def test_authority_from_provider(self, helper, config, payer, sent_signature):
        controller = SolTransferController(helper, authority_provider=lambda: payer)

        signature = await controller.send(config)

        assert signature == sent_signature
        sent_config = helper.send_transfer.call_args.args[0]
        assert sent_config.authority is payer
        assert config.authority is None
        state = controller.get_state()
        assert state.status is AsyncStatus.SUCCESS
        assert state.data == sent_signature

    @pytest.mark.asyncio
    async def test_explicit_authority_wins(self, helper, config, payer):
        provider = MagicMock()
        controller = SolTransferController(helper, authority_provider=provider)

        await controller.send(SolTransferPrepareConfig(amount=1, authority=payer, destination=config.destination))

        provider.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_authority(self, helper, config):
        controller = SolTransferController(helper, authority_provider=lambda: None)

        with pytest.raises(MissingAuthorityError, match="Connect a wallet"):
            await controller.send(config)

        helper.send_transfer.assert_not_awaited()
        assert controller.get_state().is_idle

    @pytest.mark.asyncio
    async def test_failure_recorded(self, helper, config, payer):
        error = RuntimeError("insufficient funds")
        helper.send_transfer.side_effect = error
        controller = SolTransferController(helper, authority_provider=lambda: payer)

        with pytest.raises(RuntimeError):
            await controller.send(config)

        assert controller.get_state().status is AsyncStatus.ERROR
        assert controller.get_state().error is error

    @pytest.mark.asyncio
    async def test_send_options_forwarded(self, helper, config, payer):
        controller = SolTransferController(helper, authority_provider=lambda: payer)
        await controller.send(config, skip_preflight=True)
        assert helper.send_transfer.call_args.kwargs == {"skip_preflight": True}

    @pytest.mark.asyncio
    async def test_reset_and_subscribe(self, helper, config, payer):
        controller = create_sol_transfer_controller(helper, lambda: payer)
        listener = MagicMock()
        unsubscribe = controller.subscribe(listener)

        await controller.send(config)
        assert listener.call_count == 2

        controller.reset()
        assert controller.get_state().is_idle
        assert listener.call_count == 3

        unsubscribe()
        controller.reset()
        assert listener.call_count == 3
        assert controller.get_helper() is helper


class TestStore:

    def test_listener_may_unsubscribe_during_notification(self):
        store = Store(0)
        calls = []

        def listener():
            calls.append(store.get_snapshot())
            unsubscribe()

        unsubscribe = store.subscribe(listener)
        other = MagicMock()
        store.subscribe(other)

        store.set_snapshot(1)
        store.set_snapshot(2)

        assert calls == [1]
        assert other.call_count == 2
        assert store.listener_count == 1

    def test_unsubscribe_twice_is_harmless(self):
        store = Store("a")
        unsubscribe = store.subscribe(MagicMock())
        unsubscribe()
        unsubscribe()
        assert store.listener_count == 0

    def test_async_state_helpers(self):
        assert create_initial_async_state().is_idle
        loading = create_async_state("loading")
        assert loading.is_loading
        assert loading.status is AsyncStatus.LOADING
