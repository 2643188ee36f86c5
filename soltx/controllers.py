import logging
from dataclasses import replace
from typing import Any, Callable, Optional

from solders.signature import Signature

from .exceptions import MissingAuthorityError
from .signers import Authority
from .sol_transfer import SolTransferHelper, SolTransferPrepareConfig
from .state import (
    AsyncState,
    AsyncStatus,
    Listener,
    Store,
    Unsubscribe,
    create_async_state,
    create_initial_async_state,
)

logger = logging.getLogger(__name__)

AuthorityProvider = Callable[[], Optional[Authority]]


class SolTransferController:
    """Tracks SOL transfers through an observable AsyncState."""

    def __init__(
        self,
        helper: SolTransferHelper,
        authority_provider: Optional[AuthorityProvider] = None,
    ):
        self.helper = helper
        self._authority_provider = authority_provider
        self._state: Store[AsyncState[Signature]] = Store(create_initial_async_state())

    def _ensure_authority(self, config: SolTransferPrepareConfig) -> SolTransferPrepareConfig:
        if config.authority is not None:
            return config
        authority = self._authority_provider() if self._authority_provider is not None else None
        if authority is None:
            raise MissingAuthorityError(
                "Connect a wallet or supply an `authority` before sending SOL transfers.",
                field_name="authority",
            )
        return replace(config, authority=authority)

    async def send(self, config: SolTransferPrepareConfig, **send_options: Any) -> Signature:
        request = self._ensure_authority(config)
        self._state.set_snapshot(create_async_state(AsyncStatus.LOADING))
        try:
            signature = await self.helper.send_transfer(request, **send_options)
        except Exception as e:
            self._state.set_snapshot(create_async_state(AsyncStatus.ERROR, error=e))
            raise

        self._state.set_snapshot(create_async_state(AsyncStatus.SUCCESS, data=signature))
        return signature

    def get_helper(self) -> SolTransferHelper:
        return self.helper

    def get_state(self) -> AsyncState[Signature]:
        return self._state.get_snapshot()

    def reset(self) -> None:
        self._state.set_snapshot(create_initial_async_state())

    def subscribe(self, listener: Listener) -> Unsubscribe:
        return self._state.subscribe(listener)


def create_sol_transfer_controller(
    helper: SolTransferHelper,
    authority_provider: Optional[AuthorityProvider] = None,
) -> SolTransferController:
    return SolTransferController(helper, authority_provider)
