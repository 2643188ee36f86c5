"""
Instruction pool controller.

Accumulates instructions for one transaction and drives prepare/send
through observable AsyncState slices. Every change to the instruction list
drops the prepared transaction and resets both async states, so a stale
transaction can never be sent.

The controller takes no locks. Overlapping prepare or send calls race and
the last write to each slice wins.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import EmptyInstructionsError, PrepareRequiredError
from .message import BlockhashLifetime, TransactionInstructionInput
from .state import (
    AsyncState,
    AsyncStatus,
    Listener,
    Store,
    Unsubscribe,
    create_async_state,
    create_initial_async_state,
)
from .transaction import (
    PreparedTransaction,
    TransactionHelper,
    TransactionPrepareAndSendRequest,
    TransactionPrepareRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOCKHASH_MAX_AGE_MS = 30_000

InstructionList = Tuple[TransactionInstructionInput, ...]


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class LatestBlockhashCache:
    value: BlockhashLifetime
    updated_at: float


class TransactionPoolController:
    """
    Mutable instruction list plus prepare/send state for one transaction.

    Args:
        helper: Transaction helper that does the actual work
        initial_instructions: Instructions restored by ``reset``
        blockhash_max_age_ms: Age after which a cached blockhash is ignored
        clock: Returns the current time in milliseconds
    """

    def __init__(
        self,
        helper: TransactionHelper,
        initial_instructions: Iterable[TransactionInstructionInput] = (),
        blockhash_max_age_ms: int = DEFAULT_BLOCKHASH_MAX_AGE_MS,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.helper = helper
        self.blockhash_max_age_ms = blockhash_max_age_ms
        self._clock = clock or _now_ms
        self._initial_instructions: InstructionList = tuple(initial_instructions)
        self._latest_blockhash_cache: Optional[LatestBlockhashCache] = None

        self._instructions: Store[InstructionList] = Store(self._initial_instructions)
        self._prepared: Store[Optional[PreparedTransaction]] = Store(None)
        self._prepare_state: Store[AsyncState[PreparedTransaction]] = Store(create_initial_async_state())
        self._send_state: Store[AsyncState[Signature]] = Store(create_initial_async_state())

    # -------------------------------------------------------------------------
    # Instruction mutations
    # -------------------------------------------------------------------------

    def _reset_derived_state(self) -> None:
        self._prepared.set_snapshot(None)
        self._prepare_state.set_snapshot(create_initial_async_state())
        self._send_state.set_snapshot(create_initial_async_state())

    def _commit_instructions(self, instructions: Iterable[TransactionInstructionInput]) -> None:
        self._instructions.set_snapshot(tuple(instructions))
        self._reset_derived_state()

    def add_instruction(self, instruction: TransactionInstructionInput) -> None:
        self._commit_instructions(self._instructions.get_snapshot() + (instruction,))

    def add_instructions(self, instructions: Sequence[TransactionInstructionInput]) -> None:
        if not instructions:
            return
        self._commit_instructions(self._instructions.get_snapshot() + tuple(instructions))

    def remove_instruction(self, index: int) -> None:
        current = self._instructions.get_snapshot()
        if index < 0 or index >= len(current):
            return
        self._commit_instructions(current[:index] + current[index + 1:])

    def replace_instructions(self, instructions: Iterable[TransactionInstructionInput]) -> None:
        self._commit_instructions(instructions)

    def clear_instructions(self) -> None:
        self._commit_instructions(())

    def reset(self) -> None:
        self._commit_instructions(self._initial_instructions)

    # -------------------------------------------------------------------------
    # Getters
    # -------------------------------------------------------------------------

    def get_instructions(self) -> InstructionList:
        return self._instructions.get_snapshot()

    def get_prepared(self) -> Optional[PreparedTransaction]:
        return self._prepared.get_snapshot()

    def get_prepare_state(self) -> AsyncState[PreparedTransaction]:
        return self._prepare_state.get_snapshot()

    def get_send_state(self) -> AsyncState[Signature]:
        return self._send_state.get_snapshot()

    # -------------------------------------------------------------------------
    # Blockhash cache
    # -------------------------------------------------------------------------

    def set_latest_blockhash_cache(self, cache: Optional[LatestBlockhashCache]) -> None:
        self._latest_blockhash_cache = cache

    def get_latest_blockhash_cache(self) -> Optional[LatestBlockhashCache]:
        return self._latest_blockhash_cache

    def _cached_lifetime(self) -> Optional[BlockhashLifetime]:
        cache = self._latest_blockhash_cache
        if cache is None:
            return None
        if self._clock() - cache.updated_at > self.blockhash_max_age_ms:
            return None
        return cache.value

    def _with_cached_lifetime(self, overrides: Dict[str, Any]) -> Dict[str, Any]:
        if overrides.get("lifetime") is not None:
            return overrides
        cached = self._cached_lifetime()
        if cached is None:
            return overrides
        return {**overrides, "lifetime": cached}

    def _resolve_instructions(
        self,
        instructions: Optional[Sequence[TransactionInstructionInput]],
    ) -> InstructionList:
        resolved = tuple(instructions) if instructions is not None else self._instructions.get_snapshot()
        if not resolved:
            raise EmptyInstructionsError(
                "Add at least one instruction before preparing a transaction.",
                field_name="instructions",
            )
        return resolved

    def _resolve_prepared(self, prepared: Optional[PreparedTransaction]) -> PreparedTransaction:
        target = prepared if prepared is not None else self._prepared.get_snapshot()
        if target is None:
            raise PrepareRequiredError("Prepare a transaction before sending or signing.")
        return target

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def prepare(
        self,
        instructions: Optional[Sequence[TransactionInstructionInput]] = None,
        **overrides: Any,
    ) -> PreparedTransaction:
        resolved = self._resolve_instructions(instructions)
        self._prepare_state.set_snapshot(create_async_state(AsyncStatus.LOADING))
        try:
            request = TransactionPrepareRequest(instructions=resolved, **self._with_cached_lifetime(overrides))
            prepared = await self.helper.prepare(request)
        except Exception as e:
            self._prepare_state.set_snapshot(create_async_state(AsyncStatus.ERROR, error=e))
            raise

        self._prepared.set_snapshot(prepared)
        self._prepare_state.set_snapshot(create_async_state(AsyncStatus.SUCCESS, data=prepared))
        return prepared

    async def send(
        self,
        prepared: Optional[PreparedTransaction] = None,
        **send_options: Any,
    ) -> Signature:
        target = self._resolve_prepared(prepared)
        self._send_state.set_snapshot(create_async_state(AsyncStatus.LOADING))
        try:
            signature = await self.helper.send(target, **send_options)
        except Exception as e:
            self._send_state.set_snapshot(create_async_state(AsyncStatus.ERROR, error=e))
            raise

        self._send_state.set_snapshot(create_async_state(AsyncStatus.SUCCESS, data=signature))
        return signature

    async def prepare_and_send(
        self,
        instructions: Optional[Sequence[TransactionInstructionInput]] = None,
        send_options: Optional[Dict[str, Any]] = None,
        **overrides: Any,
    ) -> Signature:
        resolved = self._resolve_instructions(instructions)
        self._send_state.set_snapshot(create_async_state(AsyncStatus.LOADING))
        try:
            request = TransactionPrepareAndSendRequest(
                instructions=resolved,
                **self._with_cached_lifetime(overrides),
            )
            signature = await self.helper.prepare_and_send(request, **(send_options or {}))
        except Exception as e:
            self._send_state.set_snapshot(create_async_state(AsyncStatus.ERROR, error=e))
            raise

        self._send_state.set_snapshot(create_async_state(AsyncStatus.SUCCESS, data=signature))
        logger.info(f"Pool transaction sent: {signature}")
        return signature

    async def sign(
        self,
        prepared: Optional[PreparedTransaction] = None,
        **options: Any,
    ) -> VersionedTransaction:
        return await self.helper.sign(self._resolve_prepared(prepared), **options)

    async def to_wire(
        self,
        prepared: Optional[PreparedTransaction] = None,
        **options: Any,
    ) -> str:
        return await self.helper.to_wire(self._resolve_prepared(prepared), **options)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe_instructions(self, listener: Listener) -> Unsubscribe:
        return self._instructions.subscribe(listener)

    def subscribe_prepared(self, listener: Listener) -> Unsubscribe:
        return self._prepared.subscribe(listener)

    def subscribe_prepare_state(self, listener: Listener) -> Unsubscribe:
        return self._prepare_state.subscribe(listener)

    def subscribe_send_state(self, listener: Listener) -> Unsubscribe:
        return self._send_state.subscribe(listener)


def create_transaction_pool_controller(
    helper: TransactionHelper,
    initial_instructions: Iterable[TransactionInstructionInput] = (),
    blockhash_max_age_ms: int = DEFAULT_BLOCKHASH_MAX_AGE_MS,
    clock: Optional[Callable[[], float]] = None,
) -> TransactionPoolController:
    return TransactionPoolController(helper, initial_instructions, blockhash_max_age_ms, clock)
