from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")

Listener = Callable[[], None]
Unsubscribe = Callable[[], None]


class AsyncStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class AsyncState(Generic[T]):
    status: AsyncStatus = AsyncStatus.IDLE
    data: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def is_idle(self) -> bool:
        return self.status is AsyncStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status is AsyncStatus.LOADING


def create_initial_async_state() -> AsyncState[Any]:
    return AsyncState(status=AsyncStatus.IDLE)


def create_async_state(
    status: AsyncStatus,
    data: Optional[T] = None,
    error: Optional[BaseException] = None,
) -> AsyncState[T]:
    return AsyncState(status=AsyncStatus(status), data=data, error=error)


class Store(Generic[T]):
    """Single value cell that notifies listeners on every write."""

    def __init__(self, initial: T):
        self._snapshot = initial
        self._listeners: List[Listener] = []

    def get_snapshot(self) -> T:
        return self._snapshot

    def set_snapshot(self, value: T) -> None:
        self._snapshot = value
        # copy so a listener may unsubscribe while being notified
        for listener in list(self._listeners):
            listener()

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
