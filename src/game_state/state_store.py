"""
Player State Store.

The single serialization point for player state. Holds the current immutable
PlayerState snapshot, applies updates atomically under a lock, and is the sole
source of timestamps for the exploration loop.
"""

from typing import Callable, Optional
import logging
import threading
import time

from src.data_models import PlayerState

logger = logging.getLogger(__name__)


def system_clock_millis() -> int:
    """Wall-clock milliseconds. Only the store may call this."""
    return int(time.time() * 1000)


class PlayerStateStore:
    """
    Holds the authoritative PlayerState snapshot.

    update() runs the supplied function while holding the store lock, so two
    writers never interleave. now() never goes backwards, even if the
    underlying time provider does.
    """

    def __init__(
        self,
        initial_state: PlayerState,
        time_provider: Optional[Callable[[], int]] = None,
    ):
        self._state = initial_state
        self._time_provider = time_provider or system_clock_millis
        self._last_timestamp: Optional[int] = None
        self._lock = threading.RLock()
        self._listeners: list[Callable[[PlayerState], None]] = []

    def current(self) -> PlayerState:
        """Return the current snapshot."""
        with self._lock:
            return self._state

    def update(self, fn: Callable[[PlayerState], PlayerState]) -> PlayerState:
        """
        Atomically replace the snapshot with fn(current).

        If fn raises, the snapshot is left untouched and the error propagates.
        """
        with self._lock:
            new_state = fn(self._state)
            if not isinstance(new_state, PlayerState):
                raise TypeError(
                    f"State update must return PlayerState, got {type(new_state).__name__}"
                )
            self._state = new_state
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(new_state)
            except Exception as e:
                logger.warning(f"State listener error: {e}")
        return new_state

    def replace(self, state: PlayerState) -> PlayerState:
        """Swap in a whole snapshot (used when a save is loaded)."""
        logger.info(f"Player state replaced for {state.player_id}")
        return self.update(lambda _: state)

    def now(self) -> int:
        """Monotonically non-decreasing timestamp in milliseconds."""
        with self._lock:
            candidate = int(self._time_provider())
            if self._last_timestamp is not None and candidate < self._last_timestamp:
                candidate = self._last_timestamp
            self._last_timestamp = candidate
            return candidate

    def append_choice(self, tag: str, timestamp_millis: Optional[int] = None) -> PlayerState:
        """Append one tag to the choice log."""
        stamp = timestamp_millis if timestamp_millis is not None else self.now()
        return self.update(lambda state: state.append_choice(tag, stamp))

    def subscribe(self, listener: Callable[[PlayerState], None]) -> None:
        """Observe every published snapshot."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[PlayerState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
