"""
Ride playback state machine.

Steps a "current waypoint" cursor through a route on a timer, with
play/pause/seek and a speed multiplier. Keyboard keys and UI controls both
funnel into the same transitions.

States:
- STOPPED: no timer pending
- PLAYING: exactly one tick pending at the current interval

Every transition that re-arms the timer or leaves PLAYING cancels the
pending tick first, so at most one tick is ever scheduled.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from constants import KEY_BINDINGS, PLAYBACK_ACTIONS, PLAYBACK_BASE_INTERVAL_MS
from correlation import CorrelatedPair, Correlator
from scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"


@dataclass
class PlaybackCursor:
    """Mutable playback state, owned by one PlaybackController."""
    current_index: int = 0
    tick_interval_ms: Optional[float] = None
    timer_handle: Optional[TimerHandle] = None


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Read-only view of the playback state handed to listeners."""
    current_index: int
    is_playing: bool
    tick_interval_ms: Optional[float]
    speed_multiplier: float

    @property
    def state(self) -> PlaybackState:
        return PlaybackState.PLAYING if self.is_playing else PlaybackState.STOPPED


PlaybackListener = Callable[[PlaybackSnapshot, Optional[CorrelatedPair]], None]


class PlaybackController:
    """
    Cooperative playback over a route's waypoint indices.

    Args:
        length: Number of waypoints in the route
        scheduler: Source of the tick timer
        correlator: Optional Correlator used to re-resolve the opposite
            waypoint whenever the cursor moves
        base_interval_ms: Tick interval at 1x speed
        key_bindings: Key identifier -> action name
    """

    def __init__(self, length: int, scheduler: Scheduler,
                 correlator: Optional[Correlator] = None,
                 base_interval_ms: float = PLAYBACK_BASE_INTERVAL_MS,
                 key_bindings: Optional[Dict[str, str]] = None):
        if length < 0:
            raise ValueError("length must be non-negative")
        if base_interval_ms <= 0:
            raise ValueError("base_interval_ms must be positive")
        if correlator is not None and len(correlator) != length:
            raise ValueError("correlator route length does not match playback length")

        self.length = length
        self.base_interval_ms = base_interval_ms
        self.key_bindings = dict(KEY_BINDINGS if key_bindings is None else key_bindings)
        self._scheduler = scheduler
        self._correlator = correlator
        self._cursor = PlaybackCursor()
        self._listeners: List[PlaybackListener] = []
        self._closed = False
        self._pair: Optional[CorrelatedPair] = self._resolve_pair()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def current_index(self) -> int:
        return self._cursor.current_index

    @property
    def is_playing(self) -> bool:
        return self._cursor.tick_interval_ms is not None

    @property
    def state(self) -> PlaybackState:
        return PlaybackState.PLAYING if self.is_playing else PlaybackState.STOPPED

    @property
    def tick_interval_ms(self) -> Optional[float]:
        return self._cursor.tick_interval_ms

    @property
    def speed_multiplier(self) -> float:
        """Playback speed relative to the base interval (1.0 when stopped)."""
        if self._cursor.tick_interval_ms is None:
            return 1.0
        return self.base_interval_ms / self._cursor.tick_interval_ms

    @property
    def has_pending_tick(self) -> bool:
        return self._cursor.timer_handle is not None

    @property
    def current_pair(self) -> Optional[CorrelatedPair]:
        """Current waypoint and its correlate (None without a correlator or waypoints)."""
        return self._pair

    def snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(
            current_index=self._cursor.current_index,
            is_playing=self.is_playing,
            tick_interval_ms=self._cursor.tick_interval_ms,
            speed_multiplier=self.speed_multiplier,
        )

    def subscribe(self, listener: PlaybackListener) -> None:
        """Register a callback invoked after every state change."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start playing, or double the speed if already playing."""
        self._check_open()
        if self.length == 0:
            logger.debug("Nothing to play: route has no waypoints")
            return

        if self.is_playing:
            self._cursor.tick_interval_ms /= 2
            logger.debug(f"Playback speed {self.speed_multiplier:g}x")
        else:
            self._cursor.tick_interval_ms = self.base_interval_ms
        self._arm()
        self._notify()

    def tick(self) -> None:
        """Advance one waypoint. Does nothing unless playing.

        Past the last waypoint playback loops back to index 1 rather than
        stopping.
        """
        if not self.is_playing or self._closed:
            return

        self._cancel_timer()
        next_index = self._cursor.current_index + 1
        if next_index >= self.length:
            next_index = 1 if self.length > 1 else 0
        self._move_to(next_index)
        self._arm()
        self._notify()

    def pause(self) -> None:
        """Stop playing, keeping the current index. No-op when stopped."""
        if not self.is_playing:
            return
        self._stop()
        self._notify()

    def step_forward(self) -> None:
        self._step(1)

    def step_back(self) -> None:
        self._step(-1)

    def seek(self, index: int) -> None:
        """Jump to an index (clamped to the route), pausing playback."""
        self._check_open()
        if self.is_playing:
            self._stop()
        self._move_to(self._clamp(index))
        self._notify()

    def reset(self) -> None:
        """Pause and return to the first waypoint."""
        self._check_open()
        if self.is_playing:
            self._stop()
        self._move_to(0)
        self._notify()

    def close(self) -> None:
        """Cancel any pending tick and detach listeners. Idempotent."""
        self._cancel_timer()
        self._cursor.tick_interval_ms = None
        self._listeners.clear()
        self._closed = True

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def handle_control(self, action: str) -> bool:
        """
        Apply a named control action.

        Args:
            action: 'forward', 'back', 'ride', 'pause' or 'reset'

        Returns:
            True if the action was recognized
        """
        if action not in PLAYBACK_ACTIONS:
            logger.debug(f"Ignoring unknown playback action: {action}")
            return False

        if action == "forward":
            self.step_forward()
        elif action == "back":
            self.step_back()
        elif action == "ride":
            self.start()
        elif action == "pause":
            self.pause()
        else:
            self.reset()
        return True

    def handle_key(self, key: str) -> bool:
        """Map a key identifier through the key bindings onto an action."""
        action = self.key_bindings.get(key)
        if action is None:
            return False
        return self.handle_control(action)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Playback controller is closed")

    def _clamp(self, index: int) -> int:
        if self.length == 0:
            return 0
        return max(0, min(self.length - 1, index))

    def _step(self, delta: int) -> None:
        self._check_open()
        if self.is_playing:
            self._stop()
        self._move_to(self._clamp(self._cursor.current_index + delta))
        self._notify()

    def _stop(self) -> None:
        self._cancel_timer()
        self._cursor.tick_interval_ms = None

    def _cancel_timer(self) -> None:
        handle = self._cursor.timer_handle
        if handle is not None:
            handle.cancel()
            self._cursor.timer_handle = None

    def _arm(self) -> None:
        self._cancel_timer()
        self._cursor.timer_handle = self._scheduler.call_later(
            self._cursor.tick_interval_ms, self._on_timer)

    def _on_timer(self) -> None:
        # The handle that fired is spent
        self._cursor.timer_handle = None
        self.tick()

    def _move_to(self, index: int) -> None:
        self._cursor.current_index = index
        self._pair = self._resolve_pair()

    def _resolve_pair(self) -> Optional[CorrelatedPair]:
        if self._correlator is None or self.length == 0:
            return None
        return self._correlator.pair(self._cursor.current_index)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot, self._pair)
