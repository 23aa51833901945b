"""Break timer state machine.

The timer is driven by ``tick()`` (once a second in the service, or in bulk
through ``advance()`` in tests) and by hold requests from several sources:
the user, smart pause decisions, idle detection, quiet hours and system
sleep. While any hold is in place the timer sits in ``EXTERNALLY_PAUSED``
and the time left in the interrupted phase is frozen.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from smart_break.config.config import TimerPreferences
from smart_break.models.pause import PauseReason
from smart_break.models.timer_state import (
    BreakEnded,
    BreakStarted,
    PauseEnded,
    PauseSource,
    PauseStarted,
    StateChanged,
    TimerEvent,
    TimerSnapshot,
    TimerState,
    WorkStarted,
    WorkStopped,
)
from smart_break.services.store import KeyValueStore

logger = logging.getLogger(__name__)

# Idle time below which the user counts as back at the keyboard
USER_RETURN_SECONDS = 10
# Share of the break after which it may be ended early
EARLY_END_FRACTION = 0.8

ACTIVE_STATES = (TimerState.RUNNING, TimerState.PRE_BREAK_WARNING)

# Sources that describe a lasting condition rather than a one-off action;
# they re-apply whenever a new work interval starts.
STANDING_SOURCES = (PauseSource.SMART_PAUSE, PauseSource.QUIET_HOURS)

Hold = Tuple[PauseReason, Optional[str]]

TIMER_PREFERENCES_KEY = "timer_preferences"
TIMER_SNAPSHOT_KEY = "timer_snapshot"

# Saved timer positions older than this are not restored
MAX_SNAPSHOT_AGE_SECONDS = 3600


def load_timer_preferences(store: KeyValueStore) -> TimerPreferences:
    return store.load(TIMER_PREFERENCES_KEY, TimerPreferences.model_validate) or TimerPreferences()


def save_timer_preferences(store: KeyValueStore, preferences: TimerPreferences) -> None:
    store.set(TIMER_PREFERENCES_KEY, preferences.model_dump(mode="json"))


def load_timer_snapshot(store: KeyValueStore) -> Optional[TimerSnapshot]:
    return store.load(TIMER_SNAPSHOT_KEY, TimerSnapshot.model_validate)


def save_timer_snapshot(store: KeyValueStore, snapshot: Optional[TimerSnapshot]) -> None:
    """Store the snapshot; ``None`` clears it"""
    if snapshot is None:
        store.delete(TIMER_SNAPSHOT_KEY)
    else:
        store.set(TIMER_SNAPSHOT_KEY, snapshot.model_dump(mode="json"))


class BreakTimer:
    """Single authority over the work/break cycle"""

    def __init__(
        self,
        preferences: Optional[TimerPreferences] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.preferences = preferences or TimerPreferences()
        self.clock = clock
        self._lock = threading.RLock()
        self._state = TimerState.IDLE
        self._remaining = 0
        self._phase_length = 0
        self._resume_state: Optional[TimerState] = None
        self._holds: Dict[PauseSource, Hold] = {}
        self._standing: Dict[PauseSource, Hold] = {}
        self._postpones_used = 0
        self._idle_reset_applied = False
        self._last_should_pause = False
        self._listeners: List[Callable[[TimerEvent], None]] = []

    # Observation

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def is_paused(self) -> bool:
        return self._state == TimerState.EXTERNALLY_PAUSED

    @property
    def pause_sources(self) -> Tuple[PauseSource, ...]:
        return tuple(self._holds)

    @property
    def running_seconds(self) -> int:
        """Length of the running phase before the warning"""
        return self.preferences.work_interval_seconds - self.preferences.pre_break_seconds

    @property
    def postpones_remaining(self) -> int:
        if not self.preferences.allow_postpone_break:
            return 0
        return max(0, self.preferences.max_postpones - self._postpones_used)

    def status(self) -> dict:
        with self._lock:
            return {
                "state": self._state.value,
                "remaining_seconds": self._remaining,
                "phase_length_seconds": self._phase_length,
                "resume_state": self._resume_state.value if self._resume_state else None,
                "pause_sources": [s.value for s in self._holds],
                "pause_reason": self._current_hold()[0].value if self._holds else None,
                "postpones_remaining": self.postpones_remaining,
                "can_skip": self.preferences.allow_skip_break,
            }

    def subscribe(self, listener: Callable[[TimerEvent], None]) -> None:
        self._listeners.append(listener)

    def _emit(self, event: TimerEvent):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Timer listener failed on {type(event).__name__}: {e}")

    def _set_state(self, new_state: TimerState, remaining: int = 0):
        previous = self._state
        self._state = new_state
        self._remaining = remaining
        self._phase_length = remaining
        if previous != new_state:
            logger.debug(f"Timer {previous.value} -> {new_state.value} ({remaining}s)")
            self._emit(StateChanged(self.clock(), previous, new_state))

    # Preferences

    def apply_preferences(self, preferences: TimerPreferences):
        """Swap preferences; a running phase never grows past the new length"""
        with self._lock:
            self.preferences = preferences
            if self._state == TimerState.RUNNING or self._resume_state == TimerState.RUNNING:
                self._remaining = min(self._remaining, self.running_seconds)
                self._phase_length = min(self._phase_length, self.running_seconds)
            logger.info(
                f"Timer preferences applied: work={preferences.work_interval_seconds}s "
                f"pre={preferences.pre_break_seconds}s break={preferences.break_duration_seconds}s"
            )

    # Lifecycle

    def start(self) -> bool:
        with self._lock:
            if self._state != TimerState.IDLE:
                logger.warning(f"start() ignored, timer is {self._state.value}")
                return False
            self._emit(WorkStarted(self.clock()))
            self._begin_work_interval()
            return True

    def stop(self) -> bool:
        with self._lock:
            if self._state == TimerState.IDLE:
                logger.warning("stop() ignored, timer is already idle")
                return False
            was_paused = bool(self._holds)
            self._holds.clear()
            self._resume_state = None
            if was_paused:
                self._emit(PauseEnded(self.clock()))
            self._set_state(TimerState.IDLE)
            self._emit(WorkStopped(self.clock()))
            return True

    def snapshot(self) -> Optional[TimerSnapshot]:
        """Current position, or ``None`` while idle"""
        with self._lock:
            if self._state == TimerState.IDLE:
                return None
            state = self._resume_state if self.is_paused else self._state
            return TimerSnapshot(
                state=state or TimerState.RUNNING,
                remaining_seconds=self._remaining,
                phase_length_seconds=self._phase_length,
                user_paused=PauseSource.USER in self._holds,
                postpones_used=self._postpones_used,
                saved_at=self.clock(),
            )

    def restore(self, snapshot: TimerSnapshot, max_age_seconds: float = MAX_SNAPSHOT_AGE_SECONDS) -> bool:
        """Start from a saved position instead of a fresh interval.

        Only the user's own pause is restored; the other hold sources report
        their state again on their next check.
        """
        with self._lock:
            if self._state != TimerState.IDLE:
                logger.warning(f"restore() ignored, timer is {self._state.value}")
                return False
            age = (self.clock() - snapshot.saved_at).total_seconds()
            if not 0 <= age <= max_age_seconds:
                logger.info(f"Saved timer state is {age:.0f}s old, starting fresh")
                return False

            remaining = max(1, snapshot.remaining_seconds)
            if snapshot.state == TimerState.RUNNING:
                remaining = min(remaining, self.running_seconds)
            self._emit(WorkStarted(self.clock()))
            self._postpones_used = snapshot.postpones_used
            self._set_state(snapshot.state, remaining)
            self._phase_length = max(snapshot.phase_length_seconds, remaining)
            for source, (reason, app) in list(self._standing.items()):
                self._hold(source, reason, app)
            if snapshot.user_paused:
                self._hold(PauseSource.USER, PauseReason.MANUAL, None, allow_break=True)
            logger.info(f"Timer restored ({snapshot.state.value}, {remaining}s left)")
            return True

    def _begin_work_interval(self, seconds: Optional[int] = None):
        self._postpones_used = 0 if seconds is None else self._postpones_used
        self._set_state(TimerState.RUNNING, seconds if seconds is not None else self.running_seconds)
        for source, (reason, app) in list(self._standing.items()):
            self._hold(source, reason, app)

    def _begin_break(self):
        duration = self.preferences.break_duration_seconds
        self._set_state(TimerState.ON_BREAK, duration)
        self._emit(BreakStarted(self.clock(), duration))

    def _finish_break(self, completed: bool, duration: int):
        self._emit(BreakEnded(self.clock(), completed, duration))
        if completed and not self.preferences.auto_restart:
            self._set_state(TimerState.IDLE)
        else:
            self._begin_work_interval()

    # Time

    def tick(self, seconds: int = 1):
        """Advance the clock by ``seconds`` of wall time"""
        self.advance(seconds)

    def advance(self, seconds: int):
        with self._lock:
            for _ in range(max(0, int(seconds))):
                self._tick_once()

    def _tick_once(self):
        if self._state in (TimerState.IDLE, TimerState.EXTERNALLY_PAUSED):
            return
        self._remaining -= 1
        if self._remaining > 0:
            return

        if self._state == TimerState.RUNNING:
            if self.preferences.pre_break_seconds > 0:
                self._set_state(TimerState.PRE_BREAK_WARNING, self.preferences.pre_break_seconds)
            else:
                self._begin_break()
        elif self._state == TimerState.PRE_BREAK_WARNING:
            self._begin_break()
        elif self._state == TimerState.ON_BREAK:
            self._finish_break(True, self.preferences.break_duration_seconds)

    # User actions

    def skip_break(self) -> bool:
        with self._lock:
            if self._state not in (TimerState.PRE_BREAK_WARNING, TimerState.ON_BREAK):
                logger.warning(f"skip_break() ignored, timer is {self._state.value}")
                return False
            if not self.preferences.allow_skip_break:
                logger.info(
                    f"Skipping is disabled ({self.preferences.enforcement_level.value} enforcement)"
                )
                return False
            logger.info("Break skipped")
            self._finish_break(False, 0)
            return True

    def postpone_break(self) -> bool:
        with self._lock:
            if self._state != TimerState.PRE_BREAK_WARNING:
                logger.warning(f"postpone_break() ignored, timer is {self._state.value}")
                return False
            if self.postpones_remaining <= 0:
                logger.info("No postpones left for this break")
                return False
            self._postpones_used += 1
            logger.info(
                f"Break postponed by {self.preferences.postpone_seconds}s "
                f"({self._postpones_used}/{self.preferences.max_postpones})"
            )
            self._begin_work_interval(self.preferences.postpone_seconds)
            return True

    def end_break_early(self) -> bool:
        """End the break once most of it is done; counts as completed"""
        with self._lock:
            if self._state != TimerState.ON_BREAK:
                logger.warning(f"end_break_early() ignored, timer is {self._state.value}")
                return False
            duration = self.preferences.break_duration_seconds
            elapsed = duration - self._remaining
            if elapsed < duration * EARLY_END_FRACTION:
                logger.info(f"Break can only end early in its final 20% ({elapsed}/{duration}s)")
                return False
            self._finish_break(True, elapsed)
            return True

    def take_break_now(self) -> bool:
        with self._lock:
            if self._state not in ACTIVE_STATES:
                logger.warning(f"take_break_now() ignored, timer is {self._state.value}")
                return False
            self._begin_break()
            return True

    def pause(self) -> bool:
        """Manual pause; allowed during work and during a break"""
        with self._lock:
            if self._state == TimerState.ON_BREAK or self._state in ACTIVE_STATES or self.is_paused:
                return self._hold(PauseSource.USER, PauseReason.MANUAL, None, allow_break=True)
            logger.warning(f"pause() ignored, timer is {self._state.value}")
            return False

    def resume(self) -> bool:
        with self._lock:
            return self._release(PauseSource.USER)

    # Holds

    def _current_hold(self) -> Hold:
        return next(reversed(self._holds.values()))

    def _hold(self, source: PauseSource, reason: PauseReason, app: Optional[str],
              allow_break: bool = False) -> bool:
        if source in self._holds:
            logger.info(f"Pause from {source.value} already in place, ignoring")
            return False
        if not self.is_paused:
            if self._state not in ACTIVE_STATES and not (allow_break and self._state == TimerState.ON_BREAK):
                logger.debug(f"Not pausing for {source.value} while {self._state.value}")
                return False
            self._resume_state = self._state
            frozen = self._remaining
            length = self._phase_length
            self._set_state(TimerState.EXTERNALLY_PAUSED, frozen)
            self._phase_length = length
        self._holds[source] = (reason, app)
        logger.info(f"Timer paused by {source.value} ({reason.value})")
        self._emit(PauseStarted(self.clock(), reason, app))
        return True

    def _release(self, source: PauseSource) -> bool:
        if source not in self._holds:
            logger.info(f"No pause from {source.value} to release, ignoring")
            return False
        del self._holds[source]
        if self._holds:
            # Another source still holds the timer; reopen under its reason
            reason, app = self._current_hold()
            self._emit(PauseStarted(self.clock(), reason, app))
            return True

        resume_state = self._resume_state or TimerState.RUNNING
        remaining = self._remaining
        length = self._phase_length
        self._resume_state = None
        self._emit(PauseEnded(self.clock()))
        self._set_state(resume_state, remaining)
        self._phase_length = length
        logger.info(f"Timer resumed ({resume_state.value}, {remaining}s left)")
        if remaining <= 0:
            self._remaining = 1
            self._tick_once()
        return True

    def on_pause_decision(self, decision) -> None:
        """React to changes in the smart pause decision, not to every poll"""
        with self._lock:
            if decision.should_pause == self._last_should_pause:
                return
            signal = decision.dominant_signal
            if decision.should_pause and signal is None:
                logger.warning("Pause decision without an active signal, ignoring")
                return
            self._last_should_pause = decision.should_pause
            if decision.should_pause:
                reason = PauseReason.from_signal(signal)
                self._standing[PauseSource.SMART_PAUSE] = (reason, decision.frontmost_app)
                self._hold(PauseSource.SMART_PAUSE, reason, decision.frontmost_app)
            else:
                self._standing.pop(PauseSource.SMART_PAUSE, None)
                if PauseSource.SMART_PAUSE in self._holds:
                    self._release(PauseSource.SMART_PAUSE)

    def on_quiet_hours(self, active: bool) -> None:
        """Feed the schedule state; only changes have an effect"""
        with self._lock:
            if active == (PauseSource.QUIET_HOURS in self._standing):
                return
            if active:
                logger.info("Quiet hours started")
                self._standing[PauseSource.QUIET_HOURS] = (PauseReason.QUIET_HOURS, None)
                self._hold(PauseSource.QUIET_HOURS, PauseReason.QUIET_HOURS, None)
            else:
                self._standing.pop(PauseSource.QUIET_HOURS, None)
                if PauseSource.QUIET_HOURS in self._holds:
                    self._release(PauseSource.QUIET_HOURS)

    def on_idle(self, idle_seconds: float) -> None:
        """Feed the current user-idle time, in seconds"""
        with self._lock:
            if idle_seconds < USER_RETURN_SECONDS:
                self._idle_reset_applied = False
                if PauseSource.IDLE in self._holds:
                    logger.info("User returned from idle")
                    self._release(PauseSource.IDLE)
                return

            if idle_seconds >= self.preferences.idle_pause_seconds and PauseSource.IDLE not in self._holds:
                self._hold(PauseSource.IDLE, PauseReason.IDLE, None)

            if (
                idle_seconds >= self.preferences.idle_reset_seconds
                and PauseSource.IDLE in self._holds
                and PauseSource.USER not in self._holds
                and not self._idle_reset_applied
            ):
                self._reset_work_interval("idle")
                self._idle_reset_applied = True

    def on_system_sleep(self) -> None:
        with self._lock:
            self._hold(PauseSource.SYSTEM_SLEEP, PauseReason.SYSTEM_SLEEP, None, allow_break=True)

    def on_system_wake(self, slept_seconds: float = 0) -> None:
        with self._lock:
            if slept_seconds >= self.preferences.idle_reset_seconds and PauseSource.SYSTEM_SLEEP in self._holds:
                self._reset_work_interval("sleep")
            self._release(PauseSource.SYSTEM_SLEEP)

    def _reset_work_interval(self, why: str):
        """A long absence counts as a rest; resume into a fresh interval"""
        logger.info(f"Resetting work interval after {why}")
        self._resume_state = TimerState.RUNNING
        self._remaining = self.running_seconds
        self._phase_length = self.running_seconds
        self._postpones_used = 0
