from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from smart_break.models.pause import PauseReason


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PRE_BREAK_WARNING = "pre_break_warning"
    ON_BREAK = "on_break"
    EXTERNALLY_PAUSED = "externally_paused"


class PauseSource(str, Enum):
    """Who put the timer on hold. Each source can only release its own hold."""
    USER = "user"
    SMART_PAUSE = "smart_pause"
    IDLE = "idle"
    QUIET_HOURS = "quiet_hours"
    SYSTEM_SLEEP = "system_sleep"


@dataclass(frozen=True)
class TimerEvent:
    timestamp: datetime


@dataclass(frozen=True)
class StateChanged(TimerEvent):
    previous: TimerState
    current: TimerState


@dataclass(frozen=True)
class PauseStarted(TimerEvent):
    reason: PauseReason
    related_app: Optional[str] = None


@dataclass(frozen=True)
class PauseEnded(TimerEvent):
    pass


@dataclass(frozen=True)
class BreakStarted(TimerEvent):
    duration_seconds: int


@dataclass(frozen=True)
class BreakEnded(TimerEvent):
    completed: bool
    duration_seconds: int = 0


@dataclass(frozen=True)
class WorkStarted(TimerEvent):
    pass


@dataclass(frozen=True)
class WorkStopped(TimerEvent):
    pass


class TimerSnapshot(BaseModel):
    """Timer position saved so a restarted service can pick up where it left off"""
    state: TimerState
    remaining_seconds: int = Field(ge=0)
    phase_length_seconds: int = Field(default=0, ge=0)
    user_paused: bool = False
    postpones_used: int = Field(default=0, ge=0)
    saved_at: datetime

    @field_validator("state")
    @classmethod
    def _underlying_state(cls, state: TimerState) -> TimerState:
        if state in (TimerState.IDLE, TimerState.EXTERNALLY_PAUSED):
            raise ValueError(f"Cannot restore into {state.value}")
        return state
