from datetime import datetime
from enum import Enum
from typing import Set
from pydantic import BaseModel, Field, field_validator, model_validator
import logging

from smart_break.models.pause import PauseSignal

logger = logging.getLogger(__name__)

# Signals gated by each detection flag
CATEGORY_SIGNALS = {
    "detect_fullscreen": (
        PauseSignal.FULLSCREEN_APP,
        PauseSignal.FULLSCREEN_VIDEO,
        PauseSignal.PRESENTATION_MODE,
    ),
    "detect_screen_recording": (
        PauseSignal.SCREEN_RECORDING,
        PauseSignal.SCREEN_SHARING,
    ),
    "detect_focus_mode": (PauseSignal.FOCUS_MODE_ACTIVE,),
    "detect_meeting_apps": (
        PauseSignal.MEETING_APP_ACTIVE,
        PauseSignal.CALENDAR_MEETING,
    ),
}


class PauseDecisionConfig(BaseModel):
    """Smart pause detection configuration"""
    pause_threshold: int = Field(
        default=60,
        ge=1,
        le=1000,
        description="Minimum summed signal weight that holds the timer"
    )
    polling_interval: float = Field(
        default=2.0,
        ge=0.5,
        le=60.0,
        description="Seconds between detection passes"
    )
    detect_fullscreen: bool = False
    detect_screen_recording: bool = True
    detect_focus_mode: bool = True
    detect_meeting_apps: bool = True
    disabled_signals: Set[PauseSignal] = Field(
        default_factory=set,
        description="Signals the user has switched off"
    )
    whitelisted_apps: Set[str] = Field(
        default_factory=set,
        description="Application identifiers that never contribute a signal"
    )

    @classmethod
    def conservative(cls) -> "PauseDecisionConfig":
        """Only pause for strong signals"""
        return cls(
            pause_threshold=80,
            detect_fullscreen=False,
            detect_focus_mode=False,
        )

    def is_signal_enabled(self, signal: PauseSignal) -> bool:
        if signal in self.disabled_signals:
            return False
        for flag, signals in CATEGORY_SIGNALS.items():
            if signal in signals:
                return getattr(self, flag)
        return True

    def enabled_signals(self) -> Set[PauseSignal]:
        return {signal for signal in PauseSignal if self.is_signal_enabled(signal)}

    def max_reachable_weight(self) -> int:
        return sum(signal.weight for signal in self.enabled_signals())

    def is_threshold_reachable(self) -> bool:
        return self.pause_threshold <= self.max_reachable_weight()


class EnforcementLevel(str, Enum):
    GENTLE = "gentle"
    BALANCED = "balanced"
    STRICT = "strict"
    ZEN_MASTER = "zen_master"

    @property
    def allows_skip(self) -> bool:
        return self in (EnforcementLevel.GENTLE, EnforcementLevel.BALANCED)

    @property
    def max_postpones(self) -> int:
        return {
            EnforcementLevel.GENTLE: 99,
            EnforcementLevel.BALANCED: 2,
            EnforcementLevel.STRICT: 1,
            EnforcementLevel.ZEN_MASTER: 0,
        }[self]

    @property
    def pre_break_warning_seconds(self) -> int:
        return {
            EnforcementLevel.GENTLE: 30,
            EnforcementLevel.BALANCED: 15,
            EnforcementLevel.STRICT: 5,
            EnforcementLevel.ZEN_MASTER: 0,
        }[self]


class TimerPreferences(BaseModel):
    """Preferences the break timer reads"""
    work_interval_seconds: int = Field(
        default=1200,
        ge=10,
        le=4 * 3600,
        description="Length of a full work interval, pre-break warning included"
    )
    pre_break_seconds: int = Field(
        default=10,
        ge=0,
        le=600,
        description="Warning shown before the break; 0 disables the warning"
    )
    break_duration_seconds: int = Field(default=20, ge=5, le=3600)
    postpone_seconds: int = Field(default=300, ge=30, le=3600)
    idle_pause_minutes: int = Field(default=1, ge=1, le=60)
    idle_reset_minutes: int = Field(default=5, ge=1, le=240)
    allow_skip_break: bool = True
    allow_postpone_break: bool = True
    max_postpones: int = Field(default=2, ge=0, le=99)
    enforcement_level: EnforcementLevel = EnforcementLevel.BALANCED
    meeting_detection_enabled: bool = True
    pause_for_fullscreen_apps: bool = False
    daily_break_goal: int = Field(default=6, ge=1, le=100)
    auto_restart: bool = False
    quiet_hours_enabled: bool = Field(
        default=False,
        description="Only remind between working_hours_start and working_hours_end"
    )
    working_hours_start: int = Field(default=9, ge=0, le=23)
    working_hours_end: int = Field(default=17, ge=0, le=23)
    active_days: Set[int] = Field(
        default_factory=lambda: set(range(7)),
        description="Weekdays with reminders, Monday is 0"
    )

    @field_validator("active_days")
    @classmethod
    def _check_days(cls, days: Set[int]) -> Set[int]:
        invalid = sorted(d for d in days if not 0 <= d <= 6)
        if invalid:
            raise ValueError(f"Weekdays must be between 0 and 6, got {invalid}")
        return days

    @model_validator(mode="after")
    def _clamp(self) -> "TimerPreferences":
        if self.pre_break_seconds >= self.work_interval_seconds:
            logger.warning(
                f"Pre-break warning ({self.pre_break_seconds}s) does not fit in the work "
                f"interval ({self.work_interval_seconds}s); clamping"
            )
            self.pre_break_seconds = self.work_interval_seconds - 1
        return self

    @property
    def idle_pause_seconds(self) -> int:
        return self.idle_pause_minutes * 60

    @property
    def idle_reset_seconds(self) -> int:
        """Reset never happens before the idle pause does"""
        return max(self.idle_reset_minutes, self.idle_pause_minutes) * 60

    def is_quiet_time(self, now: datetime) -> bool:
        """True on rest days and, when enabled, outside working hours.

        Working hours may wrap past midnight, e.g. 22 to 6.
        """
        if now.weekday() not in self.active_days:
            return True
        if not self.quiet_hours_enabled:
            return False
        start, end, hour = self.working_hours_start, self.working_hours_end, now.hour
        if start > end:
            return not (hour >= start or hour < end)
        return not (start <= hour < end)

    def with_enforcement(self, level: EnforcementLevel, adjust_warning: bool = False) -> "TimerPreferences":
        """Copy with the skip and postpone policy derived from ``level``"""
        update = {
            "enforcement_level": level,
            "allow_skip_break": level.allows_skip,
            "allow_postpone_break": level.max_postpones > 0,
            "max_postpones": level.max_postpones,
        }
        if adjust_warning:
            update["pre_break_seconds"] = level.pre_break_warning_seconds
        return TimerPreferences.model_validate({**self.model_dump(), **update})

    def detection_config(self, base: PauseDecisionConfig) -> PauseDecisionConfig:
        """Fold the timer-facing detection toggles into a detection config"""
        return base.model_copy(update={
            "detect_meeting_apps": self.meeting_detection_enabled,
            "detect_fullscreen": self.pause_for_fullscreen_apps,
        })


class LedgerConfig(BaseModel):
    daily_break_goal: int = Field(default=6, ge=1, le=100)
    goal_score: float = Field(
        default=80.0,
        ge=0.0,
        le=100.0,
        description="Daily score a day needs to count towards the streak"
    )
