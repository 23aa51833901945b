from datetime import date
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

SHORT_BREAK_MAX_SECONDS = 180


class StatsPeriod(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class NudgeKind(str, Enum):
    GENERAL = "general"
    BLINK = "blink"
    POSTURE = "posture"


def score_for(completed: int, skipped: int) -> float:
    """Daily adherence score in [0, 100].

    Optimistic 100 until the first attempt, then the share of attempted
    breaks that were completed.
    """
    completed = max(0, completed)
    attempts = completed + max(0, skipped)
    if attempts == 0:
        return 100.0
    return min(100.0, max(0.0, 100.0 * completed / attempts))


class DayStats(BaseModel):
    """Rollup of a single calendar day"""
    day: date
    breaks_completed: int = Field(default=0, ge=0)
    breaks_skipped: int = Field(default=0, ge=0)
    short_breaks_completed: int = Field(default=0, ge=0)
    long_breaks_completed: int = Field(default=0, ge=0)
    total_break_minutes: int = Field(default=0, ge=0)
    nudges_followed: int = Field(default=0, ge=0)
    nudges_dismissed: int = Field(default=0, ge=0)
    blink_nudges_shown: int = Field(default=0, ge=0)
    blink_nudges_followed: int = Field(default=0, ge=0)
    posture_nudges_shown: int = Field(default=0, ge=0)
    posture_nudges_followed: int = Field(default=0, ge=0)
    screen_minutes: int = Field(default=0, ge=0)
    meeting_minutes: int = Field(default=0, ge=0)
    idle_minutes: int = Field(default=0, ge=0)
    longest_stretch_minutes: int = Field(default=0, ge=0)
    hourly_breaks: List[int] = Field(default_factory=lambda: [0] * 24)
    pause_minutes_by_reason: Dict[str, int] = Field(default_factory=dict)
    pause_counts_by_reason: Dict[str, int] = Field(default_factory=dict)

    @field_validator("hourly_breaks")
    @classmethod
    def _pad_hours(cls, value: List[int]) -> List[int]:
        value = list(value)[:24]
        return value + [0] * (24 - len(value))

    @property
    def attempts(self) -> int:
        return self.breaks_completed + self.breaks_skipped

    @property
    def has_data(self) -> bool:
        return self.attempts > 0

    @property
    def daily_score(self) -> float:
        return score_for(self.breaks_completed, self.breaks_skipped)

    @property
    def skip_rate(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.breaks_skipped / self.attempts

    @property
    def blink_compliance(self) -> float:
        if self.blink_nudges_shown == 0:
            return 0.0
        return self.blink_nudges_followed / self.blink_nudges_shown

    @property
    def posture_compliance(self) -> float:
        if self.posture_nudges_shown == 0:
            return 0.0
        return self.posture_nudges_followed / self.posture_nudges_shown


class AggregatedStats(BaseModel):
    """Rollup of a period of days"""
    period: StatsPeriod
    start: date
    end: date
    days_tracked: int = 0
    breaks_completed: int = 0
    breaks_skipped: int = 0
    total_break_minutes: int = 0
    screen_minutes: int = 0
    meeting_minutes: int = 0
    idle_minutes: int = 0
    average_score: float = 100.0
    hourly_breaks: List[int] = Field(default_factory=lambda: [0] * 24)
    streak: int = 0
    trend: TrendDirection = TrendDirection.STABLE
    best_day: Optional[date] = None

    @property
    def attempts(self) -> int:
        return self.breaks_completed + self.breaks_skipped

    @property
    def completion_rate(self) -> float:
        """Completed share of attempts, in percent"""
        if self.attempts == 0:
            return 100.0
        return 100.0 * self.breaks_completed / self.attempts

    @property
    def recovery_ratio(self) -> float:
        """Break minutes per attempted break"""
        return self.total_break_minutes / max(1, self.attempts)
