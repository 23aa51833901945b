from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field

from smart_break.models.pause import PauseEvent


class WorkSession(BaseModel):
    """One continuous span from timer start to timer stop, pauses included"""
    id: UUID = Field(default_factory=uuid4)
    start_time: datetime
    end_time: Optional[datetime] = None
    breaks_taken: int = Field(default=0, ge=0)
    breaks_skipped: int = Field(default=0, ge=0)
    nudges_followed: int = Field(default=0, ge=0)
    nudges_dismissed: int = Field(default=0, ge=0)
    pause_events: List[PauseEvent] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @property
    def active_pause(self) -> Optional[PauseEvent]:
        if self.pause_events and self.pause_events[-1].is_active:
            return self.pause_events[-1]
        return None

    def total_duration_seconds(self, now: Optional[datetime] = None) -> float:
        end = self.end_time or now or datetime.now()
        return max(0.0, (end - self.start_time).total_seconds())

    def paused_seconds(self, now: Optional[datetime] = None) -> float:
        """Time spent in pauses; an open pause counts up to ``now``"""
        total = 0.0
        for event in self.pause_events:
            if event.end_time is None:
                if now is not None:
                    total += max(0.0, (now - event.start_time).total_seconds())
            else:
                total += event.duration_seconds
        return total

    def active_duration_seconds(self, now: Optional[datetime] = None) -> float:
        return max(0.0, self.total_duration_seconds(now) - self.paused_seconds(now))

    @property
    def completion_rate(self) -> float:
        attempts = self.breaks_taken + self.breaks_skipped
        if attempts == 0:
            return 1.0
        return self.breaks_taken / attempts
