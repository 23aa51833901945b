"""Wellness insights as a tagged union.

Every variant carries the data its message needs and renders its own
title and description. Lists of insights are rebuilt from scratch on every
generation, so the models are frozen.
"""
from typing import Annotated, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Insight(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_positive: bool = True

    @property
    def id(self) -> str:
        return self.kind

    @property
    def title(self) -> str:
        raise NotImplementedError

    @property
    def description(self) -> str:
        raise NotImplementedError


class StreakAchievement(_Insight):
    kind: Literal["streak_achievement"] = "streak_achievement"
    days: int

    @property
    def id(self) -> str:
        return f"streak_{self.days}"

    @property
    def title(self) -> str:
        return f"{self.days} Day Streak!"

    @property
    def description(self) -> str:
        return f"You've maintained good eye health for {self.days} consecutive days."


class ImprovingTrend(_Insight):
    kind: Literal["improving_trend"] = "improving_trend"
    metric: str
    percentage: float

    @property
    def id(self) -> str:
        return f"improving_{self.metric}"

    @property
    def title(self) -> str:
        return f"{self.metric} up {int(self.percentage)}%"

    @property
    def description(self) -> str:
        return (f"Your {self.metric.lower()} has improved by "
                f"{int(self.percentage)}% compared to last week.")


class DecliningTrend(_Insight):
    kind: Literal["declining_trend"] = "declining_trend"
    is_positive: bool = False
    metric: str
    percentage: float

    @property
    def id(self) -> str:
        return f"declining_{self.metric}"

    @property
    def title(self) -> str:
        return f"{self.metric} down {int(self.percentage)}%"

    @property
    def description(self) -> str:
        return (f"Your {self.metric.lower()} has decreased by "
                f"{int(self.percentage)}% compared to last week.")


class PeakProductivityTime(_Insight):
    kind: Literal["peak_productivity_time"] = "peak_productivity_time"
    hour: int = Field(ge=0, le=23)

    @property
    def id(self) -> str:
        return f"peak_{self.hour}"

    @property
    def title(self) -> str:
        suffix = "AM" if self.hour < 12 else "PM"
        display = self.hour % 12 or 12
        return f"Peak focus: {display} {suffix}"

    @property
    def description(self) -> str:
        return f"You take the most breaks around {self.hour}:00. This is when you're most focused!"


class LongestStretchWarning(_Insight):
    kind: Literal["longest_stretch_warning"] = "longest_stretch_warning"
    is_positive: bool = False
    minutes: int

    @property
    def title(self) -> str:
        return f"{self.minutes} min without break"

    @property
    def description(self) -> str:
        return (f"You've been focused for {self.minutes} minutes without a break. "
                "Consider shorter intervals.")


class MeetingHeavyDay(_Insight):
    kind: Literal["meeting_heavy_day"] = "meeting_heavy_day"
    is_positive: bool = False
    minutes: int

    @property
    def title(self) -> str:
        return f"{self.minutes} min in meetings today"

    @property
    def description(self) -> str:
        return "Heavy meeting day detected. Breaks are automatically paused during meetings."


class ExcellentBlinkCompliance(_Insight):
    kind: Literal["excellent_blink_compliance"] = "excellent_blink_compliance"

    @property
    def title(self) -> str:
        return "Excellent blink habits!"

    @property
    def description(self) -> str:
        return "You're responding to 80%+ of blink reminders. Great for eye moisture!"


class PostureNeedsAttention(_Insight):
    kind: Literal["posture_needs_attention"] = "posture_needs_attention"
    is_positive: bool = False

    @property
    def title(self) -> str:
        return "Posture needs attention"

    @property
    def description(self) -> str:
        return "Try responding to more posture reminders to reduce back strain."


class RecommendedBreakInterval(_Insight):
    kind: Literal["recommended_break_interval"] = "recommended_break_interval"
    is_positive: bool = False
    minutes: int

    @property
    def id(self) -> str:
        return f"interval_{self.minutes}"

    @property
    def title(self) -> str:
        return f"Try {self.minutes} min intervals"

    @property
    def description(self) -> str:
        return f"Based on your patterns, {self.minutes}-minute work intervals may suit you better."


class GoalAchieved(_Insight):
    kind: Literal["goal_achieved"] = "goal_achieved"
    goal_type: str = "Daily breaks"

    @property
    def title(self) -> str:
        return f"{self.goal_type} goal achieved!"

    @property
    def description(self) -> str:
        return f"Congratulations on reaching your {self.goal_type.lower()} goal today!"


class ConsistentSchedule(_Insight):
    kind: Literal["consistent_schedule"] = "consistent_schedule"

    @property
    def title(self) -> str:
        return "Consistent break schedule"

    @property
    def description(self) -> str:
        return "Your break times are consistent, which is great for building healthy habits."


class ImprovedRecovery(_Insight):
    kind: Literal["improved_recovery"] = "improved_recovery"

    @property
    def title(self) -> str:
        return "Better recovery this week"

    @property
    def description(self) -> str:
        return "You're taking more complete breaks this week."


WellnessInsight = Annotated[
    Union[
        StreakAchievement,
        ImprovingTrend,
        DecliningTrend,
        PeakProductivityTime,
        LongestStretchWarning,
        MeetingHeavyDay,
        ExcellentBlinkCompliance,
        PostureNeedsAttention,
        RecommendedBreakInterval,
        GoalAchieved,
        ConsistentSchedule,
        ImprovedRecovery,
    ],
    Field(discriminator="kind"),
]

insight_adapter = TypeAdapter(WellnessInsight)


def insight_to_dict(insight) -> dict:
    """Serialized form with the rendered text alongside the raw data"""
    data = insight.model_dump()
    data["id"] = insight.id
    data["title"] = insight.title
    data["description"] = insight.description
    return data
