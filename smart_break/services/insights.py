"""Rule-based wellness insights.

``generate_insights`` is a pure function of the ledger's aggregates. Every
rule is checked independently and all matches are returned in rule order;
ranking is left to the caller.
"""
import logging
from statistics import mean, pstdev
from typing import List

from smart_break.models.insight import (
    ConsistentSchedule,
    DecliningTrend,
    ExcellentBlinkCompliance,
    GoalAchieved,
    ImprovedRecovery,
    ImprovingTrend,
    LongestStretchWarning,
    MeetingHeavyDay,
    PeakProductivityTime,
    PostureNeedsAttention,
    RecommendedBreakInterval,
    StreakAchievement,
)
from smart_break.models.stats import StatsPeriod

logger = logging.getLogger(__name__)

STREAK_MIN_DAYS = 3
TREND_MIN_CHANGE = 10.0  # percentage points of completion rate
LONG_STRETCH_MINUTES = 45
HEAVY_MEETING_MINUTES = 120
BLINK_MIN_SHOWN = 5
EXCELLENT_COMPLIANCE = 0.8
POSTURE_MIN_SHOWN = 3
POOR_COMPLIANCE = 0.5
CONSISTENCY_WINDOW_DAYS = 7
CONSISTENCY_MIN_DAYS = 5
CONSISTENCY_MAX_STDEV = 2.0
CONSISTENCY_MIN_MEAN = 3.0
RECOVERY_IMPROVEMENT = 1.2
INTERVAL_MIN_ATTEMPTS = 4
HIGH_SKIP_RATE = 0.4
LOW_SKIP_RATE = 0.1
SHORT_STRETCH_MINUTES = 30
SHORTER_INTERVAL_MINUTES = 20
LONGER_INTERVAL_MINUTES = 30


def generate_insights(ledger) -> List:
    today = ledger.today_stats()
    week = ledger.aggregated_stats(StatsPeriod.WEEK)
    last_week = ledger.previous_period_stats(StatsPeriod.WEEK)
    insights = []

    streak = ledger.current_streak()
    if streak >= STREAK_MIN_DAYS:
        insights.append(StreakAchievement(days=streak))

    if week.days_tracked > 0 and last_week.days_tracked > 0:
        change = week.completion_rate - last_week.completion_rate
        if change >= TREND_MIN_CHANGE:
            insights.append(ImprovingTrend(metric="Break completion", percentage=change))
        elif change <= -TREND_MIN_CHANGE:
            insights.append(DecliningTrend(metric="Break completion", percentage=abs(change)))

    peak_count = max(week.hourly_breaks)
    if peak_count > 0:
        insights.append(PeakProductivityTime(hour=week.hourly_breaks.index(peak_count)))

    if today.longest_stretch_minutes >= LONG_STRETCH_MINUTES:
        insights.append(LongestStretchWarning(minutes=today.longest_stretch_minutes))

    if today.meeting_minutes >= HEAVY_MEETING_MINUTES:
        insights.append(MeetingHeavyDay(minutes=today.meeting_minutes))

    if today.blink_nudges_shown >= BLINK_MIN_SHOWN and today.blink_compliance >= EXCELLENT_COMPLIANCE:
        insights.append(ExcellentBlinkCompliance())

    if today.posture_nudges_shown >= POSTURE_MIN_SHOWN and today.posture_compliance < POOR_COMPLIANCE:
        insights.append(PostureNeedsAttention())

    if today.breaks_completed >= ledger.daily_break_goal:
        insights.append(GoalAchieved())

    recent = ledger.daily_stats(CONSISTENCY_WINDOW_DAYS)
    if len(recent) >= CONSISTENCY_MIN_DAYS:
        counts = [day.breaks_completed for day in recent]
        if pstdev(counts) <= CONSISTENCY_MAX_STDEV and mean(counts) >= CONSISTENCY_MIN_MEAN:
            insights.append(ConsistentSchedule())

    if week.days_tracked > 0 and last_week.days_tracked > 0:
        if week.recovery_ratio > last_week.recovery_ratio * RECOVERY_IMPROVEMENT:
            insights.append(ImprovedRecovery())

    if today.attempts >= INTERVAL_MIN_ATTEMPTS:
        if today.skip_rate >= HIGH_SKIP_RATE:
            insights.append(RecommendedBreakInterval(minutes=SHORTER_INTERVAL_MINUTES))
        elif today.skip_rate <= LOW_SKIP_RATE and today.longest_stretch_minutes < SHORT_STRETCH_MINUTES:
            insights.append(RecommendedBreakInterval(minutes=LONGER_INTERVAL_MINUTES))

    logger.debug(f"Generated {len(insights)} wellness insights")
    return insights


def refresh_insights(ledger) -> List:
    """Regenerate and hand the new list to the ledger, replacing the old one"""
    insights = generate_insights(ledger)
    ledger.replace_insights(insights)
    return insights
