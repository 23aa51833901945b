import pytest
from datetime import date, datetime, timedelta
from pydantic import ValidationError

from smart_break.models.pause import PauseEvent, PauseReason, PauseSignal
from smart_break.models.session import WorkSession
from smart_break.models.stats import AggregatedStats, DayStats, StatsPeriod, score_for
from smart_break.models.timer_state import StateChanged, TimerState

START = datetime(2024, 3, 11, 9, 0)


def test_score_bounds():
    """Test the daily score stays within 0-100"""
    assert score_for(0, 0) == 100.0
    assert score_for(0, 4) == 0.0
    assert score_for(3, 1) == 75.0
    assert score_for(5, -2) == 100.0


def test_pause_event_completes_once():
    """Test a pause end time is set exactly once"""
    event = PauseEvent(start_time=START, reason=PauseReason.MEETING)
    assert event.is_active
    assert event.duration_seconds == 0.0

    assert event.complete(START + timedelta(minutes=5)) is True
    assert event.complete(START + timedelta(minutes=9)) is False
    assert event.duration_seconds == 300


def test_session_durations_exclude_pauses():
    """Test active time is wall time minus paused time"""
    session = WorkSession(start_time=START)
    done = PauseEvent(start_time=START + timedelta(minutes=10), reason=PauseReason.IDLE)
    done.complete(START + timedelta(minutes=20))
    session.pause_events.append(done)
    session.pause_events.append(PauseEvent(start_time=START + timedelta(minutes=50), reason=PauseReason.MANUAL))

    now = START + timedelta(hours=1)
    assert session.total_duration_seconds(now) == 3600
    assert session.paused_seconds(now) == 1200
    assert session.active_duration_seconds(now) == 2400
    assert session.active_pause.reason == PauseReason.MANUAL


def test_session_completion_rate():
    session = WorkSession(start_time=START)
    assert session.completion_rate == 1.0
    session.breaks_taken = 3
    session.breaks_skipped = 1
    assert session.completion_rate == 0.75


def test_day_stats_pads_hourly_slots():
    stats = DayStats(day=date(2024, 3, 11), hourly_breaks=[1, 2])
    assert len(stats.hourly_breaks) == 24
    assert stats.hourly_breaks[:3] == [1, 2, 0]


def test_day_stats_rejects_negative_counts():
    with pytest.raises(ValidationError):
        DayStats(day=date(2024, 3, 11), breaks_completed=-1)


def test_day_stats_rates():
    stats = DayStats(
        day=date(2024, 3, 11),
        breaks_completed=3,
        breaks_skipped=1,
        blink_nudges_shown=4,
        blink_nudges_followed=3,
    )
    assert stats.has_data
    assert stats.skip_rate == 0.25
    assert stats.blink_compliance == 0.75
    assert stats.posture_compliance == 0.0


def test_aggregated_rates():
    stats = AggregatedStats(
        period=StatsPeriod.WEEK,
        start=date(2024, 3, 5),
        end=date(2024, 3, 11),
        breaks_completed=3,
        breaks_skipped=1,
        total_break_minutes=8,
    )
    assert stats.completion_rate == 75.0
    assert stats.recovery_ratio == 2.0


def test_reason_for_every_signal():
    for signal in PauseSignal:
        assert isinstance(PauseReason.from_signal(signal), PauseReason)


def test_timer_events_are_immutable():
    event = StateChanged(START, TimerState.IDLE, TimerState.RUNNING)
    with pytest.raises(AttributeError):
        event.current = TimerState.ON_BREAK
