import logging
import pytest
from datetime import date, datetime, time, timedelta
from unittest.mock import Mock

from smart_break.config.config import LedgerConfig
from smart_break.models.pause import PauseReason
from smart_break.models.stats import NudgeKind, StatsPeriod, TrendDirection
from smart_break.services.errors import PersistenceError
from smart_break.services.ledger import DAY_STATS_KEY, AdherenceLedger, seconds_until_midnight
from smart_break.services.store import KeyValueStore


def play_day(ledger, clock, day, completed, skipped=0, hour=9):
    clock.now = datetime.combine(day, time(hour))
    for _ in range(completed):
        ledger.record_break(True, 60)
    for _ in range(skipped):
        ledger.record_break(False)


def test_score_is_optimistic_until_first_attempt(ledger):
    assert ledger.daily_score() == 100.0

    for _ in range(3):
        ledger.record_break(True, 20)
    ledger.record_break(False)

    assert ledger.daily_score() == 75.0


def test_break_length_classification(ledger):
    ledger.record_break(True, 20)
    ledger.record_break(True, 600)

    today = ledger.today_stats()
    assert today.short_breaks_completed == 1
    assert today.long_breaks_completed == 1
    assert today.total_break_minutes == 11
    assert today.hourly_breaks[10] == 2


def test_nudges_are_counted_per_kind(ledger):
    ledger.start_session()
    ledger.record_nudge(True, NudgeKind.BLINK)
    ledger.record_nudge(False, NudgeKind.POSTURE)
    ledger.record_nudge(True)

    today = ledger.today_stats()
    assert (today.nudges_followed, today.nudges_dismissed) == (2, 1)
    assert (today.blink_nudges_shown, today.blink_nudges_followed) == (1, 1)
    assert (today.posture_nudges_shown, today.posture_nudges_followed) == (1, 0)
    assert ledger.active_session.nudges_followed == 2


def test_only_one_session_at_a_time(ledger):
    assert ledger.end_session() is None
    assert ledger.start_session() is not None
    assert ledger.start_session() is None
    assert ledger.end_session() is not None
    assert len(ledger.sessions) == 1


def test_pause_needs_a_session(ledger):
    assert ledger.start_pause(PauseReason.MANUAL) is None
    assert ledger.end_pause() is None


def test_meeting_pause_accounting(ledger, clock):
    ledger.start_session()
    ledger.start_pause(PauseReason.MEETING, "us.zoom.xos")
    clock.advance(minutes=30)
    event = ledger.end_pause()

    assert event.duration_seconds == 1800
    assert ledger.end_pause() is None
    today = ledger.today_stats()
    assert today.meeting_minutes == 30
    assert ledger.pause_breakdown() == {"meeting": {"count": 1, "minutes": 30}}


def test_new_pause_completes_the_previous_one(ledger, clock):
    ledger.start_session()
    first = ledger.start_pause(PauseReason.IDLE)
    clock.advance(minutes=5)
    ledger.start_pause(PauseReason.MANUAL)

    session = ledger.sessions[-1]
    assert session.pause_events[0].id == first.id
    assert session.pause_events[0].end_time == clock.now
    assert session.active_pause.reason == PauseReason.MANUAL
    assert ledger.today_stats().idle_minutes == 5


def test_stretch_and_screen_time(ledger, clock):
    ledger.start_session()
    clock.advance(minutes=50)
    assert ledger.today_stats().longest_stretch_minutes == 50

    ledger.start_pause(PauseReason.MANUAL)
    clock.advance(minutes=15)
    ledger.end_pause()
    clock.advance(minutes=10)
    ledger.end_session()

    today = ledger.today_stats()
    assert today.longest_stretch_minutes == 50
    assert today.screen_minutes == 60


def test_day_rollover_on_next_mutation(ledger, clock):
    ledger.start_session()
    ledger.record_break(True, 30)

    clock.advance(days=1)
    assert ledger.today_stats().breaks_completed == 0

    ledger.record_break(False)

    sessions = ledger.sessions
    assert len(sessions) == 1
    assert sessions[0].start_time == clock.now
    assert sessions[0].breaks_skipped == 1
    history = ledger.daily_stats(7)
    assert [d.day for d in history] == [date(2024, 3, 11), date(2024, 3, 12)]
    assert history[0].breaks_completed == 1


def test_running_timer_keeps_recording_after_rollover(wired_timer, ledger, clock):
    wired_timer.start()
    clock.advance(days=1)

    ledger.reset_daily_data()
    wired_timer.pause()
    clock.advance(minutes=10)
    wired_timer.resume()

    assert ledger.active_session is not None
    assert ledger.active_session.start_time == datetime(2024, 3, 12, 10)
    assert ledger.pause_breakdown() == {"manual": {"count": 1, "minutes": 10}}


def test_rollover_carries_an_open_pause(ledger, clock):
    ledger.start_session()
    ledger.start_pause(PauseReason.MEETING, "us.zoom.xos")
    clock.now = datetime(2024, 3, 12, 0, 30)

    ledger.reset_daily_data()

    assert ledger.all_day_stats()[0].meeting_minutes == 870
    pause = ledger.active_pause
    assert pause.reason == PauseReason.MEETING
    assert pause.related_app == "us.zoom.xos"
    clock.advance(minutes=30)
    ledger.end_pause()
    assert ledger.today_stats().meeting_minutes == 30


def test_reload_same_day_restores_and_closes_sessions(store, clock):
    first = AdherenceLedger(store, clock=clock, persist_async=False)
    first.start_session()
    first.record_break(True, 30)
    first.record_break(True, 30)
    clock.advance(minutes=20)

    second = AdherenceLedger(store, clock=clock, persist_async=False)

    assert second.today_stats().breaks_completed == 2
    assert len(second.sessions) == 1
    assert second.active_session is None


def test_reload_next_day_keeps_history_and_drops_sessions(store, clock):
    first = AdherenceLedger(store, clock=clock, persist_async=False)
    first.start_session()
    first.record_break(True, 30)

    clock.advance(days=1)
    second = AdherenceLedger(store, clock=clock, persist_async=False)

    assert second.sessions == []
    assert second.today_stats().breaks_completed == 0
    assert second.daily_stats(7)[0].day == date(2024, 3, 11)


def test_background_persistence_flushes(store, clock):
    ledger = AdherenceLedger(store, clock=clock, persist_async=True)
    ledger.record_break(True, 30)
    ledger.flush(timeout=5)

    assert store.get(DAY_STATS_KEY)["2024-03-11"]["breaks_completed"] == 1
    ledger.close()


def test_persistence_failure_is_logged_not_raised(clock, caplog):
    store = Mock(spec=KeyValueStore)
    store.load.return_value = None
    store.set.side_effect = PersistenceError("disk full")

    with caplog.at_level(logging.ERROR):
        ledger = AdherenceLedger(store, clock=clock, persist_async=False)
        ledger.record_break(True, 30)

    assert ledger.today_stats().breaks_completed == 1
    assert "Failed to persist ledger" in caplog.text


def test_streak_resets_when_today_misses_goal(ledger, clock):
    for offset in range(5, 0, -1):
        play_day(ledger, clock, date(2024, 3, 11) - timedelta(days=offset), completed=6)

    clock.now = datetime(2024, 3, 11, 8)
    assert ledger.current_streak() == 5

    play_day(ledger, clock, date(2024, 3, 11), completed=1, skipped=3)

    assert ledger.current_streak() == 0
    assert ledger.aggregated_stats(StatsPeriod.WEEK).streak == 0


def test_gap_day_breaks_streak(ledger, clock):
    play_day(ledger, clock, date(2024, 3, 7), completed=6)
    play_day(ledger, clock, date(2024, 3, 9), completed=6)
    play_day(ledger, clock, date(2024, 3, 10), completed=6)
    clock.now = datetime(2024, 3, 11, 9)

    assert ledger.current_streak() == 2


def test_week_aggregate_and_trend(ledger, clock):
    play_day(ledger, clock, date(2024, 3, 1), completed=1, skipped=1)
    play_day(ledger, clock, date(2024, 3, 8), completed=3, skipped=1, hour=14)
    play_day(ledger, clock, date(2024, 3, 11), completed=4, hour=14)

    week = ledger.aggregated_stats(StatsPeriod.WEEK)

    assert week.start == date(2024, 3, 5)
    assert week.days_tracked == 2
    assert week.breaks_completed == 7
    assert week.average_score == pytest.approx(87.5)
    assert week.best_day == date(2024, 3, 11)
    assert week.hourly_breaks[14] == 7
    assert week.trend == TrendDirection.IMPROVING

    previous = ledger.previous_period_stats(StatsPeriod.WEEK)
    assert previous.days_tracked == 1
    assert previous.average_score == 50.0


def test_empty_period_has_no_trend(ledger):
    week = ledger.aggregated_stats(StatsPeriod.WEEK)
    assert week.days_tracked == 0
    assert week.trend == TrendDirection.STABLE
    assert week.completion_rate == 100.0


def test_goal_progress(store, clock):
    ledger = AdherenceLedger(store, LedgerConfig(daily_break_goal=4), clock=clock, persist_async=False)
    for _ in range(3):
        ledger.record_break(True, 20)

    progress = ledger.goal_progress()
    assert progress["remaining"] == 1
    assert progress["progress"] == pytest.approx(0.75)
    assert not ledger.goal_met

    ledger.record_break(True, 20)
    assert ledger.goal_met


def test_weekly_summary(ledger):
    ledger.record_break(True, 120)
    summary = ledger.weekly_summary()
    assert summary["total_breaks"] == 1
    assert summary["total_break_minutes"] == 2
    assert summary["best_day"] == "2024-03-11"
    assert summary["trend"] == "stable"


def test_reset_all_stats_keeps_session_running(ledger, clock):
    play_day(ledger, clock, date(2024, 3, 10), completed=2)
    clock.now = datetime(2024, 3, 11, 9)
    ledger.start_session()
    ledger.record_break(True, 30)
    ledger.replace_insights(["stale"])

    ledger.reset_all_stats()

    assert ledger.all_day_stats()[-1].breaks_completed == 0
    assert ledger.daily_stats(30) == []
    assert ledger.insights == []
    assert ledger.active_session is not None
    assert ledger.active_session.breaks_taken == 0


def test_replace_insights_discards_previous(ledger):
    ledger.replace_insights(["a", "b"])
    ledger.replace_insights(["c"])
    assert ledger.insights == ["c"]


def test_midnight_delay():
    assert seconds_until_midnight(datetime(2024, 3, 11, 23, 59, 30)) == 30
    assert seconds_until_midnight(datetime(2024, 3, 11, 0, 0)) == 86400


def test_midnight_reset_is_cancelled_on_close(store, clock):
    ledger = AdherenceLedger(store, clock=clock, persist_async=False)
    ledger.schedule_midnight_reset()
    timer = ledger._midnight_timer
    assert timer is not None and timer.is_alive()

    ledger.close()
    timer.join(timeout=1)
    assert not timer.is_alive()


def test_midnight_resets_the_day_and_rearms(ledger, clock, monkeypatch):
    timer_cls = Mock()
    monkeypatch.setattr("smart_break.services.ledger.threading.Timer", timer_cls)
    ledger.start_session()
    ledger.record_break(True, 30)
    ledger.replace_insights(["stale"])
    clock.now = datetime(2024, 3, 12, 0, 0, 1)

    ledger._on_midnight()

    assert ledger.today_stats().day == date(2024, 3, 12)
    assert ledger.today_stats().breaks_completed == 0
    assert ledger.insights == []
    assert ledger.active_session.start_time == clock.now
    timer_cls.assert_called_once_with(86399.0, ledger._on_midnight)
    timer_cls.return_value.start.assert_called_once_with()
    assert ledger._midnight_timer is timer_cls.return_value


def test_failed_midnight_reset_still_rearms(ledger, monkeypatch, caplog):
    timer_cls = Mock()
    monkeypatch.setattr("smart_break.services.ledger.threading.Timer", timer_cls)
    monkeypatch.setattr(ledger, "reset_daily_data", Mock(side_effect=RuntimeError("boom")))

    ledger._on_midnight()

    assert "Midnight reset failed" in caplog.text
    timer_cls.return_value.start.assert_called_once_with()
