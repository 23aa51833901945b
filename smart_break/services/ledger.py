"""Adherence ledger: sessions, pauses, daily rollups, streak and score.

The ledger is the only owner of ``WorkSession`` and ``PauseEvent`` objects.
It listens to break timer events, keeps one ``DayStats`` per calendar day and
persists everything to the key-value store on a single background worker.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time, timedelta
from statistics import mean
from typing import Any, Callable, Dict, List, Optional

from smart_break.config.config import LedgerConfig
from smart_break.models.pause import PauseEvent, PauseReason
from smart_break.models.session import WorkSession
from smart_break.models.stats import (
    SHORT_BREAK_MAX_SECONDS,
    AggregatedStats,
    DayStats,
    NudgeKind,
    StatsPeriod,
    TrendDirection,
)
from smart_break.models.timer_state import (
    BreakEnded,
    BreakStarted,
    PauseEnded,
    PauseStarted,
    TimerEvent,
    WorkStarted,
    WorkStopped,
)
from smart_break.services.errors import PersistenceError
from smart_break.services.store import KeyValueStore

logger = logging.getLogger(__name__)

SESSIONS_KEY = "work_sessions"
SESSIONS_DATE_KEY = "sessions_date"
DAY_STATS_KEY = "day_stats"
LAST_RESET_KEY = "last_reset"

MIN_MIDNIGHT_DELAY_SECONDS = 60
TREND_SCORE_DELTA = 5.0

PERIOD_DAYS = {
    StatsPeriod.TODAY: 1,
    StatsPeriod.WEEK: 7,
    StatsPeriod.MONTH: 30,
}


def seconds_until_midnight(now: datetime) -> float:
    midnight = datetime.combine(now.date() + timedelta(days=1), time.min)
    return (midnight - now).total_seconds()


class AdherenceLedger:
    """Records sessions and breaks and turns them into daily statistics"""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        config: Optional[LedgerConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
        persist_async: bool = True,
    ):
        self.store = store
        self.config = config or LedgerConfig()
        self.clock = clock
        self._lock = threading.RLock()
        self._sessions: List[WorkSession] = []
        self._history: Dict[date, DayStats] = {}
        self._today = DayStats(day=clock().date())
        self._insights: List[Any] = []
        self._last_reset: Optional[datetime] = None
        self._stretch_start: Optional[datetime] = None
        self._closed = False
        self._midnight_timer: Optional[threading.Timer] = None
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger-persist")
            if persist_async else None
        )

        self._load()
        if self._last_reset is None or self._last_reset.date() != self.clock().date():
            logger.info("Day changed since last run, resetting daily data")
            self.reset_daily_data()

    # Loading and persistence

    def _load(self):
        if self.store is None:
            return
        today = self.clock().date()

        self._last_reset = self.store.load(LAST_RESET_KEY, datetime.fromisoformat)

        days = self.store.load(DAY_STATS_KEY, lambda raw: [DayStats.model_validate(d) for d in raw.values()])
        for stats in days or []:
            self._history[stats.day] = stats
        if today in self._history:
            self._today = self._history.pop(today)

        sessions_date = self.store.load(SESSIONS_DATE_KEY, date.fromisoformat)
        sessions = self.store.load(SESSIONS_KEY, lambda raw: [WorkSession.model_validate(s) for s in raw])
        if sessions and sessions_date == today:
            self._sessions = sessions
            self._close_dangling_sessions()
        elif sessions:
            logger.info(f"Discarding {len(sessions)} sessions stored for {sessions_date}")

        logger.info(
            f"Ledger loaded: {len(self._sessions)} sessions today, "
            f"{len(self._history)} days of history"
        )

    def _close_dangling_sessions(self):
        """A session left open by a previous process ends at its last known activity"""
        for session in self._sessions:
            if not session.is_active:
                continue
            last_seen = session.start_time
            for event in session.pause_events:
                last_seen = max(last_seen, event.end_time or event.start_time)
                event.complete(event.end_time or event.start_time)
            session.end_time = last_seen
            logger.info(f"Closed session {session.id} left open by a previous run")

    def _snapshot(self) -> Dict[str, Any]:
        days = dict(self._history)
        days[self._today.day] = self._today
        return {
            SESSIONS_KEY: [s.model_dump(mode="json") for s in self._sessions],
            SESSIONS_DATE_KEY: self._today.day.isoformat(),
            DAY_STATS_KEY: {d.isoformat(): s.model_dump(mode="json") for d, s in sorted(days.items())},
            LAST_RESET_KEY: self._last_reset.isoformat() if self._last_reset else None,
        }

    def _persist(self):
        """Queue a write of the current state; failures are logged, never raised"""
        if self.store is None:
            return
        payload = self._snapshot()
        if self._executor is None:
            self._write(payload)
            return
        if self._closed:
            logger.debug("Ledger closed, skipping persistence")
            return
        self._executor.submit(self._write, payload)

    def _write(self, payload: Dict[str, Any]):
        try:
            for key, value in payload.items():
                if value is None:
                    self.store.delete(key)
                else:
                    self.store.set(key, value)
        except PersistenceError as e:
            logger.error(f"Failed to persist ledger: {e}")
        except Exception as e:
            logger.error(f"Unexpected error persisting ledger: {e}", exc_info=True)

    def flush(self, timeout: Optional[float] = None):
        """Block until queued writes have finished"""
        if self._executor is not None and not self._closed:
            self._executor.submit(lambda: None).result(timeout=timeout)

    # Day rollover

    def _ensure_today(self):
        if self._today.day != self.clock().date():
            logger.info(f"Calendar day changed from {self._today.day}, rolling over")
            self.reset_daily_data()

    def reset_daily_data(self):
        """Close out the previous day and start a clean one.

        A session still running at the rollover is closed on the old day and
        continues as a fresh session on the new one, together with any pause
        in progress.
        """
        with self._lock:
            now = self.clock()
            active = self.active_session
            carried_pause = None
            if active is not None:
                if active.active_pause is not None:
                    carried_pause = (active.active_pause.reason, active.active_pause.related_app)
                self._close_session(active, now)

            if self._today.day != now.date():
                self._history[self._today.day] = self._today
                self._today = self._history.pop(now.date(), DayStats(day=now.date()))

            self._sessions = []
            self._insights = []
            self._stretch_start = None
            self._last_reset = now
            if active is not None:
                self._continue_session(now, carried_pause)
            self._persist()

    def _continue_session(self, now: datetime, carried_pause=None):
        session = WorkSession(start_time=now)
        self._sessions.append(session)
        if carried_pause is None:
            self._stretch_start = now
        else:
            reason, related_app = carried_pause
            session.pause_events.append(PauseEvent(start_time=now, reason=reason, related_app=related_app))
            counts = self._today.pause_counts_by_reason
            counts[reason.value] = counts.get(reason.value, 0) + 1
        logger.info(f"Work session {session.id} continues into {now.date()}")

    def schedule_midnight_reset(self):
        """Arm a one-shot timer for the next local midnight; it re-arms itself"""
        with self._lock:
            if self._closed:
                return
            delay = max(MIN_MIDNIGHT_DELAY_SECONDS, seconds_until_midnight(self.clock()))
            self._midnight_timer = threading.Timer(delay, self._on_midnight)
            self._midnight_timer.daemon = True
            self._midnight_timer.start()
            logger.debug(f"Midnight reset scheduled in {delay:.0f}s")

    def _on_midnight(self):
        try:
            self.reset_daily_data()
        except Exception as e:
            logger.error(f"Midnight reset failed: {e}", exc_info=True)
        finally:
            self.schedule_midnight_reset()

    def close(self):
        """Stop the midnight timer and drain pending writes"""
        with self._lock:
            if self._midnight_timer is not None:
                self._midnight_timer.cancel()
                self._midnight_timer = None
        self.flush()
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    # Sessions

    @property
    def sessions(self) -> List[WorkSession]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions]

    @property
    def active_session(self) -> Optional[WorkSession]:
        for session in reversed(self._sessions):
            if session.is_active:
                return session
        return None

    def start_session(self) -> Optional[WorkSession]:
        with self._lock:
            self._ensure_today()
            if self.active_session is not None:
                logger.warning("start_session() called while a session is active, ignoring")
                return None
            now = self.clock()
            session = WorkSession(start_time=now)
            self._sessions.append(session)
            self._stretch_start = now
            logger.info(f"Work session {session.id} started")
            self._persist()
            return session

    def end_session(self) -> Optional[WorkSession]:
        with self._lock:
            session = self.active_session
            if session is None:
                logger.warning("end_session() called with no active session, ignoring")
                return None
            self._close_session(session, self.clock())
            self._persist()
            return session

    def _close_session(self, session: WorkSession, now: datetime):
        active_pause = session.active_pause
        if active_pause is not None:
            active_pause.complete(now)
            self._account_pause(active_pause)
        self._close_stretch(now)
        session.end_time = now
        self._today.screen_minutes += round(session.active_duration_seconds(now) / 60)
        logger.info(f"Work session {session.id} ended after {session.total_duration_seconds(now):.0f}s")

    # Stretches of uninterrupted work

    def _close_stretch(self, now: datetime):
        if self._stretch_start is None:
            return
        minutes = int((now - self._stretch_start).total_seconds() // 60)
        self._today.longest_stretch_minutes = max(self._today.longest_stretch_minutes, minutes)
        self._stretch_start = None

    def _open_stretch(self, now: datetime):
        if self.active_session is not None and self.active_session.active_pause is None:
            self._stretch_start = now

    # Breaks and nudges

    def record_break(self, completed: bool, duration_seconds: int = 0):
        with self._lock:
            self._ensure_today()
            now = self.clock()
            session = self.active_session
            today = self._today
            if completed:
                today.breaks_completed += 1
                today.total_break_minutes += max(1, duration_seconds // 60)
                if duration_seconds <= SHORT_BREAK_MAX_SECONDS:
                    today.short_breaks_completed += 1
                else:
                    today.long_breaks_completed += 1
                today.hourly_breaks[now.hour] += 1
                if session is not None:
                    session.breaks_taken += 1
            else:
                today.breaks_skipped += 1
                if session is not None:
                    session.breaks_skipped += 1
            self._close_stretch(now)
            self._open_stretch(now)
            logger.info(
                f"Break {'completed' if completed else 'skipped'} "
                f"({today.breaks_completed} completed, {today.breaks_skipped} skipped today)"
            )
            self._persist()

    def record_nudge(self, followed: bool, kind: NudgeKind = NudgeKind.GENERAL):
        with self._lock:
            self._ensure_today()
            today = self._today
            session = self.active_session
            if followed:
                today.nudges_followed += 1
                if session is not None:
                    session.nudges_followed += 1
            else:
                today.nudges_dismissed += 1
                if session is not None:
                    session.nudges_dismissed += 1
            if kind == NudgeKind.BLINK:
                today.blink_nudges_shown += 1
                today.blink_nudges_followed += int(followed)
            elif kind == NudgeKind.POSTURE:
                today.posture_nudges_shown += 1
                today.posture_nudges_followed += int(followed)
            self._persist()

    # Pauses

    @property
    def active_pause(self) -> Optional[PauseEvent]:
        session = self.active_session
        return session.active_pause if session else None

    def start_pause(self, reason: PauseReason, related_app: Optional[str] = None) -> Optional[PauseEvent]:
        with self._lock:
            self._ensure_today()
            session = self.active_session
            if session is None:
                logger.warning(f"start_pause({reason.value}) with no active session, ignoring")
                return None
            now = self.clock()
            previous = session.active_pause
            if previous is not None:
                previous.complete(now)
                self._account_pause(previous)
            else:
                self._close_stretch(now)
            event = PauseEvent(start_time=now, reason=reason, related_app=related_app)
            session.pause_events.append(event)
            counts = self._today.pause_counts_by_reason
            counts[reason.value] = counts.get(reason.value, 0) + 1
            logger.debug(f"Pause started ({reason.value}{', ' + related_app if related_app else ''})")
            self._persist()
            return event

    def end_pause(self) -> Optional[PauseEvent]:
        with self._lock:
            event = self.active_pause
            if event is None:
                logger.debug("end_pause() with no active pause, ignoring")
                return None
            now = self.clock()
            event.complete(now)
            self._account_pause(event)
            self._open_stretch(now)
            self._persist()
            return event

    def _account_pause(self, event: PauseEvent):
        minutes = round(event.duration_seconds / 60)
        by_reason = self._today.pause_minutes_by_reason
        by_reason[event.reason.value] = by_reason.get(event.reason.value, 0) + minutes
        if event.reason == PauseReason.MEETING:
            self._today.meeting_minutes += minutes
        elif event.reason == PauseReason.IDLE:
            self._today.idle_minutes += minutes

    # Timer integration

    def handle_timer_event(self, event: TimerEvent):
        """Subscriber for break timer events"""
        if isinstance(event, WorkStarted):
            if self.active_session is None:
                self.start_session()
        elif isinstance(event, WorkStopped):
            self.end_session()
        elif isinstance(event, PauseStarted):
            self.start_pause(event.reason, event.related_app)
        elif isinstance(event, PauseEnded):
            self.end_pause()
        elif isinstance(event, BreakStarted):
            with self._lock:
                self._close_stretch(event.timestamp)
        elif isinstance(event, BreakEnded):
            self.record_break(event.completed, event.duration_seconds)

    # Insights cache

    @property
    def insights(self) -> List[Any]:
        return list(self._insights)

    def replace_insights(self, insights: List[Any]):
        """Discard the previous insight list in full"""
        with self._lock:
            self._insights = list(insights)

    # Reading

    def today_stats(self) -> DayStats:
        """Today's rollup including the stretch and session still in progress"""
        with self._lock:
            now = self.clock()
            stats = self._today.model_copy(deep=True)
            if stats.day != now.date():
                return DayStats(day=now.date())
            if self._stretch_start is not None:
                ongoing = int((now - self._stretch_start).total_seconds() // 60)
                stats.longest_stretch_minutes = max(stats.longest_stretch_minutes, ongoing)
            session = self.active_session
            if session is not None:
                stats.screen_minutes += round(session.active_duration_seconds(now) / 60)
            return stats

    def daily_score(self) -> float:
        return self.today_stats().daily_score

    @property
    def daily_break_goal(self) -> int:
        return self.config.daily_break_goal

    @property
    def goal_met(self) -> bool:
        return self.today_stats().breaks_completed >= self.config.daily_break_goal

    def goal_progress(self) -> Dict[str, Any]:
        completed = self.today_stats().breaks_completed
        goal = self.config.daily_break_goal
        return {
            "completed": completed,
            "goal": goal,
            "remaining": max(0, goal - completed),
            "progress": min(1.0, completed / goal),
            "met": completed >= goal,
        }

    def _day(self, day: date) -> Optional[DayStats]:
        if day == self.clock().date():
            return self.today_stats()
        if day == self._today.day:
            return self._today
        return self._history.get(day)

    def _meets_goal(self, stats: Optional[DayStats]) -> bool:
        return stats is not None and stats.has_data and stats.daily_score >= self.config.goal_score

    def current_streak(self) -> int:
        """Consecutive goal days ending yesterday; a failing today breaks it"""
        with self._lock:
            today = self.clock().date()
            today_stats = self.today_stats()
            if today_stats.has_data and not self._meets_goal(today_stats):
                return 0
            streak = 0
            day = today - timedelta(days=1)
            while self._meets_goal(self._day(day)):
                streak += 1
                day -= timedelta(days=1)
            return streak

    def daily_stats(self, days: int = 7, end: Optional[date] = None) -> List[DayStats]:
        """Tracked days within the ``days`` ending at ``end`` (today by default)"""
        with self._lock:
            end = end or self.clock().date()
            result = []
            for offset in range(days - 1, -1, -1):
                stats = self._day(end - timedelta(days=offset))
                if stats is not None and stats.has_data:
                    result.append(stats)
            return result

    def all_day_stats(self) -> List[DayStats]:
        with self._lock:
            days = dict(self._history)
            days[self._today.day] = self.today_stats()
            return [days[d] for d in sorted(days)]

    def aggregated_stats(self, period: StatsPeriod = StatsPeriod.TODAY, offset_periods: int = 0) -> AggregatedStats:
        """Rollup for ``period``; ``offset_periods=1`` gives the period before it"""
        with self._lock:
            length = PERIOD_DAYS[period]
            end = self.clock().date() - timedelta(days=length * offset_periods)
            aggregated = self._aggregate(period, end, length)
            if offset_periods == 0:
                previous = self._aggregate(period, end - timedelta(days=length), length)
                aggregated.trend = self._trend(aggregated, previous)
                aggregated.streak = self.current_streak()
            return aggregated

    def previous_period_stats(self, period: StatsPeriod = StatsPeriod.WEEK) -> AggregatedStats:
        return self.aggregated_stats(period, offset_periods=1)

    def _aggregate(self, period: StatsPeriod, end: date, length: int) -> AggregatedStats:
        start = end - timedelta(days=length - 1)
        days = self.daily_stats(length, end)
        aggregated = AggregatedStats(period=period, start=start, end=end, days_tracked=len(days))
        hourly = [0] * 24
        for day in days:
            aggregated.breaks_completed += day.breaks_completed
            aggregated.breaks_skipped += day.breaks_skipped
            aggregated.total_break_minutes += day.total_break_minutes
            aggregated.screen_minutes += day.screen_minutes
            aggregated.meeting_minutes += day.meeting_minutes
            aggregated.idle_minutes += day.idle_minutes
            hourly = [a + b for a, b in zip(hourly, day.hourly_breaks)]
        aggregated.hourly_breaks = hourly
        if days:
            aggregated.average_score = mean(day.daily_score for day in days)
            best = max(days, key=lambda d: (d.daily_score, d.breaks_completed))
            aggregated.best_day = best.day
        return aggregated

    def _trend(self, current: AggregatedStats, previous: AggregatedStats) -> TrendDirection:
        if current.days_tracked == 0 or previous.days_tracked == 0:
            return TrendDirection.STABLE
        if current.average_score > previous.average_score + TREND_SCORE_DELTA:
            return TrendDirection.IMPROVING
        if current.average_score < previous.average_score - TREND_SCORE_DELTA:
            return TrendDirection.DECLINING
        return TrendDirection.STABLE

    def pause_breakdown(self) -> Dict[str, Dict[str, int]]:
        """Today's pauses per reason, completed pauses only for minutes"""
        stats = self.today_stats()
        return {
            reason.value: {
                "count": stats.pause_counts_by_reason.get(reason.value, 0),
                "minutes": stats.pause_minutes_by_reason.get(reason.value, 0),
            }
            for reason in PauseReason
            if reason.value in stats.pause_counts_by_reason
        }

    def weekly_summary(self) -> Dict[str, Any]:
        week = self.aggregated_stats(StatsPeriod.WEEK)
        return {
            "total_breaks": week.breaks_completed,
            "total_skipped": week.breaks_skipped,
            "total_break_minutes": week.total_break_minutes,
            "average_score": round(week.average_score, 1),
            "days_tracked": week.days_tracked,
            "best_day": week.best_day.isoformat() if week.best_day else None,
            "streak": week.streak,
            "trend": week.trend.value,
        }

    # Reset

    def reset_all_stats(self):
        """Forget every session and every day, keeping a running session going"""
        with self._lock:
            now = self.clock()
            had_session = self.active_session is not None
            self._sessions = []
            self._history = {}
            self._today = DayStats(day=now.date())
            self._insights = []
            self._stretch_start = None
            self._last_reset = now
            if had_session:
                self._sessions.append(WorkSession(start_time=now))
                self._stretch_start = now
            logger.info("All statistics reset")
            self._persist()
