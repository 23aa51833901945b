import pytest
from datetime import datetime, timedelta
from typing import Optional

from smart_break.config.config import PauseDecisionConfig, TimerPreferences
from smart_break.services.ledger import AdherenceLedger
from smart_break.services.runner import ServiceRunner
from smart_break.services.signals import AppInfo, Rect, SignalSources
from smart_break.services.store import KeyValueStore
from smart_break.services.timer import BreakTimer


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeSignalSources(SignalSources):
    """Signal sources driven by plain attributes"""

    def __init__(self):
        self.app: Optional[AppInfo] = None
        self.window: Optional[Rect] = None
        self.display: Optional[Rect] = Rect(0, 0, 1920, 1080)
        self.captured = False
        self.processes = set()
        self.dnd = False
        self.focus = False
        self.calendar = False
        self.idle = 0.0
        self.failing = set()

    def _check(self, name):
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def frontmost_application(self):
        self._check("frontmost_application")
        return self.app

    def window_bounds(self, app):
        self._check("window_bounds")
        return self.window

    def display_bounds(self):
        self._check("display_bounds")
        return self.display

    def is_screen_being_captured(self):
        self._check("is_screen_being_captured")
        return self.captured

    def running_process_names(self):
        self._check("running_process_names")
        return set(self.processes)

    def legacy_do_not_disturb(self):
        self._check("legacy_do_not_disturb")
        return self.dnd

    def focus_system_active(self):
        self._check("focus_system_active")
        return self.focus

    def is_in_calendar_meeting(self):
        self._check("is_in_calendar_meeting")
        return self.calendar

    def idle_seconds(self):
        self._check("idle_seconds")
        return self.idle


@pytest.fixture
def clock():
    """Clock fixed at a Monday morning"""
    return FakeClock(datetime(2024, 3, 11, 10, 0, 0))


@pytest.fixture
def sources():
    return FakeSignalSources()


@pytest.fixture
def store():
    """Provide an in-memory store"""
    store = KeyValueStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def ledger(store, clock):
    """Ledger that persists synchronously"""
    ledger = AdherenceLedger(store, clock=clock, persist_async=False)
    yield ledger
    ledger.close()


@pytest.fixture
def preferences():
    return TimerPreferences(work_interval_seconds=1200, pre_break_seconds=10, break_duration_seconds=20)


@pytest.fixture
def timer(preferences, clock):
    return BreakTimer(preferences, clock=clock)


@pytest.fixture
def wired_timer(timer, ledger):
    """Timer whose events feed the ledger"""
    timer.subscribe(ledger.handle_timer_event)
    return timer


@pytest.fixture
def detection_config():
    return PauseDecisionConfig()


@pytest.fixture
def runner(sources, store):
    """Fully wired service over fake sources and an in-memory store"""
    runner = ServiceRunner(sources=sources, store=store, persist_async=False)
    yield runner
    runner.engine.close()
    runner.ledger.close()
