import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from smart_break.config.config import PauseDecisionConfig
from smart_break.models.pause import KnownApps, PauseSignal, total_weight
from smart_break.services.event_bus import DECISION_CHANGED, ENVIRONMENT_TOPICS, EventBus
from smart_break.services.errors import ProbeError
from smart_break.services.signals import AppInfo, SignalSources
from smart_break.services.store import KeyValueStore

logger = logging.getLogger(__name__)

PAUSE_CONFIG_KEY = "pause_config"


def load_pause_config(store: KeyValueStore) -> PauseDecisionConfig:
    """Stored detection config, or the defaults when absent or corrupt"""
    return store.load(PAUSE_CONFIG_KEY, PauseDecisionConfig.model_validate) or PauseDecisionConfig()


def save_pause_config(store: KeyValueStore, config: PauseDecisionConfig) -> None:
    store.set(PAUSE_CONFIG_KEY, config.model_dump(mode="json"))


@dataclass(frozen=True)
class PauseDecision:
    """Immutable snapshot published after each detection pass"""
    should_pause: bool = False
    active_signals: Tuple[PauseSignal, ...] = ()
    total_weight: int = 0
    frontmost_app: Optional[str] = None
    evaluated_at: datetime = field(default_factory=datetime.now)

    @property
    def dominant_signal(self) -> Optional[PauseSignal]:
        if not self.active_signals:
            return None
        return max(self.active_signals, key=lambda s: s.weight)

    def to_dict(self) -> dict:
        return {
            "should_pause": self.should_pause,
            "active_signals": [
                {"signal": s.value, "weight": s.weight, "description": s.description}
                for s in self.active_signals
            ],
            "total_weight": self.total_weight,
            "frontmost_app": self.frontmost_app,
            "evaluated_at": self.evaluated_at.isoformat(),
        }


class PauseDecisionEngine:
    """Samples signal sources and decides whether breaks should be held"""

    def __init__(
        self,
        sources: SignalSources,
        config: Optional[PauseDecisionConfig] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.sources = sources
        self.config = config or PauseDecisionConfig()
        self.bus = bus
        self.clock = clock
        self._lock = threading.Lock()
        self._decision = PauseDecision(evaluated_at=clock())
        self._listeners: List[Callable[[PauseDecision], None]] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending_refreshes: Set[asyncio.Task] = set()
        self._unsubscribers: List[Callable[[], None]] = []

        if bus is not None:
            for topic in ENVIRONMENT_TOPICS:
                self._unsubscribers.append(bus.subscribe(topic, self._on_environment_change))

        self._warn_if_unreachable()

    @property
    def decision(self) -> PauseDecision:
        with self._lock:
            return self._decision

    @property
    def should_pause(self) -> bool:
        return self.decision.should_pause

    @property
    def is_monitoring(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, listener: Callable[[PauseDecision], None]) -> None:
        """Register a callback invoked after every published decision"""
        self._listeners.append(listener)

    def apply_config(self, config: PauseDecisionConfig) -> None:
        """Swap configuration; the next detection pass uses it"""
        self.config = config
        self._warn_if_unreachable()
        logger.info(f"Applied pause config (threshold={config.pause_threshold})")

    async def apply_config_async(self, config: PauseDecisionConfig) -> PauseDecision:
        """Swap configuration and re-evaluate on a worker thread"""
        self.apply_config(config)
        return await self.refresh_async()

    def _warn_if_unreachable(self):
        if not self.config.is_threshold_reachable():
            logger.warning(
                f"Pause threshold {self.config.pause_threshold} exceeds the maximum reachable "
                f"weight {self.config.max_reachable_weight()}; smart pause can never trigger"
            )

    # Detection

    def detect_signals(self) -> Tuple[Set[PauseSignal], Optional[str]]:
        """Run every enabled probe; failures count as absent"""
        config = self.config
        signals: Set[PauseSignal] = set()

        app = self._probe("frontmost application", self.sources.frontmost_application)
        app_id = app.identifier if app else None
        usable_app = app if app and not app.is_self and app.identifier not in config.whitelisted_apps else None

        if config.detect_fullscreen and usable_app is not None:
            signals |= self._detect_fullscreen(usable_app)

        if config.detect_screen_recording:
            signals |= self._detect_screen_capture(usable_app)

        if config.detect_meeting_apps:
            if usable_app is not None and usable_app.identifier in KnownApps.MEETING:
                signals.add(PauseSignal.MEETING_APP_ACTIVE)
            if self._probe("calendar meeting", self.sources.is_in_calendar_meeting):
                signals.add(PauseSignal.CALENDAR_MEETING)

        if config.detect_focus_mode:
            legacy = self._probe("legacy do-not-disturb", self.sources.legacy_do_not_disturb)
            focus = self._probe("focus system", self.sources.focus_system_active)
            if legacy or focus:
                signals.add(PauseSignal.FOCUS_MODE_ACTIVE)

        enabled = {s for s in signals if s not in config.disabled_signals}
        return enabled, app_id

    def _detect_fullscreen(self, app: AppInfo) -> Set[PauseSignal]:
        if not self._probe("fullscreen", self.sources.is_fullscreen, app):
            return set()
        if app.identifier in KnownApps.PRESENTATION:
            return {PauseSignal.PRESENTATION_MODE}
        if app.identifier in KnownApps.VIDEO:
            return {PauseSignal.FULLSCREEN_VIDEO}
        return {PauseSignal.FULLSCREEN_APP}

    def _detect_screen_capture(self, app: Optional[AppInfo]) -> Set[PauseSignal]:
        signals = set()
        if self._probe("screen capture", self.sources.is_screen_being_captured):
            signals.add(PauseSignal.SCREEN_RECORDING)
        if self._probe(
            "screen sharing daemons",
            self.sources.is_screen_sharing_active,
            KnownApps.SCREEN_SHARING_DAEMONS,
        ):
            signals.add(PauseSignal.SCREEN_SHARING)
        if app is not None:
            if app.identifier in KnownApps.RECORDING:
                signals.add(PauseSignal.SCREEN_RECORDING)
            elif app.identifier in KnownApps.SCREEN_SHARING:
                signals.add(PauseSignal.SCREEN_SHARING)
        return signals

    def _probe(self, name: str, func, *args):
        try:
            return func(*args)
        except ProbeError as e:
            logger.debug(f"Probe '{name}' failed, treating as absent: {e}")
        except Exception as e:
            logger.warning(f"Probe '{name}' raised {type(e).__name__}, treating as absent: {e}")
        return None

    # Publishing

    def evaluate(self, signals: Set[PauseSignal], frontmost_app: Optional[str] = None) -> PauseDecision:
        """Build a decision from an already-detected signal set"""
        ordered = tuple(sorted(signals, key=lambda s: -s.weight))
        weight = total_weight(ordered)
        return PauseDecision(
            should_pause=weight >= self.config.pause_threshold,
            active_signals=ordered,
            total_weight=weight,
            frontmost_app=frontmost_app,
            evaluated_at=self.clock(),
        )

    def refresh(self) -> PauseDecision:
        """Detect, decide and publish on the calling thread. Never raises.

        Code running on the event loop uses ``refresh_async`` instead.
        """
        try:
            signals, app_id = self.detect_signals()
            decision = self.evaluate(signals, app_id)
        except Exception as e:
            logger.error(f"Detection pass failed, keeping previous decision: {e}")
            return self.decision
        self._publish(decision)
        return decision

    async def refresh_async(self) -> PauseDecision:
        """Run detection on a worker thread"""
        signals, app_id = await asyncio.to_thread(self._safe_detect)
        if signals is None:
            return self.decision
        decision = self.evaluate(signals, app_id)
        self._publish(decision)
        return decision

    def _safe_detect(self):
        try:
            return self.detect_signals()
        except Exception as e:
            logger.error(f"Detection pass failed, keeping previous decision: {e}")
            return None, None

    def _publish(self, decision: PauseDecision):
        with self._lock:
            previous = self._decision
            self._decision = decision

        if decision.should_pause != previous.should_pause:
            logger.info(
                f"Smart pause {'engaged' if decision.should_pause else 'released'} "
                f"(weight {decision.total_weight}, signals "
                f"{[s.value for s in decision.active_signals]})"
            )
        if self.bus is not None:
            self.bus.publish(DECISION_CHANGED, decision)
        for listener in list(self._listeners):
            try:
                listener(decision)
            except Exception as e:
                logger.error(f"Decision listener failed: {e}")

    def _on_environment_change(self, event):
        """Schedule a detection pass on the event loop when one is available"""
        logger.debug(f"Environment changed ({event}), refreshing")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.refresh_async())
            self._pending_refreshes.add(task)
            task.add_done_callback(self._pending_refreshes.discard)
        elif self._loop is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(self.refresh_async(), self._loop)
        else:
            self.refresh()

    # Monitoring

    def start_monitoring(self) -> asyncio.Task:
        """Begin polling on the running event loop"""
        if self.is_monitoring:
            logger.warning("Monitoring already running")
            return self._poll_task
        self._loop = asyncio.get_running_loop()
        self._poll_task = self._loop.create_task(self._poll_loop())
        logger.info(f"Smart pause monitoring started (every {self.config.polling_interval}s)")
        return self._poll_task

    async def stop_monitoring(self):
        """Stop polling; the last decision stays published"""
        task = self._poll_task
        self._poll_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Smart pause monitoring stopped")

    async def _poll_loop(self):
        while True:
            await self.refresh_async()
            await asyncio.sleep(self.config.polling_interval)

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
