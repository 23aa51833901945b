import asyncio
import logging
import signal
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from smart_break.config.config import LedgerConfig, PauseDecisionConfig, TimerPreferences
from smart_break.config.settings import settings
from smart_break.models.timer_state import PauseSource, StateChanged, TimerState
from smart_break.services.display import TerminalDisplay
from smart_break.services.errors import ConfigError, RunnerError
from smart_break.services.event_bus import SYSTEM_DID_WAKE, SYSTEM_WILL_SLEEP, EventBus
from smart_break.services.insights import refresh_insights
from smart_break.services.ledger import AdherenceLedger
from smart_break.services.pause_engine import (
    PauseDecisionEngine,
    load_pause_config,
    save_pause_config,
)
from smart_break.services.signals import NullSignalSources, SignalSources
from smart_break.services.store import KeyValueStore
from smart_break.services.timer import (
    BreakTimer,
    load_timer_preferences,
    load_timer_snapshot,
    save_timer_preferences,
    save_timer_snapshot,
)

logger = logging.getLogger(__name__)

INSIGHTS_INTERVAL_SECONDS = 300
SNAPSHOT_INTERVAL_SECONDS = 30
# Extra delay between ticks that counts as the machine having slept
SLEEP_GAP_SECONDS = 60


class ServiceInitError(RunnerError):
    """Exception raised when service initialization fails"""
    pass


class ServiceRunner:
    """Wires the engine, timer and ledger together and drives them"""

    def __init__(
        self,
        sources: Optional[SignalSources] = None,
        store: Optional[KeyValueStore] = None,
        bus: Optional[EventBus] = None,
        persist_async: bool = True,
        display: Optional[TerminalDisplay] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.running = False
        self.display = display
        self.clock = clock
        self.shutdown_event = asyncio.Event()
        self.error_count = 0
        self.last_tick_time: Optional[datetime] = None
        self.last_insights_time: Optional[datetime] = None
        self.last_snapshot_time: Optional[datetime] = None
        self._snapshot_dirty = False

        try:
            self.store = store or KeyValueStore(settings.DEFAULT_DB_PATH)
            self.bus = bus or EventBus()
            self.sources = sources or NullSignalSources()

            preferences = load_timer_preferences(self.store)
            if settings.AUTO_RESTART and not preferences.auto_restart:
                preferences = preferences.model_copy(update={"auto_restart": True})
            pause_config = preferences.detection_config(load_pause_config(self.store))

            self.engine = PauseDecisionEngine(self.sources, pause_config, self.bus)
            self.timer = BreakTimer(preferences, clock=clock)
            self.ledger = AdherenceLedger(
                self.store,
                LedgerConfig(daily_break_goal=preferences.daily_break_goal),
                clock=clock,
                persist_async=persist_async,
            )
        except Exception as e:
            logger.error(f"Failed to initialize services: {e}")
            raise ServiceInitError(f"Failed to initialize services: {e}")

        self.engine.subscribe(self.timer.on_pause_decision)
        self.timer.subscribe(self.ledger.handle_timer_event)
        self.timer.subscribe(self._on_timer_event)
        self._unsubscribers = [
            self.bus.subscribe(SYSTEM_WILL_SLEEP, self._on_system_sleep),
            self.bus.subscribe(SYSTEM_DID_WAKE, self._on_system_wake),
        ]

    # Commands exposed to the outer surfaces

    async def apply_config(self, config: PauseDecisionConfig):
        save_pause_config(self.store, config)
        return await self.engine.apply_config_async(config)

    async def update_config(self, data: dict):
        """Validate raw settings and apply them as a whole"""
        try:
            config = PauseDecisionConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid pause config: {e}")
        return await self.apply_config(config)

    async def apply_preferences(self, preferences: TimerPreferences):
        save_timer_preferences(self.store, preferences)
        self.timer.apply_preferences(preferences)
        self.ledger.config = self.ledger.config.model_copy(
            update={"daily_break_goal": preferences.daily_break_goal}
        )
        return await self.engine.apply_config_async(preferences.detection_config(self.engine.config))

    def refresh_insights(self):
        self.last_insights_time = datetime.now()
        return refresh_insights(self.ledger)

    # Timer and system events

    def _on_timer_event(self, event):
        if not isinstance(event, StateChanged):
            return
        self._snapshot_dirty = True
        if self.display is not None:
            self.display.show_status(self.timer.status(), self.engine.decision.to_dict())

    def _on_system_sleep(self, event):
        logger.info("System going to sleep")
        self.timer.on_system_sleep()

    def _on_system_wake(self, event):
        slept = event.get("slept_seconds", 0) if isinstance(event, dict) else 0
        logger.info(f"System woke after {slept:.0f}s")
        self.timer.on_system_wake(slept)
        self.last_tick_time = self.clock()

    def _detect_sleep_gap(self, now: datetime):
        """A tick that arrives far too late means the machine was asleep"""
        if self.last_tick_time is None or PauseSource.SYSTEM_SLEEP in self.timer.pause_sources:
            return
        gap = (now - self.last_tick_time).total_seconds()
        if gap >= settings.TICK_INTERVAL_SECONDS + SLEEP_GAP_SECONDS:
            logger.info(f"No tick for {gap:.0f}s, treating it as system sleep")
            self.timer.on_system_sleep()
            self.timer.on_system_wake(gap)

    async def save_snapshot(self):
        """Write the timer position off the event loop; idle clears it"""
        await asyncio.to_thread(save_timer_snapshot, self.store, self.timer.snapshot())
        self._snapshot_dirty = False
        self.last_snapshot_time = self.clock()

    def _snapshot_due(self, now: datetime) -> bool:
        return (
            self._snapshot_dirty
            or self.last_snapshot_time is None
            or (now - self.last_snapshot_time).total_seconds() >= SNAPSHOT_INTERVAL_SECONDS
        )

    def _start_timer(self):
        """Resume a recently saved position, or start a fresh interval"""
        snapshot = load_timer_snapshot(self.store)
        if snapshot is not None and self.timer.restore(snapshot):
            return
        self.timer.start()

    # Lifecycle

    def _setup_signal_handlers(self):
        """Set up handlers for system signals"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(self.shutdown(s)))
            except NotImplementedError:
                logger.debug(f"Signal handlers not supported for {sig.name}")

    async def shutdown(self, sig: Optional[signal.Signals] = None):
        """Gracefully shutdown the service"""
        if sig:
            logger.info(f"Received exit signal {sig.name}...")
        if not self.running:
            return

        logger.info("Initiating graceful shutdown...")
        self.running = False
        self.shutdown_event.set()
        try:
            await self.cleanup()
            logger.info("Cleanup completed successfully")
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")

    async def cleanup(self):
        """Stop monitoring, end the session and drain the ledger"""
        await self.engine.stop_monitoring()
        self.engine.close()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        if self.timer.state != TimerState.IDLE:
            self.timer.stop()
        await self.save_snapshot()
        await asyncio.to_thread(self.ledger.close)

    def tick(self, seconds: int = 1):
        """One timer step plus the schedule, sleep and idle checks"""
        now = self.clock()
        self._detect_sleep_gap(now)
        self.timer.on_quiet_hours(self.timer.preferences.is_quiet_time(now))
        try:
            self.timer.on_idle(self.sources.idle_seconds())
        except Exception as e:
            logger.debug(f"Idle probe failed, treating as active: {e}")
        self.timer.tick(seconds)
        self.last_tick_time = now

    async def run(self, install_signal_handlers: bool = True):
        """Run the service.

        Hosts that own the process signals, such as the web server, pass
        ``install_signal_handlers=False`` and call ``shutdown()`` themselves.
        """
        logger.info("Starting Smart Break service...")
        if install_signal_handlers:
            self._setup_signal_handlers()
        self.running = True

        self.ledger.schedule_midnight_reset()
        await self.engine.refresh_async()
        self.engine.start_monitoring()
        self._start_timer()

        interval = settings.TICK_INTERVAL_SECONDS
        try:
            while self.running:
                try:
                    self.tick(max(1, round(interval)))

                    now = self.clock()
                    if self._snapshot_due(now):
                        await self.save_snapshot()
                    if (
                        self.last_insights_time is None
                        or (datetime.now() - self.last_insights_time).total_seconds() >= INSIGHTS_INTERVAL_SECONDS
                    ):
                        self.refresh_insights()

                    self.error_count = 0

                    try:
                        await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
                        if self.shutdown_event.is_set():
                            break
                    except asyncio.TimeoutError:
                        continue

                except Exception as e:
                    self.error_count += 1
                    logger.error(f"Error in main loop: {e}", exc_info=True)

                    if self.error_count >= settings.MAX_ERRORS:
                        logger.critical(f"Too many errors ({self.error_count}), initiating shutdown...")
                        await self.shutdown()
                        break

                    await asyncio.sleep(1)
        finally:
            if self.running:
                await self.shutdown()


def run_service(display: Optional[TerminalDisplay] = None):
    """Entry point for running the service"""
    settings.validate_paths()
    runner = ServiceRunner(display=display)
    asyncio.run(runner.run())
