"""Raw OS facts consumed by the pause engine.

Platform probes live outside this package; they plug in by subclassing
``SignalSources``. Every method returns a cheap fact and may raise, in which
case the engine treats the fact as absent.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Set

import psutil

from smart_break.services.errors import ProbeError

logger = logging.getLogger(__name__)

# Menu bar height allowed between a window and the display edge
MENU_BAR_TOLERANCE = 50


@dataclass(frozen=True)
class AppInfo:
    identifier: str
    name: Optional[str] = None
    is_self: bool = False


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def covers(self, display: "Rect", tolerance: float = MENU_BAR_TOLERANCE) -> bool:
        return self.width >= display.width and self.height >= display.height - tolerance


class SignalSources(ABC):
    """Abstract collaborator that answers questions about the desktop"""

    @abstractmethod
    def frontmost_application(self) -> Optional[AppInfo]:
        ...

    @abstractmethod
    def window_bounds(self, app: AppInfo) -> Optional[Rect]:
        ...

    @abstractmethod
    def display_bounds(self) -> Optional[Rect]:
        ...

    @abstractmethod
    def is_screen_being_captured(self) -> bool:
        ...

    def running_process_names(self) -> Set[str]:
        """Names of all running processes, via psutil"""
        names = set()
        try:
            for proc in psutil.process_iter(["name"]):
                try:
                    name = proc.info.get("name")
                    if name:
                        names.add(name)
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue
        except psutil.Error as e:
            raise ProbeError(f"Could not list processes: {e}")
        return names

    @abstractmethod
    def legacy_do_not_disturb(self) -> bool:
        ...

    @abstractmethod
    def focus_system_active(self) -> bool:
        ...

    @abstractmethod
    def is_in_calendar_meeting(self) -> bool:
        ...

    def idle_seconds(self) -> float:
        """Seconds since the last keyboard or mouse input"""
        return 0.0

    def is_fullscreen(self, app: AppInfo) -> bool:
        window = self.window_bounds(app)
        display = self.display_bounds()
        if window is None or display is None:
            return False
        return window.covers(display)

    def is_screen_sharing_active(self, daemon_names) -> bool:
        return bool(self.running_process_names() & set(daemon_names))

    def is_focus_mode_active(self) -> bool:
        return self.legacy_do_not_disturb() or self.focus_system_active()


class NullSignalSources(SignalSources):
    """Reports a quiet desktop; only the process listing is real"""

    def frontmost_application(self) -> Optional[AppInfo]:
        return None

    def window_bounds(self, app: AppInfo) -> Optional[Rect]:
        return None

    def display_bounds(self) -> Optional[Rect]:
        return None

    def is_screen_being_captured(self) -> bool:
        return False

    def legacy_do_not_disturb(self) -> bool:
        return False

    def focus_system_active(self) -> bool:
        return False

    def is_in_calendar_meeting(self) -> bool:
        return False
