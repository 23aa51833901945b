from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field


class PauseSignal(str, Enum):
    """Contextual signal that argues for holding the break timer"""
    SCREEN_RECORDING = "screen_recording"
    SCREEN_SHARING = "screen_sharing"
    FULLSCREEN_VIDEO = "fullscreen_video"
    PRESENTATION_MODE = "presentation_mode"
    MEETING_APP_ACTIVE = "meeting_app_active"
    FULLSCREEN_APP = "fullscreen_app"
    FOCUS_MODE_ACTIVE = "focus_mode_active"
    CALENDAR_MEETING = "calendar_meeting"

    @property
    def weight(self) -> int:
        return _SIGNAL_WEIGHTS[self]

    @property
    def description(self) -> str:
        return _SIGNAL_DESCRIPTIONS[self]


_SIGNAL_WEIGHTS = {
    PauseSignal.SCREEN_RECORDING: 100,
    PauseSignal.SCREEN_SHARING: 95,
    PauseSignal.FULLSCREEN_VIDEO: 90,
    PauseSignal.PRESENTATION_MODE: 85,
    PauseSignal.MEETING_APP_ACTIVE: 80,
    PauseSignal.FULLSCREEN_APP: 70,
    PauseSignal.FOCUS_MODE_ACTIVE: 60,
    PauseSignal.CALENDAR_MEETING: 50,
}

_SIGNAL_DESCRIPTIONS = {
    PauseSignal.SCREEN_RECORDING: "Screen recording active",
    PauseSignal.SCREEN_SHARING: "Screen sharing detected",
    PauseSignal.FULLSCREEN_VIDEO: "Fullscreen video playing",
    PauseSignal.PRESENTATION_MODE: "Presentation mode",
    PauseSignal.MEETING_APP_ACTIVE: "Meeting app in foreground",
    PauseSignal.FULLSCREEN_APP: "Fullscreen application",
    PauseSignal.FOCUS_MODE_ACTIVE: "Focus mode enabled",
    PauseSignal.CALENDAR_MEETING: "Calendar meeting in progress",
}


def total_weight(signals) -> int:
    """Sum of weights for a collection of distinct signals"""
    return sum(signal.weight for signal in set(signals))


class PauseReason(str, Enum):
    """Why the timer was held"""
    MEETING = "meeting"
    SCREEN_RECORDING = "screen_recording"
    FULLSCREEN = "fullscreen"
    IDLE = "idle"
    MANUAL = "manual"
    QUIET_HOURS = "quiet_hours"
    SYSTEM_SLEEP = "system_sleep"
    FOCUS_MODE = "focus_mode"

    @classmethod
    def from_signal(cls, signal: PauseSignal) -> "PauseReason":
        """Map the dominant pause signal onto a pause reason"""
        return _SIGNAL_REASONS[signal]


_SIGNAL_REASONS = {
    PauseSignal.MEETING_APP_ACTIVE: PauseReason.MEETING,
    PauseSignal.CALENDAR_MEETING: PauseReason.MEETING,
    PauseSignal.SCREEN_RECORDING: PauseReason.SCREEN_RECORDING,
    PauseSignal.SCREEN_SHARING: PauseReason.SCREEN_RECORDING,
    PauseSignal.FOCUS_MODE_ACTIVE: PauseReason.FOCUS_MODE,
    PauseSignal.FULLSCREEN_APP: PauseReason.FULLSCREEN,
    PauseSignal.FULLSCREEN_VIDEO: PauseReason.FULLSCREEN,
    PauseSignal.PRESENTATION_MODE: PauseReason.FULLSCREEN,
}


class PauseEvent(BaseModel):
    """One continuous span during which the timer was held"""
    id: UUID = Field(default_factory=uuid4)
    start_time: datetime = Field(description="When the pause began")
    end_time: Optional[datetime] = Field(
        default=None,
        description="When the pause ended, set exactly once"
    )
    reason: PauseReason
    related_app: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @property
    def duration_seconds(self) -> float:
        """Zero until the pause has been completed"""
        if self.end_time is None:
            return 0.0
        return max(0.0, (self.end_time - self.start_time).total_seconds())

    def complete(self, at: datetime) -> bool:
        """Close the pause. Returns False if it was already closed."""
        if self.end_time is not None:
            return False
        self.end_time = at
        return True


class KnownApps:
    """Application identifiers the detectors recognise"""

    MEETING = frozenset({
        "us.zoom.xos",
        "com.microsoft.teams",
        "com.microsoft.teams2",
        "com.google.Chrome.app.kjgfgldnnfoeklkmfkjfagphfepbbdan",
        "com.cisco.webexmeetingsapp",
        "com.cisco.webex.meetings",
        "com.bluejeans.BlueJeans",
        "com.gotomeeting.GoToMeeting",
        "com.logmein.gotomeeting",
        "com.slack.Slack",
        "com.discord.Discord",
        "com.skype.skype",
        "com.facetime",
        "com.apple.FaceTime",
        "com.apple.Keynote",
        "com.microsoft.Powerpoint",
        "com.google.Chrome.app.bojccfnmcnekjgjhcaklmcgofnngpjcl",
        "com.obsproject.obs-studio",
        "com.telestream.wirecast",
        "tv.twitch.studio",
        "com.loom.desktop",
    })

    VIDEO = frozenset({
        "com.apple.QuickTimePlayerX",
        "com.apple.TV",
        "org.videolan.vlc",
        "io.mpv",
        "com.netflix.Netflix",
        "com.disney.disneyplus",
    })

    PRESENTATION = frozenset({
        "com.apple.Keynote",
        "com.microsoft.Powerpoint",
    })

    RECORDING = frozenset({
        "com.obsproject.obs-studio",
        "com.loom.desktop",
        "tv.twitch.studio",
        "com.telestream.wirecast",
    })

    SCREEN_SHARING = frozenset({
        "com.apple.screensharing.agent",
        "com.apple.ScreenSharing",
    })

    # Process names, not bundle identifiers
    SCREEN_SHARING_DAEMONS = frozenset({
        "screensharingd",
        "ScreensharingAgent",
        "Screen Sharing",
    })
