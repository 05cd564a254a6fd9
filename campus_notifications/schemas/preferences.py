"""Notification preference schemas."""
from enum import Enum
from typing import Dict

from pydantic import Field

from campus_notifications.schemas.notification import CamelModel

TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class NotificationChannel(str, Enum):
    IN_APP = "inApp"
    PUSH = "push"      # push delivery is disabled; kept so server documents round-trip


class FrequencyType(str, Enum):
    INSTANT = "instant"
    DIGEST = "digest"
    WEEKLY = "weekly"


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class ChannelPreferences(CamelModel):
    enabled: bool = True
    # type -> enabled; a missing entry means enabled
    types: Dict[str, bool] = Field(default_factory=dict)


class FrequencyPreferences(CamelModel):
    """Exactly one mode is active; digest_time / weekly_day are kept even when their mode is not."""
    type: FrequencyType = FrequencyType.INSTANT
    digest_time: str = Field(default="09:00", pattern=TIME_OF_DAY_PATTERN)
    weekly_day: Weekday = Weekday.MONDAY


class QuietHours(CamelModel):
    """Window during which local feedback is suppressed. start > end means it wraps midnight."""
    enabled: bool = False
    start_time: str = Field(default="22:00", pattern=TIME_OF_DAY_PATTERN)
    end_time: str = Field(default="08:00", pattern=TIME_OF_DAY_PATTERN)


class NotificationPreferences(CamelModel):
    in_app: ChannelPreferences = Field(default_factory=ChannelPreferences)
    push: ChannelPreferences = Field(default_factory=lambda: ChannelPreferences(enabled=False))
    frequency: FrequencyPreferences = Field(default_factory=FrequencyPreferences)
    quiet_hours: QuietHours = Field(default_factory=QuietHours)

    def channel(self, channel: NotificationChannel) -> ChannelPreferences:
        return self.in_app if channel == NotificationChannel.IN_APP else self.push


class TypePreferenceUpdate(CamelModel):
    """Body of PUT /preferences/type."""
    type: str
    channel: NotificationChannel = NotificationChannel.IN_APP
    enabled: bool


def default_preferences() -> NotificationPreferences:
    """Shape used when the server's preferences cannot be loaded: in-app on, push off."""
    return NotificationPreferences()
