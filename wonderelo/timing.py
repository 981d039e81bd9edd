"""
    confirmationStart  = T0 - confirmationWindowMinutes
    registrationCloses = T0 - safetyWindowMinutes
    matchingInstant    = T0
    walkingDeadline    = matchRevealedAt + walkingTimeMinutes
    roundEnd           = T0 + duration
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .clock import ensure_utc
from .config import DEFAULT_TIMEZONE


class SystemParameters(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    confirmation_window_minutes: int = 5
    safety_window_minutes: int = 6
    walking_time_minutes: int = 3
    finding_time_minutes: int = 1
    networking_duration_minutes: int = 15
    notification_early_minutes: int = 10
    notification_early_enabled: bool = True
    notification_late_minutes: int = 5
    notification_late_enabled: bool = True
    minimal_gap_between_rounds: int = 10
    minimal_round_duration: int = 5
    maximal_round_duration: int = 240
    minimal_time_to_first_round: int = 10
    fire_threshold1: int = 5
    fire_threshold2: int = 10
    fire_threshold3: int = 15
    default_round_duration: int = 10
    default_gap_between_rounds: int = 10
    default_number_of_rounds: int = 1
    default_max_participants: int = 20
    default_group_size: int = 2
    default_limit_participants: bool = False
    default_limit_groups: bool = False

    def popularity(self, registered_count: int) -> int:
        """Number of "fire" marks a round earns for its registration count (0-3)."""
        thresholds = (self.fire_threshold1, self.fire_threshold2, self.fire_threshold3)
        return sum(1 for threshold in thresholds if registered_count >= threshold)


def parse_start_time(value: Union[str, time]) -> time:
    if isinstance(value, time):
        return value
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def round_start_instant(
    round_date: date,
    start_time: Union[str, time],
    tz_name: Optional[str] = None,
) -> datetime:
    """Wall-clock date + "HH:MM" in the event timezone, as an aware UTC instant."""
    tz = ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    local = datetime.combine(round_date, parse_start_time(start_time), tzinfo=tz)
    return local.astimezone(timezone.utc)


@dataclass(frozen=True)
class RoundTiming:
    start: datetime
    duration_minutes: int
    confirmation_window_minutes: int
    safety_window_minutes: int
    walking_time_minutes: int

    @classmethod
    def for_round(
        cls,
        start: datetime,
        params: SystemParameters,
        duration_minutes: Optional[int] = None,
        confirmation_window_minutes: Optional[int] = None,
    ) -> "RoundTiming":
        if confirmation_window_minutes is None:
            confirmation_window_minutes = params.confirmation_window_minutes
        return cls(
            start=ensure_utc(start),
            duration_minutes=duration_minutes if duration_minutes is not None else params.default_round_duration,
            confirmation_window_minutes=confirmation_window_minutes,
            safety_window_minutes=params.safety_window_minutes,
            walking_time_minutes=params.walking_time_minutes,
        )

    @property
    def confirmation_start(self) -> datetime:
        return self.start - timedelta(minutes=self.confirmation_window_minutes)

    @property
    def registration_closes(self) -> datetime:
        return self.start - timedelta(minutes=self.safety_window_minutes)

    @property
    def matching_instant(self) -> datetime:
        return self.start

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def walking_deadline(self, match_revealed_at: Optional[datetime]) -> Optional[datetime]:
        """Only known once a match has been revealed."""
        if match_revealed_at is None:
            return None
        return ensure_utc(match_revealed_at) + timedelta(minutes=self.walking_time_minutes)

    def is_registerable(self, now: datetime) -> bool:
        return ensure_utc(now) < self.registration_closes

    def in_confirmation_window(self, now: datetime) -> bool:
        now = ensure_utc(now)
        return self.confirmation_start <= now < self.matching_instant
