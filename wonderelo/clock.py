from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they were written as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(raw: str) -> datetime:
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


class SystemClock:
    simulated = False

    def now(self) -> datetime:
        return utcnow()


class SimulatedClock:
    """
    Real time shifted by a fixed offset, so simulated time keeps running.

    `travel_to(instant)` sets the offset; `reset()` goes back to real time.
    """

    def __init__(self, offset: timedelta = timedelta(0)):
        self.offset = offset

    @property
    def simulated(self) -> bool:
        return self.offset != timedelta(0)

    def now(self) -> datetime:
        return utcnow() + self.offset

    def travel_to(self, instant: datetime) -> None:
        self.offset = ensure_utc(instant) - utcnow()

    def reset(self) -> None:
        self.offset = timedelta(0)


class FixedClock:
    """A clock that only moves when told to."""

    simulated = True

    def __init__(self, instant: datetime):
        self.instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = ensure_utc(instant)

    def advance(self, **delta) -> datetime:
        self.instant = self.instant + timedelta(**delta)
        return self.instant


class ServerSyncedClock:
    """
    Wraps a local clock and corrects it by the skew observed against the
    server's `serverTime`, so phase boundaries line up with the backend.
    """

    def __init__(self, base=None):
        self.base = base or SystemClock()
        self.skew = timedelta(0)

    @property
    def simulated(self) -> bool:
        return getattr(self.base, "simulated", False)

    def observe(self, server_time: Optional[datetime], local_time: Optional[datetime] = None) -> None:
        if server_time is None:
            return
        local = local_time or self.base.now()
        self.skew = ensure_utc(server_time) - ensure_utc(local)

    def now(self) -> datetime:
        return self.base.now() + self.skew
