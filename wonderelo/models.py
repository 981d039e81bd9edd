from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from .clock import utcnow
from .config import DEFAULT_TIMEZONE
from .statuses import ParticipantStatus


class Event(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    join_code: str = Field(index=True, unique=True)
    timezone: str = Field(default=DEFAULT_TIMEZONE)
    matching_type: str = Field(default="across-teams")  # across-teams / within-teams
    group_size: int = Field(default=2)
    meeting_points: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    ice_breakers: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class Round(SQLModel, table=True):
    id: str = Field(primary_key=True)
    event_id: int = Field(index=True, foreign_key="event.id")
    name: str
    date: date
    start_time: str  # "HH:MM" in the event timezone
    duration: int = Field(default=10)
    group_size: Optional[int] = Field(default=None)
    meeting_points: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    confirmation_window: Optional[int] = Field(default=None)  # minutes, overrides the system parameter
    status: str = Field(default="scheduled")
    sort_order: int = Field(default=0)


class Participant(SQLModel, table=True):
    id: str = Field(primary_key=True)
    email: str = Field(index=True, unique=True)
    token: str = Field(index=True, unique=True)
    code: str = Field(index=True)  # shown to partners for the check-in exchange
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email


class Registration(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("participant_id", "round_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    participant_id: str = Field(index=True, foreign_key="participant.id")
    event_id: int = Field(index=True, foreign_key="event.id")
    round_id: str = Field(index=True, foreign_key="round.id")
    status: ParticipantStatus = Field(default=ParticipantStatus.REGISTERED)
    team: Optional[str] = None
    topics: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    match_id: Optional[str] = Field(default=None, index=True)
    rematch_requested: bool = Field(default=False)
    registered_at: datetime = Field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None
    matched_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    met_at: Optional[datetime] = None
    last_status_update: datetime = Field(default_factory=utcnow)
    unconfirmed_reason: Optional[str] = None
    no_match_reason: Optional[str] = None


class Match(SQLModel, table=True):
    id: str = Field(primary_key=True)
    event_id: int = Field(index=True, foreign_key="event.id")
    round_id: str = Field(index=True, foreign_key="round.id")
    participant_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    meeting_point: str = Field(default="TBD")
    identification_image: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    revealed_at: Optional[datetime] = None
    meet_confirmed_at: Optional[datetime] = None
    networking_end_at: Optional[datetime] = None


class CheckIn(SQLModel, table=True):
    """One member vouching that they are at the meeting point (code exchange or "we met")."""
    __table_args__ = (UniqueConstraint("match_id", "participant_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(index=True, foreign_key="match.id")
    participant_id: str = Field(foreign_key="participant.id")
    scanned_participant_id: Optional[str] = None  # None = confirmed without a code
    created_at: datetime = Field(default_factory=utcnow)


class ContactSharing(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("match_id", "participant_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(index=True, foreign_key="match.id")
    participant_id: str = Field(foreign_key="participant.id")
    preferences: Dict[str, bool] = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=utcnow)


class MatchingLock(SQLModel, table=True):
    round_id: str = Field(primary_key=True, foreign_key="round.id")
    completed_at: datetime = Field(default_factory=utcnow)
    match_count: int = 0
    unmatched_count: int = 0
    solo_participant: bool = False


class AuditLogEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    participant_id: str = Field(index=True)
    action: str
    details: Dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class AdminSetting(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: Dict = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=utcnow)
