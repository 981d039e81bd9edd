"""Wire models: snake_case in Python, camelCase on the wire."""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .statuses import ParticipantStatus


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoundCreate(ApiModel):
    name: str
    date: date
    start_time: str
    duration: int = 10
    group_size: Optional[int] = None
    meeting_points: List[str] = Field(default_factory=list)
    confirmation_window: Optional[int] = None


class EventCreate(ApiModel):
    title: str
    timezone: Optional[str] = None
    matching_type: str = "across-teams"
    group_size: int = 2
    meeting_points: List[str] = Field(default_factory=list)
    ice_breakers: List[str] = Field(default_factory=list)
    rounds: List[RoundCreate] = Field(default_factory=list)


class RoundOut(ApiModel):
    id: str
    event_id: int
    name: str
    date: date
    start_time: str
    duration: int
    timezone: str
    starts_at: datetime
    confirmation_window: Optional[int] = None
    status: str = "scheduled"


class EventOut(ApiModel):
    id: int
    title: str
    join_code: str
    timezone: str
    rounds: List[RoundOut] = Field(default_factory=list)


class RegisterIn(ApiModel):
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    round_ids: List[str]
    team: Optional[str] = None
    topics: List[str] = Field(default_factory=list)


class RegistrationOut(ApiModel):
    round_id: str
    event_id: int
    round_name: str
    status: ParticipantStatus
    match_id: Optional[str] = None
    registered_at: datetime
    confirmed_at: Optional[datetime] = None


class RegisterOut(ApiModel):
    participant_id: str
    token: str
    code: str
    registrations: List[RegistrationOut]


class DashboardOut(ApiModel):
    participant_id: str
    email: str
    first_name: str
    last_name: str
    phone: str
    code: str
    registrations: List[RegistrationOut]


class MatchMember(ApiModel):
    id: str
    first_name: str
    last_name: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id


class MatchOut(ApiModel):
    id: str
    event_id: int
    round_id: str
    participant_ids: List[str]
    participants: List[MatchMember] = Field(default_factory=list)
    meeting_point: str = "TBD"
    identification_image: Optional[str] = None
    check_ins: List[str] = Field(default_factory=list)
    created_at: datetime
    revealed_at: Optional[datetime] = None
    meet_confirmed_at: Optional[datetime] = None
    networking_end_at: Optional[datetime] = None
    walking_deadline: Optional[datetime] = None
    ice_breakers: List[str] = Field(default_factory=list)

    def partners(self, participant_id: str) -> List[MatchMember]:
        return [p for p in self.participants if p.id != participant_id]


class StatusOut(ApiModel):
    round_id: str
    participant_id: str
    status: ParticipantStatus
    match: Optional[MatchOut] = None
    contact_sharing: Dict[str, bool] = Field(default_factory=dict)
    server_time: datetime
    reason: Optional[str] = None
    my_code: Optional[str] = None
    round: Optional[RoundOut] = None


class ConfirmOut(ApiModel):
    status: ParticipantStatus
    confirmed_at: Optional[datetime] = None
    message: str = ""


class CheckInIn(ApiModel):
    scanned_code: str


class MeetOut(ApiModel):
    status: ParticipantStatus
    quorum: bool
    match: MatchOut


class NoShowIn(ApiModel):
    participant_id: str
    no_show_participant_id: str
    notes: str = ""


class NoShowOut(ApiModel):
    success: bool = True
    status: ParticipantStatus
    new_match: Optional[MatchOut] = None


class ContactSharingIn(ApiModel):
    participant_id: str
    preferences: Dict[str, bool]


class ContactSharingOut(ApiModel):
    success: bool = True
    preferences: Dict[str, bool]


class ContactCard(ApiModel):
    first_name: str
    last_name: str
    email: str
    phone: str = ""


class SharedContactOut(ApiModel):
    match_id: str
    round_name: str
    partner: ContactCard
    shared_at: Optional[datetime] = None


class MatchingResultOut(ApiModel):
    already_completed: bool
    match_count: int = 0
    unmatched_count: int = 0
    message: str = ""


class AuditEntryOut(ApiModel):
    action: str
    details: Dict = Field(default_factory=dict)
    created_at: datetime
