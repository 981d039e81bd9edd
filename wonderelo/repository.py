import logging
import secrets
import string
from datetime import datetime
from typing import Dict, List, Optional

from sqlmodel import Session, select

from .clock import ensure_utc
from .models import (
    AdminSetting,
    AuditLogEntry,
    CheckIn,
    ContactSharing,
    Event,
    Match,
    MatchingLock,
    Participant,
    Registration,
    Round,
)
from .schemas import MatchMember, MatchOut, RegistrationOut, RoundOut
from .statuses import ParticipantStatus
from .timing import RoundTiming, SystemParameters, round_start_instant

logger = logging.getLogger(__name__)

SYSTEM_PARAMETERS_KEY = "system_parameters"
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I


def generate_join_code(n: int = 6) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


def generate_code(n: int = 6) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(n))


def new_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(6)}"


def load_system_parameters(session: Session) -> SystemParameters:
    setting = session.get(AdminSetting, SYSTEM_PARAMETERS_KEY)
    if setting is None:
        return SystemParameters()
    return SystemParameters.model_validate(setting.value or {})


def timing_for_round(round_obj: Round, event: Event, params: SystemParameters) -> RoundTiming:
    start = round_start_instant(round_obj.date, round_obj.start_time, event.timezone)
    return RoundTiming.for_round(
        start,
        params,
        duration_minutes=round_obj.duration,
        confirmation_window_minutes=round_obj.confirmation_window,
    )


def get_participant_by_token(session: Session, token: str) -> Optional[Participant]:
    return session.exec(select(Participant).where(Participant.token == token)).first()


def get_registration(session: Session, participant_id: str, round_id: str) -> Optional[Registration]:
    return session.exec(
        select(Registration).where(
            Registration.participant_id == participant_id,
            Registration.round_id == round_id,
        )
    ).first()


def registrations_for_round(session: Session, round_id: str) -> List[Registration]:
    return list(session.exec(
        select(Registration).where(Registration.round_id == round_id).order_by(Registration.id)
    ).all())


def matching_lock(session: Session, round_id: str) -> Optional[MatchingLock]:
    return session.get(MatchingLock, round_id)


def check_ins_for_match(session: Session, match_id: str) -> List[CheckIn]:
    return list(session.exec(select(CheckIn).where(CheckIn.match_id == match_id)).all())


def contact_preferences(session: Session, match_id: str, participant_id: str) -> Dict[str, bool]:
    row = session.exec(
        select(ContactSharing).where(
            ContactSharing.match_id == match_id,
            ContactSharing.participant_id == participant_id,
        )
    ).first()
    return dict(row.preferences or {}) if row else {}


def audit(session: Session, participant_id: str, action: str, **details) -> None:
    session.add(AuditLogEntry(participant_id=participant_id, action=action, details=details))


def set_status(
    session: Session,
    registration: Registration,
    status: ParticipantStatus,
    now: datetime,
    **details,
) -> None:
    """Change a registration's status and append the audit entry."""
    previous = registration.status
    if previous == status:
        return
    registration.status = status
    registration.last_status_update = now
    session.add(registration)
    audit(
        session,
        registration.participant_id,
        "status-change",
        round_id=registration.round_id,
        previous=ParticipantStatus(previous).value,
        status=status.value,
        **details,
    )
    logger.info(
        "participant %s round %s: %s -> %s",
        registration.participant_id, registration.round_id,
        ParticipantStatus(previous).value, status.value,
    )


def round_to_out(round_obj: Round, event: Event) -> RoundOut:
    return RoundOut(
        id=round_obj.id,
        event_id=event.id,
        name=round_obj.name,
        date=round_obj.date,
        start_time=round_obj.start_time,
        duration=round_obj.duration,
        timezone=event.timezone,
        starts_at=round_start_instant(round_obj.date, round_obj.start_time, event.timezone),
        confirmation_window=round_obj.confirmation_window,
        status=round_obj.status,
    )


def registration_to_out(session: Session, registration: Registration) -> RegistrationOut:
    round_obj = session.get(Round, registration.round_id)
    return RegistrationOut(
        round_id=registration.round_id,
        event_id=registration.event_id,
        round_name=round_obj.name if round_obj else "Round",
        status=registration.status,
        match_id=registration.match_id,
        registered_at=ensure_utc(registration.registered_at),
        confirmed_at=ensure_utc(registration.confirmed_at),
    )


def match_to_out(session: Session, match: Match, timing: RoundTiming, event: Event) -> MatchOut:
    members = []
    for participant_id in match.participant_ids:
        participant = session.get(Participant, participant_id)
        if participant is not None:
            members.append(MatchMember(
                id=participant.id,
                first_name=participant.first_name,
                last_name=participant.last_name,
            ))
    return MatchOut(
        id=match.id,
        event_id=match.event_id,
        round_id=match.round_id,
        participant_ids=list(match.participant_ids),
        participants=members,
        meeting_point=match.meeting_point,
        identification_image=match.identification_image,
        check_ins=[c.participant_id for c in check_ins_for_match(session, match.id)],
        created_at=ensure_utc(match.created_at),
        revealed_at=ensure_utc(match.revealed_at),
        meet_confirmed_at=ensure_utc(match.meet_confirmed_at),
        networking_end_at=ensure_utc(match.networking_end_at),
        walking_deadline=timing.walking_deadline(ensure_utc(match.revealed_at)),
        ice_breakers=list(event.ice_breakers or []),
    )
