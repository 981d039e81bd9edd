import logging
import secrets
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import Session, select
from starlette.exceptions import HTTPException as StarletteHTTPException

from .clock import ensure_utc, parse_instant, utcnow
from .config import Settings, get_settings
from .db import create_db_and_tables, get_session
from .matching import complete_if_over, handle_no_show, record_presence, run_matching
from .models import AuditLogEntry, ContactSharing, Event, Match, Participant, Registration, Round
from .repository import (
    audit,
    contact_preferences,
    generate_code,
    generate_join_code,
    get_participant_by_token,
    get_registration,
    load_system_parameters,
    match_to_out,
    matching_lock,
    new_id,
    registration_to_out,
    round_to_out,
    set_status,
    timing_for_round,
)
from .schemas import (
    AuditEntryOut,
    CheckInIn,
    ConfirmOut,
    ContactCard,
    ContactSharingIn,
    ContactSharingOut,
    DashboardOut,
    EventCreate,
    EventOut,
    MatchingResultOut,
    MatchOut,
    MeetOut,
    NoShowIn,
    NoShowOut,
    RegisterIn,
    RegisterOut,
    SharedContactOut,
    StatusOut,
)
from .statuses import MATCH_STATUSES, ParticipantStatus
from .timing import SystemParameters

logger = logging.getLogger(__name__)

# confirming again from any of these is a no-op
ALREADY_CONFIRMED = frozenset({
    ParticipantStatus.CONFIRMED,
    ParticipantStatus.WAITING_FOR_MATCH,
    ParticipantStatus.COMPLETED,
}) | MATCH_STATUSES

app = FastAPI(title="Wonderelo API")


class ApiProblem(HTTPException):
    """HTTPException with a machine-readable reason code for the client."""

    def __init__(self, status_code: int, detail: str, reason: Optional[str] = None):
        super().__init__(status_code=status_code, detail=detail)
        self.reason = reason


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": str(exc.detail), "reason": getattr(exc, "reason", None)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else "Invalid request"
    return JSONResponse({"error": message, "reason": "validation"}, status_code=422)


@app.on_event("startup")
def on_startup():
    create_db_and_tables()


def get_now(
    x_test_time: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> datetime:
    if x_test_time and settings.allow_test_time:
        try:
            return parse_instant(x_test_time)
        except ValueError:
            raise ApiProblem(400, "X-Test-Time must be an ISO 8601 instant", "validation")
    return utcnow()


def get_bearer(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise ApiProblem(401, "Missing bearer token", "invalid-token")
    return authorization.split(" ", 1)[1].strip()


def require_anon_key(token: str = Depends(get_bearer), settings: Settings = Depends(get_settings)) -> str:
    if token != settings.anon_key:
        raise ApiProblem(401, "Invalid API key", "invalid-token")
    return token


def get_caller(token: str = Depends(get_bearer), session: Session = Depends(get_session)) -> Participant:
    participant = get_participant_by_token(session, token)
    if participant is None:
        raise ApiProblem(401, "Invalid token", "invalid-token")
    return participant


def require_self(participant_id: str, caller: Participant) -> None:
    if caller.id != participant_id:
        raise ApiProblem(403, "Token does not belong to this participant", "forbidden")


def load_round(session: Session, round_id: str):
    round_obj = session.get(Round, round_id)
    if round_obj is None:
        raise ApiProblem(404, "Round not found", "not-found")
    event = session.get(Event, round_obj.event_id)
    return round_obj, event


def load_registration(session: Session, participant_id: str, round_id: str) -> Registration:
    registration = get_registration(session, participant_id, round_id)
    if registration is None:
        raise ApiProblem(404, "Registration not found", "not-found")
    return registration


def load_active_match(session: Session, registration: Registration) -> Match:
    if registration.status == ParticipantStatus.NO_MATCH:
        raise ApiProblem(404, registration.no_match_reason or "You could not be matched with other participants", "no-match")
    match = session.get(Match, registration.match_id) if registration.match_id else None
    if match is None or registration.status not in MATCH_STATUSES:
        raise ApiProblem(404, "No active match found", "not-ready")
    return match


@app.get("/")
def read_root():
    return {"status": "ok", "message": "Wonderelo API"}


@app.get("/system-parameters", response_model=SystemParameters)
def system_parameters(session: Session = Depends(get_session)):
    return load_system_parameters(session)


@app.post("/events", response_model=EventOut, dependencies=[Depends(require_anon_key)])
def create_event(payload: EventCreate, session: Session = Depends(get_session), settings: Settings = Depends(get_settings)):
    join_code = generate_join_code()
    while session.exec(select(Event).where(Event.join_code == join_code)).first():
        join_code = generate_join_code()

    event = Event(
        title=payload.title,
        join_code=join_code,
        timezone=payload.timezone or settings.timezone,
        matching_type=payload.matching_type,
        group_size=payload.group_size,
        meeting_points=list(payload.meeting_points),
        ice_breakers=list(payload.ice_breakers),
    )
    session.add(event)
    session.commit()
    session.refresh(event)

    rounds = []
    for order, round_in in enumerate(payload.rounds):
        round_obj = Round(
            id=new_id("round"),
            event_id=event.id,
            name=round_in.name,
            date=round_in.date,
            start_time=round_in.start_time,
            duration=round_in.duration,
            group_size=round_in.group_size,
            meeting_points=list(round_in.meeting_points),
            confirmation_window=round_in.confirmation_window,
            sort_order=order,
        )
        session.add(round_obj)
        rounds.append(round_obj)
    session.commit()

    logger.info("event %s created with %d round(s), join code %s", event.id, len(rounds), event.join_code)
    return EventOut(
        id=event.id,
        title=event.title,
        join_code=event.join_code,
        timezone=event.timezone,
        rounds=[round_to_out(r, event) for r in rounds],
    )


@app.post("/events/{join_code}/register", response_model=RegisterOut, dependencies=[Depends(require_anon_key)])
def register(join_code: str, payload: RegisterIn, session: Session = Depends(get_session), now: datetime = Depends(get_now)):
    event = session.exec(select(Event).where(Event.join_code == join_code)).first()
    if not event:
        raise ApiProblem(404, "Event not found", "not-found")
    if not payload.round_ids:
        raise ApiProblem(400, "Choose at least one round", "validation")

    params = load_system_parameters(session)
    rounds = []
    for round_id in payload.round_ids:
        round_obj = session.get(Round, round_id)
        if round_obj is None or round_obj.event_id != event.id:
            raise ApiProblem(404, f"Round {round_id} not found", "not-found")
        if not timing_for_round(round_obj, event, params).is_registerable(now):
            raise ApiProblem(400, f"Registration for {round_obj.name} is closed", "registration-closed")
        rounds.append(round_obj)

    participant = session.exec(select(Participant).where(Participant.email == payload.email)).first()
    if participant is None:
        participant = Participant(
            id=new_id("participant"),
            email=payload.email,
            token=secrets.token_urlsafe(24),
            code=generate_code(),
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
        )
        session.add(participant)
        session.flush()

    for round_obj in rounds:
        if get_registration(session, participant.id, round_obj.id):
            raise ApiProblem(400, f"Participant with this email is already registered for {round_obj.name}", "validation")
        session.add(Registration(
            participant_id=participant.id,
            event_id=event.id,
            round_id=round_obj.id,
            team=payload.team,
            topics=list(payload.topics),
            registered_at=now,
            last_status_update=now,
        ))
        audit(session, participant.id, "registered", round_id=round_obj.id)
    session.commit()

    logger.info("participant %s registered for %s", participant.id, ", ".join(r.id for r in rounds))
    registrations = session.exec(select(Registration).where(Registration.participant_id == participant.id)).all()
    return RegisterOut(
        participant_id=participant.id,
        token=participant.token,
        code=participant.code,
        registrations=[registration_to_out(session, r) for r in registrations],
    )


@app.get("/p/{token}", response_model=DashboardOut)
def dashboard(token: str, session: Session = Depends(get_session)):
    participant = get_participant_by_token(session, token)
    if participant is None:
        raise ApiProblem(404, "Invalid token", "invalid-token")
    registrations = session.exec(select(Registration).where(Registration.participant_id == participant.id)).all()
    return DashboardOut(
        participant_id=participant.id,
        email=participant.email,
        first_name=participant.first_name,
        last_name=participant.last_name,
        phone=participant.phone,
        code=participant.code,
        registrations=[registration_to_out(session, r) for r in registrations],
    )


@app.get("/p/{token}/shared-contacts", response_model=List[SharedContactOut])
def shared_contacts(token: str, session: Session = Depends(get_session)):
    participant = get_participant_by_token(session, token)
    if participant is None:
        raise ApiProblem(404, "Invalid token", "invalid-token")

    contacts = []
    mine = session.exec(select(ContactSharing).where(ContactSharing.participant_id == participant.id)).all()
    for my_prefs in mine:
        match = session.get(Match, my_prefs.match_id)
        round_obj = session.get(Round, match.round_id) if match else None
        for partner_id, shared in (my_prefs.preferences or {}).items():
            if not shared:
                continue
            theirs = contact_preferences(session, my_prefs.match_id, partner_id)
            if theirs.get(participant.id) is not True:
                continue
            partner = session.get(Participant, partner_id)
            if partner is None:
                continue
            contacts.append(SharedContactOut(
                match_id=my_prefs.match_id,
                round_name=round_obj.name if round_obj else "Round",
                partner=ContactCard(
                    first_name=partner.first_name,
                    last_name=partner.last_name,
                    email=partner.email,
                    phone=partner.phone,
                ),
                shared_at=ensure_utc(my_prefs.updated_at),
            ))
    return contacts


@app.get("/rounds/{round_id}/participants/{participant_id}/status", response_model=StatusOut)
def participant_status(
    round_id: str,
    participant_id: str,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    require_self(participant_id, caller)
    round_obj, event = load_round(session, round_id)
    registration = load_registration(session, participant_id, round_id)
    params = load_system_parameters(session)
    timing = timing_for_round(round_obj, event, params)

    # matching is triggered by whoever asks first at or after T-0
    if now >= timing.matching_instant and matching_lock(session, round_id) is None:
        run_matching(session, round_obj, event, now)
        session.refresh(registration)

    match = session.get(Match, registration.match_id) if registration.match_id else None
    complete_if_over(session, registration, match, now)

    reason = None
    if registration.status == ParticipantStatus.NO_MATCH:
        reason = registration.no_match_reason
    elif registration.status in (ParticipantStatus.UNCONFIRMED, ParticipantStatus.CANCELLED):
        reason = registration.unconfirmed_reason

    return StatusOut(
        round_id=round_id,
        participant_id=participant_id,
        status=registration.status,
        match=match_to_out(session, match, timing, event) if match else None,
        contact_sharing=contact_preferences(session, match.id, participant_id) if match else {},
        server_time=now,
        reason=reason,
        my_code=caller.code,
        round=round_to_out(round_obj, event),
    )


@app.get("/rounds/{round_id}/participants/{participant_id}/match", response_model=MatchOut)
def participant_match(
    round_id: str,
    participant_id: str,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
):
    require_self(participant_id, caller)
    round_obj, event = load_round(session, round_id)
    registration = load_registration(session, participant_id, round_id)
    match = load_active_match(session, registration)
    return match_to_out(session, match, timing_for_round(round_obj, event, load_system_parameters(session)), event)


@app.post("/rounds/{round_id}/participants/{participant_id}/confirm", response_model=ConfirmOut)
def confirm_attendance(
    round_id: str,
    participant_id: str,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    require_self(participant_id, caller)
    round_obj, event = load_round(session, round_id)
    registration = load_registration(session, participant_id, round_id)

    if registration.status in ALREADY_CONFIRMED:
        return ConfirmOut(
            status=registration.status,
            confirmed_at=ensure_utc(registration.confirmed_at or registration.last_status_update),
            message="Attendance already confirmed",
        )
    if registration.status != ParticipantStatus.REGISTERED:
        raise ApiProblem(
            400,
            f'Round status is "{ParticipantStatus(registration.status).value}". Cannot confirm this round.',
            "invalid-status",
        )

    timing = timing_for_round(round_obj, event, load_system_parameters(session))
    if now >= timing.matching_instant:
        raise ApiProblem(400, "The round has already started. You can no longer confirm attendance.", "window-closed")
    if now < timing.confirmation_start:
        raise ApiProblem(400, "The confirmation window has not opened yet.", "window-closed")

    registration.confirmed_at = now
    set_status(session, registration, ParticipantStatus.CONFIRMED, now)
    session.commit()
    return ConfirmOut(status=ParticipantStatus.CONFIRMED, confirmed_at=now, message="Attendance confirmed")


@app.post("/rounds/{round_id}/participants/{participant_id}/decline", response_model=ConfirmOut)
def decline_attendance(
    round_id: str,
    participant_id: str,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    require_self(participant_id, caller)
    round_obj, event = load_round(session, round_id)
    registration = load_registration(session, participant_id, round_id)

    if registration.status == ParticipantStatus.CANCELLED:
        return ConfirmOut(status=registration.status, message="Participation already declined")
    if registration.status not in (ParticipantStatus.REGISTERED, ParticipantStatus.CONFIRMED):
        raise ApiProblem(
            400,
            f'Round status is "{ParticipantStatus(registration.status).value}". Cannot decline this round.',
            "invalid-status",
        )
    timing = timing_for_round(round_obj, event, load_system_parameters(session))
    if now >= timing.matching_instant:
        raise ApiProblem(400, "The round has already started.", "window-closed")

    registration.unconfirmed_reason = "You declined to take part in this round"
    set_status(session, registration, ParticipantStatus.CANCELLED, now, reason="declined")
    session.commit()
    logger.info("participant %s declined round %s", participant_id, round_id)
    return ConfirmOut(status=ParticipantStatus.CANCELLED, message="Participation declined")


@app.post("/rounds/{round_id}/participants/{participant_id}/check-in", response_model=MeetOut)
def check_in(
    round_id: str,
    participant_id: str,
    payload: CheckInIn,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    require_self(participant_id, caller)
    round_obj, event = load_round(session, round_id)
    registration = load_registration(session, participant_id, round_id)
    match = load_active_match(session, registration)

    code = payload.scanned_code.strip().upper()
    if not code:
        raise ApiProblem(400, "Please enter a participant code", "invalid-code")
    partner = None
    for member_id in match.participant_ids:
        if member_id == participant_id:
            continue
        member = session.get(Participant, member_id)
        if member is not None and member.code.upper() == code:
            partner = member
    if partner is None:
        raise ApiProblem(400, "This code does not belong to anyone in your group", "invalid-code")

    params = load_system_parameters(session)
    timing = timing_for_round(round_obj, event, params)
    quorum = record_presence(session, match, registration, timing, now, scanned_participant_id=partner.id)
    session.refresh(registration)
    session.refresh(match)
    return MeetOut(status=registration.status, quorum=quorum, match=match_to_out(session, match, timing, event))


@app.post("/rounds/{round_id}/participants/{participant_id}/confirm-meet", response_model=MeetOut)
def confirm_meet(
    round_id: str,
    participant_id: str,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    require_self(participant_id, caller)
    round_obj, event = load_round(session, round_id)
    registration = load_registration(session, participant_id, round_id)
    match = load_active_match(session, registration)

    # allowed after the walking deadline as well
    params = load_system_parameters(session)
    timing = timing_for_round(round_obj, event, params)
    quorum = record_presence(session, match, registration, timing, now)
    session.refresh(registration)
    session.refresh(match)
    return MeetOut(status=registration.status, quorum=quorum, match=match_to_out(session, match, timing, event))


@app.post("/rounds/{round_id}/no-show", response_model=NoShowOut)
def report_no_show(
    round_id: str,
    payload: NoShowIn,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    require_self(payload.participant_id, caller)
    if payload.no_show_participant_id == payload.participant_id:
        raise ApiProblem(400, "You cannot report yourself", "validation")

    round_obj, event = load_round(session, round_id)
    reporter = load_registration(session, payload.participant_id, round_id)
    match = load_active_match(session, reporter)
    if payload.no_show_participant_id not in match.participant_ids:
        raise ApiProblem(400, "That participant is not in your group", "validation")
    no_show = load_registration(session, payload.no_show_participant_id, round_id)

    params = load_system_parameters(session)
    timing = timing_for_round(round_obj, event, params)
    new_match = handle_no_show(session, round_obj, event, reporter, no_show, payload.notes, timing, now)
    session.refresh(reporter)
    return NoShowOut(
        status=reporter.status,
        new_match=match_to_out(session, new_match, timing, event) if new_match else None,
    )


@app.post("/matches/{match_id}/contact-sharing", response_model=ContactSharingOut)
def submit_contact_sharing(
    match_id: str,
    payload: ContactSharingIn,
    caller: Participant = Depends(get_caller),
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    require_self(payload.participant_id, caller)
    match = session.get(Match, match_id)
    if match is None:
        raise ApiProblem(404, "Match not found", "not-found")
    registration = get_registration(session, caller.id, match.round_id)
    if registration is None or registration.match_id != match_id:
        raise ApiProblem(403, "You are not part of this match", "forbidden")

    partners = set(match.participant_ids) - {caller.id}
    unknown = set(payload.preferences) - partners
    if unknown:
        raise ApiProblem(400, "Preferences may only name your partners", "validation")

    row = session.exec(
        select(ContactSharing).where(ContactSharing.match_id == match_id, ContactSharing.participant_id == caller.id)
    ).first()
    if row is None:
        row = ContactSharing(match_id=match_id, participant_id=caller.id)
    row.preferences = dict(payload.preferences)
    row.updated_at = now
    session.add(row)
    audit(session, caller.id, "contact-sharing", match_id=match_id, preferences=dict(payload.preferences))
    session.commit()
    return ContactSharingOut(preferences=contact_preferences(session, match_id, caller.id))


@app.post("/rounds/{round_id}/auto-match", response_model=MatchingResultOut, dependencies=[Depends(require_anon_key)])
def auto_match(round_id: str, session: Session = Depends(get_session), now: datetime = Depends(get_now)):
    round_obj, event = load_round(session, round_id)
    return run_matching(session, round_obj, event, now)


@app.get(
    "/admin/participants/{participant_id}/audit-log",
    response_model=List[AuditEntryOut],
    dependencies=[Depends(require_anon_key)],
)
def audit_log(participant_id: str, session: Session = Depends(get_session)):
    entries = session.exec(
        select(AuditLogEntry)
        .where(AuditLogEntry.participant_id == participant_id)
        .order_by(AuditLogEntry.created_at, AuditLogEntry.id)
    ).all()
    return [AuditEntryOut(action=e.action, details=e.details or {}, created_at=ensure_utc(e.created_at)) for e in entries]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("wonderelo.main:app", host="127.0.0.1", port=8000, reload=True)
