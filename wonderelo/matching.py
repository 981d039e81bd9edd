"""Matching run, check-in quorum and no-show rematching."""

import logging
import random
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlmodel import Session, select

from .clock import ensure_utc
from .models import CheckIn, Event, Match, MatchingLock, Registration, Round
from .repository import (
    check_ins_for_match,
    get_registration,
    matching_lock,
    new_id,
    registrations_for_round,
    set_status,
)
from .schemas import MatchingResultOut
from .statuses import ParticipantStatus
from .timing import RoundTiming

logger = logging.getLogger(__name__)

MEETING_MEMORY_POINTS = 30
TEAM_POINTS = 20
TOPIC_POINTS = 10

UNCONFIRMED_REASON = "Did not confirm attendance before round start (T-0)"
SOLO_REASON = "You were the only participant who confirmed attendance"
LEFTOVER_REASON = "Could not find a suitable match"

IDENTIFICATION_IMAGES = [
    "red-circle", "blue-triangle", "green-square", "orange-star",
    "purple-hexagon", "yellow-diamond", "teal-heart", "pink-cloud",
]


def meeting_history(session: Session, event_id: int, participant_ids: Sequence[str]) -> Dict[str, Set[str]]:
    """participant id -> ids they already shared a match with in this event."""
    history: Dict[str, Set[str]] = {pid: set() for pid in participant_ids}
    for match in session.exec(select(Match).where(Match.event_id == event_id)).all():
        ids = list(match.participant_ids or [])
        for i, first in enumerate(ids):
            for second in ids[i + 1:]:
                if first in history:
                    history[first].add(second)
                if second in history:
                    history[second].add(first)
    return history


def pair_score(a: Registration, b: Registration, history: Dict[str, Set[str]], matching_type: str) -> int:
    score = 0
    if b.participant_id not in history.get(a.participant_id, set()):
        score += MEETING_MEMORY_POINTS

    if a.team and b.team:
        if matching_type == "across-teams" and a.team != b.team:
            score += TEAM_POINTS
        elif matching_type == "within-teams" and a.team == b.team:
            score += TEAM_POINTS

    if set(a.topics or []) & set(b.topics or []):
        score += TOPIC_POINTS
    return score


def _best_group(
    available: List[Registration],
    group_size: int,
    scores: Dict[Tuple[str, str], int],
) -> List[Registration]:
    def score_of(x: Registration, y: Registration) -> int:
        return scores.get((x.participant_id, y.participant_id), scores.get((y.participant_id, x.participant_id), 0))

    pairs = []
    for i, first in enumerate(available):
        for second in available[i + 1:]:
            pairs.append((score_of(first, second), first, second))
    if not pairs:
        return []

    if group_size == 2:
        best = max(pairs, key=lambda item: item[0])
        return [best[1], best[2]]

    # grow each pair (best first) into a full group, keep the highest total
    pairs.sort(key=lambda item: item[0], reverse=True)
    best_group: List[Registration] = []
    best_total = None
    for pair_total, first, second in pairs:
        group = [first, second]
        total = pair_total
        for candidate in available:
            if len(group) >= group_size:
                break
            if candidate in group:
                continue
            total += sum(score_of(member, candidate) for member in group)
            group.append(candidate)
        if len(group) == group_size and (best_total is None or total > best_total):
            best_total = total
            best_group = group
    return best_group


def group_registrations(
    registrations: List[Registration],
    group_size: int,
    history: Dict[str, Set[str]],
    matching_type: str = "across-teams",
    rng: Optional[random.Random] = None,
) -> Tuple[List[List[Registration]], List[Registration]]:
    """Greedy grouping; returns (groups, leftovers)."""
    available = list(registrations)
    # shuffle so equal scores do not always favour registration order
    (rng or random).shuffle(available)

    scores: Dict[Tuple[str, str], int] = {}
    for i, first in enumerate(available):
        for second in available[i + 1:]:
            scores[(first.participant_id, second.participant_id)] = pair_score(first, second, history, matching_type)

    groups: List[List[Registration]] = []
    while len(available) >= group_size:
        group = _best_group(available, group_size, scores)
        if not group:
            break
        for member in group:
            available.remove(member)
        groups.append(group)

    leftovers = available
    if len(leftovers) == 1 and groups:
        smallest = min(groups, key=len)
        smallest.append(leftovers[0])
        leftovers = []
    return groups, leftovers


def _meeting_point(round_obj: Round, event: Event, index: int) -> str:
    points = list(round_obj.meeting_points or []) or list(event.meeting_points or [])
    if not points:
        return "TBD"
    return points[index % len(points)]


def _create_match(
    session: Session,
    round_obj: Round,
    event: Event,
    members: List[Registration],
    now: datetime,
    index: int,
) -> Match:
    match = Match(
        id=new_id("match"),
        event_id=event.id,
        round_id=round_obj.id,
        participant_ids=[r.participant_id for r in members],
        meeting_point=_meeting_point(round_obj, event, index),
        identification_image=IDENTIFICATION_IMAGES[index % len(IDENTIFICATION_IMAGES)],
        created_at=now,
        revealed_at=now,
    )
    session.add(match)
    for registration in members:
        registration.match_id = match.id
        registration.matched_at = now
        registration.rematch_requested = False
        set_status(session, registration, ParticipantStatus.MATCHED, now, match_id=match.id)
    return match


def run_matching(
    session: Session,
    round_obj: Round,
    event: Event,
    now: datetime,
    rng: Optional[random.Random] = None,
) -> MatchingResultOut:
    if matching_lock(session, round_obj.id) is not None:
        return MatchingResultOut(already_completed=True, message="Matching already completed")

    logger.info("matching start: event=%s round=%s", event.id, round_obj.id)
    registrations = registrations_for_round(session, round_obj.id)

    for registration in registrations:
        if registration.status == ParticipantStatus.REGISTERED:
            registration.unconfirmed_reason = UNCONFIRMED_REASON
            set_status(session, registration, ParticipantStatus.UNCONFIRMED, now, reason=UNCONFIRMED_REASON)

    confirmed = [r for r in registrations if r.status == ParticipantStatus.CONFIRMED]
    lock = MatchingLock(round_id=round_obj.id, completed_at=now)

    if not confirmed:
        session.add(lock)
        session.commit()
        return MatchingResultOut(already_completed=False, message="No participants to match")

    if len(confirmed) == 1:
        solo = confirmed[0]
        solo.no_match_reason = SOLO_REASON
        set_status(session, solo, ParticipantStatus.NO_MATCH, now, reason=SOLO_REASON)
        lock.solo_participant = True
        lock.unmatched_count = 1
        session.add(lock)
        session.commit()
        return MatchingResultOut(already_completed=False, unmatched_count=1, message="Solo participant marked as no-match")

    group_size = round_obj.group_size or event.group_size or 2
    history = meeting_history(session, event.id, [r.participant_id for r in confirmed])
    groups, leftovers = group_registrations(confirmed, group_size, history, event.matching_type, rng)

    for index, members in enumerate(groups):
        _create_match(session, round_obj, event, members, now, index)

    for registration in leftovers:
        registration.no_match_reason = LEFTOVER_REASON
        set_status(session, registration, ParticipantStatus.NO_MATCH, now, reason=LEFTOVER_REASON)

    lock.match_count = len(groups)
    lock.unmatched_count = len(leftovers)
    session.add(lock)
    session.commit()
    logger.info("matching complete: round=%s matches=%d unmatched=%d", round_obj.id, len(groups), len(leftovers))
    return MatchingResultOut(
        already_completed=False,
        match_count=len(groups),
        unmatched_count=len(leftovers),
        message="Matching completed",
    )


def record_presence(
    session: Session,
    match: Match,
    registration: Registration,
    timing: RoundTiming,
    now: datetime,
    scanned_participant_id: Optional[str] = None,
) -> bool:
    """
    Count a member as present at the meeting point. Returns True once every
    current member is present; at that moment the match gets its
    meet-confirmed and networking-end instants and everybody becomes "met".
    """
    check_in = session.exec(
        select(CheckIn).where(
            CheckIn.match_id == match.id,
            CheckIn.participant_id == registration.participant_id,
        )
    ).first()
    if check_in is None:
        check_in = CheckIn(match_id=match.id, participant_id=registration.participant_id, created_at=now)
    if scanned_participant_id is not None:
        check_in.scanned_participant_id = scanned_participant_id
    session.add(check_in)
    session.flush()

    if match.meet_confirmed_at is None:
        if scanned_participant_id is not None:
            registration.checked_in_at = now
            set_status(session, registration, ParticipantStatus.CHECKED_IN, now, match_id=match.id)
        else:
            set_status(session, registration, ParticipantStatus.WAITING_FOR_MEET_CONFIRMATION, now, match_id=match.id)

    quorum = _settle_quorum(session, match, timing, now)
    session.commit()
    return quorum


def _settle_quorum(
    session: Session,
    match: Match,
    timing: RoundTiming,
    now: datetime,
) -> bool:
    if match.meet_confirmed_at is not None:
        return True
    members = set(match.participant_ids or [])
    present = {c.participant_id for c in check_ins_for_match(session, match.id)}
    if len(members) < 2 or not members <= present:
        return False

    match.meet_confirmed_at = now
    match.networking_end_at = now + timedelta(minutes=timing.duration_minutes)
    session.add(match)
    for participant_id in members:
        member = get_registration(session, participant_id, match.round_id)
        if member is not None:
            member.met_at = now
            set_status(session, member, ParticipantStatus.MET, now, match_id=match.id)
    logger.info("match %s met, networking until %s", match.id, match.networking_end_at.isoformat())
    return True


def handle_no_show(
    session: Session,
    round_obj: Round,
    event: Event,
    reporter: Registration,
    no_show: Registration,
    notes: str,
    timing: RoundTiming,
    now: datetime,
) -> Optional[Match]:
    """
    Take the reported member out of the reporter's match. Returns the match
    the reporter should go to next, or None while they wait for a rematch.
    """
    match = session.get(Match, reporter.match_id)
    set_status(
        session, no_show, ParticipantStatus.NO_SHOW, now,
        reported_by=reporter.participant_id, notes=notes, match_id=match.id,
    )
    no_show.match_id = None

    remaining = [pid for pid in match.participant_ids if pid != no_show.participant_id]
    match.participant_ids = remaining
    session.add(match)
    session.flush()

    if len(remaining) >= 2:
        _settle_quorum(session, match, timing, now)
        session.commit()
        return match

    # reporter is on their own: dissolve and look for someone else in the same spot
    match.participant_ids = []
    reporter.match_id = None
    reporter.rematch_requested = True
    set_status(session, reporter, ParticipantStatus.WAITING_FOR_MATCH, now, reason="partner no-show")
    session.flush()

    partner = session.exec(
        select(Registration).where(
            Registration.round_id == round_obj.id,
            Registration.rematch_requested == True,  # noqa: E712
            Registration.status == ParticipantStatus.WAITING_FOR_MATCH,
            Registration.participant_id != reporter.participant_id,
        ).order_by(Registration.last_status_update)
    ).first()

    new_match = None
    if partner is not None:
        index = len(session.exec(select(Match).where(Match.round_id == round_obj.id)).all())
        new_match = _create_match(session, round_obj, event, [partner, reporter], now, index)
        logger.info("rematched %s with %s in %s", reporter.participant_id, partner.participant_id, new_match.id)
    session.commit()
    return new_match


def complete_if_over(session: Session, registration: Registration, match: Optional[Match], now: datetime) -> None:
    """Move a "met" participant to "completed" once networking has ended."""
    if match is None or registration.status != ParticipantStatus.MET:
        return
    networking_end_at = ensure_utc(match.networking_end_at)
    if networking_end_at is not None and now >= networking_end_at:
        set_status(session, registration, ParticipantStatus.COMPLETED, now, match_id=match.id)
        session.commit()
