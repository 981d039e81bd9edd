import random
from datetime import date, timedelta

from sqlmodel import select

from wonderelo.matching import group_registrations, pair_score, run_matching
from wonderelo.models import AuditLogEntry, Event, Match, MatchingLock, Participant, Registration, Round
from wonderelo.statuses import ParticipantStatus
from wonderelo.timing import round_start_instant


def reg(pid, team=None, topics=()):
    return Registration(participant_id=pid, event_id=1, round_id="r1", team=team, topics=list(topics))


def test_pair_score_weights():
    history = {"a": {"c"}}
    assert pair_score(reg("a"), reg("b"), history, "across-teams") == 30
    assert pair_score(reg("a"), reg("c"), history, "across-teams") == 0
    assert pair_score(reg("a", "red"), reg("b", "blue"), {}, "across-teams") == 50
    assert pair_score(reg("a", "red"), reg("b", "red"), {}, "within-teams") == 50
    assert pair_score(reg("a", topics=["ai"]), reg("b", topics=["ai", "art"]), {}, "across-teams") == 40


def test_grouping_prefers_new_faces_and_other_teams():
    people = [reg("a", "red"), reg("b", "red"), reg("c", "blue"), reg("d", "blue")]
    groups, leftovers = group_registrations(people, 2, {}, "across-teams", random.Random(7))
    assert leftovers == []
    for group in groups:
        assert {r.team for r in group} == {"red", "blue"}


def test_grouping_avoids_repeat_pairs():
    people = [reg("a"), reg("b"), reg("c"), reg("d")]
    history = {"a": {"b"}, "b": {"a"}, "c": {"d"}, "d": {"c"}}
    groups, _ = group_registrations(people, 2, history, rng=random.Random(1))
    pairs = {frozenset(r.participant_id for r in g) for g in groups}
    assert frozenset({"a", "b"}) not in pairs
    assert frozenset({"c", "d"}) not in pairs


def test_single_leftover_joins_smallest_group():
    people = [reg(pid) for pid in "abcde"]
    groups, leftovers = group_registrations(people, 2, {}, rng=random.Random(3))
    assert leftovers == []
    assert sorted(len(g) for g in groups) == [2, 3]


def test_larger_groups_leave_remainders():
    people = [reg(pid) for pid in "abcdefgh"]
    groups, leftovers = group_registrations(people, 3, {}, rng=random.Random(5))
    assert [len(g) for g in groups] == [3, 3]
    assert len(leftovers) == 2


def seed_round(session, confirmed, registered=0, meeting_points=("Lobby",)):
    event = Event(title="Mixer", join_code="ABC123", meeting_points=list(meeting_points))
    session.add(event)
    session.commit()
    session.refresh(event)
    round_obj = Round(id="r1", event_id=event.id, name="Round 1", date=date(2030, 6, 1), start_time="14:00")
    session.add(round_obj)
    ids = []
    for i in range(confirmed + registered):
        pid = f"p{i}"
        ids.append(pid)
        session.add(Participant(id=pid, email=f"{pid}@example.com", token=f"tok-{pid}", code=f"CODE{i:02d}"))
        status = ParticipantStatus.CONFIRMED if i < confirmed else ParticipantStatus.REGISTERED
        session.add(Registration(participant_id=pid, event_id=event.id, round_id="r1", status=status))
    session.commit()
    return event, round_obj, ids


def now_for(round_obj, event):
    return round_start_instant(round_obj.date, round_obj.start_time, event.timezone) + timedelta(seconds=1)


def test_run_matching_marks_unconfirmed_and_locks(session):
    event, round_obj, ids = seed_round(session, confirmed=2, registered=1)
    result = run_matching(session, round_obj, event, now_for(round_obj, event), random.Random(0))

    assert result.match_count == 1
    statuses = {r.participant_id: r.status for r in session.exec(select(Registration)).all()}
    assert statuses == {
        "p0": ParticipantStatus.MATCHED,
        "p1": ParticipantStatus.MATCHED,
        "p2": ParticipantStatus.UNCONFIRMED,
    }
    match = session.exec(select(Match)).one()
    assert match.meeting_point == "Lobby"
    assert match.revealed_at is not None
    assert session.get(MatchingLock, "r1").match_count == 1

    again = run_matching(session, round_obj, event, now_for(round_obj, event))
    assert again.already_completed
    assert len(session.exec(select(Match)).all()) == 1


def test_run_matching_solo_participant(session):
    event, round_obj, _ = seed_round(session, confirmed=1)
    result = run_matching(session, round_obj, event, now_for(round_obj, event))

    assert result.unmatched_count == 1
    registration = session.exec(select(Registration)).one()
    assert registration.status == ParticipantStatus.NO_MATCH
    assert "only participant" in registration.no_match_reason
    assert session.get(MatchingLock, "r1").solo_participant


def test_run_matching_without_meeting_points(session):
    event, round_obj, _ = seed_round(session, confirmed=2, meeting_points=())
    run_matching(session, round_obj, event, now_for(round_obj, event))
    assert session.exec(select(Match)).one().meeting_point == "TBD"


def test_every_status_change_is_audited(session):
    event, round_obj, _ = seed_round(session, confirmed=2, registered=1)
    run_matching(session, round_obj, event, now_for(round_obj, event))
    entries = session.exec(select(AuditLogEntry).where(AuditLogEntry.participant_id == "p2")).all()
    assert [(e.action, e.details["status"]) for e in entries] == [("status-change", "unconfirmed")]
