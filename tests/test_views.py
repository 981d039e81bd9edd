from datetime import datetime, timezone

from wonderelo.flow import FlowState
from wonderelo.phase import PhaseView
from wonderelo.schemas import MatchMember, MatchOut
from wonderelo.statuses import ParticipantStatus, Phase, Screen
from wonderelo.views import DEFAULT_ICE_BREAKERS, render

MATCH = MatchOut(
    id="m1",
    event_id=1,
    round_id="r1",
    participant_ids=["alice", "bob"],
    participants=[
        MatchMember(id="alice", first_name="Alice", last_name="A"),
        MatchMember(id="bob", first_name="Bob", last_name="B"),
    ],
    meeting_point="Fountain",
    identification_image="red-circle",
    created_at=datetime(2030, 6, 1, 12, tzinfo=timezone.utc),
)


def state(**kwargs):
    return FlowState(round_id="r1", participant_id="alice", loaded=True, **kwargs)


def test_matched_card():
    card = render(state(
        match=MATCH,
        my_code="ALICE1",
        screen=Screen.MATCHED,
        view=PhaseView(Phase.WALKING_TO_MEETING, countdown="Walk to meeting point (02:00 left)"),
    ))
    text = card.as_text()
    assert "You're meeting Bob B" in text
    assert "Meeting point: Fountain" in text
    assert "Look for the red circle sign" in text
    assert "Your code: ALICE1" in text
    assert card.actions == ["check-in", "we-met", "report-no-show"]


def test_overdue_walking_prompts_for_confirmation():
    card = render(state(
        match=MATCH,
        screen=Screen.MATCHED,
        view=PhaseView(Phase.WALKING_TO_MEETING, countdown="Confirm you met", walking_overdue=True),
    ))
    assert "Time's up for walking. Let us know once you've met." in card.lines


def test_networking_falls_back_to_default_ice_breakers():
    card = render(state(match=MATCH, screen=Screen.NETWORKING, view=PhaseView(Phase.NETWORKING)))
    for question in DEFAULT_ICE_BREAKERS:
        assert f"- {question}" in card.lines


def test_contact_sharing_lists_partners():
    card = render(state(match=MATCH, screen=Screen.CONTACT_SHARING, contact_sharing={"bob": False}))
    assert "- Bob B: no" in card.lines


def test_error_card_offers_a_way_back():
    card = render(state(screen=Screen.ERROR, error="Your link is no longer valid."))
    assert card.lines[0] == "Your link is no longer valid."
    assert "back" in card.actions


def test_banner_and_connection_notes():
    card = render(state(
        screen=Screen.WAITING,
        view=PhaseView(Phase.WAITING_FOR_MATCH),
        banner="Preferences saved.",
        connection="Could not reach the server.",
    ))
    assert card.lines[-2:] == ["[Preferences saved.]", "[Could not reach the server.]"]


def test_no_match_uses_server_reason():
    card = render(state(screen=Screen.NO_MATCH, reason="You were the only participant who confirmed attendance"))
    assert card.title == "No match this time"
    assert card.lines[0].startswith("You were the only participant")


def test_confirmation_card_offers_decline():
    card = render(state(screen=Screen.CONFIRMATION, view=PhaseView(Phase.CONFIRMATION_WINDOW, countdown="02:00")))
    assert card.actions == ["confirm", "decline"]


def test_declined_round_says_so():
    card = render(state(
        status=ParticipantStatus.CANCELLED,
        screen=Screen.MISSED,
        view=PhaseView(Phase.UNCONFIRMED),
    ))
    assert card.lines == ["You declined this round."]
