"""Plain-text cards, one per screen."""

from dataclasses import dataclass, field
from typing import Callable, Dict, List

from .flow import FlowState
from .statuses import ParticipantStatus, Phase, Screen

DEFAULT_ICE_BREAKERS = [
    "What's your favorite hobby?",
    "If you could travel anywhere, where would you go?",
    "What's the best book you've read recently?",
    "What's your dream project?",
    "What motivates you the most?",
]


@dataclass
class Card:
    title: str
    lines: List[str] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)

    def as_text(self) -> str:
        out = [self.title, "=" * len(self.title)]
        out.extend(self.lines)
        if self.actions:
            out.append("")
            out.append("Actions: " + ", ".join(self.actions))
        return "\n".join(out)


def _partners(state: FlowState) -> str:
    if state.match is None:
        return ""
    names = [p.display_name for p in state.match.partners(state.participant_id)]
    return ", ".join(names) or "your partner"


def _waiting(state: FlowState) -> Card:
    round_name = state.round.name if state.round else "Your round"
    lines = []
    if not state.loaded:
        lines.append("Loading your round...")
    elif state.confirming:
        lines.append("Confirming your attendance...")
    elif state.declining:
        lines.append("Declining...")
    elif state.view.phase == Phase.AWAITING_BACKEND:
        lines.append("Checking your confirmation with the organizer...")
    elif state.view.phase == Phase.WAITING_FOR_MATCH:
        lines.append("You're confirmed. Finding your match...")
    if state.view.countdown:
        lines.append(state.view.countdown)
    return Card(round_name, lines)


def _confirmation(state: FlowState) -> Card:
    return Card(
        "Confirm your attendance",
        [
            "The round is about to start. Confirm that you are here to get matched.",
            f"Time left to confirm: {state.view.countdown}",
        ],
        ["confirm", "decline"],
    )


def _matched(state: FlowState) -> Card:
    match = state.match
    lines = [
        f"You're meeting {_partners(state)}",
        f"Meeting point: {match.meeting_point}",
    ]
    if match.identification_image:
        lines.append(f"Look for the {match.identification_image.replace('-', ' ')} sign")
    if state.my_code:
        lines.append(f"Your code: {state.my_code}")
    lines.append(state.view.countdown)
    if state.view.walking_overdue:
        lines.append("Time's up for walking. Let us know once you've met.")
    return Card("It's a match!", lines, ["check-in", "we-met", "report-no-show"])


def _check_in(state: FlowState) -> Card:
    lines = ["Ask your partner for their code and enter it here."]
    if state.my_code:
        lines.append(f"Your code: {state.my_code}")
    if state.checking_in:
        lines.append("Checking in...")
    return Card("Check in", lines, ["enter-code", "back"])


def _no_show_report(state: FlowState) -> Card:
    lines = ["Who didn't show up?"]
    for partner in state.match.partners(state.participant_id):
        lines.append(f"- {partner.display_name} ({partner.id})")
    if state.reporting:
        lines.append("Looking for a new partner...")
    return Card("Report a no-show", lines, ["report", "cancel"])


def _networking(state: FlowState) -> Card:
    ice_breakers = (state.match.ice_breakers if state.match else None) or DEFAULT_ICE_BREAKERS
    lines = [f"You're talking with {_partners(state)}", state.view.countdown, "", "Ice breakers:"]
    lines.extend(f"- {question}" for question in ice_breakers)
    return Card("Enjoy your conversation", lines, ["report-no-show"])


def _contact_sharing(state: FlowState) -> Card:
    lines = ["Would you like to exchange contacts? Details are shared only if you both agree."]
    for partner in state.match.partners(state.participant_id):
        choice = state.contact_sharing.get(partner.id)
        mark = "yes" if choice else ("no" if choice is False else "?")
        lines.append(f"- {partner.display_name}: {mark}")
    return Card("Share contacts", lines, ["share", "skip"])


def _completed(state: FlowState) -> Card:
    lines = ["Thanks for taking part in this round."]
    shared = [pid for pid, yes in state.contact_sharing.items() if yes]
    if shared:
        lines.append(f"You offered to share contacts with {len(shared)} partner(s).")
    return Card("Round completed", lines, ["back"])


def _no_match(state: FlowState) -> Card:
    return Card(
        "No match this time",
        [state.reason or "We couldn't find a match for you in this round.", "Join another round from your dashboard."],
        ["back"],
    )


def _missed(state: FlowState) -> Card:
    if state.view.phase == Phase.NO_SHOW:
        message = "You were reported as not showing up for this round."
    elif state.status == ParticipantStatus.CANCELLED:
        message = "You declined this round."
    else:
        message = state.reason or "You didn't confirm your attendance in time."
    return Card("You missed this round", [message], ["back"])


def _error(state: FlowState) -> Card:
    return Card("Something went wrong", [state.error or "Unknown error"], ["dismiss", "back"])


RENDERERS: Dict[Screen, Callable[[FlowState], Card]] = {
    Screen.WAITING: _waiting,
    Screen.CONFIRMATION: _confirmation,
    Screen.MATCHED: _matched,
    Screen.CHECK_IN: _check_in,
    Screen.NO_SHOW_REPORT: _no_show_report,
    Screen.NETWORKING: _networking,
    Screen.CONTACT_SHARING: _contact_sharing,
    Screen.COMPLETED: _completed,
    Screen.NO_MATCH: _no_match,
    Screen.MISSED: _missed,
    Screen.ERROR: _error,
}


def render(state: FlowState) -> Card:
    card = RENDERERS[state.screen](state)
    for note in (state.banner, state.connection):
        if note:
            card.lines.append(f"[{note}]")
    return card
