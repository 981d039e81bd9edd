"""
Phase calculator. A terminal status beats any countdown, and a match record
beats the time-derived phases.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .clock import ensure_utc
from .statuses import ParticipantStatus, Phase
from .timing import RoundTiming

SECONDS_PER_DAY = 24 * 60 * 60

# status -> phase for statuses that end the round regardless of the clock
_STATUS_OVERRIDES = {
    ParticipantStatus.UNCONFIRMED: Phase.UNCONFIRMED,
    ParticipantStatus.MISSED: Phase.UNCONFIRMED,
    ParticipantStatus.CANCELLED: Phase.UNCONFIRMED,
    ParticipantStatus.NO_MATCH: Phase.NO_MATCH,
    ParticipantStatus.NO_SHOW: Phase.NO_SHOW,
}


@dataclass(frozen=True)
class PhaseView:
    phase: Phase
    countdown: str = ""
    seconds_left: Optional[int] = None
    deadline: Optional[datetime] = None
    show_confirm_button: bool = False
    walking_overdue: bool = False


def format_clock(seconds: int) -> str:
    """MM:SS, minutes are not wrapped into hours."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def format_hms(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    return f"{hours:02d}:{rest // 60:02d}:{rest % 60:02d}"


def seconds_until(target: datetime, now: datetime) -> int:
    return max(0, int((ensure_utc(target) - ensure_utc(now)).total_seconds()))


def confirm_in_text(seconds: int) -> str:
    days = seconds // SECONDS_PER_DAY
    if days >= 1:
        return f"Confirm in {days} {'day' if days == 1 else 'days'}"
    return f"Confirm in {format_hms(seconds)}"


def compute_phase(
    now: datetime,
    timing: RoundTiming,
    status,
    match=None,
    confirming: bool = False,
) -> PhaseView:
    now = ensure_utc(now)
    status = ParticipantStatus(status)

    override = _STATUS_OVERRIDES.get(status)
    if override is not None:
        return PhaseView(override)

    if match is not None:
        return _match_phase(now, timing, match)

    if status == ParticipantStatus.COMPLETED:
        return PhaseView(Phase.COMPLETED, countdown="Completed")

    if now < timing.confirmation_start:
        left = seconds_until(timing.confirmation_start, now)
        return PhaseView(
            Phase.BEFORE_CONFIRMATION,
            countdown=confirm_in_text(left),
            seconds_left=left,
            deadline=timing.confirmation_start,
        )

    if now < timing.matching_instant:
        left = seconds_until(timing.matching_instant, now)
        return PhaseView(
            Phase.CONFIRMATION_WINDOW,
            countdown=format_clock(left),
            seconds_left=left,
            deadline=timing.matching_instant,
            show_confirm_button=status == ParticipantStatus.REGISTERED and not confirming,
        )

    if status == ParticipantStatus.REGISTERED and not confirming:
        # never guess "unconfirmed"; the server flips it
        return PhaseView(Phase.AWAITING_BACKEND)

    return PhaseView(Phase.WAITING_FOR_MATCH)


def _match_phase(now: datetime, timing: RoundTiming, match) -> PhaseView:
    meet_confirmed_at = ensure_utc(match.meet_confirmed_at)
    networking_end_at = ensure_utc(match.networking_end_at)
    if meet_confirmed_at is not None and networking_end_at is not None:
        if now >= networking_end_at:
            return PhaseView(Phase.COMPLETED, countdown="Completed", seconds_left=0, deadline=networking_end_at)
        left = seconds_until(networking_end_at, now)
        return PhaseView(
            Phase.NETWORKING,
            countdown=f"Networking ends in {format_clock(left)}",
            seconds_left=left,
            deadline=networking_end_at,
        )

    deadline = timing.walking_deadline(match.revealed_at)
    if deadline is None:
        return PhaseView(Phase.WAITING_FOR_MATCH)

    if now < deadline:
        left = seconds_until(deadline, now)
        return PhaseView(
            Phase.WALKING_TO_MEETING,
            countdown=f"Walk to meeting point ({format_clock(left)} left)",
            seconds_left=left,
            deadline=deadline,
        )
    # no hard cutoff: late "we met" stays possible
    return PhaseView(
        Phase.WALKING_TO_MEETING,
        countdown="Confirm you met",
        seconds_left=0,
        deadline=deadline,
        walking_overdue=True,
    )
