from enum import Enum


class ParticipantStatus(str, Enum):
    REGISTERED = "registered"
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"
    WAITING_FOR_MATCH = "waiting-for-match"
    MATCHED = "matched"
    WALKING_TO_MEETING_POINT = "walking-to-meeting-point"
    WAITING_FOR_MEET_CONFIRMATION = "waiting-for-meet-confirmation"
    CHECKED_IN = "checked-in"
    MET = "met"
    COMPLETED = "completed"
    NO_MATCH = "no-match"
    NO_SHOW = "no-show"
    MISSED = "missed"
    CANCELLED = "cancelled"


# Statuses the server may still move forward; everything else is final for the round.
TERMINAL_STATUSES = frozenset({
    ParticipantStatus.UNCONFIRMED,
    ParticipantStatus.COMPLETED,
    ParticipantStatus.NO_MATCH,
    ParticipantStatus.NO_SHOW,
    ParticipantStatus.MISSED,
    ParticipantStatus.CANCELLED,
})

# Statuses that belong to a live match.
MATCH_STATUSES = frozenset({
    ParticipantStatus.MATCHED,
    ParticipantStatus.WALKING_TO_MEETING_POINT,
    ParticipantStatus.WAITING_FOR_MEET_CONFIRMATION,
    ParticipantStatus.CHECKED_IN,
    ParticipantStatus.MET,
})


class Phase(str, Enum):
    BEFORE_CONFIRMATION = "before-confirmation"
    CONFIRMATION_WINDOW = "confirmation-window"
    # still "registered" after the matching instant: the server has not flipped it yet
    AWAITING_BACKEND = "awaiting-backend"
    WAITING_FOR_MATCH = "waiting-for-match"
    WALKING_TO_MEETING = "walking-to-meeting"
    NETWORKING = "networking"
    COMPLETED = "completed"
    UNCONFIRMED = "unconfirmed"
    NO_MATCH = "no-match"
    NO_SHOW = "no-show"


class Screen(str, Enum):
    WAITING = "waiting"
    CONFIRMATION = "confirmation"
    MATCHED = "matched"
    CHECK_IN = "check-in"
    NO_SHOW_REPORT = "no-show-report"
    NETWORKING = "networking"
    CONTACT_SHARING = "contact-sharing"
    COMPLETED = "completed"
    NO_MATCH = "no-match"
    MISSED = "missed"
    ERROR = "error"


class NavigationIntent(str, Enum):
    """What the participant asked to look at, on top of what the phase implies."""
    NONE = "none"
    CHECK_IN = "check-in"
    NO_SHOW_REPORT = "no-show-report"
