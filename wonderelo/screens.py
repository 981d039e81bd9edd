from typing import Optional

from .phase import PhaseView
from .statuses import NavigationIntent, Phase, Screen

_WAITING_PHASES = frozenset({
    Phase.BEFORE_CONFIRMATION,
    Phase.CONFIRMATION_WINDOW,
    Phase.AWAITING_BACKEND,
    Phase.WAITING_FOR_MATCH,
})

# phases during which a partner can still be reported missing
NO_SHOW_PHASES = frozenset({Phase.WALKING_TO_MEETING, Phase.NETWORKING})


def route_screen(
    view: PhaseView,
    match=None,
    error: Optional[str] = None,
    intent: NavigationIntent = NavigationIntent.NONE,
    contact_sharing_submitted: bool = False,
) -> Screen:
    if error:
        return Screen.ERROR

    phase = view.phase

    if intent == NavigationIntent.NO_SHOW_REPORT and match is not None and phase in NO_SHOW_PHASES:
        return Screen.NO_SHOW_REPORT

    if phase == Phase.CONFIRMATION_WINDOW and view.show_confirm_button:
        return Screen.CONFIRMATION
    if phase in _WAITING_PHASES:
        return Screen.WAITING

    if phase == Phase.WALKING_TO_MEETING:
        if intent == NavigationIntent.CHECK_IN:
            return Screen.CHECK_IN
        return Screen.MATCHED

    if phase == Phase.NETWORKING:
        return Screen.NETWORKING

    if phase == Phase.COMPLETED:
        if match is not None and not contact_sharing_submitted:
            return Screen.CONTACT_SHARING
        return Screen.COMPLETED

    if phase == Phase.NO_MATCH:
        return Screen.NO_MATCH

    # unconfirmed, no-show
    return Screen.MISSED
