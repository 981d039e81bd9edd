"""
Participant flow store.

Holds the last status fetched from the backend, derives phase and screen
from it and publishes an immutable `FlowState` to subscribers. A one-second
presentation tick recomputes without I/O; the `StatusPoller` is the only
source of remote changes.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, List, Optional

from .clock import ServerSyncedClock, SystemClock
from .dispatch import ActionDispatcher, in_thread
from .errors import AuthError, WondereloError
from .phase import PhaseView, compute_phase
from .poller import StatusPoller
from .schemas import ConfirmOut, ContactSharingOut, MatchOut, MeetOut, NoShowOut, RoundOut, StatusOut
from .screens import NO_SHOW_PHASES, route_screen
from .statuses import TERMINAL_STATUSES, NavigationIntent, ParticipantStatus, Phase, Screen
from .timing import RoundTiming, SystemParameters

logger = logging.getLogger(__name__)

WAITING_STATUSES = frozenset({
    ParticipantStatus.REGISTERED,
    ParticipantStatus.CONFIRMED,
    ParticipantStatus.WAITING_FOR_MATCH,
})


@dataclass(frozen=True)
class FlowState:
    round_id: str
    participant_id: str
    loaded: bool = False
    status: Optional[ParticipantStatus] = None
    match: Optional[MatchOut] = None
    round: Optional[RoundOut] = None
    my_code: Optional[str] = None
    reason: Optional[str] = None
    view: PhaseView = PhaseView(Phase.AWAITING_BACKEND)
    screen: Screen = Screen.WAITING
    intent: NavigationIntent = NavigationIntent.NONE
    error: Optional[str] = None
    banner: Optional[str] = None
    connection: Optional[str] = None  # last poll failure, cleared by the next good poll
    confirming: bool = False
    declining: bool = False
    checking_in: bool = False
    reporting: bool = False
    sharing: bool = False
    contact_sharing: Dict[str, bool] = field(default_factory=dict)
    contact_sharing_submitted: bool = False
    timed_out: bool = False


class ParticipantFlow:
    def __init__(
        self,
        client,
        round_id: str,
        participant_id: str,
        params: Optional[SystemParameters] = None,
        clock=None,
        timing: Optional[RoundTiming] = None,
        interval: float = 5.0,
        max_attempts: int = 60,
        tick_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.params = params
        self.timing = timing
        self.clock = clock or ServerSyncedClock(getattr(client, "clock", None) or SystemClock())
        self.interval = interval
        self.max_attempts = max_attempts
        self.tick_interval = tick_interval
        self._sleep = sleep
        self._subscribers: List[Callable[[FlowState], None]] = []
        self._tick_task: Optional[asyncio.Task] = None
        self.state = FlowState(round_id=round_id, participant_id=participant_id)
        self._build()

    def _build(self) -> None:
        round_id = self.state.round_id
        participant_id = self.state.participant_id
        client = self.client

        self.poller = StatusPoller(
            fetch=lambda: in_thread(client.get_status)(round_id, participant_id),
            on_result=self._apply_status,
            interval=self.interval,
            max_attempts=self.max_attempts,
            is_pending=self._is_pending,
            is_final=self._is_final,
            on_error=self._poll_failed,
            on_timeout=self._poll_timed_out,
            sleep=self._sleep,
        )
        self._confirm = ActionDispatcher(
            "confirm-attendance",
            in_thread(client.confirm_attendance),
            on_start=self._confirm_started,
            on_success=self._confirm_succeeded,
            on_error=self._confirm_failed,
        )
        self._decline = ActionDispatcher(
            "decline",
            in_thread(client.decline),
            on_start=self._decline_started,
            on_success=self._decline_succeeded,
            on_error=lambda exc: self._update(declining=False, error=exc.message),
        )
        self._check_in = ActionDispatcher(
            "check-in",
            in_thread(client.check_in),
            on_start=lambda: self._update(checking_in=True, banner=None),
            on_success=self._meet_succeeded,
            on_error=lambda exc: self._update(checking_in=False, banner=exc.message),
        )
        self._confirm_meet = ActionDispatcher(
            "confirm-meet",
            in_thread(client.confirm_meet),
            on_start=lambda: self._update(checking_in=True, banner=None),
            on_success=self._meet_succeeded,
            on_error=lambda exc: self._update(checking_in=False, banner=exc.message),
        )
        self._no_show = ActionDispatcher(
            "report-no-show",
            in_thread(client.report_no_show),
            on_start=lambda: self._update(reporting=True, banner=None),
            on_success=self._no_show_succeeded,
            on_error=lambda exc: self._update(reporting=False, banner=exc.message),
        )
        self._share = ActionDispatcher(
            "contact-sharing",
            in_thread(client.submit_contact_sharing),
            on_start=lambda: self._update(sharing=True, banner=None),
            on_success=self._sharing_succeeded,
            on_error=lambda exc: self._update(sharing=False, banner=exc.message),
        )

    def subscribe(self, callback: Callable[[FlowState], None]) -> Callable[[], None]:
        self._subscribers.append(callback)
        callback(self.state)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _update(self, **changes) -> None:
        state = replace(self.state, **changes)
        view = self._view(state)
        intent = state.intent
        if intent == NavigationIntent.CHECK_IN and view.phase != Phase.WALKING_TO_MEETING:
            intent = NavigationIntent.NONE
        elif intent == NavigationIntent.NO_SHOW_REPORT and view.phase not in NO_SHOW_PHASES:
            intent = NavigationIntent.NONE
        screen = route_screen(view, state.match, state.error, intent, state.contact_sharing_submitted)
        state = replace(state, view=view, intent=intent, screen=screen)
        if state == self.state:
            return
        self.state = state
        for callback in list(self._subscribers):
            callback(state)

    def _view(self, state: FlowState) -> PhaseView:
        if self.timing is None or state.status is None:
            return PhaseView(Phase.AWAITING_BACKEND)
        return compute_phase(self.clock.now(), self.timing, state.status, state.match, state.confirming)

    async def start(self) -> None:
        if self.params is None:
            try:
                self.params = await in_thread(self.client.get_system_parameters)()
            except WondereloError as exc:
                logger.warning("could not load system parameters: %s", exc)
                self.params = SystemParameters()
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        self.poller.start()

    async def stop(self) -> None:
        task, self._tick_task = self._tick_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.poller.stop()

    async def switch_participant(self, participant_id: str, token: str, round_id: Optional[str] = None) -> None:
        """Tear down everything bound to the old token and start over."""
        await self.stop()
        self.client = self.client.with_token(token)
        self.timing = None
        self.state = FlowState(round_id=round_id or self.state.round_id, participant_id=participant_id)
        self._build()
        for callback in list(self._subscribers):
            callback(self.state)
        await self.start()

    async def _tick_loop(self) -> None:
        while True:
            self.tick()
            await self._sleep(self.tick_interval)

    def tick(self) -> None:
        """Presentation tick: recompute from the cached status only."""
        self._update()

    async def refresh(self) -> Optional[StatusOut]:
        return await self.poller.poll_once()

    def _ensure_polling(self) -> None:
        self.poller.reset_budget()
        if self._tick_task is not None and not self.poller.running:
            self.poller.start()

    def _is_pending(self, status: StatusOut) -> bool:
        if status.match is not None or status.status not in WAITING_STATUSES:
            return False
        timing = self._timing_for(status)
        return timing is not None and self.clock.now() >= timing.matching_instant

    def _is_final(self, status: StatusOut) -> bool:
        return status.status in TERMINAL_STATUSES

    def _timing_for(self, status: StatusOut) -> Optional[RoundTiming]:
        if status.round is not None:
            self.timing = RoundTiming.for_round(
                status.round.starts_at,
                self.params or SystemParameters(),
                duration_minutes=status.round.duration,
                confirmation_window_minutes=status.round.confirmation_window,
            )
        return self.timing

    def _apply_status(self, status: StatusOut) -> None:
        if isinstance(self.clock, ServerSyncedClock):
            self.clock.observe(status.server_time)
        self._timing_for(status)
        confirming = self.state.confirming and status.status == ParticipantStatus.REGISTERED
        changes = dict(
            loaded=True,
            status=status.status,
            match=status.match,
            round=status.round or self.state.round,
            my_code=status.my_code or self.state.my_code,
            reason=status.reason,
            confirming=confirming,
            connection=None,
        )
        if status.contact_sharing:
            changes.update(contact_sharing=dict(status.contact_sharing), contact_sharing_submitted=True)
        self._update(**changes)

    def _poll_failed(self, exc: WondereloError) -> None:
        if isinstance(exc, AuthError):
            self._update(error=exc.message)
        else:
            self._update(connection=exc.message)

    def _poll_timed_out(self, exc: WondereloError) -> None:
        self._update(error=exc.message, timed_out=True)

    async def confirm_attendance(self) -> Optional[ConfirmOut]:
        return await self._confirm(self.state.round_id, self.state.participant_id)

    def _confirm_started(self) -> None:
        self.poller.invalidate()
        self._update(confirming=True, error=None, banner=None)

    def _confirm_succeeded(self, result: ConfirmOut) -> None:
        # polls issued while the request was open may predate the commit
        self.poller.invalidate()
        self._update(status=result.status, confirming=False)

    def _confirm_failed(self, exc: WondereloError) -> None:
        self._update(confirming=False, error=exc.message)

    async def decline(self) -> Optional[ConfirmOut]:
        return await self._decline(self.state.round_id, self.state.participant_id)

    def _decline_started(self) -> None:
        self.poller.invalidate()
        self._update(declining=True, error=None, banner=None)

    def _decline_succeeded(self, result: ConfirmOut) -> None:
        self.poller.invalidate()
        self._update(status=result.status, declining=False, confirming=False)

    def open_check_in(self) -> None:
        self._update(intent=NavigationIntent.CHECK_IN, banner=None)

    def open_no_show_report(self) -> None:
        self._update(intent=NavigationIntent.NO_SHOW_REPORT, banner=None)

    def close_overlay(self) -> None:
        self._update(intent=NavigationIntent.NONE, banner=None)

    cancel_no_show_report = close_overlay

    async def check_in(self, scanned_code: str) -> Optional[MeetOut]:
        if self.state.match is None:
            self._update(banner="You are not matched yet")
            return None
        return await self._check_in(self.state.round_id, self.state.participant_id, scanned_code)

    async def confirm_meet(self) -> Optional[MeetOut]:
        if self.state.match is None:
            self._update(banner="You are not matched yet")
            return None
        return await self._confirm_meet(self.state.round_id, self.state.participant_id)

    def _meet_succeeded(self, result: MeetOut) -> None:
        self.poller.invalidate()
        if result.quorum:
            banner = "Everyone is here. Enjoy the conversation!"
            intent = NavigationIntent.NONE
        else:
            banner = "Checked in. Waiting for your partner to confirm."
            intent = self.state.intent
        self._update(
            status=result.status,
            match=result.match,
            checking_in=False,
            banner=banner,
            intent=intent,
        )

    async def report_no_show(self, no_show_participant_id: str, notes: str = "") -> Optional[NoShowOut]:
        return await self._no_show(self.state.round_id, self.state.participant_id, no_show_participant_id, notes)

    def _no_show_succeeded(self, result: NoShowOut) -> None:
        self.poller.invalidate()
        current = self.state.match
        if result.new_match is None:
            banner = "We are looking for a new partner for you."
        elif current is not None and result.new_match.id == current.id:
            banner = "Thanks for letting us know. Carry on with the rest of your group."
        else:
            banner = f"New meeting point: {result.new_match.meeting_point}"
        self._update(
            status=result.status,
            match=result.new_match,
            reporting=False,
            intent=NavigationIntent.NONE,
            banner=banner,
        )
        self._ensure_polling()

    async def submit_contact_sharing(self, preferences: Dict[str, bool]) -> Optional[ContactSharingOut]:
        if self.state.match is None:
            self._update(banner="There is no match to share contacts with")
            return None
        return await self._share(self.state.match.id, self.state.participant_id, dict(preferences))

    async def skip_contact_sharing(self) -> Optional[ContactSharingOut]:
        if self.state.match is None:
            return await self.submit_contact_sharing({})
        partners = self.state.match.partners(self.state.participant_id)
        return await self.submit_contact_sharing({p.id: False for p in partners})

    def _sharing_succeeded(self, result: ContactSharingOut) -> None:
        self._update(
            sharing=False,
            contact_sharing=dict(result.preferences),
            contact_sharing_submitted=True,
            banner="Preferences saved. Contacts are shared only when both of you agree.",
        )

    def dismiss_error(self) -> None:
        """Escape hatch from the error card back to the round."""
        timed_out = self.state.timed_out
        self._update(error=None, banner=None, timed_out=False)
        if timed_out:
            self._ensure_polling()
