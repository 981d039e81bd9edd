"""HTTP client for the Wonderelo backend. One call, one request; nothing is retried here."""

import logging
from typing import Any, Dict, List, Optional

import pydantic
import requests

from .config import get_settings
from .errors import NetworkError, ServerError, error_for_response
from .schemas import (
    AuditEntryOut,
    CheckInIn,
    ConfirmOut,
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
from .timing import SystemParameters

logger = logging.getLogger(__name__)

TEST_TIME_HEADER = "X-Test-Time"


def short_token(token: Optional[str]) -> str:
    return f"{token[:8]}..." if token else "<none>"


def _error_body(resp) -> tuple:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or None), None
    if not isinstance(data, dict):
        return None, None
    message = data.get("error") or data.get("message") or data.get("detail")
    return (message if isinstance(message, str) else None), data.get("reason")


def _unexpected(exc: Exception) -> ServerError:
    logger.warning("unexpected response body: %s", exc)
    return ServerError("Unexpected response from server", reason="unexpected-response")


def _parse(model, data):
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise _unexpected(exc) from exc


def _parse_list(model, data) -> list:
    if not isinstance(data, list):
        raise _unexpected(TypeError(f"expected a list, got {type(data).__name__}"))
    return [_parse(model, item) for item in data]


class WondereloClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        anon_key: Optional[str] = None,
        session=None,
        timeout: Optional[float] = None,
        clock=None,
    ):
        settings = get_settings()
        self.base_url = settings.api_url if base_url is None else base_url
        self.token = token
        self.anon_key = anon_key or settings.anon_key
        self.session = session or requests.Session()
        self.timeout = timeout or settings.http_timeout
        # a simulated clock is forwarded so the server evaluates the same "now"
        self.clock = clock

    def with_token(self, token: str) -> "WondereloClient":
        return WondereloClient(
            base_url=self.base_url,
            token=token,
            anon_key=self.anon_key,
            session=self.session,
            timeout=self.timeout,
            clock=self.clock,
        )

    def _headers(self, anonymous: bool) -> Dict[str, str]:
        key = self.anon_key if anonymous or not self.token else self.token
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        if self.clock is not None and getattr(self.clock, "simulated", False):
            headers[TEST_TIME_HEADER] = self.clock.now().isoformat()
        return headers

    def _request(self, method: str, path: str, payload: Any = None, anonymous: bool = False) -> Any:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        body = payload.model_dump(mode="json", by_alias=True) if hasattr(payload, "model_dump") else payload
        logger.debug("%s %s (token %s)", method, path, short_token(self.token))
        try:
            resp = self.session.request(
                method,
                url,
                json=body,
                headers=self._headers(anonymous),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkError(status=None, reason="network") from exc

        if resp.status_code >= 400:
            message, reason = _error_body(resp)
            raise error_for_response(resp.status_code, message, reason)
        try:
            return resp.json()
        except ValueError as exc:
            raise _unexpected(exc) from exc

    def get_status(self, round_id: str, participant_id: str) -> StatusOut:
        data = self._request("GET", f"/rounds/{round_id}/participants/{participant_id}/status")
        return _parse(StatusOut, data)

    def get_match(self, round_id: str, participant_id: str) -> MatchOut:
        data = self._request("GET", f"/rounds/{round_id}/participants/{participant_id}/match")
        return _parse(MatchOut, data)

    def confirm_attendance(self, round_id: str, participant_id: str) -> ConfirmOut:
        data = self._request("POST", f"/rounds/{round_id}/participants/{participant_id}/confirm", {})
        return _parse(ConfirmOut, data)

    def decline(self, round_id: str, participant_id: str) -> ConfirmOut:
        data = self._request("POST", f"/rounds/{round_id}/participants/{participant_id}/decline", {})
        return _parse(ConfirmOut, data)

    def check_in(self, round_id: str, participant_id: str, scanned_code: str) -> MeetOut:
        data = self._request(
            "POST",
            f"/rounds/{round_id}/participants/{participant_id}/check-in",
            CheckInIn(scanned_code=scanned_code),
        )
        return _parse(MeetOut, data)

    def confirm_meet(self, round_id: str, participant_id: str) -> MeetOut:
        data = self._request("POST", f"/rounds/{round_id}/participants/{participant_id}/confirm-meet", {})
        return _parse(MeetOut, data)

    def report_no_show(self, round_id: str, participant_id: str, no_show_participant_id: str, notes: str = "") -> NoShowOut:
        data = self._request(
            "POST",
            f"/rounds/{round_id}/no-show",
            NoShowIn(participant_id=participant_id, no_show_participant_id=no_show_participant_id, notes=notes),
        )
        return _parse(NoShowOut, data)

    def submit_contact_sharing(self, match_id: str, participant_id: str, preferences: Dict[str, bool]) -> ContactSharingOut:
        data = self._request(
            "POST",
            f"/matches/{match_id}/contact-sharing",
            ContactSharingIn(participant_id=participant_id, preferences=preferences),
        )
        return _parse(ContactSharingOut, data)

    def get_dashboard(self) -> DashboardOut:
        return _parse(DashboardOut, self._request("GET", f"/p/{self.token}"))

    def get_shared_contacts(self) -> List[SharedContactOut]:
        data = self._request("GET", f"/p/{self.token}/shared-contacts")
        return _parse_list(SharedContactOut, data)

    def get_system_parameters(self) -> SystemParameters:
        return _parse(SystemParameters, self._request("GET", "/system-parameters", anonymous=True))

    def create_event(self, event: EventCreate) -> EventOut:
        return _parse(EventOut, self._request("POST", "/events", event, anonymous=True))

    def register(self, join_code: str, registration: RegisterIn) -> RegisterOut:
        data = self._request("POST", f"/events/{join_code}/register", registration, anonymous=True)
        return _parse(RegisterOut, data)

    def trigger_matching(self, round_id: str) -> MatchingResultOut:
        data = self._request("POST", f"/rounds/{round_id}/auto-match", {}, anonymous=True)
        return _parse(MatchingResultOut, data)

    def get_audit_log(self, participant_id: str) -> List[AuditEntryOut]:
        data = self._request("GET", f"/admin/participants/{participant_id}/audit-log", anonymous=True)
        return _parse_list(AuditEntryOut, data)
