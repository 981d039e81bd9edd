from datetime import timedelta

import json

import pytest
import requests

from conftest import T0, EARLY, create_event
from wonderelo.client import TEST_TIME_HEADER, WondereloClient
from wonderelo.clock import FixedClock, SimulatedClock, SystemClock, parse_instant
from wonderelo.errors import AuthError, NetworkError, NoMatchError, NotReadyError, ServerError, ValidationError
from wonderelo.schemas import RegisterIn
from wonderelo.statuses import ParticipantStatus


@pytest.fixture
def clock():
    return FixedClock(EARLY)


@pytest.fixture
def anon(api, clock):
    return WondereloClient(base_url="http://testserver", session=api, clock=clock)


def sign_up(anon, event, email, team=None):
    out = anon.register(event["joinCode"], RegisterIn(
        email=email,
        first_name=email.split("@")[0].title(),
        last_name="Tester",
        round_ids=[event["rounds"][0]["id"]],
        team=team,
    ))
    return out, anon.with_token(out.token)


def test_register_and_dashboard(api, anon):
    event = create_event(api)
    out, client = sign_up(anon, event, "alice@example.com")
    assert out.registrations[0].status == ParticipantStatus.REGISTERED

    dashboard = client.get_dashboard()
    assert dashboard.participant_id == out.participant_id
    assert dashboard.code == out.code


def test_simulated_clock_is_forwarded(anon, clock):
    headers = anon._headers(anonymous=True)
    assert headers[TEST_TIME_HEADER] == EARLY.isoformat()
    assert headers["Content-Type"] == "application/json"

    real = WondereloClient(base_url="http://testserver", session=anon.session, clock=SystemClock())
    assert TEST_TIME_HEADER not in real._headers(anonymous=True)


def test_participant_token_is_used_when_present(anon):
    client = anon.with_token("secret-token")
    assert client._headers(anonymous=False)["Authorization"] == "Bearer secret-token"
    assert client._headers(anonymous=True)["Authorization"] == f"Bearer {anon.anon_key}"


def test_error_mapping(api, anon, clock):
    event = create_event(api)
    round_id = event["rounds"][0]["id"]
    alice, alice_client = sign_up(anon, event, "alice@example.com")
    bob, _ = sign_up(anon, event, "bob@example.com")

    with pytest.raises(NotReadyError) as exc:
        alice_client.get_match(round_id, alice.participant_id)
    assert exc.value.status == 404

    with pytest.raises(AuthError) as exc:
        alice_client.get_status(round_id, bob.participant_id)
    assert exc.value.reason == "forbidden"

    with pytest.raises(ValidationError) as exc:
        alice_client.confirm_attendance(round_id, alice.participant_id)
    assert exc.value.reason == "window-closed"
    assert exc.value.message == "The confirmation window has not opened yet."

    clock.set(T0 - timedelta(minutes=1))
    alice_client.confirm_attendance(round_id, alice.participant_id)
    clock.set(T0)
    assert alice_client.get_status(round_id, alice.participant_id).status == ParticipantStatus.NO_MATCH
    with pytest.raises(NoMatchError):
        alice_client.get_match(round_id, alice.participant_id)


def test_unknown_token(anon, api):
    event = create_event(api)
    with pytest.raises(AuthError) as exc:
        anon.with_token("not-a-token").get_status(event["rounds"][0]["id"], "participant-x")
    assert exc.value.status == 401


def test_full_round_over_http(api, anon, clock):
    event = create_event(api)
    round_id = event["rounds"][0]["id"]
    alice, alice_client = sign_up(anon, event, "alice@example.com", team="red")
    bob, bob_client = sign_up(anon, event, "bob@example.com", team="blue")

    clock.set(T0 - timedelta(minutes=2))
    assert alice_client.confirm_attendance(round_id, alice.participant_id).status == ParticipantStatus.CONFIRMED
    bob_client.confirm_attendance(round_id, bob.participant_id)

    clock.set(T0 + timedelta(seconds=5))
    status = alice_client.get_status(round_id, alice.participant_id)
    assert status.status == ParticipantStatus.MATCHED
    match = status.match
    assert [p.display_name for p in match.partners(alice.participant_id)] == ["Bob Tester"]
    assert alice_client.get_match(round_id, alice.participant_id).id == match.id

    clock.advance(minutes=1)
    first = alice_client.check_in(round_id, alice.participant_id, bob.code)
    assert not first.quorum
    second = bob_client.check_in(round_id, bob.participant_id, alice.code)
    assert second.quorum
    assert second.match.networking_end_at is not None

    clock.set(second.match.networking_end_at)
    prefs = {bob.participant_id: True}
    saved = alice_client.submit_contact_sharing(match.id, alice.participant_id, prefs)
    assert saved.preferences == prefs
    status = alice_client.get_status(round_id, alice.participant_id)
    assert status.status == ParticipantStatus.COMPLETED
    assert status.contact_sharing == prefs

    bob_client.submit_contact_sharing(match.id, bob.participant_id, {alice.participant_id: True})
    contacts = alice_client.get_shared_contacts()
    assert [c.partner.email for c in contacts] == ["bob@example.com"]

    actions = [entry.action for entry in anon.get_audit_log(alice.participant_id)]
    assert actions.count("contact-sharing") == 1
    assert actions[0] == "registered"


def test_trigger_matching_and_parameters(api, anon):
    event = create_event(api)
    params = anon.get_system_parameters()
    assert params.walking_time_minutes == 3
    result = anon.trigger_matching(event["rounds"][0]["id"])
    assert result.already_completed is False
    assert anon.trigger_matching(event["rounds"][0]["id"]).already_completed is True


class BrokenSession:
    def request(self, *args, **kwargs):
        raise requests.ConnectionError("connection refused")


def test_transport_failure_becomes_network_error():
    client = WondereloClient(base_url="http://nowhere", token="t", session=BrokenSession())
    with pytest.raises(NetworkError) as exc:
        client.get_status("r1", "p1")
    assert exc.value.status is None
    assert exc.value.message.startswith("Could not reach the server")


class CannedSession:
    """Answers every request with the same 200 body."""

    def __init__(self, text):
        self.text = text
        self.calls = 0

    def request(self, *args, **kwargs):
        self.calls += 1
        return self

    @property
    def status_code(self):
        return 200

    def json(self):
        return json.loads(self.text)


def test_non_json_body_becomes_server_error():
    client = WondereloClient(base_url="http://proxy", token="t", session=CannedSession("<html>gateway</html>"))
    with pytest.raises(ServerError) as exc:
        client.confirm_attendance("r1", "p1")
    assert exc.value.message == "Unexpected response from server"
    assert exc.value.reason == "unexpected-response"


def test_unknown_status_becomes_server_error():
    body = json.dumps({
        "roundId": "r1",
        "participantId": "p1",
        "status": "teleported",
        "serverTime": "2030-06-01T12:00:00Z",
    })
    client = WondereloClient(base_url="http://proxy", token="t", session=CannedSession(body))
    with pytest.raises(ServerError):
        client.get_status("r1", "p1")


def test_list_endpoint_rejects_an_object():
    client = WondereloClient(base_url="http://proxy", token="t", session=CannedSession('{"error": null}'))
    with pytest.raises(ServerError):
        client.get_shared_contacts()


def test_time_travel_clock_is_forwarded(api):
    event = create_event(api)
    clock = SimulatedClock()
    anon = WondereloClient(base_url="http://testserver", session=api, clock=clock)
    assert TEST_TIME_HEADER not in anon._headers(anonymous=True)

    clock.travel_to(T0 - timedelta(minutes=5))
    assert clock.simulated
    sent = parse_instant(anon._headers(anonymous=True)[TEST_TIME_HEADER])
    assert abs(sent - (T0 - timedelta(minutes=5))) < timedelta(seconds=5)

    # the server sees the travelled time: registration closed inside the safety window
    registration = RegisterIn(email="late@example.com", first_name="Late", round_ids=[event["rounds"][0]["id"]])
    with pytest.raises(ValidationError) as exc:
        anon.register(event["joinCode"], registration)
    assert exc.value.reason == "registration-closed"

    clock.reset()
    assert not clock.simulated
    assert TEST_TIME_HEADER not in anon._headers(anonymous=True)
    assert anon.register(event["joinCode"], registration).participant_id


def test_decline_over_http(api, anon, clock):
    event = create_event(api)
    round_id = event["rounds"][0]["id"]
    alice, alice_client = sign_up(anon, event, "alice@example.com")

    clock.set(T0 - timedelta(minutes=2))
    declined = alice_client.decline(round_id, alice.participant_id)
    assert declined.status == ParticipantStatus.CANCELLED

    status = alice_client.get_status(round_id, alice.participant_id)
    assert status.status == ParticipantStatus.CANCELLED
    assert status.reason == "You declined to take part in this round"
    with pytest.raises(ValidationError) as exc:
        alice_client.confirm_attendance(round_id, alice.participant_id)
    assert exc.value.reason == "invalid-status"
