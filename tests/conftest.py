import os
from datetime import date, datetime, timedelta

os.environ.setdefault("WONDERELO_DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from wonderelo.config import get_settings
from wonderelo.db import create_db_and_tables, get_session
from wonderelo.main import app
from wonderelo.timing import round_start_instant

ROUND_DATE = date(2030, 6, 1)
ROUND_TZ = "Europe/Bratislava"
T0 = round_start_instant(ROUND_DATE, "14:00", ROUND_TZ)
EARLY = T0 - timedelta(minutes=30)


def anon_headers(now: datetime = None) -> dict:
    headers = {"Authorization": f"Bearer {get_settings().anon_key}"}
    if now is not None:
        headers["X-Test-Time"] = now.isoformat()
    return headers


def participant_headers(token: str, now: datetime = None) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if now is not None:
        headers["X-Test-Time"] = now.isoformat()
    return headers


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def api(engine):
    def session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = session_override
    # no context manager: the startup hook would create tables on the default engine
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def create_event(api, **overrides) -> dict:
    payload = {
        "title": "Spring mixer",
        "timezone": ROUND_TZ,
        "meetingPoints": ["Fountain", "Main stage"],
        "iceBreakers": ["What brought you here today?"],
        "rounds": [
            {
                "name": "Round 1",
                "date": ROUND_DATE.isoformat(),
                "startTime": "14:00",
                "duration": 10,
                "confirmationWindow": 3,
            }
        ],
    }
    payload.update(overrides)
    resp = api.post("/events", json=payload, headers=anon_headers())
    assert resp.status_code == 200, resp.text
    return resp.json()


def register(api, event: dict, email: str, first_name: str = "", team=None, topics=(), now: datetime = EARLY) -> dict:
    resp = api.post(
        f"/events/{event['joinCode']}/register",
        json={
            "email": email,
            "firstName": first_name or email.split("@")[0].title(),
            "lastName": "Tester",
            "roundIds": [event["rounds"][0]["id"]],
            "team": team,
            "topics": list(topics),
        },
        headers=anon_headers(now),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def status_of(api, event: dict, person: dict, now: datetime):
    round_id = event["rounds"][0]["id"]
    return api.get(
        f"/rounds/{round_id}/participants/{person['participantId']}/status",
        headers=participant_headers(person["token"], now),
    )


def post_as(api, person: dict, path: str, now: datetime, json=None):
    return api.post(path, json=json or {}, headers=participant_headers(person["token"], now))


def confirm(api, event: dict, person: dict, now: datetime = None):
    round_id = event["rounds"][0]["id"]
    now = now or T0 - timedelta(minutes=2)
    return post_as(api, person, f"/rounds/{round_id}/participants/{person['participantId']}/confirm", now)


@pytest.fixture
def event(api):
    return create_event(api)
