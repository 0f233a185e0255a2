from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jwt
import pytest

from smartmeet import create_app, mint_join_token, shutdown_conference
from smartmeet.conference import Broadcaster, Delivery, Identity
from smartmeet.config import Config
from smartmeet.extensions import db, socketio
from smartmeet.meetings.credentials import issue_join_token
from smartmeet.models import Meeting, User


SECRET = "test-secret"


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = SECRET
    JWT_SECRET = SECRET
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    REQUIRE_JOIN_TOKEN = False


@dataclass
class Sent:
    event: str
    payload: Dict[str, Any]
    to: str
    skip: Optional[str]
    recipients: List[str] = field(default_factory=list)


class RecordingBroadcaster(Broadcaster):
    """In-memory transport that remembers who would have received what."""

    def __init__(self):
        self.sent: List[Sent] = []
        self.rooms: Dict[str, set] = defaultdict(set)

    def send(self, event, payload, *, to, skip=None):
        if to.startswith("room:"):
            recipients = sorted(self.rooms[to[len("room:"):]] - {skip})
        else:
            recipients = [to]
        self.sent.append(Sent(event, payload, to, skip, recipients))
        return Delivery(event=event, to=to)

    def enter_room(self, connection_id, meeting_code):
        self.rooms[meeting_code].add(connection_id)

    def leave_room(self, connection_id, meeting_code):
        self.rooms[meeting_code].discard(connection_id)

    def received(self, connection_id: str, event: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            s.payload for s in self.sent
            if connection_id in s.recipients and (event is None or s.event == event)
        ]

    def events(self, event: str) -> List[Sent]:
        return [s for s in self.sent if s.event == event]


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    ctx = app.app_context()
    ctx.push()
    try:
        yield app
    finally:
        shutdown_conference(app)
        db.session.remove()
        db.drop_all()
        ctx.pop()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def make_user(app):
    def _make(name: str, email: Optional[str] = None) -> User:
        user = User(name=name, email=email or f"{name.lower()}@example.com", password="x")
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_meeting(app):
    def _make(code: str, host: User, **fields) -> Meeting:
        store = app.extensions["conference"].meetings
        meeting = store.create_meeting(
            host.user_id,
            meeting_code=code,
            waiting_room_enabled=fields.pop("waiting_room_enabled", False),
            is_locked=fields.pop("is_locked", False),
        )
        for name, value in fields.items():
            setattr(meeting, name, value)
        db.session.commit()
        return meeting
    return _make


@pytest.fixture
def identity_for():
    def _identity(user: User) -> Identity:
        return Identity.authenticated(user.user_id, user.display_name)
    return _identity


@pytest.fixture
def join_token(app):
    def _token(code: str, ttl: Optional[int] = None) -> str:
        if ttl is None:
            return mint_join_token(app, code)
        return issue_join_token(SECRET, code, ttl)
    return _token


@pytest.fixture
def make_app():
    """Build further apps in the same process; each is torn down after the test."""
    built = []

    def _make():
        extra = create_app(TestingConfig)
        built.append(extra)
        return extra

    yield _make
    for extra in built:
        shutdown_conference(extra)
        with extra.app_context():
            db.session.remove()
            db.drop_all()


@pytest.fixture
def connect(app):
    """Open a Socket.IO test client, optionally authenticated as ``user``."""
    clients = []

    def _connect(user: Optional[User] = None, name: Optional[str] = None):
        auth: Dict[str, Any] = {}
        if user is not None:
            auth["token"] = jwt.encode({"id": user.user_id}, SECRET, algorithm="HS256")
        if name:
            auth["userName"] = name
        client = socketio.test_client(app, auth=auth)
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        if client.is_connected():
            client.disconnect()


@pytest.fixture
def inbox():
    """Drain a test client and group payloads by event name."""
    def _inbox(client) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for pkt in client.get_received():
            grouped[pkt["name"]].append(pkt["args"][0] if pkt["args"] else None)
        return grouped
    return _inbox
