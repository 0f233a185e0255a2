"""End-to-end tests through the Socket.IO test client."""
import jwt
import pytest

from smartmeet.extensions import db, socketio
from smartmeet.models import ChatMessage, Engagement, Meeting, User, WaitingEntry


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def room(alice, bob, make_meeting, connect, inbox):
    """Host A and participant B admitted to ABC-123; inboxes drained."""
    make_meeting("ABC-123", alice)
    a = connect(alice)
    b = connect(bob)
    a.emit("join-room", {"meetingCode": "ABC-123"})
    b.emit("join-room", {"meetingCode": "ABC-123"})
    b_sid = inbox(a)["user-joined"][0]["connectionId"]
    a_sid = inbox(b)["room-participants"][0]["participants"][0]["connectionId"]
    return a, b, a_sid, b_sid


def test_ordered_join_and_disconnect(alice, bob, make_meeting, connect, inbox):
    make_meeting("ABC-123", alice)
    a = connect(alice)
    b = connect(bob)

    a.emit("join-room", {"meetingCode": "ABC-123"})
    b.emit("join-room", {"meetingCode": "abc-123 "})
    a_events, b_events = inbox(a), inbox(b)

    assert a_events["join-approved"][0]["isHost"] is True
    assert b_events["join-approved"][0]["isHost"] is False
    snapshot = b_events["room-participants"][0]["participants"]
    assert [p["displayName"] for p in snapshot] == ["Alice"]
    assert a_events["participant-count"] == [{"count": 1}, {"count": 2}]
    assert b_events["participant-count"][-1] == {"count": 2}
    b_sid = a_events["user-joined"][0]["connectionId"]
    assert a_events["user-joined"][0]["displayName"] == "Bob"

    b.disconnect()
    a_events = inbox(a)
    assert a_events["user-left"] == [{"connectionId": b_sid, "displayName": "Bob"}]
    assert a_events["participant-count"] == [{"count": 1}]


def test_locked_meeting_rejects_everyone_but_host(alice, make_user, make_meeting, connect, inbox, join_token):
    make_meeting("LCK-001", alice, is_locked=True)
    carol = make_user("Carol")
    c = connect(carol)
    a = connect(alice)

    c.emit("join-room", {"meetingCode": "LCK-001", "joinToken": join_token("LCK-001")})
    a.emit("join-room", {"meetingCode": "LCK-001", "joinToken": join_token("LCK-001")})
    c_events, a_events = inbox(c), inbox(a)

    assert c_events["join-rejected"] == [
        {"message": "Meeting is locked. New participants cannot join.", "meetingCode": "LCK-001"}
    ]
    assert "join-approved" not in c_events
    assert len(a_events["join-approved"]) == 1


def test_waiting_room_approval(alice, make_meeting, connect, inbox):
    make_meeting("WAI-777", alice, waiting_room_enabled=True)
    a = connect(alice)
    d = connect(name="Dana")
    a.emit("join-room", {"meetingCode": "WAI-777"})
    inbox(a)

    d.emit("join-room", {"meetingCode": "WAI-777"})
    d_events, a_events = inbox(d), inbox(a)
    assert d_events["join-waiting-room"][0]["meetingCode"] == "WAI-777"
    assert "join-approved" not in d_events
    request = a_events["waiting-room-request"][0]
    assert request["displayName"] == "Dana" and request["accountId"] is None

    a.emit("approve-waiting", {"meetingCode": "WAI-777", "waitingConnectionId": request["connectionId"]})
    d_events, a_events = inbox(d), inbox(a)
    assert len(d_events["join-approved"]) == 1
    assert a_events["participant-count"][-1] == {"count": 2}


def test_waiting_guest_can_be_denied(alice, make_meeting, connect, inbox):
    make_meeting("WAI-777", alice, waiting_room_enabled=True)
    a = connect(alice)
    d = connect(name="Dana")
    a.emit("join-room", {"meetingCode": "WAI-777"})
    d.emit("join-room", {"meetingCode": "WAI-777"})
    request = inbox(a)["waiting-room-request"][0]
    inbox(d)

    a.emit("reject-waiting", {"meetingCode": "WAI-777", "waitingConnectionId": request["connectionId"]})
    assert inbox(d)["join-rejected"][0]["message"] == "Host denied your request to join."


def test_unknown_meeting_is_rejected(connect, inbox):
    g = connect(name="Gus")
    g.emit("join-room", {"meetingCode": "NOP-404"})
    assert inbox(g)["join-rejected"][0]["message"] == "Meeting not found."


def test_signaling_between_two_connections(room, inbox):
    a, b, a_sid, b_sid = room
    a.emit("offer", {"targetConnectionId": b_sid, "payload": {"type": "offer", "sdp": "x"}})
    b.emit("answer", {"targetConnectionId": a_sid, "payload": {"type": "answer", "sdp": "y"}})
    a.emit("ice-candidate", {"targetConnectionId": "no-such-connection", "payload": {}})

    b_events, a_events = inbox(b), inbox(a)
    assert b_events["offer"] == [{"fromConnectionId": a_sid, "fromDisplayName": "Alice",
                                  "payload": {"type": "offer", "sdp": "x"}}]
    assert a_events["answer"] == [{"fromConnectionId": b_sid, "payload": {"type": "answer", "sdp": "y"}}]
    assert "ice-candidate" not in a_events and "ice-candidate" not in b_events


def test_chat_is_broadcast_trimmed_and_persisted(room, inbox, alice):
    a, b, _, _ = room
    a.emit("chat-message", {"meetingCode": "ABC-123", "text": "  hello team  "})
    a.emit("chat-message", {"meetingCode": "ABC-123", "text": "x" * 600})
    a.emit("chat-message", {"meetingCode": "ABC-123", "text": "   "})

    b_messages = inbox(b)["chat-message"]
    assert [m["text"] for m in b_messages] == ["hello team", "x" * 500]
    assert b_messages[0]["accountId"] == alice.user_id
    assert b_messages[0]["displayName"] == "Alice"
    assert len(inbox(a)["chat-message"]) == 2
    assert ChatMessage.query.count() == 2
    assert Engagement.query.filter_by(participant_key=str(alice.user_id)).one().chat_messages == 2


def test_chat_from_outside_the_room_is_dropped(room, connect, inbox):
    a, b, _, _ = room
    outsider = connect(name="Eve")
    outsider.emit("chat-message", {"meetingCode": "ABC-123", "text": "let me in"})
    assert "chat-message" not in inbox(a)
    assert ChatMessage.query.count() == 0


def test_peer_state_goes_to_others(room, inbox):
    a, b, a_sid, _ = room
    a.emit("toggle-audio", {"meetingCode": "ABC-123", "isMuted": True})
    a.emit("raise-hand", {"meetingCode": "ABC-123", "raised": True})

    b_events, a_events = inbox(b), inbox(a)
    assert b_events["user-audio-toggle"] == [{"connectionId": a_sid, "displayName": "Alice", "isMuted": True}]
    assert "user-audio-toggle" not in a_events
    # hand raises are echoed to the sender as well
    assert a_events["hand-raised"][0]["raised"] is True
    assert b_events["hand-raised"][0]["connectionId"] == a_sid


def test_lock_is_host_only(room, inbox):
    a, b, _, _ = room
    b.emit("lock-meeting", {"meetingCode": "ABC-123", "isLocked": True})
    assert "meeting-locked" not in inbox(a)
    assert Meeting.query.filter_by(meeting_code="ABC-123").one().is_locked is False

    a.emit("lock-meeting", {"meetingCode": "ABC-123", "isLocked": True})
    assert inbox(b)["meeting-locked"] == [{"isLocked": True, "lockedBy": "Alice"}]
    db.session.expire_all()
    assert Meeting.query.filter_by(meeting_code="ABC-123").one().is_locked is True


def test_host_removes_participant(room, inbox):
    a, b, a_sid, b_sid = room
    b.emit("remove-participant", {"meetingCode": "ABC-123", "targetConnectionId": a_sid})
    assert "removed-from-meeting" not in inbox(a)

    a.emit("remove-participant", {"meetingCode": "ABC-123", "targetConnectionId": b_sid})
    assert len(inbox(b)["removed-from-meeting"]) == 1
    a_events = inbox(a)
    assert a_events["user-left"][0]["connectionId"] == b_sid
    assert a_events["participant-count"] == [{"count": 1}]


def test_engagement_update_broadcasts_scores(room, inbox, alice, bob):
    a, b, _, _ = room
    a.emit("engagement-update", {"meetingCode": "ABC-123", "speakingTimeDelta": 30, "cameraOnTimeDelta": 10})
    b.emit("engagement-update", {"meetingCode": "ABC-123", "speakingTimeDelta": 10, "cameraOnTimeDelta": -5})

    scores = inbox(a)["engagement-scores-update"][-1]["scores"]
    assert [(s["displayName"], s["engagementScore"], s["rank"]) for s in scores] == [
        ("Alice", 75, 1), ("Bob", 25, 2),
    ]
    # same accountId shape as chat and waiting-room payloads
    assert [s["accountId"] for s in scores] == [alice.user_id, bob.user_id]
    assert len(inbox(b)["engagement-scores-update"]) == 2


def test_end_meeting(room, inbox):
    a, b, _, _ = room
    b.emit("end-meeting", {"meetingCode": "ABC-123"})
    assert "meeting-ended" not in inbox(a)

    a.emit("end-meeting", {"meetingCode": "ABC-123"})
    assert inbox(b)["meeting-ended"] == [{"meetingCode": "ABC-123"}]
    db.session.expire_all()
    meeting = Meeting.query.filter_by(meeting_code="ABC-123").one()
    assert meeting.status == "ended" and meeting.end_time is not None

    b.emit("join-room", {"meetingCode": "ABC-123"})
    assert inbox(b)["join-rejected"][0]["message"] == "This meeting has ended."


def test_leave_room_notifies_peers_only(room, inbox):
    a, b, _, b_sid = room
    b.emit("leave-room", {"meetingCode": "ABC-123"})
    assert inbox(a)["user-left"][0]["connectionId"] == b_sid
    assert "user-left" not in inbox(b)


def test_health_endpoint(app):
    response = app.test_client().get("/health")
    assert response.status_code == 200
    assert response.get_json()["database"] == "ok"


def test_engagement_update_requires_membership(alice, make_meeting, connect, inbox):
    make_meeting("LCK-001", alice, is_locked=True)
    a = connect(alice)
    eve = connect(name="Eve")
    a.emit("join-room", {"meetingCode": "LCK-001"})
    eve.emit("join-room", {"meetingCode": "LCK-001"})
    assert inbox(eve)["join-rejected"][0]["message"] == "Meeting is locked. New participants cannot join."
    inbox(a)

    eve.emit("engagement-update", {"meetingCode": "LCK-001", "speakingTimeDelta": 1000})
    eve.emit("engagement-update", {"meetingCode": "ANY-999", "speakingTimeDelta": 5})
    assert "engagement-scores-update" not in inbox(a)
    assert Engagement.query.count() == 0


def test_repeated_join_keeps_admitted_guest_in_room(alice, make_meeting, connect, inbox):
    make_meeting("WAI-777", alice, waiting_room_enabled=True)
    a = connect(alice)
    d = connect(name="Dana")
    a.emit("join-room", {"meetingCode": "WAI-777"})
    d.emit("join-room", {"meetingCode": "WAI-777"})
    request = inbox(a)["waiting-room-request"][0]
    a.emit("approve-waiting", {"meetingCode": "WAI-777", "waitingConnectionId": request["connectionId"]})
    inbox(a), inbox(d)

    d.emit("join-room", {"meetingCode": "WAI-777"})
    d_events, a_events = inbox(d), inbox(a)
    assert "join-waiting-room" not in d_events
    assert d_events["join-approved"][0]["isHost"] is False
    assert "waiting-room-request" not in a_events
    assert a_events["participant-count"] == [{"count": 2}]
    assert WaitingEntry.query.count() == 0


def test_end_meeting_turns_away_waiting_guests(alice, make_meeting, connect, inbox):
    make_meeting("WAI-777", alice, waiting_room_enabled=True)
    a = connect(alice)
    d = connect(name="Dana")
    a.emit("join-room", {"meetingCode": "WAI-777"})
    d.emit("join-room", {"meetingCode": "WAI-777"})
    inbox(a), inbox(d)
    assert WaitingEntry.query.count() == 1

    a.emit("end-meeting", {"meetingCode": "WAI-777"})
    assert inbox(d)["join-rejected"] == [{"message": "This meeting has ended.", "meetingCode": "WAI-777"}]
    assert WaitingEntry.query.count() == 0


def test_waiting_guest_disconnect_drops_queue_entry(alice, make_meeting, connect, inbox):
    make_meeting("WAI-777", alice, waiting_room_enabled=True)
    a = connect(alice)
    d = connect(name="Dana")
    a.emit("join-room", {"meetingCode": "WAI-777"})
    d.emit("join-room", {"meetingCode": "WAI-777"})
    request = inbox(a)["waiting-room-request"][0]
    assert WaitingEntry.query.count() == 1

    d.disconnect()
    assert WaitingEntry.query.count() == 0
    a.emit("approve-waiting", {"meetingCode": "WAI-777", "waitingConnectionId": request["connectionId"]})
    assert "participant-count" not in inbox(a)


def test_lock_is_not_announced_when_meeting_row_is_gone(room, inbox):
    a, b, _, _ = room
    Meeting.query.filter_by(meeting_code="ABC-123").delete()
    db.session.commit()

    a.emit("lock-meeting", {"meetingCode": "ABC-123", "isLocked": True})
    assert "meeting-locked" not in inbox(b)


def test_each_app_gets_handlers_and_its_own_rooms(app, make_app, alice, make_meeting, connect, inbox):
    make_meeting("ABC-123", alice)
    a = connect(alice)
    a.emit("join-room", {"meetingCode": "ABC-123"})
    assert len(inbox(a)["join-approved"]) == 1
    a.disconnect()
    assert not app.extensions["conference"].registry.has_room("ABC-123")

    other = make_app()
    with other.app_context():
        host = User(name="Alice", email="alice@example.com", password="x")
        db.session.add(host)
        db.session.commit()
        other.extensions["conference"].meetings.create_meeting(host.user_id, meeting_code="ABC-123")
        token = jwt.encode({"id": host.user_id}, other.config["JWT_SECRET"], algorithm="HS256")
        client = socketio.test_client(other, auth={"token": token})
        client.emit("join-room", {"meetingCode": "ABC-123"})
        events = inbox(client)
        other_registry = other.extensions["conference"].registry
        assert other_registry.count("ABC-123") == 1
        client.disconnect()

    assert events["join-approved"][0]["isHost"] is True
    assert events["participant-count"] == [{"count": 1}]
    assert not app.extensions["conference"].registry.has_room("ABC-123")
