"""Conference Socket.IO handlers.

Events (client -> server):
  join-room { meetingCode, joinToken? }
  approve-waiting / reject-waiting { meetingCode, waitingConnectionId }
  leave-room { meetingCode }
  offer / answer / ice-candidate { targetConnectionId, payload }
  chat-message { meetingCode, text }
  raise-hand { meetingCode, raised }      toggle-audio { meetingCode, isMuted }
  toggle-video { meetingCode, isCameraOn } speaking { meetingCode, isSpeaking }
  screen-share-started / screen-share-stopped { meetingCode }
  lock-meeting { meetingCode, isLocked }  (host only)
  remove-participant { meetingCode, targetConnectionId }  (host only)
  engagement-update { meetingCode, speakingTimeDelta, cameraOnTimeDelta }
  end-meeting { meetingCode }  (host only)

Server emits (room = room:<MEETING-CODE>):
  join-approved / join-waiting-room / join-rejected to the requester
  room-participants, user-joined, user-left, participant-count
  waiting-room-request to the host, removed-from-meeting to the target
  chat-message, hand-raised, user-audio-toggle, user-video-toggle,
  user-speaking, screen-share-started/stopped, meeting-locked,
  engagement-scores-update, meeting-ended
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from flask import current_app, request
from flask_login import current_user

from smartmeet.conference import ConferenceService, Identity
from smartmeet.conference.service import PEER_STATE_EVENTS
from smartmeet.conference.signaling import SIGNAL_KINDS
from smartmeet.extensions import db, socketio
from smartmeet.meetings.codes import normalize_meeting_code
from smartmeet.meetings.credentials import decode_access_token
from smartmeet.models import User

log = logging.getLogger(__name__)


def _service() -> ConferenceService:
    return current_app.extensions['conference']


def _payload(data: Any) -> Dict[str, Any]:
    return data if isinstance(data, dict) else {}


def _code(data: Dict[str, Any]) -> str:
    return normalize_meeting_code(data.get('meetingCode') or data.get('meetingId'))


def _resolve_identity(auth: Any) -> Identity:
    """Authenticate opportunistically; anything unverifiable becomes a guest."""
    auth = _payload(auth)
    requested_name = auth.get('userName') or auth.get('displayName') or request.args.get('userName')
    if not isinstance(requested_name, str) or not requested_name.strip():
        requested_name = None
    else:
        requested_name = requested_name.strip()[:100]

    if current_user.is_authenticated:
        return Identity.authenticated(current_user.user_id, requested_name or current_user.display_name)

    account_id = decode_access_token(current_app.config['JWT_SECRET'], auth.get('token'))
    if account_id is not None:
        user = db.session.get(User, account_id)
        if user is not None:
            return Identity.authenticated(user.user_id, requested_name or user.display_name)
    return Identity.guest(requested_name or 'Guest')


@socketio.on('connect')
def on_connect(auth=None):
    _service().connect(request.sid, _resolve_identity(auth))


@socketio.on('disconnect')
def on_disconnect(*_args):
    _service().disconnect(request.sid)


@socketio.on('join-room')
def on_join_room(data):
    data = _payload(data)
    token = data.get('joinToken')
    _service().join(request.sid, _code(data), token if isinstance(token, str) else None)


@socketio.on('approve-waiting')
def on_approve_waiting(data):
    data = _payload(data)
    waiting_id = data.get('waitingConnectionId') or data.get('waitingSocketId')
    if isinstance(waiting_id, str):
        _service().approve_waiting(request.sid, waiting_id, _code(data))


@socketio.on('reject-waiting')
def on_reject_waiting(data):
    data = _payload(data)
    waiting_id = data.get('waitingConnectionId') or data.get('waitingSocketId')
    if isinstance(waiting_id, str):
        _service().reject_waiting(request.sid, waiting_id, _code(data))


@socketio.on('leave-room')
def on_leave_room(data):
    _service().leave(request.sid, _code(_payload(data)))


def _register_signal(kind: str):
    def handler(data):
        _service().relay_signal(kind, request.sid, _payload(data))
    handler.__name__ = f"on_{kind.replace('-', '_')}"
    socketio.on_event(kind, handler)


for _kind in SIGNAL_KINDS:
    _register_signal(_kind)


@socketio.on('chat-message')
def on_chat_message(data):
    data = _payload(data)
    text = data.get('text', data.get('message'))
    _service().chat(request.sid, _code(data), text)


def _register_peer_state(event: str):
    def handler(data):
        data = _payload(data)
        _service().peer_state(event, request.sid, _code(data), data)
    handler.__name__ = f"on_{event.replace('-', '_')}"
    socketio.on_event(event, handler)


for _event in PEER_STATE_EVENTS:
    _register_peer_state(_event)


@socketio.on('lock-meeting')
def on_lock_meeting(data):
    data = _payload(data)
    _service().lock(request.sid, _code(data), bool(data.get('isLocked')))


@socketio.on('remove-participant')
def on_remove_participant(data):
    data = _payload(data)
    target = data.get('targetConnectionId') or data.get('targetSocketId')
    if isinstance(target, str):
        _service().remove_participant(request.sid, target, _code(data))


@socketio.on('engagement-update')
def on_engagement_update(data):
    data = _payload(data)
    _service().engagement_update(
        request.sid, _code(data), data.get('speakingTimeDelta'), data.get('cameraOnTimeDelta')
    )


@socketio.on('end-meeting')
def on_end_meeting(data):
    _service().end_meeting(request.sid, _code(_payload(data)))
