"""Process-owned conference state and the room-level operations.

One :class:`ConferenceService` is created per Flask app by ``create_app`` and
stored in ``app.extensions['conference']``; ``shutdown_conference`` clears it.
The Socket.IO gateway translates events into calls on this object.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from smartmeet.meetings.credentials import JoinCredentialVerifier
from smartmeet.meetings.store import EngagementStore, MeetingStore, StoreError

from .engagement import EngagementAggregator
from .gatekeeper import MSG_ENDED, JoinDecision, JoinGatekeeper
from .identity import Identity
from .registry import RoomRegistry
from .signaling import SignalingRelay
from .transport import Broadcaster

log = logging.getLogger(__name__)

# client event -> (broadcast event, payload flag field, include sender)
PEER_STATE_EVENTS = {
    'raise-hand': ('hand-raised', 'raised', True),
    'toggle-audio': ('user-audio-toggle', 'isMuted', False),
    'toggle-video': ('user-video-toggle', 'isCameraOn', False),
    'speaking': ('user-speaking', 'isSpeaking', False),
    'screen-share-started': ('screen-share-started', None, False),
    'screen-share-stopped': ('screen-share-stopped', None, False),
}


def _audit(event: str, **fields):
    """Emit a structured audit log line.

    Format: AUDIT | event=... key=value ...  (values with whitespace are JSON quoted)
    """
    parts = [f"event={event}"]
    for k, v in fields.items():
        if v is None:
            continue
        sv = str(v)
        if ' ' in sv or '\t' in sv:
            sv = json.dumps(sv)
        parts.append(f"{k}={sv}")
    log.info('AUDIT | ' + ' '.join(parts))


class ConferenceService:
    def __init__(
        self,
        broadcaster: Broadcaster,
        meetings: MeetingStore,
        engagement_store: EngagementStore,
        verifier: JoinCredentialVerifier,
        *,
        require_join_token: bool = False,
        chat_max_chars: int = 500,
    ):
        self.broadcaster = broadcaster
        self.meetings = meetings
        self.chat_max_chars = chat_max_chars
        self._identities: Dict[str, Identity] = {}
        self.registry = RoomRegistry(broadcaster)
        self.gatekeeper = JoinGatekeeper(
            self.registry, broadcaster, meetings, verifier, require_token=require_join_token
        )
        self.signaling = SignalingRelay(broadcaster, self.is_connected)
        self.engagement = EngagementAggregator(broadcaster, engagement_store)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------
    def connect(self, connection_id: str, identity: Identity) -> None:
        self._identities[connection_id] = identity
        log.info("Connected: %s (%s)", connection_id, identity.display_name)

    def identity_of(self, connection_id: str) -> Optional[Identity]:
        return self._identities.get(connection_id)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._identities

    def disconnect(self, connection_id: str) -> List[str]:
        """Remove the connection from every room it was in."""
        left = []
        for meeting_code in self.registry.rooms_of(connection_id):
            if self.registry.remove(connection_id, meeting_code) is not None:
                left.append(meeting_code)
        self.gatekeeper.forget(connection_id)
        identity = self._identities.pop(connection_id, None)
        log.info("Disconnected: %s (%s)", connection_id, identity.display_name if identity else 'unknown')
        return left

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------
    def join(self, connection_id: str, meeting_code: str, join_token: Optional[str] = None) -> Optional[JoinDecision]:
        identity = self.identity_of(connection_id)
        if identity is None:
            return None
        decision = self.gatekeeper.handle_join(connection_id, identity, meeting_code, join_token)
        _audit('join_room', connection=connection_id, meeting=meeting_code, participant=identity.key,
               outcome=decision.outcome, reason=decision.reason)
        return decision

    def leave(self, connection_id: str, meeting_code: str) -> bool:
        return self.registry.remove(connection_id, meeting_code) is not None

    def approve_waiting(self, connection_id: str, waiting_connection_id: str, meeting_code: str) -> bool:
        if not self.is_connected(waiting_connection_id):
            return False
        ok = self.gatekeeper.approve(connection_id, waiting_connection_id, meeting_code)
        if ok:
            _audit('waiting_approved', meeting=meeting_code, host=connection_id, connection=waiting_connection_id)
        return ok

    def reject_waiting(self, connection_id: str, waiting_connection_id: str, meeting_code: str) -> bool:
        ok = self.gatekeeper.deny(connection_id, waiting_connection_id, meeting_code)
        if ok:
            _audit('waiting_denied', meeting=meeting_code, host=connection_id, connection=waiting_connection_id)
        return ok

    def remove_participant(self, connection_id: str, target_connection_id: str, meeting_code: str) -> bool:
        ok = self.registry.force_remove(connection_id, target_connection_id, meeting_code)
        if ok:
            _audit('participant_removed', meeting=meeting_code, host=connection_id, target=target_connection_id)
        return ok

    # ------------------------------------------------------------------
    # Host controls
    # ------------------------------------------------------------------
    def _host(self, connection_id: str, meeting_code: str):
        handle = self.registry.handle(meeting_code, connection_id)
        return handle if handle is not None and handle.is_host else None

    def lock(self, connection_id: str, meeting_code: str, locked: bool) -> bool:
        host = self._host(connection_id, meeting_code)
        if host is None:
            return False
        try:
            if not self.meetings.set_locked(meeting_code, locked):
                return False
        except StoreError:
            log.exception("lock-meeting failed for %s", meeting_code)
            return False
        self.broadcaster.to_room('meeting-locked', {'isLocked': bool(locked), 'lockedBy': host.display_name},
                                 meeting_code)
        _audit('meeting_locked', meeting=meeting_code, host=connection_id, locked=bool(locked))
        return True

    def end_meeting(self, connection_id: str, meeting_code: str) -> bool:
        if self._host(connection_id, meeting_code) is None:
            return False
        try:
            self.meetings.end_meeting(meeting_code)
        except StoreError:
            # The room still closes; the stored status catches up on the next end
            log.exception("end-meeting persistence failed for %s", meeting_code)
        self.broadcaster.to_room('meeting-ended', {'meetingCode': meeting_code}, meeting_code)
        self.registry.close(meeting_code)
        self.gatekeeper.reject_pending(meeting_code, MSG_ENDED)
        _audit('meeting_ended', meeting=meeting_code, host=connection_id)
        return True

    # ------------------------------------------------------------------
    # Room events
    # ------------------------------------------------------------------
    def chat(self, connection_id: str, meeting_code: str, text: Any) -> Optional[dict]:
        identity = self.identity_of(connection_id)
        if identity is None or self.registry.handle(meeting_code, connection_id) is None:
            return None
        if not isinstance(text, str) or not text.strip():
            return None
        sanitized = text.strip()[:self.chat_max_chars]
        now = datetime.now(timezone.utc)
        payload = {
            'accountId': identity.account_id,
            'displayName': identity.display_name,
            'text': sanitized,
            'timestamp': now.isoformat(),
        }
        self.broadcaster.to_room('chat-message', payload, meeting_code)
        try:
            self.meetings.append_chat_message(
                meeting_code,
                account_id=identity.account_id,
                display_name=identity.display_name,
                text=sanitized,
                timestamp=now.replace(tzinfo=None),
            )
        except StoreError:
            log.warning("chat message not persisted for %s", meeting_code, exc_info=True)
        self.engagement.record_chat(meeting_code, identity)
        return payload

    def peer_state(self, event: str, connection_id: str, meeting_code: str, data: Dict[str, Any]) -> bool:
        """Relay hand-raise / mute / camera / speaking / screen-share changes."""
        if event not in PEER_STATE_EVENTS:
            return False
        handle = self.registry.handle(meeting_code, connection_id)
        if handle is None:
            return False
        out_event, flag, include_sender = PEER_STATE_EVENTS[event]
        payload: Dict[str, Any] = {'connectionId': connection_id, 'displayName': handle.display_name}
        if flag is not None:
            value = data.get(flag, data.get('flag'))
            payload[flag] = bool(value)
        self.broadcaster.to_room(out_event, payload, meeting_code, skip=None if include_sender else connection_id)
        if event == 'raise-hand' and payload.get('raised'):
            identity = self.identity_of(connection_id)
            if identity is not None:
                self.engagement.record_hand_raise(meeting_code, identity)
        return True

    def relay_signal(self, kind: str, connection_id: str, data: Dict[str, Any]) -> bool:
        identity = self.identity_of(connection_id)
        if identity is None:
            return False
        return self.signaling.relay(kind, connection_id, identity, data) is not None

    def engagement_update(self, connection_id: str, meeting_code: str, speaking_delta: Any, camera_delta: Any):
        identity = self.identity_of(connection_id)
        if identity is None or self.registry.handle(meeting_code, connection_id) is None:
            return None
        return self.engagement.record_delta(meeting_code, identity, speaking_delta, camera_delta)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def clear(self) -> None:
        self.registry.clear()
        self.gatekeeper.clear()
        self._identities.clear()
