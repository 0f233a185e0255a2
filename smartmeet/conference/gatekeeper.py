"""Join gating: credential, meeting state, lock and waiting room.

Every join request ends in exactly one event to the requester:
``join-approved``, ``join-waiting-room`` or ``join-rejected``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from smartmeet.meetings.credentials import InvalidJoinToken, JoinCredentialError, JoinCredentialVerifier
from smartmeet.meetings.store import MeetingSnapshot, MeetingStore, StoreError

from .identity import Identity
from .registry import ParticipantHandle, RoomRegistry
from .transport import Broadcaster

logger = logging.getLogger(__name__)

ADMITTED = "admitted"
WAITING = "waiting"
REJECTED = "rejected"

MSG_NOT_FOUND = "Meeting not found."
MSG_ENDED = "This meeting has ended."
MSG_LOCKED = "Meeting is locked. New participants cannot join."
MSG_TOKEN_REQUIRED = "A join token is required. Please join from the meeting page."
MSG_FAILED = "Failed to join. Please try again."
MSG_DENIED = "Host denied your request to join."
MSG_WAITING = "Waiting for host approval..."


@dataclass(frozen=True)
class JoinDecision:
    outcome: str
    reason: Optional[str] = None
    is_host: bool = False
    meeting: Optional[MeetingSnapshot] = None

    @classmethod
    def reject(cls, reason: str, meeting: Optional[MeetingSnapshot] = None) -> "JoinDecision":
        return cls(outcome=REJECTED, reason=reason, meeting=meeting)


@dataclass(frozen=True)
class PendingJoin:
    connection_id: str
    meeting_code: str
    identity: Identity

    def as_request(self) -> dict:
        return {
            'connectionId': self.connection_id,
            'accountId': self.identity.account_id,
            'displayName': self.identity.display_name,
            'meetingCode': self.meeting_code,
        }


class JoinGatekeeper:
    def __init__(
        self,
        registry: RoomRegistry,
        broadcaster: Broadcaster,
        meetings: MeetingStore,
        verifier: JoinCredentialVerifier,
        *,
        require_token: bool = False,
    ):
        self._registry = registry
        self._broadcaster = broadcaster
        self._meetings = meetings
        self._verifier = verifier
        self._require_token = require_token
        # connection id -> pending request; mirrors the persisted queue
        self._pending: Dict[str, PendingJoin] = {}

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------
    def evaluate(self, identity: Identity, meeting_code: str, join_token: Optional[str]) -> JoinDecision:
        """Decide admit / wait / reject without side effects.

        Raises :class:`StoreError` when the meeting store is unavailable.
        """
        if join_token:
            try:
                credential = self._verifier.verify(join_token)
            except JoinCredentialError as exc:
                return JoinDecision.reject(exc.user_message)
            if credential.meeting_code != meeting_code or not credential.authorized:
                return JoinDecision.reject(InvalidJoinToken.user_message)
        elif self._require_token:
            return JoinDecision.reject(MSG_TOKEN_REQUIRED)

        meeting = self._meetings.find_by_code(meeting_code)
        if meeting is None:
            return JoinDecision.reject(MSG_NOT_FOUND)
        if meeting.is_ended:
            return JoinDecision.reject(MSG_ENDED, meeting)

        is_host = identity.is_account(meeting.host_account_id)
        if meeting.is_locked and not is_host:
            return JoinDecision.reject(MSG_LOCKED, meeting)
        if meeting.waiting_room_enabled and not is_host:
            return JoinDecision(outcome=WAITING, meeting=meeting)
        return JoinDecision(outcome=ADMITTED, is_host=is_host, meeting=meeting)

    # ------------------------------------------------------------------
    # Join flow
    # ------------------------------------------------------------------
    def handle_join(
        self,
        connection_id: str,
        identity: Identity,
        meeting_code: str,
        join_token: Optional[str] = None,
    ) -> JoinDecision:
        # A repeated join replaces any earlier waiting request
        self.forget(connection_id)
        member = self._registry.handle(meeting_code, connection_id) if meeting_code else None
        if member is not None:
            # Already admitted: refresh room info, keep the stored role
            self._admit(connection_id, identity, meeting_code, member.is_host)
            return JoinDecision(outcome=ADMITTED, is_host=member.is_host)
        if not meeting_code:
            decision = JoinDecision.reject(MSG_NOT_FOUND)
        else:
            try:
                decision = self.evaluate(identity, meeting_code, join_token)
            except StoreError:
                logger.exception("join-room lookup failed for %s", meeting_code)
                decision = JoinDecision.reject(MSG_FAILED)

        if decision.outcome == WAITING:
            try:
                self._meetings.add_to_waiting_queue(
                    meeting_code,
                    connection_id=connection_id,
                    participant_key=identity.key,
                    account_id=identity.account_id,
                    display_name=identity.display_name,
                )
            except StoreError:
                logger.exception("waiting queue insert failed for %s", meeting_code)
                decision = JoinDecision.reject(MSG_FAILED, decision.meeting)
            else:
                pending = PendingJoin(connection_id, meeting_code, identity)
                self._pending[connection_id] = pending
                for host in self._registry.hosts(meeting_code):
                    self._broadcaster.send('waiting-room-request', pending.as_request(), to=host.connection_id)
                self._broadcaster.send('join-waiting-room', {
                    'message': MSG_WAITING,
                    'meetingCode': meeting_code,
                }, to=connection_id)
                return decision

        if decision.outcome == REJECTED:
            self._broadcaster.send('join-rejected', {
                'message': decision.reason,
                'meetingCode': meeting_code,
            }, to=connection_id)
            return decision

        self._admit(connection_id, identity, meeting_code, decision.is_host)
        if decision.meeting is not None and decision.meeting.status == "waiting":
            try:
                self._meetings.mark_active(meeting_code)
            except StoreError:
                logger.warning("could not mark meeting %s active", meeting_code, exc_info=True)
        return decision

    def _admit(self, connection_id: str, identity: Identity, meeting_code: str, is_host: bool) -> None:
        handle = ParticipantHandle(
            connection_id=connection_id,
            display_name=identity.display_name,
            account_id=identity.account_id,
            is_host=is_host,
        )
        participants = self._registry.admit(handle, meeting_code)
        self._broadcaster.send('join-approved', {
            'meetingCode': meeting_code,
            'isHost': is_host,
            'participants': participants,
        }, to=connection_id)
        if is_host:
            # Let a (re)joining host see who is already waiting
            for pending in self.pending_for(meeting_code):
                self._broadcaster.send('waiting-room-request', pending.as_request(), to=connection_id)

    # ------------------------------------------------------------------
    # Host decisions on the waiting room
    # ------------------------------------------------------------------
    def _take_pending(self, host_connection_id: str, pending_connection_id: str, meeting_code: str) -> Optional[PendingJoin]:
        host = self._registry.handle(meeting_code, host_connection_id)
        if host is None or not host.is_host:
            return None
        pending = self._pending.get(pending_connection_id)
        if pending is None or pending.meeting_code != meeting_code:
            return None
        del self._pending[pending_connection_id]
        try:
            self._meetings.remove_from_waiting_queue(meeting_code, pending_connection_id)
        except StoreError:
            logger.warning("waiting queue cleanup failed for %s", pending_connection_id, exc_info=True)
        return pending

    def approve(self, host_connection_id: str, pending_connection_id: str, meeting_code: str) -> bool:
        pending = self._take_pending(host_connection_id, pending_connection_id, meeting_code)
        if pending is None:
            return False
        self._admit(pending.connection_id, pending.identity, meeting_code, False)
        return True

    def deny(self, host_connection_id: str, pending_connection_id: str, meeting_code: str) -> bool:
        pending = self._take_pending(host_connection_id, pending_connection_id, meeting_code)
        if pending is None:
            return False
        self._broadcaster.send('join-rejected', {
            'message': MSG_DENIED,
            'meetingCode': meeting_code,
        }, to=pending.connection_id)
        return True

    def pending_for(self, meeting_code: str) -> List[PendingJoin]:
        return [p for p in self._pending.values() if p.meeting_code == meeting_code]

    def is_pending(self, connection_id: str) -> bool:
        return connection_id in self._pending

    def reject_pending(self, meeting_code: str, reason: str) -> List[str]:
        """Turn away everyone still waiting for ``meeting_code``."""
        rejected = []
        for pending in self.pending_for(meeting_code):
            del self._pending[pending.connection_id]
            self._broadcaster.send('join-rejected', {'message': reason, 'meetingCode': meeting_code},
                                   to=pending.connection_id)
            rejected.append(pending.connection_id)
        try:
            self._meetings.clear_waiting(meeting_code)
        except StoreError:
            logger.warning("waiting queue clear failed for %s", meeting_code, exc_info=True)
        return rejected

    def forget(self, connection_id: str) -> None:
        if self._pending.pop(connection_id, None) is None:
            return
        try:
            self._meetings.drop_waiting_connection(connection_id)
        except StoreError:
            logger.warning("waiting queue cleanup failed for %s", connection_id, exc_info=True)

    def clear(self) -> None:
        self._pending.clear()
