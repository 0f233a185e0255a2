"""In-memory room membership plus the broadcasts that accompany it.

A room exists only while it has at least one participant. All mutations run
on the Socket.IO event loop, so the maps are not locked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .transport import Broadcaster

logger = logging.getLogger(__name__)

REMOVED_MESSAGE = "You have been removed from the meeting by the host."


@dataclass(frozen=True)
class ParticipantHandle:
    connection_id: str
    display_name: str
    account_id: Optional[int] = None
    is_host: bool = False

    def as_dict(self) -> dict:
        return {
            'connectionId': self.connection_id,
            'displayName': self.display_name,
            'accountId': self.account_id,
            'isHost': self.is_host,
        }


class RoomRegistry:
    def __init__(self, broadcaster: Broadcaster):
        self._broadcaster = broadcaster
        # meeting code -> {connection id -> handle}
        self._rooms: Dict[str, Dict[str, ParticipantHandle]] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def has_room(self, meeting_code: str) -> bool:
        return meeting_code in self._rooms

    def count(self, meeting_code: str) -> int:
        return len(self._rooms.get(meeting_code, {}))

    def handle(self, meeting_code: str, connection_id: str) -> Optional[ParticipantHandle]:
        return self._rooms.get(meeting_code, {}).get(connection_id)

    def participants(self, meeting_code: str) -> List[dict]:
        return [h.as_dict() for h in self._rooms.get(meeting_code, {}).values()]

    def hosts(self, meeting_code: str) -> List[ParticipantHandle]:
        return [h for h in self._rooms.get(meeting_code, {}).values() if h.is_host]

    def rooms_of(self, connection_id: str) -> List[str]:
        return [code for code, members in self._rooms.items() if connection_id in members]

    def meeting_codes(self) -> List[str]:
        return list(self._rooms)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def admit(self, handle: ParticipantHandle, meeting_code: str) -> List[dict]:
        """Insert ``handle`` and announce it. Returns the full participant list."""
        cid = handle.connection_id
        # A connection belongs to one room at a time
        for other in self.rooms_of(cid):
            if other != meeting_code:
                self.remove(cid, other)

        members = self._rooms.setdefault(meeting_code, {})
        if cid not in members:
            members[cid] = handle
        self._broadcaster.enter_room(cid, meeting_code)

        others = [h.as_dict() for c, h in members.items() if c != cid]
        self._broadcaster.send('room-participants', {'participants': others}, to=cid)
        self._broadcaster.to_room('user-joined', members[cid].as_dict(), meeting_code, skip=cid)
        self._broadcaster.to_room('participant-count', {'count': len(members)}, meeting_code)
        logger.info("%s admitted to room %s (host: %s)", handle.display_name, meeting_code, handle.is_host)
        return [h.as_dict() for h in members.values()]

    def remove(self, connection_id: str, meeting_code: str) -> Optional[ParticipantHandle]:
        members = self._rooms.get(meeting_code)
        if not members or connection_id not in members:
            return None
        handle = members.pop(connection_id)
        self._broadcaster.leave_room(connection_id, meeting_code)
        self._broadcaster.to_room('user-left', {
            'connectionId': connection_id,
            'displayName': handle.display_name or 'A participant',
        }, meeting_code)
        self._broadcaster.to_room('participant-count', {'count': len(members)}, meeting_code)
        if not members:
            del self._rooms[meeting_code]
        return handle

    def force_remove(self, acting_connection_id: str, target_connection_id: str, meeting_code: str) -> bool:
        acting = self.handle(meeting_code, acting_connection_id)
        if acting is None or not acting.is_host:
            return False
        if target_connection_id == acting_connection_id:
            return False
        if self.handle(meeting_code, target_connection_id) is None:
            return False
        self._broadcaster.send('removed-from-meeting', {'message': REMOVED_MESSAGE, 'meetingCode': meeting_code},
                               to=target_connection_id)
        self.remove(target_connection_id, meeting_code)
        return True

    def close(self, meeting_code: str) -> List[ParticipantHandle]:
        """Drop a whole room without per-participant broadcasts."""
        members = self._rooms.pop(meeting_code, {})
        for cid in members:
            self._broadcaster.leave_room(cid, meeting_code)
        return list(members.values())

    def clear(self) -> None:
        self._rooms.clear()
