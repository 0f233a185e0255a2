"""SQLAlchemy-backed meeting and engagement stores.

The conference relay only sees these two classes. Every method commits its own
unit of work; on failure the session is rolled back and :class:`StoreError`
is raised so callers decide whether the failure is terminal (join) or
advisory (chat, engagement).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from smartmeet.extensions import db
from smartmeet.meetings.codes import generate_meeting_code, normalize_meeting_code
from smartmeet.models import ChatMessage, Engagement, Meeting, WaitingEntry

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing database rejects an operation."""


@dataclass(frozen=True)
class MeetingSnapshot:
    meeting_code: str
    status: str
    is_locked: bool
    waiting_room_enabled: bool
    host_account_id: Optional[int]

    @property
    def is_ended(self) -> bool:
        return self.status == "ended"


def _snapshot(meeting: Meeting) -> MeetingSnapshot:
    return MeetingSnapshot(
        meeting_code=meeting.meeting_code,
        status=meeting.status or "waiting",
        is_locked=bool(meeting.is_locked),
        waiting_room_enabled=bool(meeting.waiting_room_enabled),
        host_account_id=meeting.host_id,
    )


def _commit(action: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreError(f"{action} failed: {exc}") from exc


class MeetingStore:
    def __init__(self, default_ttl_hours: int = 24):
        self.default_ttl_hours = default_ttl_hours

    def _get(self, meeting_code: str) -> Optional[Meeting]:
        try:
            return Meeting.query.filter_by(meeting_code=meeting_code).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"meeting lookup failed: {exc}") from exc

    def create_meeting(
        self,
        host_account_id: int,
        *,
        meeting_code: Optional[str] = None,
        title: Optional[str] = None,
        waiting_room_enabled: bool = False,
        is_locked: bool = False,
    ) -> Meeting:
        """Persist a new meeting that expires after ``default_ttl_hours``.

        A code is generated when none is given; generated codes are retried on
        collision.
        """
        for _ in range(5):
            code = normalize_meeting_code(meeting_code) or generate_meeting_code()
            meeting = Meeting(
                meeting_code=code,
                host_id=host_account_id,
                waiting_room_enabled=bool(waiting_room_enabled),
                is_locked=bool(is_locked),
            )
            if title:
                meeting.title = title
            meeting.set_expiry(self.default_ttl_hours)
            db.session.add(meeting)
            try:
                db.session.commit()
            except IntegrityError as exc:
                db.session.rollback()
                if meeting_code:
                    raise StoreError(f"meeting code {code} is taken") from exc
                continue
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise StoreError(f"create_meeting failed: {exc}") from exc
            return meeting
        raise StoreError("could not allocate a unique meeting code")

    def find_by_code(self, meeting_code: str) -> Optional[MeetingSnapshot]:
        meeting = self._get(meeting_code)
        # Expired meetings are treated as gone
        if meeting is None or meeting.is_expired():
            return None
        return _snapshot(meeting)

    def mark_active(self, meeting_code: str) -> None:
        meeting = self._get(meeting_code)
        if meeting is None or meeting.status != "waiting":
            return
        meeting.status = "active"
        _commit("mark_active")

    def set_locked(self, meeting_code: str, locked: bool) -> bool:
        meeting = self._get(meeting_code)
        if meeting is None:
            return False
        meeting.is_locked = bool(locked)
        _commit("set_locked")
        return True

    def end_meeting(self, meeting_code: str) -> bool:
        meeting = self._get(meeting_code)
        if meeting is None:
            return False
        now = datetime.utcnow()
        meeting.status = "ended"
        meeting.end_time = now
        if meeting.start_time:
            meeting.duration = max(0, int((now - meeting.start_time).total_seconds()))
        _commit("end_meeting")
        return True

    def append_chat_message(
        self,
        meeting_code: str,
        *,
        account_id: Optional[int],
        display_name: str,
        text: str,
        timestamp: datetime,
    ) -> bool:
        meeting = self._get(meeting_code)
        if meeting is None:
            return False
        db.session.add(ChatMessage(
            meeting_id=meeting.id,
            account_id=account_id,
            display_name=display_name,
            text=text,
            timestamp=timestamp,
        ))
        _commit("append_chat_message")
        return True

    # ------------------------------------------------------------------
    # Waiting room queue
    # ------------------------------------------------------------------
    def add_to_waiting_queue(
        self,
        meeting_code: str,
        *,
        connection_id: str,
        participant_key: str,
        account_id: Optional[int],
        display_name: str,
    ) -> bool:
        meeting = self._get(meeting_code)
        if meeting is None:
            return False
        existing = WaitingEntry.query.filter_by(meeting_id=meeting.id, connection_id=connection_id).first()
        if existing is not None:
            return True
        db.session.add(WaitingEntry(
            meeting_id=meeting.id,
            connection_id=connection_id,
            participant_key=participant_key,
            account_id=account_id,
            display_name=display_name,
        ))
        _commit("add_to_waiting_queue")
        return True

    def remove_from_waiting_queue(self, meeting_code: str, connection_id: str) -> bool:
        meeting = self._get(meeting_code)
        if meeting is None:
            return False
        removed = WaitingEntry.query.filter_by(meeting_id=meeting.id, connection_id=connection_id).delete()
        _commit("remove_from_waiting_queue")
        return bool(removed)

    def drop_waiting_connection(self, connection_id: str) -> int:
        """Remove every queue entry held by a connection that went away."""
        try:
            removed = WaitingEntry.query.filter_by(connection_id=connection_id).delete()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"drop_waiting_connection failed: {exc}") from exc
        _commit("drop_waiting_connection")
        return removed

    def list_waiting(self, meeting_code: str) -> List[WaitingEntry]:
        meeting = self._get(meeting_code)
        if meeting is None:
            return []
        return meeting.waiting_queue.all()

    def clear_waiting(self, meeting_code: str) -> List[str]:
        meeting = self._get(meeting_code)
        if meeting is None:
            return []
        connection_ids = [entry.connection_id for entry in meeting.waiting_queue.all()]
        WaitingEntry.query.filter_by(meeting_id=meeting.id).delete()
        _commit("clear_waiting")
        return connection_ids


class EngagementStore:
    def increment_and_fetch(
        self,
        meeting_code: str,
        *,
        participant_key: str,
        account_id: Optional[int],
        display_name: str,
        speaking_time: float = 0.0,
        camera_on_time: float = 0.0,
        chat_messages: int = 0,
        hand_raised: int = 0,
    ) -> Engagement:
        for attempt in (1, 2):
            try:
                row = Engagement.query.filter_by(
                    meeting_code=meeting_code, participant_key=participant_key
                ).first()
                if row is None:
                    row = Engagement(
                        meeting_code=meeting_code,
                        participant_key=participant_key,
                        account_id=account_id,
                        display_name=display_name,
                        speaking_time=0.0,
                        camera_on_time=0.0,
                        chat_messages=0,
                        hand_raised_count=0,
                    )
                    db.session.add(row)
                row.display_name = display_name
                row.speaking_time = (row.speaking_time or 0.0) + speaking_time
                row.camera_on_time = (row.camera_on_time or 0.0) + camera_on_time
                row.chat_messages = (row.chat_messages or 0) + chat_messages
                row.hand_raised_count = (row.hand_raised_count or 0) + hand_raised
                db.session.commit()
                return row
            except IntegrityError as exc:
                # Concurrent first insert for the same participant; retry as update
                db.session.rollback()
                if attempt == 2:
                    raise StoreError(f"increment_and_fetch failed: {exc}") from exc
                logger.debug("engagement upsert raced for %s/%s; retrying", meeting_code, participant_key)
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise StoreError(f"increment_and_fetch failed: {exc}") from exc
        raise StoreError("increment_and_fetch failed")  # pragma: no cover

    def list_by_meeting(self, meeting_code: str) -> List[Engagement]:
        try:
            return (
                Engagement.query.filter_by(meeting_code=meeting_code)
                .order_by(Engagement.speaking_time.desc(), Engagement.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f"list_by_meeting failed: {exc}") from exc
