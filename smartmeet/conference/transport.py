"""Outbound side of the conference relay.

Room-scoped events go to the Socket.IO room ``room:<MEETING-CODE>``; direct
events go to a single connection id. Delivery is fire-and-forget: a failed
emit is logged here and reported back as a :class:`Delivery` value, never
raised into the handler that triggered it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def room_name(meeting_code: str) -> str:
    return f"room:{meeting_code}"


@dataclass(frozen=True)
class Delivery:
    event: str
    to: str
    ok: bool = True
    error: Optional[str] = None


class Broadcaster:
    """Interface used by the registry, gatekeeper, relay and aggregator."""

    def send(self, event: str, payload: Dict[str, Any], *, to: str, skip: Optional[str] = None) -> Delivery:
        raise NotImplementedError

    def to_room(self, event: str, payload: Dict[str, Any], meeting_code: str, *, skip: Optional[str] = None) -> Delivery:
        return self.send(event, payload, to=room_name(meeting_code), skip=skip)

    def enter_room(self, connection_id: str, meeting_code: str) -> None:
        raise NotImplementedError

    def leave_room(self, connection_id: str, meeting_code: str) -> None:
        raise NotImplementedError


class SocketIOBroadcaster(Broadcaster):
    def __init__(self, socketio, namespace: str = "/"):
        self._socketio = socketio
        self._namespace = namespace

    def send(self, event, payload, *, to, skip=None):
        try:
            self._socketio.emit(event, payload, to=to, skip_sid=skip, namespace=self._namespace)
        except Exception as exc:  # transport errors must not reach the sender
            logger.warning("emit_failed event=%s to=%s error=%s", event, to, exc)
            return Delivery(event=event, to=to, ok=False, error=str(exc))
        return Delivery(event=event, to=to)

    def enter_room(self, connection_id, meeting_code):
        self._socketio.server.enter_room(connection_id, room_name(meeting_code), namespace=self._namespace)

    def leave_room(self, connection_id, meeting_code):
        self._socketio.server.leave_room(connection_id, room_name(meeting_code), namespace=self._namespace)
