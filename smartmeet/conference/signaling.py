"""WebRTC signaling relay.

Offers, answers and ICE candidates are forwarded between two connections
without looking at the negotiation payload. Messages for a connection that
does not exist are dropped; WebRTC renegotiation covers the loss.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from .identity import Identity
from .transport import Broadcaster, Delivery

SIGNAL_KINDS = ("offer", "answer", "ice-candidate")
# Field names used by older clients for the opaque payload
_LEGACY_FIELDS = {"offer": "offer", "answer": "answer", "ice-candidate": "candidate"}


class SignalingRelay:
    def __init__(self, broadcaster: Broadcaster, is_connected: Callable[[str], bool]):
        self._broadcaster = broadcaster
        self._is_connected = is_connected

    def relay(self, kind: str, sender_id: str, sender: Identity, data: Dict[str, Any]) -> Optional[Delivery]:
        if kind not in SIGNAL_KINDS or not isinstance(data, dict):
            return None
        target = data.get("targetConnectionId") or data.get("targetSocketId")
        if not isinstance(target, str) or target == sender_id or not self._is_connected(target):
            return None

        message: Dict[str, Any] = {"fromConnectionId": sender_id}
        if kind == "offer":
            message["fromDisplayName"] = sender.display_name
        if "payload" in data:
            message["payload"] = data["payload"]
        legacy = _LEGACY_FIELDS[kind]
        if legacy in data:
            message[legacy] = data[legacy]
        return self._broadcaster.send(kind, message, to=target)
