"""Meeting room and signaling coordinator."""
from .engagement import EngagementAggregator, rank_scores
from .gatekeeper import ADMITTED, REJECTED, WAITING, JoinDecision, JoinGatekeeper
from .identity import Identity
from .registry import ParticipantHandle, RoomRegistry
from .service import ConferenceService
from .signaling import SignalingRelay
from .transport import Broadcaster, Delivery, SocketIOBroadcaster, room_name

__all__ = [
    "ADMITTED",
    "REJECTED",
    "WAITING",
    "Broadcaster",
    "ConferenceService",
    "Delivery",
    "EngagementAggregator",
    "Identity",
    "JoinDecision",
    "JoinGatekeeper",
    "ParticipantHandle",
    "RoomRegistry",
    "SignalingRelay",
    "SocketIOBroadcaster",
    "rank_scores",
    "room_name",
]
