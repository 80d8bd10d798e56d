from .channel import SignalingChannel
from .messages import (
    Answer,
    CandidatePayload,
    InboundMessage,
    JoinedRoom,
    JoinRoom,
    LeaveRoom,
    Offer,
    OutboundIceCandidate,
    OutboundMessage,
    RemoteAnswer,
    RemoteIceCandidate,
    RemoteOffer,
    UserJoined,
    UserLeft,
    parse_inbound,
    serialize,
)

__all__ = [
    "Answer",
    "CandidatePayload",
    "InboundMessage",
    "JoinRoom",
    "JoinedRoom",
    "LeaveRoom",
    "Offer",
    "OutboundIceCandidate",
    "OutboundMessage",
    "RemoteAnswer",
    "RemoteIceCandidate",
    "RemoteOffer",
    "SignalingChannel",
    "UserJoined",
    "UserLeft",
    "parse_inbound",
    "serialize",
]
