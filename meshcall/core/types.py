from dataclasses import dataclass
from enum import Enum
from typing import Optional

ParticipantId = str


class NegotiationState(str, Enum):
    """Negotiation state of a single PeerLink."""

    IDLE = "idle"
    OFFER_CREATED = "offer_created"
    OFFER_RECEIVED = "offer_received"
    ANSWER_CREATED = "answer_created"
    STABLE = "stable"
    CLOSED = "closed"


class Role(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class SessionStatus(str, Enum):
    """Coarse status of the local session, as shown to the user."""

    NOT_JOINED = "not_joined"
    ACQUIRING_MEDIA = "acquiring_media"
    JOINING = "joining"
    JOINED = "joined"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class SessionDescription:
    sdp: str
    type: str


@dataclass(frozen=True)
class IceCandidate:
    """Serialisable ICE candidate, mirrors the browser RTCIceCandidateInit."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None
