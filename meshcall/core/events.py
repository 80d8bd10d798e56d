"""Events delivered to the presentation layer through the session hooks."""

from dataclasses import dataclass, field
from typing import Any, Optional

from meshcall.core.types import NegotiationState, ParticipantId, SessionStatus


@dataclass
class MembershipChangedEvent:
    members: list[ParticipantId]
    local_id: Optional[ParticipantId] = None
    type: str = field(default="membership.changed", init=False)


@dataclass
class StatusChangedEvent:
    """Session status update.

    When ``peer_id`` is set the event reports something that happened to a
    single PeerLink (a contained failure or a transport disconnect); the
    session status itself is unchanged in that case.
    """

    status: SessionStatus
    room_id: Optional[str] = None
    peer_id: Optional[ParticipantId] = None
    error: Optional[Exception] = None
    detail: str = ""
    type: str = field(default="status.changed", init=False)


@dataclass
class PeerLinkStateEvent:
    peer_id: ParticipantId
    state: NegotiationState
    type: str = field(default="peer_link.state", init=False)


@dataclass
class PeerLinkFailedEvent:
    peer_id: ParticipantId
    error: Exception
    type: str = field(default="peer_link.failed", init=False)


@dataclass
class PeerConnectionStateEvent:
    peer_id: ParticipantId
    connection_state: str
    type: str = field(default="peer_link.connection_state", init=False)


@dataclass
class RemoteTrackEvent:
    peer_id: ParticipantId
    track: Any
    type: str = field(default="peer_link.remote_track", init=False)
