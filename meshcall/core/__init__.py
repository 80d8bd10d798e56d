from meshcall.core.config import MeshSettings
from meshcall.core.events import (
    MembershipChangedEvent,
    RemoteTrackEvent,
    StatusChangedEvent,
)
from meshcall.core.session import MeshSession
from meshcall.core.types import NegotiationState, SessionStatus

__all__ = [
    "MembershipChangedEvent",
    "MeshSession",
    "MeshSettings",
    "NegotiationState",
    "RemoteTrackEvent",
    "SessionStatus",
    "StatusChangedEvent",
]
