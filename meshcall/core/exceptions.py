class MeshCallError(Exception):
    pass


class AlreadyJoined(MeshCallError):
    pass


class MediaAcquisitionDenied(MeshCallError):
    pass


class PermissionDenied(MeshCallError):
    """Raised by a capture backend when the audio device cannot be opened."""


class DescriptionRejected(MeshCallError):
    pass


class InvalidState(MeshCallError):
    """Raised by a transport when a candidate is applied before a remote description."""


class ChannelDisconnected(MeshCallError):
    pass


class MalformedMessage(MeshCallError):
    pass


class UnknownParticipant(MeshCallError):
    def __init__(self, participant_id: str, message: str = "") -> None:
        super().__init__(message or f"Unknown participant {participant_id!r}")
        self.participant_id = participant_id


class NegotiationTimeout(MeshCallError): ...


class TransportFailed(MeshCallError):
    """The direct connection to a remote participant failed after negotiation."""
