"""Protocol definitions for the capabilities meshcall consumes.

The coordinator never talks to a WebRTC stack, a microphone or a socket
directly. It depends on the structural types below, so any backend that
provides the same methods can be plugged in (see ``meshcall.plugins``).
"""

from typing import Any, AsyncIterator, Callable, Protocol, Sequence, Union

from meshcall.core.types import IceCandidate, SessionDescription


class AudioTrack(Protocol):
    """A captured local audio track.

    ``enabled`` is a sender-side gate: a disabled track keeps flowing but
    carries silence. Toggling it never requires renegotiation.
    """

    enabled: bool

    def stop(self) -> None: ...


class MediaCapture(Protocol):
    """Local audio capture backend."""

    async def request_capture(self) -> AudioTrack:
        """Open the audio input device.

        May suspend while the user is asked for permission.

        Raises:
            PermissionDenied: If the device cannot be opened.
        """
        ...


class PeerConnection(Protocol):
    """One direct transport connection to a single remote participant."""

    def add_local_track(self, track: AudioTrack) -> None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(
        self, description: SessionDescription
    ) -> SessionDescription:
        """Apply a local description.

        Returns:
            The description actually in effect. Backends that gather ICE
            candidates up front return the description with candidates
            embedded; this is what must be sent to the remote side.
        """
        ...

    async def set_remote_description(self, description: SessionDescription) -> None:
        """Apply a remote description.

        Raises:
            DescriptionRejected: If the backend refuses the description.
        """
        ...

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        """Apply a remote ICE candidate.

        Raises:
            InvalidState: If no remote description has been applied yet.
        """
        ...

    def on_remote_track(self, callback: Callable[[Any], None]) -> None: ...

    def on_local_candidate(self, callback: Callable[[IceCandidate], None]) -> None: ...

    def on_connection_state_change(self, callback: Callable[[str], None]) -> None: ...

    async def close(self) -> None:
        """Close the connection. Must be idempotent."""
        ...


class PeerConnectionFactory(Protocol):
    def create_connection(self, ice_servers: Sequence[str]) -> PeerConnection: ...


class RelayChannel(Protocol):
    """Bidirectional, in-order, message oriented relay connection.

    The channel knows nothing about the wire format; it moves text frames.
    ``messages()`` ends (or raises ``ChannelDisconnected``) when the
    underlying connection is lost.
    """

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def send(self, data: str) -> None: ...

    def messages(self) -> AsyncIterator[Union[str, bytes]]: ...

    async def close(self) -> None: ...
