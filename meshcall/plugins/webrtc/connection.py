"""aiortc implementation of the transport connection capability."""

import logging
from typing import Any, Callable, Optional, Sequence

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaRelay
from aiortc.exceptions import InvalidAccessError, InvalidStateError
from aiortc.mediastreams import MediaStreamTrack
from aiortc.sdp import candidate_from_sdp

from meshcall.core.exceptions import DescriptionRejected, InvalidState
from meshcall.core.types import IceCandidate, SessionDescription

logger = logging.getLogger(__name__)


def parse_candidate(candidate: IceCandidate):
    """Convert a browser style candidate into an aiortc ``RTCIceCandidate``."""
    sdp = candidate.candidate
    if sdp.startswith("candidate:"):
        sdp = sdp[len("candidate:") :]
    parsed = candidate_from_sdp(sdp)
    parsed.sdpMid = candidate.sdp_mid
    parsed.sdpMLineIndex = candidate.sdp_mline_index
    return parsed


class AiortcPeerConnection:
    """One ``RTCPeerConnection`` to one remote participant.

    aiortc does not trickle ICE: ``setLocalDescription`` waits for candidate
    gathering and the resulting description already lists every local
    candidate. ``on_local_candidate`` callbacks are therefore never invoked,
    and the description returned by :meth:`set_local_description` is the one
    to send.
    """

    def __init__(self, pc: RTCPeerConnection, relay: MediaRelay):
        self.pc = pc
        self._relay = relay
        self._closed = False
        self._remote_track_callbacks: list[Callable[[Any], None]] = []
        self._local_candidate_callbacks: list[Callable[[IceCandidate], None]] = []
        self._state_callbacks: list[Callable[[str], None]] = []

        @pc.on("track")
        def on_track(track: MediaStreamTrack):
            logger.debug(f"Remote {track.kind} track {track.id}")
            for callback in self._remote_track_callbacks:
                callback(track)

        @pc.on("connectionstatechange")
        def on_connection_state_change():
            state = pc.connectionState
            for callback in self._state_callbacks:
                callback(state)

    def add_local_track(self, track: MediaStreamTrack) -> None:
        # every connection pulls frames independently, so each gets its own proxy
        self.pc.addTrack(self._relay.subscribe(track))

    async def create_offer(self) -> SessionDescription:
        offer = await self.pc.createOffer()
        return SessionDescription(sdp=offer.sdp, type=offer.type)

    async def create_answer(self) -> SessionDescription:
        answer = await self.pc.createAnswer()
        return SessionDescription(sdp=answer.sdp, type=answer.type)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        local = self.pc.localDescription
        return SessionDescription(sdp=local.sdp, type=local.type)

    async def set_remote_description(self, description: SessionDescription) -> None:
        try:
            await self.pc.setRemoteDescription(
                RTCSessionDescription(sdp=description.sdp, type=description.type)
            )
        except (ValueError, InvalidStateError, InvalidAccessError) as exc:
            raise DescriptionRejected(f"Remote {description.type} rejected: {exc}") from exc

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        if self.pc.remoteDescription is None:
            raise InvalidState("No remote description applied")
        if not candidate.candidate:
            # end-of-candidates marker
            return
        await self.pc.addIceCandidate(parse_candidate(candidate))

    def on_remote_track(self, callback: Callable[[Any], None]) -> None:
        self._remote_track_callbacks.append(callback)

    def on_local_candidate(self, callback: Callable[[IceCandidate], None]) -> None:
        self._local_candidate_callbacks.append(callback)

    def on_connection_state_change(self, callback: Callable[[str], None]) -> None:
        self._state_callbacks.append(callback)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.pc.close()


class AiortcConnectionFactory:
    """Creates :class:`AiortcPeerConnection` objects sharing one ``MediaRelay``."""

    def __init__(self, relay: Optional[MediaRelay] = None):
        self.relay = relay or MediaRelay()

    def create_connection(self, ice_servers: Sequence[str]) -> AiortcPeerConnection:
        configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=[url]) for url in ice_servers]
        )
        return AiortcPeerConnection(RTCPeerConnection(configuration=configuration), self.relay)
