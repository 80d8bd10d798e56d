"""Session coordinator: the top level object applications talk to.

Example:

    session = MeshSession(relay, capture, connection_factory)

    @session.on_membership_changed
    def show(event: MembershipChangedEvent):
        print(event.members)

    await session.start()
    await session.join("voice-room-1")
    ...
    await session.leave()
    await session.close()
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pyee.asyncio import AsyncIOEventEmitter

from meshcall.core.config import MeshSettings
from meshcall.core.events import (
    MembershipChangedEvent,
    PeerConnectionStateEvent,
    PeerLinkFailedEvent,
    RemoteTrackEvent,
    StatusChangedEvent,
)
from meshcall.core.exceptions import (
    AlreadyJoined,
    ChannelDisconnected,
    MalformedMessage,
    MediaAcquisitionDenied,
    UnknownParticipant,
)
from meshcall.core.media import LocalMediaController
from meshcall.core.membership import RoomMembership
from meshcall.core.observability import metrics
from meshcall.core.peer import PeerLinkManager
from meshcall.core.protocols import MediaCapture, PeerConnectionFactory, RelayChannel
from meshcall.core.signaling import (
    InboundMessage,
    JoinedRoom,
    JoinRoom,
    LeaveRoom,
    RemoteAnswer,
    RemoteIceCandidate,
    RemoteOffer,
    SignalingChannel,
    UserJoined,
    UserLeft,
)
from meshcall.core.types import ParticipantId, SessionStatus
from meshcall.core.utils.utils import spawn

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=Callable[..., Any])


class MeshSession(AsyncIOEventEmitter):
    """Joins a room and keeps a direct audio link to every other member.

    The session owns all mutable state of a call: the signaling channel, the
    local media controller, the membership tracker and the peer link
    manager. Inbound relay messages are dispatched through a handler table
    keyed by message type; every handler runs as its own task, so handlers
    for different messages may interleave at their suspension points.

    Events:
        ``membership_changed`` (MembershipChangedEvent)
        ``status_changed`` (StatusChangedEvent)
        ``remote_track`` (RemoteTrackEvent)

    Args:
        relay: The relay connection carrying signaling frames.
        capture: Local audio capture backend.
        connection_factory: Creates one transport connection per PeerLink.
        settings: Session settings; read from the environment when omitted.
    """

    def __init__(
        self,
        relay: RelayChannel,
        capture: MediaCapture,
        connection_factory: PeerConnectionFactory,
        settings: Optional[MeshSettings] = None,
    ) -> None:
        super().__init__()
        self.settings = settings or MeshSettings()
        self.media = LocalMediaController(capture)
        self.membership = RoomMembership()
        self.channel = SignalingChannel(
            relay,
            reconnect_delay=self.settings.reconnect_delay,
            max_reconnect_delay=self.settings.max_reconnect_delay,
        )
        self.links = PeerLinkManager(
            connection_factory,
            self.media,
            self.channel.send,
            ice_servers=self.settings.ice_servers,
            negotiation_timeout=self.settings.negotiation_timeout,
            retry_on_timeout=self.settings.retry_on_timeout,
            is_member=self.membership.__contains__,
        )

        self._room_id: Optional[str] = None
        self._local_id: Optional[ParticipantId] = None
        self._status = SessionStatus.NOT_JOINED
        # bumped by every join and leave; a join that resumes under a
        # different epoch was cancelled by a leave
        self._epoch = 0
        self._joined = asyncio.Event()
        self._pending: set[asyncio.Task] = set()

        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            JoinedRoom: self._on_joined_room,
            UserJoined: self._on_user_joined,
            UserLeft: self._on_user_left,
            RemoteOffer: self._on_offer,
            RemoteAnswer: self._on_answer,
            RemoteIceCandidate: self._on_ice_candidate,
        }

        self.channel.on("message", self._dispatch)
        self.channel.on("connected", self._on_channel_connected)
        self.channel.on("disconnected", self._on_channel_disconnected)
        self.links.on("failed", self._on_link_failed)
        self.links.on("connection_state", self._on_link_connection_state)
        self.links.on("remote_track", self._on_link_remote_track)

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    @property
    def local_id(self) -> Optional[ParticipantId]:
        return self._local_id

    @property
    def members(self) -> list[ParticipantId]:
        return self.membership.members()

    @property
    def muted(self) -> bool:
        session = self.media.session
        return session is not None and not session.enabled

    async def start(self) -> None:
        """Connect to the relay. Reconnects automatically until closed."""
        await self.channel.start()

    async def close(self) -> None:
        """Leave the room, stop the relay connection and wait for background work."""
        await self.leave()
        await self.links.close_all()
        await self.channel.close()
        await self.wait()

    async def join(self, room_id: str) -> None:
        """Acquire local audio and ask the relay to join ``room_id``.

        Returns once the join request is sent; use :meth:`wait_until_joined`
        to wait for the acknowledgement.

        Raises:
            AlreadyJoined: If the session is already in a room.
            MediaAcquisitionDenied: If audio capture was refused.
            ChannelDisconnected: If the relay is not connected.
        """
        if self._room_id is not None:
            raise AlreadyJoined(f"Already in room {self._room_id!r}")

        self._room_id = room_id
        self._epoch += 1
        epoch = self._epoch
        logger.info(f"Joining room {room_id}")
        self._set_status(SessionStatus.ACQUIRING_MEDIA)

        try:
            await self.media.acquire()
        except MediaAcquisitionDenied as exc:
            if epoch == self._epoch:
                self._reset_room()
                self._set_status(SessionStatus.NOT_JOINED, error=exc)
            raise

        if epoch != self._epoch:
            logger.info(f"Join of {room_id} cancelled while acquiring media")
            if self._room_id is None:
                self.media.release()
            return

        try:
            await self.channel.send(JoinRoom(room_id=room_id))
        except ChannelDisconnected as exc:
            logger.warning(f"Cannot join {room_id}: {exc}")
            self._reset_room()
            self.media.release()
            self._set_status(SessionStatus.NOT_JOINED, error=exc)
            raise

        if epoch == self._epoch:
            self._set_status(SessionStatus.JOINING)

    async def leave(self) -> None:
        """Leave the current room. A no-op when not in a room."""
        room_id = self._room_id
        if room_id is None:
            return
        logger.info(f"Leaving room {room_id}")
        self._reset_room()
        self._clear_membership()

        await self.links.close_all()
        self.media.release()
        if self.channel.connected:
            try:
                await self.channel.send(LeaveRoom(room_id=room_id))
            except ChannelDisconnected as exc:
                logger.debug(f"Leave indication for {room_id} not sent: {exc}")

        if self._room_id is None:
            self._set_status(SessionStatus.NOT_JOINED, detail=f"left {room_id}")

    def set_muted(self, muted: bool) -> None:
        """Gate the local audio. Never touches a PeerLink."""
        if not self.media.set_enabled(not muted):
            logger.debug("No local media session; mute ignored")

    def on_membership_changed(self, callback: C) -> C:
        """Register ``callback(MembershipChangedEvent)``. Usable as a decorator."""
        self.on("membership_changed", callback)
        return callback

    def on_status_changed(self, callback: C) -> C:
        """Register ``callback(StatusChangedEvent)``. Usable as a decorator."""
        self.on("status_changed", callback)
        return callback

    def on_remote_track(self, callback: C) -> C:
        """Register ``callback(RemoteTrackEvent)``. Usable as a decorator."""
        self.on("remote_track", callback)
        return callback

    async def wait_until_connected(self, timeout: Optional[float] = None) -> None:
        """Wait for the relay connection. :meth:`join` needs it."""
        await self.channel.wait_connected(timeout)

    async def wait_until_joined(self, timeout: Optional[float] = None) -> None:
        """Wait for the relay to acknowledge the join.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        await asyncio.wait_for(self._joined.wait(), timeout=timeout)

    async def wait(self) -> None:
        """Wait until every inbound handler and its follow-up work has finished."""
        while True:
            if self._pending:
                await asyncio.gather(*list(self._pending), return_exceptions=True)
                continue
            await self.links.wait()
            if not self._pending:
                return

    def _dispatch(self, message: InboundMessage) -> None:
        spawn(self._run_handler(message), self._pending, name=f"handle-{message.type}")

    async def _run_handler(self, message: InboundMessage) -> None:
        handler = self._handlers[type(message)]
        try:
            await handler(message)
        except (UnknownParticipant, MalformedMessage) as exc:
            metrics.signaling_messages_dropped.add(1, {"reason": type(exc).__name__})
            logger.warning(f"Dropping {message.type} message: {exc}")
        except Exception:
            logger.exception(f"Error handling {message.type} message")

    async def _on_joined_room(self, message: JoinedRoom) -> None:
        if message.room_id != self._room_id:
            logger.warning(
                f"Ignoring join acknowledgement for {message.room_id}, "
                f"current room is {self._room_id}"
            )
            return
        self._local_id = message.user_id
        self.links.local_id = message.user_id
        logger.info(f"Joined room {message.room_id} as {message.user_id}")
        self._add_member(message.user_id)
        self._joined.set()
        self._set_status(SessionStatus.JOINED)

    async def _on_user_joined(self, message: UserJoined) -> None:
        if self._local_id is None:
            logger.warning(f"Ignoring user-joined for {message.user_id}: not in a room")
            return
        if message.user_id == self._local_id:
            return
        self._add_member(message.user_id)
        await self.links.initiate(message.user_id)

    async def _on_user_left(self, message: UserLeft) -> None:
        if self.membership.remove(message.user_id):
            logger.info(f"{message.user_id} left the room")
            self._publish_membership()
        await self.links.close(message.user_id)

    async def _on_offer(self, message: RemoteOffer) -> None:
        if self._local_id is None:
            logger.warning(f"Ignoring offer from {message.sender}: not in a room")
            return
        self._add_member(message.sender)
        await self.links.handle_offer(message.sender, message.sdp)

    async def _on_answer(self, message: RemoteAnswer) -> None:
        await self.links.handle_answer(message.sender, message.sdp)

    async def _on_ice_candidate(self, message: RemoteIceCandidate) -> None:
        sender = message.sender
        if sender not in self.membership and sender not in self.links:
            raise UnknownParticipant(sender, f"ICE candidate from unknown participant {sender!r}")
        await self.links.handle_remote_candidate(sender, message.candidate.to_candidate())

    def _on_channel_connected(self) -> None:
        room_id = self._room_id
        if room_id is None or self.media.session is None:
            return
        logger.info(f"Relay reconnected, rejoining {room_id}")
        spawn(self._rejoin(room_id, self._epoch), self._pending, name="rejoin")

    async def _rejoin(self, room_id: str, epoch: int) -> None:
        try:
            await self.channel.send(JoinRoom(room_id=room_id))
        except ChannelDisconnected as exc:
            logger.warning(f"Rejoin of {room_id} failed: {exc}")
            return
        if epoch == self._epoch:
            self._set_status(SessionStatus.JOINING)

    def _on_channel_disconnected(self, error: ChannelDisconnected) -> None:
        # a reconnect is a new signaling session, the relay forgot us
        self._local_id = None
        self.links.local_id = None
        self._joined.clear()
        self.links.close_all_nowait()
        self._clear_membership()
        if self._room_id is not None:
            self._set_status(SessionStatus.RECONNECTING, error=error)
        else:
            self._set_status(SessionStatus.NOT_JOINED, error=error)

    def _on_link_failed(self, event: PeerLinkFailedEvent) -> None:
        self.emit(
            "status_changed",
            StatusChangedEvent(
                status=self._status,
                room_id=self._room_id,
                peer_id=event.peer_id,
                error=event.error,
                detail="peer link closed",
            ),
        )

    def _on_link_connection_state(self, event: PeerConnectionStateEvent) -> None:
        if event.connection_state != "disconnected":
            return
        self.emit(
            "status_changed",
            StatusChangedEvent(
                status=self._status,
                room_id=self._room_id,
                peer_id=event.peer_id,
                detail="peer connection disconnected",
            ),
        )

    def _on_link_remote_track(self, event: RemoteTrackEvent) -> None:
        self.emit("remote_track", event)

    def _reset_room(self) -> None:
        self._room_id = None
        self._local_id = None
        self.links.local_id = None
        self._epoch += 1
        self._joined.clear()

    def _add_member(self, participant_id: ParticipantId) -> None:
        if self.membership.add(participant_id):
            self._publish_membership()

    def _clear_membership(self) -> None:
        if self.membership.clear():
            self._publish_membership()

    def _publish_membership(self) -> None:
        self.emit(
            "membership_changed",
            MembershipChangedEvent(members=self.membership.members(), local_id=self._local_id),
        )

    def _set_status(
        self,
        status: SessionStatus,
        *,
        error: Optional[Exception] = None,
        detail: str = "",
    ) -> None:
        self._status = status
        logger.debug(f"Session status: {status.value}")
        self.emit(
            "status_changed",
            StatusChangedEvent(status=status, room_id=self._room_id, error=error, detail=detail),
        )
