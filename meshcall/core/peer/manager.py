"""Peer link management.

One :class:`PeerLink` per remote participant, each driven through the
offer/answer/ICE negotiation:

    Idle --local initiates--> OfferCreated --answer--> Stable
    Idle --remote offer--> OfferReceived --> AnswerCreated --> Stable
    any --user left / local leave / fatal error--> Closed (removed)

Handlers suspend while the transport generates or applies descriptions, and
other handlers run in the meantime. Every continuation therefore checks that
its link is still the one in the table and still in the expected state
before it touches it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from pyee.asyncio import AsyncIOEventEmitter

from meshcall.core.events import (
    PeerConnectionStateEvent,
    PeerLinkFailedEvent,
    PeerLinkStateEvent,
    RemoteTrackEvent,
)
from meshcall.core.exceptions import (
    ChannelDisconnected,
    NegotiationTimeout,
    TransportFailed,
    UnknownParticipant,
)
from meshcall.core.media import LocalMediaController
from meshcall.core.observability import metrics
from meshcall.core.peer.link import PeerLink
from meshcall.core.protocols import PeerConnectionFactory
from meshcall.core.signaling.messages import (
    Answer,
    CandidatePayload,
    Offer,
    OutboundIceCandidate,
    OutboundMessage,
)
from meshcall.core.types import (
    IceCandidate,
    NegotiationState,
    ParticipantId,
    Role,
    SessionDescription,
)
from meshcall.core.utils.utils import spawn

logger = logging.getLogger(__name__)

SendFn = Callable[[OutboundMessage], Awaitable[None]]


class PeerLinkManager(AsyncIOEventEmitter):
    """Owns the table of PeerLinks, keyed by remote participant id.

    Events:
        ``state`` (PeerLinkStateEvent): a link changed negotiation state.
        ``failed`` (PeerLinkFailedEvent): a link was closed by an error.
        ``connection_state`` (PeerConnectionStateEvent): transport state change.
        ``remote_track`` (RemoteTrackEvent): a remote track arrived.

    Failures are contained: a failing link is closed and reported, the rest
    of the mesh is untouched.
    """

    def __init__(
        self,
        factory: PeerConnectionFactory,
        media: LocalMediaController,
        send: SendFn,
        *,
        ice_servers: Sequence[str] = (),
        negotiation_timeout: float = 15.0,
        retry_on_timeout: bool = True,
        is_member: Optional[Callable[[ParticipantId], bool]] = None,
    ) -> None:
        super().__init__()
        self._factory = factory
        self._media = media
        self._send = send
        self._ice_servers = list(ice_servers)
        self._negotiation_timeout = negotiation_timeout
        self._retry_on_timeout = retry_on_timeout
        self._is_member = is_member or (lambda _participant_id: True)

        self._links: dict[ParticipantId, PeerLink] = {}
        # candidates from members we have no link with yet
        self._early_candidates: dict[ParticipantId, list[IceCandidate]] = {}
        # ids whose last link failed; their late candidates belong to a dead negotiation
        self._failed_ids: set[ParticipantId] = set()
        self._tasks: set[asyncio.Task] = set()
        self._deadlines: set[asyncio.Task] = set()
        self.local_id: Optional[ParticipantId] = None

    def get(self, remote_id: ParticipantId) -> Optional[PeerLink]:
        return self._links.get(remote_id)

    def ids(self) -> list[ParticipantId]:
        return list(self._links)

    def __contains__(self, remote_id: object) -> bool:
        return remote_id in self._links

    def __len__(self) -> int:
        return len(self._links)

    async def initiate(self, remote_id: ParticipantId, *, attempt: int = 0) -> None:
        """Start negotiating with ``remote_id`` as the Initiator."""
        existing = self._links.get(remote_id)
        if existing is not None:
            logger.debug(f"Not initiating with {remote_id}: link already {existing.state.value}")
            return

        link = self._create_link(remote_id, Role.INITIATOR, attempt=attempt)
        try:
            self._attach_local_tracks(link)
            offer = await link.connection.create_offer()
            if not self._is_current(link, NegotiationState.IDLE, "offer created"):
                return
            local = await link.connection.set_local_description(offer)
            if not self._is_current(link, NegotiationState.IDLE, "local offer applied"):
                return
            self._transition(link, NegotiationState.OFFER_CREATED)
            await self._send(Offer(target=remote_id, sdp=local.sdp))
        except Exception as exc:
            await self._fail(link, exc)

    async def handle_offer(self, remote_id: ParticipantId, sdp: str) -> None:
        """Answer an offer from ``remote_id``, resolving glare if needed."""
        carried: list[IceCandidate] = []
        stale = self._links.get(remote_id)
        if stale is not None:
            if self._in_glare(stale):
                if self._wins_glare(remote_id):
                    logger.info(
                        f"Glare with {remote_id}: keeping our offer "
                        f"({self.local_id!r} < {remote_id!r})"
                    )
                    return
                logger.info(f"Glare with {remote_id}: discarding our offer and answering")
                # their candidates belong to their offer, which we now answer
                carried = list(stale.pending_candidates)
            else:
                logger.info(
                    f"Offer from {remote_id} replaces link in state {stale.state.value}"
                )
            self._discard(stale)
            spawn(self._close_transport(stale), self._tasks)

        link = self._create_link(remote_id, Role.RESPONDER)
        link.pending_candidates.extend(carried)
        self._transition(link, NegotiationState.OFFER_RECEIVED)
        try:
            self._attach_local_tracks(link)
            link.remote_description_pending = True
            await link.connection.set_remote_description(SessionDescription(sdp, "offer"))
            if not self._is_current(link, NegotiationState.OFFER_RECEIVED, "remote offer applied"):
                return
            await self._drain_candidates(link)
            if not self._is_current(link, NegotiationState.OFFER_RECEIVED, "candidates drained"):
                return
            answer = await link.connection.create_answer()
            if not self._is_current(link, NegotiationState.OFFER_RECEIVED, "answer created"):
                return
            local = await link.connection.set_local_description(answer)
            if not self._is_current(link, NegotiationState.OFFER_RECEIVED, "local answer applied"):
                return
            self._transition(link, NegotiationState.ANSWER_CREATED)
            await self._send(Answer(target=remote_id, sdp=local.sdp))
            if not self._is_current(link, NegotiationState.ANSWER_CREATED, "answer sent"):
                return
            self._mark_stable(link)
        except Exception as exc:
            await self._fail(link, exc)

    async def handle_answer(self, remote_id: ParticipantId, sdp: str) -> None:
        """Apply the answer to our offer.

        Raises:
            UnknownParticipant: If there is no link for ``remote_id``.
        """
        link = self._links.get(remote_id)
        if link is None:
            raise UnknownParticipant(remote_id, f"Answer from {remote_id!r} without a PeerLink")
        if link.state != NegotiationState.OFFER_CREATED or link.remote_description_pending:
            logger.warning(f"Ignoring answer from {remote_id} in state {link.state.value}")
            return

        link.remote_description_pending = True
        try:
            await link.connection.set_remote_description(SessionDescription(sdp, "answer"))
            if not self._is_current(link, NegotiationState.OFFER_CREATED, "remote answer applied"):
                return
            await self._drain_candidates(link)
            if not self._is_current(link, NegotiationState.OFFER_CREATED, "candidates drained"):
                return
            self._mark_stable(link)
        except Exception as exc:
            await self._fail(link, exc)

    async def handle_remote_candidate(
        self, remote_id: ParticipantId, candidate: IceCandidate
    ) -> None:
        """Apply a remote candidate, or buffer it until that is legal."""
        link = self._links.get(remote_id)
        if link is None:
            if remote_id in self._failed_ids:
                logger.debug(f"Dropping ICE candidate from {remote_id} for a failed link")
                return
            self._early_candidates.setdefault(remote_id, []).append(candidate)
            logger.debug(f"Stashed early ICE candidate from {remote_id}")
            return
        if not link.remote_description_applied:
            link.pending_candidates.append(candidate)
            logger.debug(
                f"Buffered ICE candidate from {remote_id} "
                f"({len(link.pending_candidates)} pending)"
            )
            return
        await self._apply_candidate(link, candidate)

    async def close(self, remote_id: ParticipantId) -> None:
        """Close and remove the link for ``remote_id``. Idempotent."""
        self._early_candidates.pop(remote_id, None)
        self._failed_ids.discard(remote_id)
        link = self._links.get(remote_id)
        if link is None:
            return
        self._discard(link)
        await self._close_transport(link)

    async def close_all(self) -> None:
        """Close every link. All links are marked closed before the first suspension."""
        links = self._detach_all()
        if links:
            await asyncio.gather(*(self._close_transport(link) for link in links))

    def close_all_nowait(self) -> None:
        """Mark every link closed now and close the transports in the background."""
        for link in self._detach_all():
            spawn(self._close_transport(link), self._tasks)

    def _detach_all(self) -> list[PeerLink]:
        links = list(self._links.values())
        self._early_candidates.clear()
        self._failed_ids.clear()
        for link in links:
            self._discard(link)
        return links

    async def wait(self) -> None:
        """Wait for background work such as candidate sends and deferred closes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _create_link(
        self, remote_id: ParticipantId, role: Role, *, attempt: int = 0
    ) -> PeerLink:
        connection = self._factory.create_connection(self._ice_servers)
        link = PeerLink(remote_id, role, connection, attempt=attempt)
        self._links[remote_id] = link
        self._failed_ids.discard(remote_id)

        early = self._early_candidates.pop(remote_id, None)
        if early:
            link.pending_candidates.extend(early)

        connection.on_local_candidate(lambda candidate: self._on_local_candidate(link, candidate))
        connection.on_remote_track(lambda track: self._on_remote_track(link, track))
        connection.on_connection_state_change(
            lambda state: self._on_connection_state(link, state)
        )
        link.timeout_task = spawn(
            self._negotiation_deadline(link), self._deadlines, name=f"deadline-{remote_id}"
        )
        metrics.peer_links_active.add(1)
        logger.info(f"PeerLink to {remote_id} created as {role.value}")
        return link

    def _attach_local_tracks(self, link: PeerLink) -> None:
        for track in self._media.tracks:
            link.connection.add_local_track(track)

    def _in_glare(self, link: PeerLink) -> bool:
        return link.role == Role.INITIATOR and link.state in (
            NegotiationState.IDLE,
            NegotiationState.OFFER_CREATED,
        )

    def _wins_glare(self, remote_id: ParticipantId) -> bool:
        # the lexicographically smaller id stays Initiator
        return self.local_id is not None and self.local_id < remote_id

    def _is_live(self, link: PeerLink) -> bool:
        return self._links.get(link.remote_id) is link and not link.closed

    def _is_current(self, link: PeerLink, expected: NegotiationState, step: str) -> bool:
        if self._is_live(link) and link.state == expected:
            return True
        logger.debug(
            f"Dropping stale continuation for {link.remote_id} after {step} "
            f"(state {link.state.value})"
        )
        return False

    def _transition(self, link: PeerLink, state: NegotiationState) -> None:
        previous, link.state = link.state, state
        logger.debug(f"PeerLink {link.remote_id}: {previous.value} -> {state.value}")
        self.emit("state", PeerLinkStateEvent(peer_id=link.remote_id, state=state))

    def _mark_stable(self, link: PeerLink) -> None:
        self._transition(link, NegotiationState.STABLE)
        link.cancel_timeout()
        elapsed = link.timer.stop({"outcome": "stable"})
        logger.info(f"PeerLink to {link.remote_id} is stable after {elapsed:.0f} ms")

    async def _drain_candidates(self, link: PeerLink) -> None:
        # candidates arriving meanwhile are appended and drained here too,
        # so application order always equals arrival order
        while link.pending_candidates:
            candidate = link.pending_candidates.popleft()
            await self._apply_candidate(link, candidate)
            if not self._is_live(link):
                return
        link.remote_description_pending = False
        link.remote_description_applied = True

    async def _apply_candidate(self, link: PeerLink, candidate: IceCandidate) -> None:
        try:
            await link.connection.add_remote_candidate(candidate)
        except Exception as exc:
            logger.warning(f"Failed to apply ICE candidate from {link.remote_id}: {exc}")

    def _discard(self, link: PeerLink) -> None:
        if self._links.get(link.remote_id) is link:
            del self._links[link.remote_id]
        if link.mark_closed():
            metrics.peer_links_active.add(-1)
            link.timer.stop({"outcome": "closed"})
            logger.info(f"PeerLink to {link.remote_id} closed")
            self.emit(
                "state", PeerLinkStateEvent(peer_id=link.remote_id, state=NegotiationState.CLOSED)
            )

    async def _close_transport(self, link: PeerLink) -> None:
        try:
            await link.close_transport()
        except Exception:
            logger.exception(f"Error closing connection to {link.remote_id}")

    async def _fail(self, link: PeerLink, error: Exception) -> None:
        if not self._is_live(link):
            logger.debug(f"Ignoring error on stale link to {link.remote_id}: {error!r}")
            return
        logger.warning(
            f"PeerLink to {link.remote_id} failed in state {link.state.value}: {error!r}"
        )
        metrics.peer_link_failures.add(1, {"error": type(error).__name__})
        self._discard(link)
        self._early_candidates.pop(link.remote_id, None)
        self._failed_ids.add(link.remote_id)
        self.emit("failed", PeerLinkFailedEvent(peer_id=link.remote_id, error=error))
        await self._close_transport(link)

    async def _negotiation_deadline(self, link: PeerLink) -> None:
        await asyncio.sleep(self._negotiation_timeout)
        if not self._is_live(link) or link.state == NegotiationState.STABLE:
            return
        await self._fail(
            link,
            NegotiationTimeout(
                f"Link to {link.remote_id} not stable after {self._negotiation_timeout:.1f}s"
            ),
        )
        if (
            self._retry_on_timeout
            and link.role == Role.INITIATOR
            and link.attempt == 0
            and link.remote_id not in self._links
            and self._is_member(link.remote_id)
        ):
            logger.info(f"Retrying negotiation with {link.remote_id}")
            await self.initiate(link.remote_id, attempt=1)

    def _on_local_candidate(self, link: PeerLink, candidate: IceCandidate) -> None:
        if not self._is_live(link):
            return
        spawn(self._send_local_candidate(link, candidate), self._tasks)

    async def _send_local_candidate(self, link: PeerLink, candidate: IceCandidate) -> None:
        message = OutboundIceCandidate(
            target=link.remote_id, candidate=CandidatePayload.from_candidate(candidate)
        )
        try:
            await self._send(message)
        except ChannelDisconnected as exc:
            logger.debug(f"Local ICE candidate for {link.remote_id} not sent: {exc}")

    def _on_remote_track(self, link: PeerLink, track: Any) -> None:
        if not self._is_live(link):
            return
        logger.info(f"Remote track from {link.remote_id}")
        self.emit("remote_track", RemoteTrackEvent(peer_id=link.remote_id, track=track))

    def _on_connection_state(self, link: PeerLink, state: str) -> None:
        if not self._is_live(link):
            return
        logger.info(f"Connection to {link.remote_id} is {state}")
        self.emit(
            "connection_state",
            PeerConnectionStateEvent(peer_id=link.remote_id, connection_state=state),
        )
        if state == "failed":
            spawn(
                self._fail(link, TransportFailed(f"Connection to {link.remote_id} failed")),
                self._tasks,
            )
