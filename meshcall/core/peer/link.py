import asyncio
import logging
from collections import deque
from typing import Optional

from meshcall.core.observability import metrics
from meshcall.core.observability.metrics import Timer
from meshcall.core.protocols import PeerConnection
from meshcall.core.types import IceCandidate, NegotiationState, ParticipantId, Role

logger = logging.getLogger(__name__)


class PeerLink:
    """Negotiation state and transport connection for one remote participant.

    The connection is owned exclusively by this link. It is created together
    with the link and closed exactly once by :meth:`close_transport`.

    Attributes:
        remote_id: Id of the remote participant; key in the manager's table.
        role: Initiator or Responder, fixed at creation.
        state: Current negotiation state.
        pending_candidates: Remote ICE candidates received before the remote
            description could be applied, in arrival order.
        remote_description_applied: True once the remote description is
            applied and the buffered candidates are drained. From then on
            candidates are applied immediately.
        attempt: 0 for the first negotiation, 1 for the retry after a timeout.
    """

    def __init__(
        self,
        remote_id: ParticipantId,
        role: Role,
        connection: PeerConnection,
        attempt: int = 0,
    ) -> None:
        self.remote_id = remote_id
        self.role = role
        self.connection = connection
        self.attempt = attempt
        self.state = NegotiationState.IDLE
        self.pending_candidates: deque[IceCandidate] = deque()
        self.remote_description_applied = False
        self.remote_description_pending = False
        self.timeout_task: Optional[asyncio.Task[None]] = None
        self.timer = Timer(metrics.negotiation_latency_ms, {"role": role.value})
        self._transport_closed = False

    @property
    def closed(self) -> bool:
        return self.state == NegotiationState.CLOSED

    def mark_closed(self) -> bool:
        """Mark the link closed without suspending.

        Any continuation still awaiting on this link observes the closed
        state when it resumes and becomes a no-op.

        Returns:
            False if the link was already closed.
        """
        if self.closed:
            return False
        self.state = NegotiationState.CLOSED
        self.pending_candidates.clear()
        self.cancel_timeout()
        return True

    def cancel_timeout(self) -> None:
        task, self.timeout_task = self.timeout_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def close_transport(self) -> None:
        if self._transport_closed:
            return
        self._transport_closed = True
        await self.connection.close()

    def __repr__(self) -> str:
        return (
            f"PeerLink(remote_id={self.remote_id!r}, role={self.role.value}, "
            f"state={self.state.value}, pending={len(self.pending_candidates)})"
        )
