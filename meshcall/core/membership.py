import logging

from meshcall.core.types import ParticipantId

logger = logging.getLogger(__name__)


class RoomMembership:
    """Authoritative local view of who is in the room.

    Insertion order is kept for display purposes only. All mutations are
    idempotent and report whether they changed anything, so callers only
    publish membership updates for real changes.
    """

    def __init__(self) -> None:
        self._members: dict[ParticipantId, None] = {}

    def add(self, participant_id: ParticipantId) -> bool:
        if participant_id in self._members:
            return False
        self._members[participant_id] = None
        logger.debug(f"Member {participant_id} added ({len(self._members)} total)")
        return True

    def remove(self, participant_id: ParticipantId) -> bool:
        if participant_id not in self._members:
            return False
        del self._members[participant_id]
        logger.debug(f"Member {participant_id} removed ({len(self._members)} total)")
        return True

    def clear(self) -> bool:
        if not self._members:
            return False
        self._members.clear()
        return True

    def members(self) -> list[ParticipantId]:
        """Return a snapshot of the current members."""
        return list(self._members)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._members

    def __len__(self) -> int:
        return len(self._members)
