"""Local media session management."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from meshcall.core.exceptions import MediaAcquisitionDenied, PermissionDenied
from meshcall.core.protocols import AudioTrack, MediaCapture

logger = logging.getLogger(__name__)


@dataclass
class LocalMediaSession:
    """The captured audio of the local participant.

    There is at most one session per controller. Muting flips ``enabled``
    on the tracks; the session is never recreated for it.
    """

    tracks: list[AudioTrack] = field(default_factory=list)
    enabled: bool = True


class LocalMediaController:
    """Owns the local capture session.

    The session is created lazily by the first ``acquire()`` and destroyed
    by ``release()``. Concurrent ``acquire()`` calls share one capture
    request.
    """

    def __init__(self, capture: MediaCapture) -> None:
        self._capture = capture
        self._session: Optional[LocalMediaSession] = None
        self._acquiring: Optional[asyncio.Task[LocalMediaSession]] = None

    @property
    def session(self) -> Optional[LocalMediaSession]:
        return self._session

    @property
    def tracks(self) -> list[AudioTrack]:
        if self._session is None:
            return []
        return list(self._session.tracks)

    async def acquire(self) -> LocalMediaSession:
        """Return the current session, capturing audio if there is none.

        Raises:
            MediaAcquisitionDenied: If the capture backend refuses access.
        """
        if self._session is not None:
            return self._session
        if self._acquiring is None:
            self._acquiring = asyncio.create_task(self._request_capture())
        task = self._acquiring
        try:
            # shield: one caller giving up must not cancel the shared request
            return await asyncio.shield(task)
        finally:
            if self._acquiring is task and task.done():
                self._acquiring = None

    async def _request_capture(self) -> LocalMediaSession:
        logger.info("Requesting audio capture")
        try:
            track = await self._capture.request_capture()
        except PermissionDenied as exc:
            logger.warning(f"Audio capture denied: {exc}")
            raise MediaAcquisitionDenied(str(exc)) from exc
        self._session = LocalMediaSession(tracks=[track])
        logger.info("Audio capture started")
        return self._session

    def set_enabled(self, enabled: bool) -> bool:
        """Gate the local tracks without touching any connection.

        Returns:
            False when there is no session, True otherwise.
        """
        if self._session is None:
            return False
        for track in self._session.tracks:
            track.enabled = enabled
        self._session.enabled = enabled
        logger.info(f"Local audio {'enabled' if enabled else 'muted'}")
        return True

    def release(self) -> None:
        """Stop capture and drop the session."""
        session, self._session = self._session, None
        if session is None:
            return
        for track in session.tracks:
            track.stop()
        logger.info("Audio capture stopped")
