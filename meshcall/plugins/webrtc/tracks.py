"""Mute gate for captured audio."""

import logging

import av
from aiortc.mediastreams import MediaStreamTrack

logger = logging.getLogger(__name__)


class GatedAudioTrack(MediaStreamTrack):
    """Wraps a source audio track and replaces its frames with silence while disabled.

    aiortc tracks have no ``enabled`` flag, so muting is done here: frames keep
    flowing at the source pace and with the source timestamps, which keeps
    every connection negotiated exactly as before.
    """

    kind = "audio"

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self._source = source
        self.enabled = True

    @property
    def source(self) -> MediaStreamTrack:
        return self._source

    async def recv(self) -> av.AudioFrame:
        frame = await self._source.recv()
        if self.enabled:
            return frame
        return silent_like(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


def silent_like(frame: av.AudioFrame) -> av.AudioFrame:
    """Return a silent frame with the shape and timing of ``frame``."""
    silence = av.AudioFrame(
        format=frame.format.name, layout=frame.layout.name, samples=frame.samples
    )
    for plane in silence.planes:
        plane.update(bytes(plane.buffer_size))
    silence.pts = frame.pts
    silence.sample_rate = frame.sample_rate
    silence.time_base = frame.time_base
    return silence
