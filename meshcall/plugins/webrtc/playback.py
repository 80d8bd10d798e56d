"""
Speaker playback of remote audio tracks.

Every remote participant gets its own output stream and playback thread;
PortAudio mixes the streams.
"""

import asyncio
import logging
import queue
import threading
from typing import Any, Optional

import numpy as np
from aiortc.mediastreams import MediaStreamError, MediaStreamTrack
from av.audio.resampler import AudioResampler

from meshcall.core.utils.utils import cancel_and_wait

try:
    import sounddevice as sd

    SOUNDDEVICE_AVAILABLE = True
except (ImportError, OSError):
    # OSError: PortAudio library missing
    sd = None  # type: ignore[assignment]
    SOUNDDEVICE_AVAILABLE = False

logger = logging.getLogger(__name__)


def _check_sounddevice() -> None:
    """Raise ImportError if sounddevice is not available."""
    if not SOUNDDEVICE_AVAILABLE:
        raise ImportError(
            "sounddevice is required for speaker playback. "
            "Install it with: pip install sounddevice"
        )


class _PeerOutput:
    """Blocking writes of int16 mono samples to one output stream."""

    def __init__(self, peer_id: str, sample_rate: int, device: Optional[int]):
        self.peer_id = peer_id
        self._sample_rate = sample_rate
        self._device = device
        self._queue: queue.Queue[Optional[np.ndarray]] = queue.Queue(maxsize=100)
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._playback_loop, name=f"playback-{self.peer_id}", daemon=True
        )
        self._thread.start()

    def _playback_loop(self) -> None:
        try:
            with sd.OutputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="int16",
                device=self._device,
            ) as stream:
                logger.info(f"Playing audio from {self.peer_id}")
                while self._running:
                    try:
                        data = self._queue.get(timeout=0.1)
                    except queue.Empty:
                        continue
                    if data is None:
                        break
                    stream.write(data.reshape(-1, 1))
        except Exception as e:
            logger.error(f"Audio playback error for {self.peer_id}: {e}")
        finally:
            logger.info(f"Stopped audio from {self.peer_id}")

    def write(self, samples: np.ndarray) -> None:
        try:
            self._queue.put_nowait(samples)
        except queue.Full:
            logger.warning(f"Playback queue for {self.peer_id} full, dropping samples")

    def stop(self) -> None:
        self._running = False
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None


class SpeakerPlayback:
    """Plays remote audio tracks on the default (or given) output device.

    Example:
        >>> playback = SpeakerPlayback()
        >>> session.on_remote_track(lambda event: playback.play(event.peer_id, event.track))
    """

    def __init__(self, sample_rate: int = 48000, device: Optional[int] = None):
        _check_sounddevice()
        self.sample_rate = sample_rate
        self.device = device
        self._tasks: dict[str, asyncio.Task] = {}
        self._outputs: dict[str, _PeerOutput] = {}

    def play(self, peer_id: str, track: MediaStreamTrack) -> None:
        """Start playing ``track``. A previous track of the same peer is replaced."""
        if track.kind != "audio":
            return
        self._stop_output(peer_id)
        previous = self._tasks.pop(peer_id, None)
        if previous is not None:
            previous.cancel()

        output = _PeerOutput(peer_id, self.sample_rate, self.device)
        output.start()
        self._outputs[peer_id] = output
        self._tasks[peer_id] = asyncio.create_task(
            self._pump(peer_id, track, output), name=f"pump-{peer_id}"
        )

    async def _pump(self, peer_id: str, track: Any, output: _PeerOutput) -> None:
        resampler = AudioResampler(format="s16", layout="mono", rate=self.sample_rate)
        try:
            while True:
                try:
                    frame = await track.recv()
                except MediaStreamError:
                    break
                for resampled in resampler.resample(frame):
                    output.write(resampled.to_ndarray().reshape(-1))
        finally:
            if self._outputs.get(peer_id) is output:
                self._stop_output(peer_id)
            if self._tasks.get(peer_id) is asyncio.current_task():
                del self._tasks[peer_id]

    def _stop_output(self, peer_id: str) -> None:
        output = self._outputs.pop(peer_id, None)
        if output is not None:
            output.stop()

    async def stop(self, peer_id: str) -> None:
        task = self._tasks.pop(peer_id, None)
        if task is not None:
            await cancel_and_wait(task)
        self._stop_output(peer_id)

    async def close(self) -> None:
        for peer_id in list(self._tasks):
            await self.stop(peer_id)
        for peer_id in list(self._outputs):
            self._stop_output(peer_id)
