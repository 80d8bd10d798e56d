"""Microphone capture through FFmpeg devices."""

import asyncio
import logging
import platform
from typing import Optional

from av.error import FFmpegError
from aiortc.contrib.media import MediaPlayer

from meshcall.core.exceptions import PermissionDenied

from .tracks import GatedAudioTrack

logger = logging.getLogger(__name__)


def _get_audio_input_format() -> str:
    """Get the FFmpeg input format for the current platform."""
    system = platform.system()
    if system == "Darwin":
        return "avfoundation"
    elif system == "Linux":
        return "pulse"
    elif system == "Windows":
        return "dshow"
    else:
        raise RuntimeError(f"Unsupported platform for audio capture: {system}")


def _device_name(device: str, input_format: str) -> str:
    if device != "default":
        return device
    if input_format == "avfoundation":
        # no video, default audio
        return "none:default"
    if input_format == "dshow":
        return "audio=default"
    return device


class MicrophoneCapture:
    """Opens the local microphone as an aiortc audio track.

    Args:
        device: FFmpeg device name, ``"default"`` for the platform default.
        input_format: FFmpeg input format. Guessed from the platform when None.
        options: Extra FFmpeg options passed to the device.
    """

    def __init__(
        self,
        device: str = "default",
        input_format: Optional[str] = None,
        options: Optional[dict[str, str]] = None,
    ):
        self.input_format = input_format or _get_audio_input_format()
        self.device = _device_name(device, self.input_format)
        self.options = options or {}

    async def request_capture(self) -> GatedAudioTrack:
        """Open the device.

        Raises:
            PermissionDenied: If the device cannot be opened or has no audio.
        """
        logger.info(f"Opening audio input {self.device!r} ({self.input_format})")
        try:
            # opening a device blocks while FFmpeg probes it
            player = await asyncio.to_thread(
                MediaPlayer, self.device, format=self.input_format, options=self.options
            )
        except (OSError, FFmpegError) as exc:
            raise PermissionDenied(f"Cannot open audio input {self.device!r}: {exc}") from exc

        if player.audio is None:
            if player.video is not None:
                player.video.stop()
            raise PermissionDenied(f"Audio input {self.device!r} has no audio stream")
        return GatedAudioTrack(player.audio)
