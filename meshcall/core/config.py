"""Configuration for meshcall sessions.

Values can be customized via:

1. Direct instantiation:
    >>> settings = MeshSettings(relay_url="wss://relay.example.com", negotiation_timeout=5)

2. Environment variables (with MESHCALL_ prefix):
    >>> os.environ["MESHCALL_RELAY_URL"] = "wss://relay.example.com"
    >>> settings = MeshSettings()
"""

from typing import Optional

import pydantic_settings
from pydantic import Field, field_validator

DEFAULT_STUN_SERVER = "stun:stun.l.google.com:19302"


class MeshSettings(pydantic_settings.BaseSettings):
    """Settings shared by the coordinator and the bundled plugins.

    Args:
        relay_url: URL of the signaling relay.
        room_id: Room joined by the command line client when none is given.
        ice_servers: STUN/TURN URLs used for every new transport connection.
        negotiation_timeout: Seconds a PeerLink may take to become stable
            before it is closed.
        retry_on_timeout: Whether the initiating side retries a timed out
            PeerLink once.
        reconnect_delay: Initial delay before reconnecting a lost relay.
        max_reconnect_delay: Upper bound for the exponential reconnect backoff.
        capture_device: Audio input device passed to the capture backend.
        capture_format: FFmpeg input format for the capture device
            (e.g. "pulse", "alsa", "avfoundation"). Guessed from the platform
            when not set.
        playback_enabled: Play remote audio tracks on the default speaker.
    """

    model_config = pydantic_settings.SettingsConfigDict(env_prefix="MESHCALL_")

    relay_url: str = "ws://localhost:3001"
    room_id: str = "voice-room-1"
    ice_servers: list[str] = Field(default_factory=lambda: [DEFAULT_STUN_SERVER])
    negotiation_timeout: float = 15.0
    retry_on_timeout: bool = True
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    capture_device: str = "default"
    capture_format: Optional[str] = None
    playback_enabled: bool = True

    @field_validator("negotiation_timeout", "reconnect_delay", "max_reconnect_delay")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value
