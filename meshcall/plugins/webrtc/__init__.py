from .capture import MicrophoneCapture
from .connection import AiortcConnectionFactory, AiortcPeerConnection
from .playback import SpeakerPlayback
from .tracks import GatedAudioTrack

__all__ = [
    "AiortcConnectionFactory",
    "AiortcPeerConnection",
    "GatedAudioTrack",
    "MicrophoneCapture",
    "SpeakerPlayback",
]
