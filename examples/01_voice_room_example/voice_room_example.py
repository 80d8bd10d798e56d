"""
Voice Room Example

Joins a voice room through a websocket relay and logs who is in the room.
Every other participant gets a direct WebRTC connection; remote audio is
played on the default speaker.

Usage:
    python voice_room_example.py

Requirements:
    - A relay speaking the meshcall wire format (MESHCALL_RELAY_URL in .env)
    - Working microphone and speakers
"""

import asyncio
import logging

from dotenv import load_dotenv

from meshcall.core import MeshSession, MeshSettings
from meshcall.core.events import MembershipChangedEvent, RemoteTrackEvent, StatusChangedEvent
from meshcall.plugins.webrtc import AiortcConnectionFactory, MicrophoneCapture, SpeakerPlayback
from meshcall.plugins.websocket import WebsocketRelay

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

load_dotenv()


async def main() -> None:
    settings = MeshSettings()
    session = MeshSession(
        WebsocketRelay(settings.relay_url),
        MicrophoneCapture(settings.capture_device, settings.capture_format),
        AiortcConnectionFactory(),
        settings,
    )
    playback = SpeakerPlayback()

    @session.on_membership_changed
    def members(event: MembershipChangedEvent) -> None:
        logger.info(f"Room members: {event.members} (local: {event.local_id})")

    @session.on_status_changed
    def status(event: StatusChangedEvent) -> None:
        logger.info(f"Status: {event.status.value} {event.detail}")

    @session.on_remote_track
    def remote_track(event: RemoteTrackEvent) -> None:
        playback.play(event.peer_id, event.track)

    await session.start()
    try:
        await session.wait_until_connected(timeout=10)
        await session.join(settings.room_id)
        await session.wait_until_joined(timeout=10)
        # talk for five minutes
        await asyncio.sleep(300)
    finally:
        await session.close()
        await playback.close()


if __name__ == "__main__":
    asyncio.run(main())
