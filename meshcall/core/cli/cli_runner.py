"""
Command line client: joins a room and talks until you quit.

Type ``m`` + Enter to toggle mute and ``q`` + Enter to leave.
"""

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, Optional

import click
from dotenv import load_dotenv

from meshcall.core.config import MeshSettings
from meshcall.core.events import (
    MembershipChangedEvent,
    RemoteTrackEvent,
    StatusChangedEvent,
)
from meshcall.core.exceptions import ChannelDisconnected, MediaAcquisitionDenied
from meshcall.core.session import MeshSession

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0


def run_example(
    async_main: Callable[[], Awaitable[None]],
    debug: bool = False,
    log_level: str = "INFO",
) -> None:
    """
    Run an async entry point with logging configured.

    Args:
        async_main: Async function to run
        debug: Enable asyncio debug mode
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        asyncio.run(async_main(), debug=debug)
    except KeyboardInterrupt:
        pass


def format_members(event: MembershipChangedEvent) -> str:
    names = [f"{m} (You)" if m == event.local_id else m for m in event.members]
    return ", ".join(names) if names else "nobody"


def format_status(event: StatusChangedEvent) -> str:
    if event.peer_id is not None:
        text = f"{event.peer_id}: {event.detail}"
    else:
        text = event.status.value.replace("_", " ")
        if event.room_id:
            text = f"{text} ({event.room_id})"
    if event.error is not None:
        text = f"{text}: {event.error}"
    return text


async def _drain(track: Any) -> None:
    from aiortc.mediastreams import MediaStreamError

    while True:
        try:
            await track.recv()
        except MediaStreamError:
            return


async def run_call(settings: MeshSettings, room_id: str, muted: bool = False) -> None:
    """Join ``room_id`` with the aiortc and websocket plugins and run until quit."""
    from meshcall.plugins.webrtc import (
        AiortcConnectionFactory,
        MicrophoneCapture,
        SpeakerPlayback,
    )
    from meshcall.plugins.websocket import WebsocketRelay

    session = MeshSession(
        WebsocketRelay(settings.relay_url),
        MicrophoneCapture(settings.capture_device, settings.capture_format),
        AiortcConnectionFactory(),
        settings,
    )
    playback: Optional[SpeakerPlayback] = None
    if settings.playback_enabled:
        try:
            playback = SpeakerPlayback()
        except ImportError as e:
            logger.warning(f"Speaker playback disabled: {e}")
    drains: set[asyncio.Task] = set()

    @session.on_membership_changed
    def show_members(event: MembershipChangedEvent) -> None:
        click.echo(f"In the room: {format_members(event)}")

    @session.on_status_changed
    def show_status(event: StatusChangedEvent) -> None:
        click.echo(f"[{format_status(event)}]")

    @session.on_remote_track
    def play_track(event: RemoteTrackEvent) -> None:
        if playback is not None:
            playback.play(event.peer_id, event.track)
        else:
            task = asyncio.create_task(_drain(event.track))
            drains.add(task)
            task.add_done_callback(drains.discard)

    await session.start()
    try:
        try:
            await session.wait_until_connected(timeout=CONNECT_TIMEOUT)
        except asyncio.TimeoutError:
            click.echo(f"Relay {settings.relay_url} not reachable", err=True)
            return
        try:
            await session.join(room_id)
        except (MediaAcquisitionDenied, ChannelDisconnected) as e:
            click.echo(f"Cannot join {room_id}: {e}", err=True)
            return
        session.set_muted(muted)
        click.echo("Type 'm' + Enter to toggle mute, 'q' + Enter to leave.")

        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            command = line.strip().lower()
            if not line or command == "q":
                break
            if command == "m":
                session.set_muted(not session.muted)
                click.echo("Muted" if session.muted else "Unmuted")
    finally:
        await session.close()
        if playback is not None:
            await playback.close()
        for task in list(drains):
            task.cancel()


@click.command()
@click.option("--room", default=None, help="Room to join (default: MESHCALL_ROOM_ID)")
@click.option("--relay-url", default=None, help="Relay URL (default: MESHCALL_RELAY_URL)")
@click.option("--muted", is_flag=True, default=False, help="Join with the microphone muted")
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable asyncio debug mode",
)
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default="WARNING",
    help="Set the logging level",
)
def main(
    room: Optional[str],
    relay_url: Optional[str],
    muted: bool,
    debug: bool,
    log_level: str,
) -> None:
    """Join a voice room and talk to everyone in it."""
    load_dotenv()
    overrides = {}
    if relay_url:
        overrides["relay_url"] = relay_url
    settings = MeshSettings(**overrides)
    room_id = room or settings.room_id
    run_example(lambda: run_call(settings, room_id, muted), debug=debug, log_level=log_level)


if __name__ == "__main__":
    main()
