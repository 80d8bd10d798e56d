from unittest.mock import patch

from click.testing import CliRunner

from meshcall.core.cli import cli_runner
from meshcall.core.events import MembershipChangedEvent, StatusChangedEvent
from meshcall.core.exceptions import ChannelDisconnected
from meshcall.core.types import SessionStatus


class TestFormatting:
    def test_members_mark_local_participant(self):
        event = MembershipChangedEvent(members=["A", "B"], local_id="B")
        assert cli_runner.format_members(event) == "A, B (You)"

    def test_empty_room(self):
        assert cli_runner.format_members(MembershipChangedEvent(members=[])) == "nobody"

    def test_session_status(self):
        event = StatusChangedEvent(status=SessionStatus.JOINED, room_id="r1")
        assert cli_runner.format_status(event) == "joined (r1)"

    def test_status_with_error(self):
        event = StatusChangedEvent(
            status=SessionStatus.RECONNECTING, error=ChannelDisconnected("relay gone")
        )
        assert cli_runner.format_status(event) == "reconnecting: relay gone"

    def test_peer_status(self):
        event = StatusChangedEvent(
            status=SessionStatus.JOINED, peer_id="C", detail="peer connection disconnected"
        )
        assert cli_runner.format_status(event) == "C: peer connection disconnected"


class TestMain:
    def test_help(self):
        result = CliRunner().invoke(cli_runner.main, ["--help"])
        assert result.exit_code == 0
        assert "--room" in result.output
        assert "--relay-url" in result.output

    def test_options_reach_run_call(self, monkeypatch):
        monkeypatch.setenv("MESHCALL_ROOM_ID", "from-env")
        calls = []

        async def fake_run_call(settings, room_id, muted=False):
            calls.append((settings.relay_url, room_id, muted))

        with patch.object(cli_runner, "run_call", fake_run_call):
            result = CliRunner().invoke(
                cli_runner.main, ["--relay-url", "ws://relay:9000", "--muted"]
            )

        assert result.exit_code == 0, result.output
        assert calls == [("ws://relay:9000", "from-env", True)]
