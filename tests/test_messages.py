import json

import pytest

from meshcall.core.exceptions import MalformedMessage
from meshcall.core.signaling import (
    Answer,
    CandidatePayload,
    JoinedRoom,
    JoinRoom,
    LeaveRoom,
    Offer,
    OutboundIceCandidate,
    RemoteIceCandidate,
    RemoteOffer,
    UserJoined,
    UserLeft,
    parse_inbound,
    serialize,
)
from meshcall.core.types import IceCandidate

CANDIDATE = "candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host"


class TestParseInbound:
    def test_joined_room(self):
        message = parse_inbound('{"type": "joined-room", "roomId": "r1", "userId": "A"}')
        assert isinstance(message, JoinedRoom)
        assert message.room_id == "r1"
        assert message.user_id == "A"

    def test_user_joined_and_left(self):
        assert isinstance(parse_inbound('{"type": "user-joined", "userId": "B"}'), UserJoined)
        assert isinstance(parse_inbound('{"type": "user-left", "userId": "B"}'), UserLeft)

    def test_offer_uses_from(self):
        message = parse_inbound(json.dumps({"type": "offer", "from": "B", "sdp": "v=0"}))
        assert isinstance(message, RemoteOffer)
        assert message.sender == "B"
        assert message.sdp == "v=0"

    def test_ice_candidate_browser_shape(self):
        message = parse_inbound(
            json.dumps(
                {
                    "type": "ice-candidate",
                    "from": "B",
                    "candidate": {"candidate": CANDIDATE, "sdpMid": "0", "sdpMLineIndex": 0},
                }
            )
        )
        assert isinstance(message, RemoteIceCandidate)
        assert message.candidate.to_candidate() == IceCandidate(CANDIDATE, "0", 0)

    def test_bytes_frames_are_accepted(self):
        message = parse_inbound(b'{"type": "user-joined", "userId": "B"}')
        assert isinstance(message, UserJoined)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[]",
            '{"userId": "B"}',
            '{"type": "chat", "text": "hi"}',
            '{"type": "user-joined"}',
            '{"type": "user-joined", "userId": ""}',
            '{"type": "offer", "sdp": "v=0"}',
            '{"type": "answer", "from": "B"}',
            '{"type": "ice-candidate", "from": "B"}',
            '{"type": "joined-room", "userId": "A"}',
        ],
    )
    def test_malformed_frames_raise(self, raw):
        with pytest.raises(MalformedMessage):
            parse_inbound(raw)


class TestSerialize:
    def test_join_and_leave_room(self):
        assert json.loads(serialize(JoinRoom(room_id="r1"))) == {"type": "join-room", "roomId": "r1"}
        assert json.loads(serialize(LeaveRoom(room_id="r1"))) == {"type": "leave-room", "roomId": "r1"}

    def test_offer_and_answer_carry_target(self):
        assert json.loads(serialize(Offer(target="B", sdp="v=0"))) == {
            "type": "offer",
            "target": "B",
            "sdp": "v=0",
        }
        assert json.loads(serialize(Answer(target="B", sdp="v=0")))["target"] == "B"

    def test_candidate_omits_missing_fields(self):
        payload = CandidatePayload.from_candidate(IceCandidate(CANDIDATE))
        data = json.loads(serialize(OutboundIceCandidate(target="B", candidate=payload)))
        assert data == {"type": "ice-candidate", "target": "B", "candidate": {"candidate": CANDIDATE}}

    def test_candidate_uses_browser_field_names(self):
        payload = CandidatePayload.from_candidate(IceCandidate(CANDIDATE, "audio", 1))
        data = json.loads(serialize(OutboundIceCandidate(target="B", candidate=payload)))
        assert data["candidate"] == {"candidate": CANDIDATE, "sdpMid": "audio", "sdpMLineIndex": 1}
