"""Pydantic models for the relay wire protocol.

Every frame is a JSON object tagged by its ``type`` field. Inbound and
outbound messages share tags (``offer``, ``answer``, ``ice-candidate``) but
differ in addressing: outbound messages carry ``target``, inbound ones the
``from`` the relay stamped on them.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from meshcall.core.exceptions import MalformedMessage
from meshcall.core.types import IceCandidate

NonEmptyStr = Annotated[str, Field(min_length=1)]


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CandidatePayload(WireModel):
    """ICE candidate in the browser RTCIceCandidateInit shape."""

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")

    @classmethod
    def from_candidate(cls, candidate: IceCandidate) -> "CandidatePayload":
        return cls(
            candidate=candidate.candidate,
            sdp_mid=candidate.sdp_mid,
            sdp_mline_index=candidate.sdp_mline_index,
        )

    def to_candidate(self) -> IceCandidate:
        return IceCandidate(
            candidate=self.candidate,
            sdp_mid=self.sdp_mid,
            sdp_mline_index=self.sdp_mline_index,
        )


# Inbound


class JoinedRoom(WireModel):
    """Acknowledges our own join and assigns the local participant id."""

    type: Literal["joined-room"] = "joined-room"
    room_id: NonEmptyStr = Field(alias="roomId")
    user_id: NonEmptyStr = Field(alias="userId")


class UserJoined(WireModel):
    type: Literal["user-joined"] = "user-joined"
    user_id: NonEmptyStr = Field(alias="userId")


class UserLeft(WireModel):
    type: Literal["user-left"] = "user-left"
    user_id: NonEmptyStr = Field(alias="userId")


class RemoteOffer(WireModel):
    type: Literal["offer"] = "offer"
    sender: NonEmptyStr = Field(alias="from")
    sdp: str = Field(min_length=1)


class RemoteAnswer(WireModel):
    type: Literal["answer"] = "answer"
    sender: NonEmptyStr = Field(alias="from")
    sdp: str = Field(min_length=1)


class RemoteIceCandidate(WireModel):
    type: Literal["ice-candidate"] = "ice-candidate"
    sender: NonEmptyStr = Field(alias="from")
    candidate: CandidatePayload


InboundMessage = Annotated[
    Union[JoinedRoom, UserJoined, UserLeft, RemoteOffer, RemoteAnswer, RemoteIceCandidate],
    Field(discriminator="type"),
]


# Outbound


class JoinRoom(WireModel):
    type: Literal["join-room"] = "join-room"
    room_id: NonEmptyStr = Field(alias="roomId")


class LeaveRoom(WireModel):
    type: Literal["leave-room"] = "leave-room"
    room_id: NonEmptyStr = Field(alias="roomId")


class Offer(WireModel):
    type: Literal["offer"] = "offer"
    target: NonEmptyStr
    sdp: str


class Answer(WireModel):
    type: Literal["answer"] = "answer"
    target: NonEmptyStr
    sdp: str


class OutboundIceCandidate(WireModel):
    type: Literal["ice-candidate"] = "ice-candidate"
    target: NonEmptyStr
    candidate: CandidatePayload


OutboundMessage = Union[JoinRoom, LeaveRoom, Offer, Answer, OutboundIceCandidate]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(raw: Union[str, bytes]) -> InboundMessage:
    """Parse one relay frame.

    Raises:
        MalformedMessage: If the frame is not JSON, has an unknown tag or
            misses a required field.
    """
    try:
        return _inbound_adapter.validate_json(raw)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<frame>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise MalformedMessage(errors) from exc


def serialize(message: OutboundMessage) -> str:
    return message.model_dump_json(by_alias=True, exclude_none=True)
