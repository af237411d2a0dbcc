"""Data contracts for relay-channel messages."""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SignalEvent(str, enum.Enum):
    JOIN_ROOM = "join-room"
    JOINED_ROOM = "joined-room"
    USER_JOINED = "user-joined"
    CALL_USER = "call-user"
    INCOMING_CALL = "incoming-call"
    CALL_ACCEPTED = "call-accepted"
    ICE_CANDIDATE = "ice-candidate"


class SessionDescription(BaseModel):
    """SDP payload as produced by RTCPeerConnection.createOffer/createAnswer."""

    model_config = ConfigDict(extra="allow")

    type: str
    sdp: str


class IceCandidate(BaseModel):
    """Network candidate; unknown browser fields pass through untouched."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    candidate: str
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_mline_index: int | None = Field(default=None, alias="sdpMLineIndex")


class JoinRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(..., min_length=1, alias="roomId")
    user_id: str = Field(..., min_length=1, alias="userId")


class CallUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    offer: SessionDescription
    user_id: str = Field(..., min_length=1, alias="userId", description="Target identity")


class CallAcceptedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: SessionDescription
    from_: str = Field(..., min_length=1, alias="from", description="Identity of the original caller")


class IceCandidateRequest(BaseModel):
    candidate: IceCandidate


class RtcConfigResponse(BaseModel):
    ice_servers: list[dict[str, Any]] = Field(..., serialization_alias="iceServers")


class PresenceResponse(BaseModel):
    user_id: str
    online: bool


class RoomParticipantsResponse(BaseModel):
    room_id: str
    participants: list[str]


def envelope(event: SignalEvent, data: Any) -> dict[str, Any]:
    """Wrap a payload the way a socket.io emit lands on the wire."""

    return {"event": event.value, "data": data}


def dump(model: BaseModel) -> dict[str, Any]:
    """Serialise a wire model using its camelCase aliases."""

    return model.model_dump(by_alias=True, exclude_unset=True)
