"""Presence lookups over the connection registry."""
from __future__ import annotations

from fastapi import APIRouter

from ..schemas.signaling import PresenceResponse, RoomParticipantsResponse
from ..services.registry import registry

router = APIRouter()


@router.get("/presence/{user_id}", response_model=PresenceResponse)
async def get_presence(user_id: str) -> PresenceResponse:
    """Report whether ``user_id`` currently has a live relay connection."""

    handle = await registry.lookup_handle(user_id)
    return PresenceResponse(user_id=user_id, online=handle is not None)


@router.get("/rooms/{room_id}/participants", response_model=RoomParticipantsResponse)
async def list_room_participants(room_id: str) -> RoomParticipantsResponse:
    participants = await registry.identities_in(room_id)
    return RoomParticipantsResponse(room_id=room_id, participants=sorted(participants))
