"""RTC configuration endpoint for participant clients."""
from __future__ import annotations

from fastapi import APIRouter

from ..core.config import settings
from ..schemas.signaling import RtcConfigResponse

router = APIRouter()


@router.get("/config", response_model=RtcConfigResponse)
async def get_rtc_config() -> RtcConfigResponse:
    """Return the ICE servers clients should hand to RTCPeerConnection."""

    servers = [{"urls": settings.ice_servers}] if settings.ice_servers else []
    return RtcConfigResponse(ice_servers=servers)
