"""aiortc-backed implementation of the media transport capability."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from ..core.config import settings
from ..schemas.signaling import IceCandidate, SessionDescription
from .negotiation import TransportEvents

logger = logging.getLogger(__name__)


def build_rtc_configuration(ice_servers: Optional[list[str]] = None) -> RTCConfiguration:
    """Build an RTCConfiguration from STUN/TURN URLs."""

    urls = ice_servers if ice_servers is not None else settings.ice_servers
    return RTCConfiguration(iceServers=[RTCIceServer(urls=list(urls))] if urls else [])


def _iter_tracks(stream: Any) -> Iterable[MediaStreamTrack]:
    """Accept a single track, an iterable of tracks or a MediaPlayer-like source."""

    if isinstance(stream, MediaStreamTrack):
        return [stream]
    if hasattr(stream, "audio") or hasattr(stream, "video"):
        return [track for track in (getattr(stream, "audio", None), getattr(stream, "video", None)) if track]
    return list(stream)


class AiortcTransport:
    """Wrap an RTCPeerConnection behind the negotiation's transport surface.

    aiortc gathers candidates before ``setLocalDescription`` returns and
    embeds them in the SDP, so ``local_ice_candidate`` only fires for
    transports that trickle.
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None) -> None:
        self._pc = RTCPeerConnection(configuration=configuration or build_rtc_configuration())
        self._events = TransportEvents()

        @self._pc.on("track")
        async def on_track(track: MediaStreamTrack) -> None:
            logger.info("Remote %s track received", track.kind)
            if self._events.remote_track_received:
                await self._events.remote_track_received(track)

        @self._pc.on("connectionstatechange")
        async def on_connection_state_change() -> None:
            state = self._pc.connectionState
            logger.info("Peer connection state: %s", state)
            if self._events.connection_state:
                await self._events.connection_state(state)

    @property
    def peer_connection(self) -> RTCPeerConnection:
        return self._pc

    def bind(self, events: TransportEvents) -> None:
        self._events = events

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._local_description()

    async def create_answer(self, remote_offer: SessionDescription) -> SessionDescription:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=remote_offer.sdp, type=remote_offer.type)
        )
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._local_description()

    async def set_remote_answer(self, answer: SessionDescription) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=answer.sdp, type=answer.type))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        line = candidate.candidate
        if not line:
            # End-of-candidates marker.
            return
        if line.startswith("candidate:"):
            line = line[len("candidate:"):]
        parsed = candidate_from_sdp(line)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(parsed)

    def add_local_tracks(self, stream: Any) -> None:
        existing = {sender.track.id for sender in self._pc.getSenders() if sender.track is not None}
        for track in _iter_tracks(stream):
            if track.id in existing:
                logger.debug("Track already added: %s", track.kind)
                continue
            self._pc.addTrack(track)
            existing.add(track.id)

    async def close(self) -> None:
        await self._pc.close()

    def _local_description(self) -> SessionDescription:
        description = self._pc.localDescription
        return SessionDescription(type=description.type, sdp=description.sdp)
