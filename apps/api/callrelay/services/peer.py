"""Participant-side relay client driving a negotiation session."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional

import websockets
from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import ProtocolViolationError, TransportRejectedError
from ..schemas.signaling import (
    IceCandidate,
    SessionDescription,
    SignalEvent,
    dump,
    envelope,
)
from .negotiation import (
    SETTLED_STATES,
    TERMINAL_STATES,
    MediaTransport,
    NegotiationSession,
    TransportEvents,
)

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], MediaTransport]
TrackCallback = Callable[[Any], Awaitable[None]]


class PeerClient:
    """Join a room over the relay and negotiate a call with the other participant.

    Mirrors the browser room flow: whoever is already in the room calls a
    newcomer, the newcomer answers, and candidates are exchanged in between.
    """

    def __init__(
        self,
        identity: str,
        transport_factory: TransportFactory,
        *,
        relay_url: Optional[str] = None,
        local_stream: Any = None,
        on_remote_track: Optional[TrackCallback] = None,
    ) -> None:
        self.identity = identity
        self.relay_url = relay_url or settings.relay_url
        self.local_stream = local_stream
        self.session: Optional[NegotiationSession] = None
        self.transport: Optional[MediaTransport] = None
        self.joined_rooms: list[str] = []
        self._transport_factory = transport_factory
        self._on_remote_track = on_remote_track
        self._early_candidates: list[IceCandidate] = []
        self._outgoing: asyncio.Queue[dict] = asyncio.Queue()

    async def run(self, room_id: str) -> None:
        """Connect to the relay and serve it until the channel closes."""

        async with websockets.connect(self.relay_url) as ws:
            await self.serve(ws, room_id)

    async def serve(self, ws: Any, room_id: str) -> None:
        writer = asyncio.create_task(self._write_loop(ws))
        try:
            self.send(envelope(SignalEvent.JOIN_ROOM, {"roomId": room_id, "userId": self.identity}))
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from relay")
                    continue
                if not isinstance(message, dict):
                    continue
                await self.handle_message(message.get("event"), message.get("data"))
        finally:
            writer.cancel()
            with suppress(asyncio.CancelledError):
                await writer
            await self.close_session()

    def send(self, message: dict) -> None:
        """Queue a message for the relay without waiting for delivery."""

        self._outgoing.put_nowait(message)

    async def handle_message(self, event: Optional[str], data: Any) -> None:
        try:
            await self._handle(event, data)
        except ProtocolViolationError as exc:
            logger.warning("Ignored %s: %s", event, exc)
        except ValidationError as exc:
            logger.warning("Ignored malformed %s: %s", event, exc.errors())
        except (KeyError, TypeError) as exc:
            logger.warning("Ignored malformed %s: missing %s", event, exc)
        except TransportRejectedError as exc:
            logger.error("Negotiation failed: %s", exc)
            await self.close_session()

    async def call(self, remote_identity: str) -> SessionDescription:
        """Offer a call to ``remote_identity``, renegotiating a settled session."""

        session = self.session
        if session is None or session.remote_identity != remote_identity or session.state not in SETTLED_STATES:
            session = await self._open_session(remote_identity)
        return await session.start_call(self.local_stream)

    async def close_session(self) -> None:
        session, transport = self.session, self.transport
        self.session = None
        self.transport = None
        if session is not None:
            session.abandon()
        if transport is not None:
            await transport.close()

    async def _handle(self, event: Optional[str], data: Any) -> None:
        if event == SignalEvent.JOINED_ROOM.value:
            self.joined_rooms.append(str(data))
            logger.info("Successfully joined room: %s", data)
        elif event == SignalEvent.USER_JOINED.value:
            user_id = data["userId"]
            logger.info("New user joined: %s", user_id)
            await self.call(user_id)
        elif event == SignalEvent.INCOMING_CALL.value:
            offer = SessionDescription.model_validate(data["offer"])
            caller = data["from"]
            logger.info("Incoming call from %s", caller)
            session = self.session
            if (
                session is None
                or session.remote_identity != caller
                or session.state in TERMINAL_STATES
            ):
                session = await self._open_session(caller)
            await session.handle_offer(offer, self.local_stream)
        elif event == SignalEvent.CALL_ACCEPTED.value:
            answer = SessionDescription.model_validate(data["answer"])
            if self.session is None:
                raise ProtocolViolationError("Answer without an outstanding offer")
            await self.session.handle_answer(answer)
            logger.info("Call accepted by %s", self.session.remote_identity)
        elif event == SignalEvent.ICE_CANDIDATE.value:
            candidate = IceCandidate.model_validate(data["candidate"])
            if self.session is None:
                self._early_candidates.append(candidate)
                return
            await self.session.add_remote_candidate(candidate)
        else:
            raise ProtocolViolationError("Unknown event", {"event": event})

    async def _open_session(self, remote_identity: str) -> NegotiationSession:
        await self.close_session()
        transport = self._transport_factory()
        session = NegotiationSession(self.identity, remote_identity, transport, self.send)
        transport.bind(
            TransportEvents(
                local_ice_candidate=self._send_local_candidate,
                remote_track_received=self._remote_track,
                connection_state=session.connection_state_changed,
            )
        )
        self.session = session
        self.transport = transport

        early, self._early_candidates = self._early_candidates, []
        for candidate in early:
            await session.add_remote_candidate(candidate)
        return session

    async def _send_local_candidate(self, candidate: IceCandidate) -> None:
        self.send(envelope(SignalEvent.ICE_CANDIDATE, {"candidate": dump(candidate)}))

    async def _remote_track(self, track: Any) -> None:
        if self._on_remote_track:
            await self._on_remote_track(track)

    async def _write_loop(self, ws: Any) -> None:
        while True:
            message = await self._outgoing.get()
            try:
                await ws.send(json.dumps(message))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed sending %s to relay: %s", message.get("event"), exc)
