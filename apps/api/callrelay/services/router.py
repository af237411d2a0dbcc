"""Route signaling payloads between participants."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from ..core.errors import ProtocolViolationError, UnknownTargetError
from ..schemas.signaling import IceCandidate, SessionDescription, SignalEvent, dump, envelope
from .registry import ConnectionRegistry, SignalingConnection, registry as default_registry

logger = logging.getLogger(__name__)


class SignalingRouter:
    """Resolve targets through the registry and forward structured payloads.

    The router holds no state of its own. Delivery failures are logged per
    recipient and never propagate to the sender's channel.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def join(self, handle: SignalingConnection, room_id: str, identity: str) -> None:
        """Register ``identity`` on ``handle`` and announce it to the room."""

        await self._registry.register(identity, handle)
        others = await self._registry.join_room(handle, room_id)
        logger.info("User %s joined room %s via %s", identity, room_id, handle.connection_id)

        await self._deliver(handle, envelope(SignalEvent.JOINED_ROOM, room_id))
        await self._fan_out(others, envelope(SignalEvent.USER_JOINED, {"userId": identity}))

    async def call_offer(
        self, handle: SignalingConnection, target: str, offer: SessionDescription
    ) -> str:
        """Forward an offer to ``target`` and return the server-derived sender."""

        sender = await self._require_sender(handle, SignalEvent.CALL_USER)
        target_handle = await self._resolve(target, SignalEvent.CALL_USER, sender)
        await self._deliver(
            target_handle,
            envelope(SignalEvent.INCOMING_CALL, {"offer": dump(offer), "from": sender}),
        )
        return sender

    async def call_answer(
        self, handle: SignalingConnection, target: str, answer: SessionDescription
    ) -> str:
        """Forward an answer back to the original caller ``target``."""

        sender = await self._require_sender(handle, SignalEvent.CALL_ACCEPTED)
        target_handle = await self._resolve(target, SignalEvent.CALL_ACCEPTED, sender)
        await self._deliver(target_handle, envelope(SignalEvent.CALL_ACCEPTED, {"answer": dump(answer)}))
        return sender

    async def ice_candidate(
        self,
        handle: SignalingConnection,
        candidate: IceCandidate,
        peer: Optional[str] = None,
    ) -> None:
        """Send a candidate to ``peer`` when known, else to the sender's rooms."""

        message = envelope(SignalEvent.ICE_CANDIDATE, {"candidate": dump(candidate)})
        sender = await self._registry.lookup_identity(handle)

        if peer is not None:
            target_handle = await self._resolve(peer, SignalEvent.ICE_CANDIDATE, sender)
            await self._deliver(target_handle, message)
            return

        recipients: dict[str, SignalingConnection] = {}
        for room in await self._registry.rooms_of(handle):
            for member in await self._registry.members(room):
                if member.connection_id != handle.connection_id:
                    recipients[member.connection_id] = member
        logger.debug(
            "Relaying ICE candidate from %s to %d room member(s)", sender, len(recipients)
        )
        await self._fan_out(recipients.values(), message)

    async def _require_sender(self, handle: SignalingConnection, event: SignalEvent) -> str:
        sender = await self._registry.lookup_identity(handle)
        if sender is None:
            raise ProtocolViolationError(
                "Sender has not joined a room",
                {"event": event.value, "connection_id": handle.connection_id},
            )
        return sender

    async def _resolve(
        self, target: str, event: SignalEvent, sender: Optional[str]
    ) -> SignalingConnection:
        target_handle = await self._registry.lookup_handle(target)
        if target_handle is None:
            raise UnknownTargetError(
                "No live connection for target",
                {"event": event.value, "target": target, "from": sender},
            )
        return target_handle

    async def _fan_out(self, recipients: Iterable[SignalingConnection], message: dict) -> None:
        tasks = [self._deliver(connection, message) for connection in recipients]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _deliver(self, connection: SignalingConnection, message: dict) -> None:
        try:
            await connection.send(message)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Failed delivering %s to %s: %s", message.get("event"), connection.connection_id, exc
            )


signaling_router = SignalingRouter(default_registry)
