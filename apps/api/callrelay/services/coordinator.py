"""Bind the registry and router to relay-channel lifecycle events."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from ..core.errors import ProtocolViolationError, SignalingError, UnknownTargetError
from ..schemas.signaling import (
    CallAcceptedRequest,
    CallUserRequest,
    IceCandidateRequest,
    JoinRoomRequest,
    SignalEvent,
)
from .registry import ConnectionRegistry, SignalingConnection, registry as default_registry
from .router import SignalingRouter, signaling_router as default_router

logger = logging.getLogger(__name__)


@dataclass
class NegotiationLink:
    """Server-side record of which two identities are negotiating."""

    initiator: str
    target: str
    abandoned: bool = False

    def peer_of(self, identity: str) -> Optional[str]:
        if identity == self.initiator:
            return self.target
        if identity == self.target:
            return self.initiator
        return None


class SessionCoordinator:
    """Dispatch inbound relay messages and clean up after closed channels."""

    def __init__(self, registry: ConnectionRegistry, router: SignalingRouter) -> None:
        self._registry = registry
        self._router = router
        self._links: Dict[Tuple[str, str], NegotiationLink] = {}
        self._links_lock = asyncio.Lock()

    async def connect(self, handle: SignalingConnection) -> None:
        # Nothing is registered until the client sends join-room.
        logger.info("A user connected %s", handle.connection_id)

    async def dispatch(self, handle: SignalingConnection, event: str, data: Any) -> None:
        """Handle one inbound message; failures are logged, never raised."""

        try:
            await self._dispatch(handle, event, data)
        except UnknownTargetError as exc:
            logger.warning("Dropped %s: %s", event, exc)
        except ProtocolViolationError as exc:
            logger.warning("Ignored %s: %s", event, exc)
        except ValidationError as exc:
            logger.warning(
                "Ignored malformed %s from %s: %s", event, handle.connection_id, exc.errors()
            )
        except SignalingError as exc:
            logger.error("Signaling failure on %s: %s", event, exc)

    async def disconnect(self, handle: SignalingConnection) -> Optional[str]:
        """Unregister ``handle`` and abandon every link involving its identity."""

        identity = await self._registry.unregister(handle)
        logger.info("User disconnected %s UserId: %s", handle.connection_id, identity)
        if identity is None:
            return None

        await self._release(identity)
        return identity

    async def peer_of(self, identity: str) -> Optional[str]:
        """Return the identity ``identity`` is currently negotiating with."""

        async with self._links_lock:
            link = self._latest_link_for(identity)
            return link.peer_of(identity) if link else None

    async def links(self) -> list[NegotiationLink]:
        async with self._links_lock:
            return list(self._links.values())

    async def _dispatch(self, handle: SignalingConnection, event: str, data: Any) -> None:
        if event == SignalEvent.JOIN_ROOM.value:
            request = JoinRoomRequest.model_validate(data)
            previous = await self._registry.lookup_identity(handle)
            await self._router.join(handle, request.room_id, request.user_id)
            if previous is not None and previous != request.user_id:
                await self._release(previous)
        elif event == SignalEvent.CALL_USER.value:
            request = CallUserRequest.model_validate(data)
            sender = await self._router.call_offer(handle, request.user_id, request.offer)
            await self._open_link(sender, request.user_id)
        elif event == SignalEvent.CALL_ACCEPTED.value:
            request = CallAcceptedRequest.model_validate(data)
            await self._router.call_answer(handle, request.from_, request.answer)
        elif event == SignalEvent.ICE_CANDIDATE.value:
            request = IceCandidateRequest.model_validate(data)
            sender = await self._registry.lookup_identity(handle)
            peer = await self.peer_of(sender) if sender else None
            await self._router.ice_candidate(handle, request.candidate, peer=peer)
        else:
            raise ProtocolViolationError("Unknown event", {"event": event})

    async def _release(self, identity: str) -> None:
        """Abandon the links of an identity no connection answers for any more."""

        # A newer connection for the same identity keeps its links.
        if await self._registry.lookup_handle(identity) is not None:
            return

        async with self._links_lock:
            for key, link in list(self._links.items()):
                if identity in key:
                    link.abandoned = True
                    del self._links[key]
                    logger.info(
                        "Abandoned negotiation %s -> %s", link.initiator, link.target
                    )

    async def _open_link(self, initiator: str, target: str) -> None:
        async with self._links_lock:
            # A fresh offer between the pair supersedes the previous negotiation.
            self._links.pop((target, initiator), None)
            self._links.pop((initiator, target), None)
            self._links[(initiator, target)] = NegotiationLink(initiator=initiator, target=target)

    def _latest_link_for(self, identity: str) -> Optional[NegotiationLink]:
        latest = None
        for key, link in self._links.items():
            if identity in key and not link.abandoned:
                latest = link
        return latest


coordinator = SessionCoordinator(default_registry, default_router)
