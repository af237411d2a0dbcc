"""In-memory registry of live relay connections, identities and rooms."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

SendCallable = Callable[[dict], Awaitable[None]]

logger = logging.getLogger(__name__)


@dataclass(slots=True, eq=False)
class SignalingConnection:
    """Connection wrapper for one participant's relay channel."""

    connection_id: str
    send: SendCallable


class ConnectionRegistry:
    """Map participant identities to relay connections and track room membership.

    Forward (identity -> connection), reverse (connection -> identity) and room
    maps are coupled, so a single lock guards all of them.
    """

    def __init__(self) -> None:
        self._by_identity: Dict[str, SignalingConnection] = {}
        self._by_connection: Dict[str, str] = {}
        self._rooms: Dict[str, Dict[str, SignalingConnection]] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def register(self, identity: str, handle: SignalingConnection) -> None:
        """Point ``identity`` at ``handle``, superseding any earlier handle."""

        async with self._lock:
            previous_identity = self._by_connection.get(handle.connection_id)
            if previous_identity is not None and previous_identity != identity:
                current = self._by_identity.get(previous_identity)
                if current is not None and current.connection_id == handle.connection_id:
                    del self._by_identity[previous_identity]

            superseded = self._by_identity.get(identity)
            if superseded is not None and superseded.connection_id != handle.connection_id:
                logger.info(
                    "Identity %s moved from connection %s to %s",
                    identity,
                    superseded.connection_id,
                    handle.connection_id,
                )

            self._by_identity[identity] = handle
            self._by_connection[handle.connection_id] = identity

    async def lookup_handle(self, identity: str) -> Optional[SignalingConnection]:
        async with self._lock:
            return self._by_identity.get(identity)

    async def lookup_identity(self, handle: SignalingConnection) -> Optional[str]:
        async with self._lock:
            return self._by_connection.get(handle.connection_id)

    async def unregister(self, handle: SignalingConnection) -> Optional[str]:
        """Drop ``handle`` and return the identity it was registered under.

        The forward mapping is only removed while it still points at this
        handle, so a late close cannot clobber a newer registration.
        """

        async with self._lock:
            identity = self._by_connection.pop(handle.connection_id, None)
            if identity is not None:
                current = self._by_identity.get(identity)
                if current is not None and current.connection_id == handle.connection_id:
                    del self._by_identity[identity]

            for room in self._memberships.pop(handle.connection_id, set()):
                participants = self._rooms.get(room)
                if not participants:
                    continue
                participants.pop(handle.connection_id, None)
                if not participants:
                    self._rooms.pop(room, None)
            return identity

    async def join_room(self, handle: SignalingConnection, room_id: str) -> list[SignalingConnection]:
        """Add ``handle`` to ``room_id`` and return the other members."""

        async with self._lock:
            participants = self._rooms.setdefault(room_id, {})
            participants[handle.connection_id] = handle
            self._memberships.setdefault(handle.connection_id, set()).add(room_id)
            return [
                connection
                for connection_id, connection in participants.items()
                if connection_id != handle.connection_id
            ]

    async def rooms_of(self, handle: SignalingConnection) -> set[str]:
        async with self._lock:
            return set(self._memberships.get(handle.connection_id, set()))

    async def members(self, room_id: str) -> list[SignalingConnection]:
        async with self._lock:
            return list(self._rooms.get(room_id, {}).values())

    async def identities_in(self, room_id: str) -> list[str]:
        """Return the identities whose live connection is in ``room_id``."""

        async with self._lock:
            identities = []
            for connection_id in self._rooms.get(room_id, {}):
                identity = self._by_connection.get(connection_id)
                if identity is None:
                    continue
                current = self._by_identity.get(identity)
                if current is not None and current.connection_id == connection_id:
                    identities.append(identity)
            return identities


registry = ConnectionRegistry()
