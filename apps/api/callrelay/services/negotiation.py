"""Offer/answer negotiation state machine for one pair of participants."""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..core.errors import ProtocolViolationError, TransportRejectedError
from ..schemas.signaling import IceCandidate, SessionDescription, SignalEvent, dump, envelope

logger = logging.getLogger(__name__)

OutboxCallable = Callable[[dict], None]
CandidateHandler = Callable[[IceCandidate], Awaitable[None]]
TrackHandler = Callable[[Any], Awaitable[None]]
StateHandler = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class TransportEvents:
    """Callbacks a media transport invokes for its asynchronous events."""

    local_ice_candidate: Optional[CandidateHandler] = None
    remote_track_received: Optional[TrackHandler] = None
    connection_state: Optional[StateHandler] = None


class MediaTransport(Protocol):
    """Capability surface the negotiation needs from a real-time media stack."""

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self, remote_offer: SessionDescription) -> SessionDescription: ...

    async def set_remote_answer(self, answer: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    def add_local_tracks(self, stream: Any) -> None: ...

    def bind(self, events: TransportEvents) -> None: ...

    async def close(self) -> None: ...


class NegotiationState(str, enum.Enum):
    IDLE = "idle"
    OFFER_CREATED = "offer_created"
    OFFER_SENT = "offer_sent"
    ANSWER_RECEIVED = "answer_received"
    OFFER_RECEIVED = "offer_received"
    ANSWER_CREATED = "answer_created"
    ANSWER_SENT = "answer_sent"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


# Both descriptions are in place; a fresh offer from either side renegotiates.
SETTLED_STATES = frozenset(
    {NegotiationState.ANSWER_RECEIVED, NegotiationState.ANSWER_SENT, NegotiationState.CONNECTED}
)
TERMINAL_STATES = frozenset({NegotiationState.FAILED, NegotiationState.CLOSED})


class NegotiationSession:
    """Drive one directed offer/answer/candidate exchange over a media transport.

    Candidates that arrive before a remote description exists are buffered and
    applied in arrival order once it is set. Outbound messages are handed to
    ``outbox`` without waiting for delivery.
    """

    def __init__(
        self,
        local_identity: str,
        remote_identity: str,
        transport: MediaTransport,
        outbox: OutboxCallable,
    ) -> None:
        self.local_identity = local_identity
        self.remote_identity = remote_identity
        self._transport = transport
        self._outbox = outbox
        self._state = NegotiationState.IDLE
        self._remote_description_set = False
        self._pending_candidates: list[IceCandidate] = []
        self._applied_candidates = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> NegotiationState:
        return self._state

    @property
    def pending_candidates(self) -> list[IceCandidate]:
        return list(self._pending_candidates)

    @property
    def applied_candidates(self) -> int:
        return self._applied_candidates

    @property
    def remote_description_set(self) -> bool:
        return self._remote_description_set

    async def start_call(self, stream: Any = None) -> SessionDescription:
        """Produce an offer for the remote participant and queue ``call-user``."""

        async with self._lock:
            self._ensure_state("start_call", {NegotiationState.IDLE, *SETTLED_STATES})
            if stream is not None:
                self._transport.add_local_tracks(stream)

            self._transition(NegotiationState.OFFER_CREATED)
            offer = await self._call_transport("create_offer", self._transport.create_offer())
            self._outbox(
                envelope(SignalEvent.CALL_USER, {"offer": dump(offer), "userId": self.remote_identity})
            )
            self._transition(NegotiationState.OFFER_SENT)
            return offer

    async def handle_offer(self, offer: SessionDescription, stream: Any = None) -> SessionDescription:
        """Answer a remote offer; a second offer on a settled pair renegotiates."""

        async with self._lock:
            self._ensure_state("handle_offer", {NegotiationState.IDLE, *SETTLED_STATES})
            if self._state in SETTLED_STATES:
                logger.info("Renegotiating with %s", self.remote_identity)
            self._transition(NegotiationState.OFFER_RECEIVED)
            if stream is not None:
                self._transport.add_local_tracks(stream)

            answer = await self._call_transport("create_answer", self._transport.create_answer(offer))
            self._remote_description_set = True
            await self._flush_candidates()

            self._transition(NegotiationState.ANSWER_CREATED)
            self._outbox(
                envelope(SignalEvent.CALL_ACCEPTED, {"answer": dump(answer), "from": self.remote_identity})
            )
            self._transition(NegotiationState.ANSWER_SENT)
            return answer

    async def handle_answer(self, answer: SessionDescription) -> None:
        """Apply the remote answer to an outstanding offer."""

        async with self._lock:
            self._ensure_state("handle_answer", {NegotiationState.OFFER_SENT})
            await self._call_transport("set_remote_answer", self._transport.set_remote_answer(answer))
            self._remote_description_set = True
            await self._flush_candidates()
            self._transition(NegotiationState.ANSWER_RECEIVED)

    async def add_remote_candidate(self, candidate: IceCandidate) -> bool:
        """Apply ``candidate`` now if possible; return False when it was buffered."""

        async with self._lock:
            if self._state in TERMINAL_STATES:
                logger.debug("Dropping candidate for %s session", self._state.value)
                return False
            if not self._remote_description_set:
                self._pending_candidates.append(candidate)
                logger.debug(
                    "Buffered candidate from %s (%d pending)",
                    self.remote_identity,
                    len(self._pending_candidates),
                )
                return False
            await self._apply_candidate(candidate)
            return True

    async def connection_state_changed(self, state: str) -> None:
        """Feed the transport's connection-state event into the machine."""

        async with self._lock:
            logger.info("Connection to %s is %s", self.remote_identity, state)
            if state == "connected" and self._state in SETTLED_STATES:
                self._transition(NegotiationState.CONNECTED)
            elif state == "failed" and self._state not in TERMINAL_STATES:
                self._transition(NegotiationState.FAILED)
            elif state == "closed" and self._state not in TERMINAL_STATES:
                self._transition(NegotiationState.CLOSED)

    def abandon(self) -> None:
        """Stop the negotiation; nothing further is applied or sent."""

        if self._pending_candidates:
            logger.debug("Discarding %d buffered candidate(s)", len(self._pending_candidates))
        self._pending_candidates.clear()
        if self._state not in TERMINAL_STATES:
            self._transition(NegotiationState.CLOSED)

    async def _flush_candidates(self) -> None:
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: IceCandidate) -> None:
        await self._call_transport("add_ice_candidate", self._transport.add_ice_candidate(candidate))
        self._applied_candidates += 1

    async def _call_transport(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as exc:
            self._pending_candidates.clear()
            self._transition(NegotiationState.FAILED)
            raise TransportRejectedError(
                "Media transport rejected operation",
                {"operation": operation, "peer": self.remote_identity, "reason": str(exc)},
            ) from exc

    def _ensure_state(self, operation: str, allowed: set[NegotiationState]) -> None:
        if self._state not in allowed:
            raise ProtocolViolationError(
                f"{operation} not permitted",
                {"state": self._state.value, "peer": self.remote_identity},
            )

    def _transition(self, new_state: NegotiationState) -> None:
        logger.debug(
            "Negotiation %s->%s: %s -> %s",
            self.local_identity,
            self.remote_identity,
            self._state.value,
            new_state.value,
        )
        self._state = new_state
