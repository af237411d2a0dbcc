"""Error taxonomy for the signaling core."""
from __future__ import annotations

from typing import Any


class SignalingError(RuntimeError):
    """Base class for recoverable signaling failures."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class UnknownTargetError(SignalingError):
    """Raised when a message targets an identity with no live connection."""


class ProtocolViolationError(SignalingError):
    """Raised when a message arrives in a state that does not permit it."""


class TransportRejectedError(SignalingError):
    """Raised when the media transport refuses a negotiation step."""
