"""Signaling relay for two-party WebRTC calls."""

__version__ = "0.1.0"
