"""Conversation session ownership."""

from coperacha.sessions.registry import SessionRegistry

__all__ = ["SessionRegistry"]
