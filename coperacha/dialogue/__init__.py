"""Conversation state machine and reply templates."""

from coperacha.dialogue.engine import DialogueEngine

__all__ = ["DialogueEngine"]
