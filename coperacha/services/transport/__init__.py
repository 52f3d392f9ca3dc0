"""Message transport package."""

from coperacha.services.transport.interface import TransportError, TransportInterface
from coperacha.services.transport.memory import OutboxTransport

__all__ = [
    "OutboxTransport",
    "TransportError",
    "TransportInterface",
]
