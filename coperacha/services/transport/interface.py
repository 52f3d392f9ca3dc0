"""
Abstract Transport Interface

The message gateway (WhatsApp, SMS, a test console...) is reached only
through send(). Inbound messages arrive as (identity, text) pairs and
are fed to the runtime by whoever owns the gateway connection.
"""

from abc import ABC, abstractmethod


class TransportInterface(ABC):
    """
    Abstract interface for the outbound side of the message gateway.
    """

    @abstractmethod
    async def send(self, identity: str, text: str) -> None:
        """
        Deliver one text message to an identity.

        Raises:
            TransportError: If the gateway refused or could not deliver
        """
        pass


class TransportError(Exception):
    """The gateway could not deliver a message."""
    pass
