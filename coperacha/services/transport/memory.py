"""
In-Memory Transport

Collects outbound messages per identity instead of delivering them.
Backs the local console and the test-suite.
"""

import asyncio
from collections import defaultdict
from typing import Optional

from coperacha.services.transport.interface import TransportError, TransportInterface


class OutboxTransport(TransportInterface):
    """
    Per-identity outbox.

    drain() hands the pending messages to the reader and empties
    the outbox, so a console can poll it.
    """

    def __init__(self, fail_for: Optional[set[str]] = None):
        self._outbox: dict[str, list[str]] = defaultdict(list)
        self._history: dict[str, list[str]] = defaultdict(list)
        self._fail_for = set(fail_for or ())
        self._lock = asyncio.Lock()

    async def send(self, identity: str, text: str) -> None:
        if identity in self._fail_for:
            raise TransportError(f"Delivery to {identity} failed")
        async with self._lock:
            self._outbox[identity].append(text)
            self._history[identity].append(text)

    async def drain(self, identity: str) -> list[str]:
        """Return and clear the pending messages of an identity."""
        async with self._lock:
            messages = self._outbox.pop(identity, [])
        return messages

    def history(self, identity: str) -> list[str]:
        """Every message ever sent to an identity, oldest first."""
        return list(self._history.get(identity, []))
