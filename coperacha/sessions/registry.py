"""
Session Registry

Process-wide owner of conversation sessions.

DESIGN DECISION: One slot per identity holding the session, a lock
and the inactivity timer. Everything that reads or changes a session
goes through the slot's lock, including the timer, so:
1. Messages from one identity are handled strictly one after another
2. Different identities never wait on each other
3. A timer can't reset a session in the middle of a reply

Timers are single-shot asyncio tasks. Each reschedule bumps a
generation counter; a timer that wakes up with a stale generation
does nothing, even if its cancellation arrived too late.

A slot is dropped as soon as its session is back in IDLE with no
pending timer and nobody holding or waiting for its lock (after an
exit or an expiry), so the map only holds live conversations.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional

import structlog

from coperacha.config import get_settings
from coperacha.models.session import DialogueState, Session

logger = structlog.get_logger(__name__)

ExpiryCallback = Callable[[str, DialogueState], Awaitable[None]]


@dataclass
class _Slot:
    session: Session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    timer: Optional[asyncio.Task] = None
    generation: int = 0
    users: int = 0  # holders and waiters of the lock

    @property
    def disposable(self) -> bool:
        return self.users == 0 and self.timer is None and self.session.is_idle


class SessionRegistry:
    """
    Map of identity -> session slot.

    Usage:
        async with registry.acquire(identity) as session:
            ...mutate session...
            registry.touch(identity)
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        on_expire: Optional[ExpiryCallback] = None,
    ):
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else get_settings().app.session_timeout_seconds
        )
        self._slots: dict[str, _Slot] = {}
        self.on_expire = on_expire

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _slot(self, identity: str) -> _Slot:
        slot = self._slots.get(identity)
        if slot is None:
            slot = _Slot(session=Session(identity=identity))
            self._slots[identity] = slot
        return slot

    @asynccontextmanager
    async def acquire(self, identity: str) -> AsyncIterator[Session]:
        """Hold the identity's lock and yield its session, creating it if absent."""
        slot = self._slot(identity)
        slot.users += 1
        try:
            async with slot.lock:
                yield slot.session
        finally:
            slot.users -= 1
            self._discard_if_done(identity, slot)

    def _discard_if_done(self, identity: str, slot: _Slot) -> None:
        if slot.disposable and self._slots.get(identity) is slot:
            del self._slots[identity]

    def get(self, identity: str) -> Optional[Session]:
        """Peek at a session without locking. None once the session is gone."""
        slot = self._slots.get(identity)
        return slot.session if slot else None

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, identity: str) -> bool:
        return identity in self._slots

    def has_pending_timeout(self, identity: str) -> bool:
        slot = self._slots.get(identity)
        return bool(slot and slot.timer and not slot.timer.done())

    # =========================================================================
    # TIMEOUTS (call while holding the identity's lock)
    # =========================================================================

    def touch(self, identity: str) -> None:
        """Restart the inactivity window."""
        slot = self._slot(identity)
        self._cancel(slot)
        slot.timer = asyncio.create_task(
            self._expire_after(identity, slot, slot.generation),
            name=f"session-timeout-{identity}",
        )

    def cancel_timeout(self, identity: str) -> None:
        slot = self._slots.get(identity)
        if slot:
            self._cancel(slot)

    def _cancel(self, slot: _Slot) -> None:
        slot.generation += 1
        if slot.timer and not slot.timer.done():
            slot.timer.cancel()
        slot.timer = None

    async def _expire_after(self, identity: str, slot: _Slot, generation: int) -> None:
        await asyncio.sleep(self._timeout)

        slot.users += 1
        try:
            await self._expire(identity, slot, generation)
        finally:
            slot.users -= 1
            self._discard_if_done(identity, slot)

    async def _expire(self, identity: str, slot: _Slot, generation: int) -> None:
        async with slot.lock:
            if slot.generation != generation:
                return  # superseded
            slot.generation += 1
            slot.timer = None
            previous = slot.session.state
            slot.session.reset()

            logger.info("session_expired", identity=identity, previous_state=previous.value)
            if self.on_expire:
                try:
                    await self.on_expire(identity, previous)
                except Exception as e:
                    logger.error("session_expiry_notify_failed", identity=identity, error=str(e))

    async def close(self) -> None:
        """Cancel every pending timer and drop the idle sessions."""
        timers = []
        for slot in self._slots.values():
            if slot.timer and not slot.timer.done():
                timers.append(slot.timer)
            self._cancel(slot)
        for timer in timers:
            try:
                await timer
            except asyncio.CancelledError:
                pass
        for identity, slot in list(self._slots.items()):
            self._discard_if_done(identity, slot)
