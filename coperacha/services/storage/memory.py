"""
In-Memory Storage Implementation

Used by the test-suite and by local runs without Google Sheets.
Follows the same interface and error semantics as the Sheets backend,
including uniqueness checks and add-to-set wallet linking.
"""

import asyncio
from decimal import Decimal
from typing import Optional

from coperacha.models.audit import AuditEvent
from coperacha.models.identity import IdentityRecord
from coperacha.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    RecordStoreInterface,
)


class InMemoryRecordStore(RecordStoreInterface):
    """
    Dictionary-backed record store keyed by phone.

    Returned records are copies, so callers can't mutate stored state.
    """

    def __init__(
        self,
        records: Optional[list[IdentityRecord]] = None,
        exchange_rate: Optional[Decimal] = None,
    ):
        self._records: dict[str, IdentityRecord] = {}
        self._exchange_rate = exchange_rate
        self._lock = asyncio.Lock()
        for record in records or []:
            self._records[record.phone] = record.model_copy(deep=True)

    async def find_by_phone(self, phone: str) -> Optional[IdentityRecord]:
        record = self._records.get(phone)
        return record.model_copy(deep=True) if record else None

    async def find_by_address(self, address: str) -> Optional[IdentityRecord]:
        address = (address or "").strip().lower()
        for record in self._records.values():
            if record.address == address:
                return record.model_copy(deep=True)
        return None

    async def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        email = (email or "").strip().lower()
        for record in self._records.values():
            if record.email == email:
                return record.model_copy(deep=True)
        return None

    async def insert(self, record: IdentityRecord) -> IdentityRecord:
        async with self._lock:
            if record.phone in self._records:
                raise DuplicateError("phone")
            for existing in self._records.values():
                if existing.email == record.email:
                    raise DuplicateError("email")
                if record.address and existing.address == record.address:
                    raise DuplicateError("address")
            self._records[record.phone] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def add_wallet_to_members(
        self,
        member_addresses: list[str],
        wallet_address: str,
    ) -> int:
        members = {a.strip().lower() for a in member_addresses}
        wallet_address = wallet_address.strip().lower()
        changed = 0
        async with self._lock:
            for record in self._records.values():
                if record.address in members and wallet_address not in record.wallets:
                    record.wallets.append(wallet_address)
                    changed += 1
        return changed

    async def list_wallet_members(self, wallet_address: str) -> list[IdentityRecord]:
        wallet_address = wallet_address.strip().lower()
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if wallet_address in record.wallets
        ]

    async def get_exchange_rate(self) -> Optional[Decimal]:
        return self._exchange_rate

    async def set_exchange_rate(self, rate: Decimal) -> None:
        self._exchange_rate = Decimal(rate)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
