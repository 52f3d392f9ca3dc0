"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep conversation logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the assistant needs for identities, wallet
membership and the exchange rate.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from coperacha.models.audit import AuditEvent
from coperacha.models.identity import IdentityRecord


class RecordStoreInterface(ABC):
    """
    Abstract interface for identity record storage.

    Any storage implementation (Google Sheets, MongoDB, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def find_by_phone(self, phone: str) -> Optional[IdentityRecord]:
        """
        Retrieve an identity by phone.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_address(self, address: str) -> Optional[IdentityRecord]:
        """
        Retrieve an identity by primary address (case-insensitive).

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        """
        Retrieve an identity by email (case-insensitive).

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def insert(self, record: IdentityRecord) -> IdentityRecord:
        """
        Insert a new identity.

        Raises:
            DuplicateError: If phone, email or address is already taken
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def add_wallet_to_members(
        self,
        member_addresses: list[str],
        wallet_address: str,
    ) -> int:
        """
        Link a community wallet to every identity whose primary
        address is in member_addresses (add-to-set semantics).

        Addresses with no registered identity are ignored.

        Returns:
            Number of identities whose wallet set changed

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_wallet_members(self, wallet_address: str) -> list[IdentityRecord]:
        """
        List identities linked to a community wallet.

        Returns:
            Matching records (possibly empty)
        """
        pass

    @abstractmethod
    async def get_exchange_rate(self) -> Optional[Decimal]:
        """
        Read the configured native-to-local exchange rate.

        Returns:
            The rate, or None if never configured
        """
        pass

    @abstractmethod
    async def set_exchange_rate(self, rate: Decimal) -> None:
        """
        Store the native-to-local exchange rate.

        Raises:
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Duplicate value for {field}")


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
