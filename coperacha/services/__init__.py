"""Services package."""

from coperacha.services.ledger import (
    LedgerClientInterface,
    LedgerError,
    LedgerWriteError,
    ProposalDecodeError,
    ProposalExpiredError,
    UnsupportedCapabilityError,
    Web3LedgerClient,
)
from coperacha.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)
from coperacha.services.transport import (
    OutboxTransport,
    TransportError,
    TransportInterface,
)

__all__ = [
    # Ledger services
    "LedgerClientInterface",
    "LedgerError",
    "LedgerWriteError",
    "ProposalDecodeError",
    "ProposalExpiredError",
    "UnsupportedCapabilityError",
    "Web3LedgerClient",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    "NotFoundError",
    "RecordStoreInterface",
    "StorageError",
    # Transport services
    "OutboxTransport",
    "TransportError",
    "TransportInterface",
]
