"""
Data Models Package

This package contains all Pydantic models used in the Coperacha system.
All data flowing through the system must conform to these schemas.
"""

from coperacha.models.identity import (
    CommunityWalletDraft,
    IdentityRecord,
    WalletCreationResult,
)
from coperacha.models.session import (
    ALLOWED_TRANSITIONS,
    DialogueState,
    InvalidTransitionError,
    Session,
    SessionData,
)
from coperacha.models.finance import (
    Amount,
    BalanceSummary,
    ContributionReport,
    MemberContribution,
    Proposal,
    ProposalCounts,
    ProposalHistory,
    ProposalStatus,
    ProposalType,
    SubQueryResult,
    SubQueryStatus,
    TransactionDirection,
    TransactionRecord,
    WalletBalance,
    WalletDashboard,
)
from coperacha.models.ledger import LedgerReceipt
from coperacha.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Identity models
    "CommunityWalletDraft",
    "IdentityRecord",
    "WalletCreationResult",
    # Session models
    "ALLOWED_TRANSITIONS",
    "DialogueState",
    "InvalidTransitionError",
    "Session",
    "SessionData",
    # Financial views
    "Amount",
    "BalanceSummary",
    "ContributionReport",
    "MemberContribution",
    "Proposal",
    "ProposalCounts",
    "ProposalHistory",
    "ProposalStatus",
    "ProposalType",
    "SubQueryResult",
    "SubQueryStatus",
    "TransactionDirection",
    "TransactionRecord",
    "WalletBalance",
    "WalletDashboard",
    # Ledger
    "LedgerReceipt",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
