"""
Audit Models for Coperacha

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of conversations and ledger writes
2. Debugging information when things go wrong
3. A record of writes that only partially applied

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step that changes a session, the record store or the ledger
    has its own event type.
    """
    # Conversation lifecycle
    SESSION_STARTED = "session_started"
    SESSION_EXITED = "session_exited"
    SESSION_EXPIRED = "session_expired"

    # Registration
    REGISTRATION_COMPLETED = "registration_completed"
    REGISTRATION_FAILED = "registration_failed"

    # Community wallets
    WALLET_CREATION_CONFIRMED = "wallet_creation_confirmed"
    WALLET_CREATED = "wallet_created"
    WALLET_CREATION_FAILED = "wallet_creation_failed"
    MEMBERSHIP_LINK_FAILED = "membership_link_failed"

    # Proposals
    PROPOSAL_SUBMITTED = "proposal_submitted"
    PROPOSAL_CONFIRMED = "proposal_confirmed"

    # Read side
    QUERY_EXECUTED = "query_executed"
    SUBQUERY_FAILED = "subquery_failed"
    CAPABILITY_UNSUPPORTED = "capability_unsupported"

    # Configuration
    EXCHANGE_RATE_UPDATED = "exchange_rate_updated"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'session', 'wallet', 'proposal')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Identity, address or tx hash the event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one inbound message)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # User action tracking
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.session_expired(identity)
        event = AuditEventBuilder.wallet_created(wallet, tx_hash, members, correlation_id)
    """

    @staticmethod
    def session_started(
        identity: str,
        registered: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_STARTED,
            entity_type="session",
            entity_id=identity,
            correlation_id=correlation_id,
            description="Conversation started",
            details={"registered": registered},
            is_user_action=True,
        )

    @staticmethod
    def session_exited(
        identity: str,
        previous_state: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_EXITED,
            entity_type="session",
            entity_id=identity,
            correlation_id=correlation_id,
            description="User left the conversation",
            details={"previous_state": previous_state},
            is_user_action=True,
        )

    @staticmethod
    def session_expired(
        identity: str,
        previous_state: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_EXPIRED,
            entity_type="session",
            entity_id=identity,
            description="Session expired after inactivity",
            details={"previous_state": previous_state},
        )

    @staticmethod
    def registration_completed(
        identity: str,
        address: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REGISTRATION_COMPLETED,
            entity_type="identity",
            entity_id=identity,
            correlation_id=correlation_id,
            description="Identity registered with a primary address",
            details={"address": address},
            is_user_action=True,
        )

    @staticmethod
    def registration_failed(
        identity: str,
        error_message: str,
        field: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REGISTRATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="identity",
            entity_id=identity,
            correlation_id=correlation_id,
            description="Registration could not be stored",
            error_message=error_message,
            details={"field": field} if field else {},
        )

    @staticmethod
    def wallet_creation_confirmed(
        identity: str,
        name: str,
        members: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_CREATION_CONFIRMED,
            entity_type="session",
            entity_id=identity,
            correlation_id=correlation_id,
            description=f"User confirmed community wallet '{name}'",
            details={"name": name, "member_count": len(members)},
            is_user_action=True,
        )

    @staticmethod
    def wallet_created(
        wallet_address: str,
        tx_hash: str,
        members: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            entity_type="wallet",
            entity_id=wallet_address,
            correlation_id=correlation_id,
            description="Community wallet created on the ledger",
            details={"tx_hash": tx_hash, "members": members},
        )

    @staticmethod
    def wallet_creation_failed(
        creator: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_CREATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="wallet",
            entity_id=creator,
            correlation_id=correlation_id,
            description="Community wallet creation failed",
            error_message=error_message,
        )

    @staticmethod
    def membership_link_failed(
        wallet_address: str,
        members: list[str],
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBERSHIP_LINK_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="wallet",
            entity_id=wallet_address,
            correlation_id=correlation_id,
            description="Wallet exists on the ledger but members were not linked in the store",
            error_message=error_message,
            details={"members": members},
        )

    @staticmethod
    def proposal_submitted(
        wallet_address: str,
        proposal_type: str,
        tx_hash: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSAL_SUBMITTED,
            entity_type="wallet",
            entity_id=wallet_address,
            correlation_id=correlation_id,
            description=f"{proposal_type.replace('_', ' ').capitalize()} proposal submitted",
            details={"proposal_type": proposal_type, "tx_hash": tx_hash},
        )

    @staticmethod
    def proposal_confirmed(
        wallet_address: str,
        proposal_id: int,
        member: str,
        tx_hash: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPOSAL_CONFIRMED,
            entity_type="wallet",
            entity_id=wallet_address,
            correlation_id=correlation_id,
            description=f"Proposal #{proposal_id} confirmed by {member}",
            details={"proposal_id": proposal_id, "member": member, "tx_hash": tx_hash},
        )

    @staticmethod
    def query_executed(
        query_type: str,
        subject: str,
        failed_sections: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            entity_type="query",
            entity_id=subject,
            correlation_id=correlation_id,
            description=f"Query executed: {query_type}",
            details={
                "query_type": query_type,
                "failed_sections": failed_sections,
            },
        )

    @staticmethod
    def subquery_failed(
        section: str,
        subject: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBQUERY_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="query",
            entity_id=subject,
            correlation_id=correlation_id,
            description=f"Sub-query '{section}' failed, substituted empty result",
            error_message=error_message,
            details={"section": section},
        )

    @staticmethod
    def capability_unsupported(
        method: str,
        subject: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CAPABILITY_UNSUPPORTED,
            severity=AuditSeverity.WARNING,
            entity_type="query",
            entity_id=subject,
            correlation_id=correlation_id,
            description=f"Ledger node does not support {method}",
            details={"method": method},
        )

    @staticmethod
    def exchange_rate_updated(
        previous: str,
        current: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXCHANGE_RATE_UPDATED,
            entity_type="config",
            entity_id="exchange_rate",
            description=f"Exchange rate changed from {previous} to {current}",
            details={"previous": previous, "current": current},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
