"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of conversations and ledger writes
2. Debugging capability
3. A record of writes that only partially applied
4. Compliance readiness

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from coperacha.models.audit import AuditEvent, AuditEventBuilder
from coperacha.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # =========================================================================
    # CONVERSATION
    # =========================================================================

    async def log_session_started(
        self,
        identity: str,
        registered: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_started(
            identity=identity,
            registered=registered,
            correlation_id=correlation_id,
        ))

    async def log_session_exited(
        self,
        identity: str,
        previous_state: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.session_exited(
            identity=identity,
            previous_state=previous_state,
            correlation_id=correlation_id,
        ))

    async def log_session_expired(
        self,
        identity: str,
        previous_state: str,
    ) -> None:
        await self.log(AuditEventBuilder.session_expired(
            identity=identity,
            previous_state=previous_state,
        ))

    async def log_registration_completed(
        self,
        identity: str,
        address: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.registration_completed(
            identity=identity,
            address=address,
            correlation_id=correlation_id,
        ))

    async def log_registration_failed(
        self,
        identity: str,
        error_message: str,
        field: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.registration_failed(
            identity=identity,
            error_message=error_message,
            field=field,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # COMMUNITY WALLETS
    # =========================================================================

    async def log_wallet_creation_confirmed(
        self,
        identity: str,
        name: str,
        members: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log that the user said yes to the creation summary."""
        await self.log(AuditEventBuilder.wallet_creation_confirmed(
            identity=identity,
            name=name,
            members=members,
            correlation_id=correlation_id,
        ))

    async def log_wallet_created(
        self,
        wallet_address: str,
        tx_hash: str,
        members: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.wallet_created(
            wallet_address=wallet_address,
            tx_hash=tx_hash,
            members=members,
            correlation_id=correlation_id,
        ))

    async def log_wallet_creation_failed(
        self,
        creator: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.wallet_creation_failed(
            creator=creator,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_membership_link_failed(
        self,
        wallet_address: str,
        members: list[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Log a wallet that exists on the ledger but is missing from
        its members' records. Nobody reconciles this automatically.
        """
        await self.log(AuditEventBuilder.membership_link_failed(
            wallet_address=wallet_address,
            members=members,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_proposal_submitted(
        self,
        wallet_address: str,
        proposal_type: str,
        tx_hash: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.proposal_submitted(
            wallet_address=wallet_address,
            proposal_type=proposal_type,
            tx_hash=tx_hash,
            correlation_id=correlation_id,
        ))

    async def log_proposal_confirmed(
        self,
        wallet_address: str,
        proposal_id: int,
        member: str,
        tx_hash: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.proposal_confirmed(
            wallet_address=wallet_address,
            proposal_id=proposal_id,
            member=member,
            tx_hash=tx_hash,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # READ SIDE
    # =========================================================================

    async def log_query_executed(
        self,
        query_type: str,
        subject: str,
        failed_sections: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log query execution."""
        await self.log(AuditEventBuilder.query_executed(
            query_type=query_type,
            subject=subject,
            failed_sections=failed_sections,
            correlation_id=correlation_id,
        ))

    async def log_subquery_failed(
        self,
        section: str,
        subject: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.subquery_failed(
            section=section,
            subject=subject,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_capability_unsupported(
        self,
        method: str,
        subject: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.capability_unsupported(
            method=method,
            subject=subject,
            correlation_id=correlation_id,
        ))

    async def log_exchange_rate_updated(self, previous: str, current: str) -> None:
        await self.log(AuditEventBuilder.exchange_rate_updated(
            previous=previous,
            current=current,
        ))

    # =========================================================================
    # ERRORS
    # =========================================================================

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this when an inbound message arrives.
    Pass it through all subsequent operations.
    """
    return uuid4()
