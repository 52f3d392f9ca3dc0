"""
Main Orchestrator for Coperacha

This module ties together all the components:
1. Storage (Google Sheets, or in-memory when not configured)
2. Ledger client
3. Audit logger
4. Aggregation, workflows and the dialogue engine

and defines the inbound message loop.

DESIGN DECISION: Each inbound message becomes its own task. The
runtime never waits for one person's reply before reading the next
message; ordering per person is the session registry's job.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import structlog

from coperacha.aggregation import ExchangeRateService, FinancialAggregator
from coperacha.audit import AuditLogger, create_correlation_id
from coperacha.config import get_settings
from coperacha.dialogue import DialogueEngine
from coperacha.services.ledger import LedgerClientInterface, Web3LedgerClient
from coperacha.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    RecordStoreInterface,
)
from coperacha.services.transport import OutboxTransport, TransportInterface
from coperacha.sessions import SessionRegistry
from coperacha.workflows import CommunityWalletWorkflow, ProposalWorkflow

logger = structlog.get_logger(__name__)


class BotRuntime:
    """
    Feeds inbound chat messages to the dialogue engine.

    Usage:
        runtime = BotRuntime(components.engine, components.registry, audit_logger)
        await runtime.run(inbound)   # inbound yields (identity, text)
    """

    def __init__(
        self,
        engine: DialogueEngine,
        registry: SessionRegistry,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._engine = engine
        self._registry = registry
        self._audit_logger = audit_logger
        self._tasks: set[asyncio.Task] = set()

    async def handle(self, identity: str, text: str) -> list[str]:
        """
        Process one message; errors are logged and audited, never raised.

        Returns:
            The replies sent, or [] if the message could not be handled
        """
        correlation_id = create_correlation_id()
        try:
            return await self._engine.handle_message(identity, text, correlation_id)
        except Exception as e:
            logger.exception("message_handling_failed", identity=identity)
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"identity": identity},
                    correlation_id=correlation_id,
                )
            return []

    def dispatch(self, identity: str, text: str) -> asyncio.Task:
        """Schedule a message without waiting for its replies."""
        task = asyncio.create_task(self.handle(identity, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self, inbound: AsyncIterator[tuple[str, str]]) -> None:
        """Consume the inbound stream until it ends, then drain pending work."""
        async for identity, text in inbound:
            self.dispatch(identity, text)
        await self.drain()

    async def drain(self) -> None:
        """Wait for every dispatched message to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        await self.drain()
        await self._registry.close()


@dataclass
class AppComponents:
    """Everything create_app_components wires together."""
    store: RecordStoreInterface
    audit_storage: AuditStorageInterface
    audit_logger: AuditLogger
    ledger: LedgerClientInterface
    rates: ExchangeRateService
    aggregator: FinancialAggregator
    wallet_workflow: CommunityWalletWorkflow
    proposal_workflow: ProposalWorkflow
    registry: SessionRegistry
    transport: TransportInterface
    engine: DialogueEngine
    runtime: BotRuntime
    sheets_client: Optional[GoogleSheetsClient] = None


def create_app_components(
    use_storage: bool = True,
    ledger: Optional[LedgerClientInterface] = None,
    transport: Optional[TransportInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Must be called from inside the event loop that will run them.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.
        ledger: Ledger client to use instead of the configured node
        transport: Transport to use instead of the in-memory outbox

    Raises:
        pydantic.ValidationError: If the ledger is not configured and
            no ledger was given
    """
    settings = get_settings()
    sheets_client = None
    store: RecordStoreInterface = InMemoryRecordStore()
    audit_storage: AuditStorageInterface = InMemoryAuditStorage()

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsRecordStore(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            store = InMemoryRecordStore()
            audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)
    ledger_settings = settings.ledger if ledger is None else None
    ledger = ledger or Web3LedgerClient()

    rates = ExchangeRateService(store, audit_logger)
    aggregator_kwargs = {}
    if ledger_settings is not None:
        aggregator_kwargs = {
            "transfers_page_size": ledger_settings.transfers_page_size,
            "dashboard_transfers_page_size": ledger_settings.dashboard_transfers_page_size,
        }
    aggregator = FinancialAggregator(
        store,
        ledger,
        rates=rates,
        audit_logger=audit_logger,
        **aggregator_kwargs,
    )

    factory_address = ledger_settings.factory_address if ledger_settings else ""
    wallet_workflow = CommunityWalletWorkflow(
        store,
        ledger,
        factory_address=factory_address,
        audit_logger=audit_logger,
    )
    proposal_workflow = ProposalWorkflow(ledger, rates, audit_logger=audit_logger)

    registry = SessionRegistry()
    transport = transport or OutboxTransport()
    engine = DialogueEngine(
        registry,
        store,
        aggregator,
        wallet_workflow,
        transport,
        audit_logger=audit_logger,
    )
    runtime = BotRuntime(engine, registry, audit_logger)

    logger.info(
        "app_components_created",
        storage="google_sheets" if sheets_client else "memory",
        ledger=type(ledger).__name__,
    )
    return AppComponents(
        store=store,
        audit_storage=audit_storage,
        audit_logger=audit_logger,
        ledger=ledger,
        rates=rates,
        aggregator=aggregator,
        wallet_workflow=wallet_workflow,
        proposal_workflow=proposal_workflow,
        registry=registry,
        transport=transport,
        engine=engine,
        runtime=runtime,
        sheets_client=sheets_client,
    )
