"""
Shared fixtures for Coperacha tests.

Uses an in-memory FakeLedger, the in-memory record store and the
outbox transport, so no test touches a node or a spreadsheet.
"""

from types import SimpleNamespace
from typing import Any, Optional

import pytest
import pytest_asyncio

from coperacha.aggregation import ExchangeRateService, FinancialAggregator
from coperacha.audit import AuditLogger
from coperacha.dialogue import DialogueEngine
from coperacha.models.identity import IdentityRecord
from coperacha.models.ledger import LedgerReceipt
from coperacha.services.ledger import LedgerClientInterface, LedgerError
from coperacha.services.ledger.contracts import (
    CREATE_WALLET,
    GET_BALANCE,
    WALLET_CREATED_EVENT,
)
from coperacha.services.storage import InMemoryAuditStorage, InMemoryRecordStore
from coperacha.services.transport import OutboxTransport
from coperacha.sessions import SessionRegistry
from coperacha.workflows import CommunityWalletWorkflow, ProposalWorkflow

WEI = 10 ** 18

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
FACTORY = "0x" + "f0" * 20
WALLET_ONE = "0x" + "11" * 20
WALLET_TWO = "0x" + "22" * 20
NEW_WALLET = "0x" + "99" * 20


class FakeLedger(LedgerClientInterface):
    """
    Dictionary-driven ledger.

    Reads are looked up by (contract, method, first_arg) and then by
    (contract, method). A stored exception is raised; a callable is
    called with the args; anything else is returned as is.
    """

    def __init__(self):
        self.responses: dict[tuple, Any] = {}
        self.write_responses: dict[str, Any] = {}
        self.reads: list[tuple[Optional[str], str, list]] = []
        self.writes: list[tuple[str, str, list]] = []

    def on_read(self, contract: Optional[str], method: str, value: Any, arg: Any = None) -> None:
        key = (contract, method) if arg is None else (contract, method, arg)
        self.responses[key] = value

    def set_balance(self, address: str, wei: int) -> None:
        self.on_read(None, GET_BALANCE, hex(wei), arg=address)

    @staticmethod
    def _first_arg(args: list) -> Any:
        if not args:
            return None
        first = args[0]
        return first if isinstance(first, (str, int)) else None

    async def read(self, contract_address, method, args=None):
        args = list(args or [])
        self.reads.append((contract_address, method, args))

        key = (contract_address, method, self._first_arg(args))
        if key in self.responses:
            value = self.responses[key]
        elif (contract_address, method) in self.responses:
            value = self.responses[(contract_address, method)]
        else:
            raise LedgerError(f"No fake response for {contract_address} {method} {args}")

        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(args)
        return value

    async def write(self, contract_address, method, args=None):
        args = list(args or [])
        self.writes.append((contract_address, method, args))
        value = self.write_responses.get(method)
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, LedgerReceipt):
            return value
        return LedgerReceipt(tx_hash=f"0x{len(self.writes):064x}", block_number=1)


def wallet_created_receipt(wallet_address: str = NEW_WALLET) -> LedgerReceipt:
    return LedgerReceipt(
        tx_hash="0x" + "ab" * 32,
        block_number=42,
        events={WALLET_CREATED_EVENT: [{"walletAddress": wallet_address}]},
    )


@pytest.fixture
def ledger() -> FakeLedger:
    fake = FakeLedger()
    fake.write_responses[CREATE_WALLET] = wallet_created_receipt()
    return fake


@pytest.fixture
def alice() -> IdentityRecord:
    return IdentityRecord(
        phone="50411110000",
        name="Alice",
        email="alice@example.com",
        address=ALICE,
        wallets=[WALLET_ONE, WALLET_TWO],
    )


@pytest.fixture
def bob() -> IdentityRecord:
    return IdentityRecord(
        phone="50422220000",
        name="Bob",
        email="bob@example.com",
        address=BOB,
        wallets=[WALLET_ONE],
    )


@pytest.fixture
def store(alice, bob) -> InMemoryRecordStore:
    return InMemoryRecordStore([alice, bob])


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def rates(store, audit_logger) -> ExchangeRateService:
    return ExchangeRateService(store, audit_logger, fallback=80000)


@pytest.fixture
def aggregator(store, ledger, rates, audit_logger) -> FinancialAggregator:
    return FinancialAggregator(store, ledger, rates=rates, audit_logger=audit_logger)


@pytest.fixture
def wallet_workflow(store, ledger, audit_logger) -> CommunityWalletWorkflow:
    return CommunityWalletWorkflow(store, ledger, FACTORY, audit_logger=audit_logger)


@pytest.fixture
def proposal_workflow(ledger, rates, audit_logger) -> ProposalWorkflow:
    return ProposalWorkflow(ledger, rates, audit_logger=audit_logger)


@pytest_asyncio.fixture
async def bot(store, ledger, aggregator, wallet_workflow, audit_logger, audit_storage):
    """A dialogue engine wired to in-memory collaborators."""
    registry = SessionRegistry(timeout_seconds=60)
    transport = OutboxTransport()
    engine = DialogueEngine(
        registry,
        store,
        aggregator,
        wallet_workflow,
        transport,
        audit_logger=audit_logger,
    )
    yield SimpleNamespace(
        engine=engine,
        registry=registry,
        transport=transport,
        store=store,
        ledger=ledger,
        audit_storage=audit_storage,
    )
    await registry.close()
