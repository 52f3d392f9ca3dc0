"""
Tests for component wiring and the inbound message loop.
"""

import asyncio

import pytest

from coperacha.dialogue import messages
from coperacha.models.audit import AuditEventType
from coperacha.models.identity import IdentityRecord
from coperacha.models.session import DialogueState
from coperacha.orchestrator import BotRuntime, create_app_components
from coperacha.services.ledger.contracts import (
    CONFIRM_PROPOSAL,
    CREATE_PROPOSAL,
    GET_ALL_WALLETS,
    GET_TRANSACTIONS,
)
from coperacha.services.storage import InMemoryRecordStore
from coperacha.validation import ValidationError

from conftest import FakeLedger

WALLET = "0x" + "11" * 20
MEMBER = "0x" + "a1" * 20
OTHER = "0x" + "c3" * 20


async def inbound(*items):
    for item in items:
        yield item
        await asyncio.sleep(0)


class TestCreateAppComponents:
    """create_app_components without Sheets or a node."""

    @pytest.mark.asyncio
    async def test_in_memory_wiring(self):
        ledger = FakeLedger()
        components = create_app_components(use_storage=False, ledger=ledger)
        try:
            assert isinstance(components.store, InMemoryRecordStore)
            assert components.ledger is ledger
            assert components.sheets_client is None
            assert isinstance(components.runtime, BotRuntime)
            assert set(components.engine.handled_states) == set(DialogueState)
        finally:
            await components.runtime.close()


class TestBotRuntime:
    """Inbound stream processing."""

    @pytest.mark.asyncio
    async def test_run_processes_every_message_in_order(self):
        components = create_app_components(use_storage=False, ledger=FakeLedger())
        try:
            await components.runtime.run(inbound(
                ("50499990000", "hola"),
                ("50488880000", "hola"),
                ("50499990000", "no"),
            ))

            assert components.transport.history("50499990000") == [
                messages.NOT_REGISTERED,
                messages.ASK_REGISTRATION,
                messages.REGISTRATION_DECLINED,
            ]
            assert components.registry.get("50488880000").state == DialogueState.ASK_REGISTRATION
        finally:
            await components.runtime.close()

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_contained(self, monkeypatch):
        components = create_app_components(use_storage=False, ledger=FakeLedger())

        async def broken(identity, text, correlation_id=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(components.engine, "handle_message", broken)
        try:
            assert await components.runtime.handle("50499990000", "hola") == []

            events = await components.audit_storage.get_recent_events()
            assert events[0].event_type == AuditEventType.SYSTEM_ERROR
            assert events[0].error_message == "boom"
        finally:
            await components.runtime.close()


class TestAdminOperations:
    """What the console's community wallet page calls, on wired components."""

    @pytest.mark.asyncio
    async def test_wallet_lookups(self):
        ledger = FakeLedger()
        ledger.on_read("", GET_ALL_WALLETS, ["0x" + "AB" * 20, WALLET])
        ledger.on_read(None, GET_TRANSACTIONS, {"transactions": []})
        components = create_app_components(use_storage=False, ledger=ledger)
        try:
            await components.store.insert(IdentityRecord(
                phone="50411110000", name="Ana", email="ana@example.com", address=MEMBER,
            ))

            assert await components.wallet_workflow.list_all_wallets() == ["0x" + "ab" * 20, WALLET]
            assert await components.wallet_workflow.is_address_registered(MEMBER)
            assert not await components.wallet_workflow.is_address_registered(OTHER)
            assert await components.aggregator.recent_transactions(WALLET, limit=200) == []

            args = [a for _, m, a in ledger.reads if m == GET_TRANSACTIONS][0][0]
            assert args["perPage"] == 50
        finally:
            await components.runtime.close()

    @pytest.mark.asyncio
    async def test_proposals_reach_the_ledger(self):
        ledger = FakeLedger()
        components = create_app_components(use_storage=False, ledger=ledger)
        try:
            await components.proposal_workflow.propose_member(WALLET, OTHER, MEMBER, "Sumar a Carol")
            receipt = await components.proposal_workflow.confirm_proposal(WALLET, 0, MEMBER)

            assert [(c, m) for c, m, _ in ledger.writes] == [
                (WALLET, CREATE_PROPOSAL),
                (WALLET, CONFIRM_PROPOSAL),
            ]
            assert receipt.tx_hash

            with pytest.raises(ValidationError):
                await components.proposal_workflow.propose_expense(WALLET, "0x12", MEMBER, "1", "Hotel")
        finally:
            await components.runtime.close()
