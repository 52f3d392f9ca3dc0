"""
Tests for the financial aggregator.

The ledger is a FakeLedger; each test sets only the reads it needs,
so any read left unset behaves like an unreachable node.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from coperacha.aggregation import FinancialAggregator, NotRegisteredError
from coperacha.models.audit import AuditEventType
from coperacha.models.finance import (
    ProposalStatus,
    ProposalType,
    SubQueryStatus,
    TransactionDirection,
)
from coperacha.models.identity import IdentityRecord
from coperacha.services.ledger import LedgerError, UnsupportedCapabilityError
from coperacha.services.ledger.contracts import (
    GET_BLOCK_BY_NUMBER,
    GET_PROPOSAL,
    GET_TRANSACTIONS,
    GET_TRANSFERS,
    PROPOSAL_COUNT,
    WALLET_BALANCE,
)

from conftest import ALICE, BOB, CAROL, FakeLedger, WALLET_ONE, WALLET_TWO, WEI

ALICE_PHONE = "50411110000"
DEADLINE = 1_900_000_000
BLOCK_TIME = 1_700_000_000


def proposal(status: int, kind: int = 0, amount: int = WEI, confirmations: int = 1) -> list:
    return [CAROL, amount, "Pago", DEADLINE, confirmations, kind, status]


def set_proposals(ledger: FakeLedger, wallet: str, raws: list) -> None:
    ledger.on_read(wallet, PROPOSAL_COUNT, len(raws))
    for index, raw in enumerate(raws):
        ledger.on_read(wallet, GET_PROPOSAL, raw, arg=index)


def event_types(events) -> list[AuditEventType]:
    return [e.event_type for e in events]


class TestPersonalAndCommunityBalance:
    """Personal balance plus linked community wallets."""

    @pytest.mark.asyncio
    async def test_failing_wallet_contributes_zero(self, aggregator, ledger, audit_storage):
        ledger.set_balance(ALICE, 2 * WEI)
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, 3 * WEI)
        ledger.on_read(WALLET_TWO, WALLET_BALANCE, LedgerError("node timeout"))

        summary = await aggregator.personal_and_community_balance(ALICE_PHONE)

        assert summary.personal.wei == 2 * WEI
        assert summary.community_total.wei == 3 * WEI
        assert summary.community_total.local == Decimal("240000.00")
        assert summary.failed_wallets == [WALLET_TWO]
        assert summary.wallets[1].amount.wei == 0

        events = event_types(await audit_storage.get_recent_events())
        assert AuditEventType.SUBQUERY_FAILED in events
        assert AuditEventType.QUERY_EXECUTED in events

    @pytest.mark.asyncio
    async def test_personal_failure_propagates(self, aggregator, ledger):
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, WEI)
        ledger.on_read(WALLET_TWO, WALLET_BALANCE, WEI)

        with pytest.raises(LedgerError):
            await aggregator.personal_and_community_balance(ALICE_PHONE)

    @pytest.mark.asyncio
    async def test_unknown_identity(self, aggregator):
        with pytest.raises(NotRegisteredError):
            await aggregator.personal_and_community_balance("000")

    @pytest.mark.asyncio
    async def test_identity_without_address(self, aggregator, store):
        await store.insert(IdentityRecord(phone="555", name="Sin Wallet", email="sin@example.com"))
        with pytest.raises(NotRegisteredError):
            await aggregator.personal_and_community_balance("555")

    @pytest.mark.asyncio
    async def test_no_linked_wallets(self, aggregator, ledger, store):
        await store.insert(IdentityRecord(phone="555", name="Carol", email="c@example.com", address=CAROL))
        ledger.set_balance(CAROL, WEI)

        summary = await aggregator.personal_and_community_balance("555")

        assert summary.personal.native == Decimal(1)
        assert summary.community_total.wei == 0
        assert summary.wallets == []

    @pytest.mark.asyncio
    async def test_rate_is_read_once(self, aggregator, ledger, rates, monkeypatch):
        calls = []
        original = rates.get_rate

        async def counting_get_rate():
            calls.append(1)
            return await original()

        monkeypatch.setattr(rates, "get_rate", counting_get_rate)
        ledger.set_balance(ALICE, WEI)
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, WEI)
        ledger.on_read(WALLET_TWO, WALLET_BALANCE, WEI)

        await aggregator.personal_and_community_balance(ALICE_PHONE)
        assert len(calls) == 1


class TestDashboard:
    """Community wallet dashboard."""

    @pytest.mark.asyncio
    async def test_all_sections_ok(self, aggregator, ledger):
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, 4 * WEI)
        set_proposals(ledger, WALLET_ONE, [proposal(0), proposal(1), proposal(2), proposal(1)])
        ledger.on_read(None, GET_TRANSFERS, {"transfers": [
            {"from": BOB, "value": str(WEI)},
            {"from": ALICE, "value": str(2 * WEI)},
        ]})
        ledger.on_read(None, GET_TRANSACTIONS, {"transactions": [
            {"hash": "0x" + "01" * 32, "blockNumber": "0x10", "from": BOB, "to": WALLET_ONE, "value": hex(WEI)},
            {"hash": "0x" + "02" * 32, "blockNumber": "0x11", "from": WALLET_ONE, "to": CAROL, "value": hex(WEI)},
        ]})
        ledger.on_read(None, GET_BLOCK_BY_NUMBER, {"timestamp": hex(BLOCK_TIME)})

        view = await aggregator.dashboard(WALLET_ONE)

        assert view.balance.value.wei == 4 * WEI
        assert {m.phone for m in view.members.value} == {"50411110000", "50422220000"}

        counts = view.proposals.value
        assert (counts.total, counts.pending, counts.executed, counts.expired) == (4, 1, 2, 1)

        assert [c.address for c in view.top_contributors.value] == [ALICE, BOB]

        transactions = view.recent_transactions.value
        assert [t.direction for t in transactions] == [
            TransactionDirection.INCOMING,
            TransactionDirection.OUTGOING,
        ]
        assert transactions[0].timestamp == datetime.fromtimestamp(BLOCK_TIME, tz=timezone.utc)

    @pytest.mark.asyncio
    async def test_reachable_wallet_while_other_is_down(self, aggregator, ledger):
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, WEI)
        ledger.on_read(WALLET_TWO, WALLET_BALANCE, LedgerError("unreachable"))

        view = await aggregator.dashboard(WALLET_ONE)

        assert view.balance.succeeded
        assert view.balance.value.wei > 0
        assert len(view.members.value) == 2

    @pytest.mark.asyncio
    async def test_failed_sections_get_substitutes(self, aggregator, ledger, audit_storage):
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, WEI)
        ledger.on_read(WALLET_ONE, PROPOSAL_COUNT, LedgerError("boom"))
        ledger.on_read(None, GET_TRANSFERS, UnsupportedCapabilityError(GET_TRANSFERS))
        ledger.on_read(None, GET_TRANSACTIONS, UnsupportedCapabilityError(GET_TRANSACTIONS))

        view = await aggregator.dashboard(WALLET_ONE)

        assert view.balance.succeeded
        assert view.proposals.status == SubQueryStatus.FAILED
        assert view.proposals.value.total == 0
        assert view.top_contributors.status == SubQueryStatus.UNSUPPORTED
        assert view.top_contributors.value == []
        assert view.recent_transactions.status == SubQueryStatus.UNSUPPORTED

        events = event_types(await audit_storage.get_recent_events())
        assert AuditEventType.CAPABILITY_UNSUPPORTED in events
        assert AuditEventType.SUBQUERY_FAILED in events

    @pytest.mark.asyncio
    async def test_undecodable_proposals_are_skipped_in_counts(self, aggregator, ledger):
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, WEI)
        set_proposals(ledger, WALLET_ONE, [proposal(0), proposal(7), ["too", "short"]])

        view = await aggregator.dashboard(WALLET_ONE)

        counts = view.proposals.value
        assert view.proposals.succeeded
        assert counts.total == 3
        assert counts.pending == 1
        assert counts.executed == counts.expired == 0

    @pytest.mark.asyncio
    async def test_top_contributors_are_limited(self, aggregator, ledger):
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, WEI)
        transfers = [
            {"from": "0x" + f"{i:02x}" * 20, "value": str((i + 1) * WEI)}
            for i in range(8)
        ]
        ledger.on_read(None, GET_TRANSFERS, {"data": transfers})

        view = await aggregator.dashboard(WALLET_ONE)

        contributors = view.top_contributors.value
        assert len(contributors) == 5
        assert contributors[0].total.wei == 8 * WEI

    @pytest.mark.asyncio
    async def test_dashboard_requests_smaller_transfer_page(self, aggregator, ledger):
        ledger.on_read(None, GET_TRANSFERS, {"transfers": []})
        await aggregator.dashboard(WALLET_ONE)

        transfer_reads = [args for _, method, args in ledger.reads if method == GET_TRANSFERS]
        assert transfer_reads[0][0]["perPage"] == 50
        assert transfer_reads[0][0]["direction"] == "incoming"


class TestContributions:
    """Full contribution report."""

    @pytest.mark.asyncio
    async def test_grouped_and_ranked(self, aggregator, ledger):
        ledger.on_read(None, GET_TRANSFERS, {"transfers": [
            {"from": BOB, "value": str(WEI)},
            {"from": CAROL, "value": str(5 * WEI)},
            {"fromAddress": BOB.upper().replace("0X", "0x"), "valueWei": str(WEI)},
        ]})

        report = await aggregator.contributions(WALLET_ONE)

        assert [(c.address, c.total.wei) for c in report.contributions] == [
            (CAROL, 5 * WEI),
            (BOB, 2 * WEI),
        ]
        args = [a for _, m, a in ledger.reads if m == GET_TRANSFERS][0][0]
        assert args["perPage"] == 100

    @pytest.mark.asyncio
    async def test_unsupported_is_raised_and_audited(self, aggregator, ledger, audit_storage):
        ledger.on_read(None, GET_TRANSFERS, UnsupportedCapabilityError(GET_TRANSFERS))

        with pytest.raises(UnsupportedCapabilityError):
            await aggregator.contributions(WALLET_ONE)

        events = event_types(await audit_storage.get_recent_events())
        assert AuditEventType.CAPABILITY_UNSUPPORTED in events


class TestProposalHistory:
    """Proposal list and latest transactions."""

    @pytest.mark.asyncio
    async def test_proposals_are_decoded(self, aggregator, ledger):
        set_proposals(ledger, WALLET_ONE, [proposal(0, kind=0, amount=2 * WEI), proposal(2, kind=1, amount=0)])
        ledger.on_read(None, GET_TRANSACTIONS, {"transactions": []})

        history = await aggregator.proposal_history(WALLET_ONE)

        assert history.total_proposals == 2
        first, second = history.proposals.value
        assert first.id == 0
        assert first.type == ProposalType.EXPENSE
        assert first.status == ProposalStatus.PENDING
        assert first.amount.native == Decimal(2)
        assert first.recipient == CAROL
        assert second.type == ProposalType.MEMBERSHIP_CHANGE
        assert second.status == ProposalStatus.EXPIRED
        assert history.recent_transactions.succeeded

    @pytest.mark.asyncio
    async def test_one_unreadable_proposal_fails_the_section(self, aggregator, ledger):
        ledger.on_read(WALLET_ONE, PROPOSAL_COUNT, 2)
        ledger.on_read(WALLET_ONE, GET_PROPOSAL, proposal(0), arg=0)
        ledger.on_read(WALLET_ONE, GET_PROPOSAL, LedgerError("reverted"), arg=1)
        ledger.on_read(None, GET_TRANSACTIONS, {"transactions": []})

        history = await aggregator.proposal_history(WALLET_ONE)

        assert history.proposals.status == SubQueryStatus.FAILED
        assert history.proposals.value == []
        assert history.total_proposals == 0
        assert history.recent_transactions.succeeded


class TestRecentTransactions:
    """Latest transactions of any address."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested,expected", [(500, 50), (0, 1), (-3, 1), (6, 6)])
    async def test_limit_is_clamped(self, aggregator, ledger, requested, expected):
        ledger.on_read(None, GET_TRANSACTIONS, {"transactions": []})

        await aggregator.recent_transactions(ALICE, limit=requested)

        args = [a for _, m, a in ledger.reads if m == GET_TRANSACTIONS][0][0]
        assert args["perPage"] == expected
        assert args["sort"] == "desc"

    @pytest.mark.asyncio
    async def test_missing_block_time_falls_back_to_now(self, aggregator, ledger):
        ledger.on_read(None, GET_TRANSACTIONS, {"data": [
            {"transactionHash": "0x" + "0a" * 32, "block": 77, "from": ALICE, "to": BOB, "value": "0"},
        ]})
        ledger.on_read(None, GET_BLOCK_BY_NUMBER, LedgerError("pruned"))
        before = datetime.now(timezone.utc)

        records = await aggregator.recent_transactions(ALICE)

        assert len(records) == 1
        assert records[0].direction == TransactionDirection.OUTGOING
        assert records[0].timestamp >= before
        assert records[0].age.startswith("hace ")


class SlowLedger(FakeLedger):
    """Records how many reads are in flight at once."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def read(self, contract_address, method, args=None):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().read(contract_address, method, args)
        finally:
            self.in_flight -= 1


class TestConcurrencyBound:
    """Fan-out never exceeds max_concurrent_queries."""

    @pytest.mark.asyncio
    async def test_peak_reads_are_bounded(self, store, rates, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENT_QUERIES", "2")
        ledger = SlowLedger()
        set_proposals(ledger, WALLET_ONE, [proposal(0)] * 10)
        aggregator = FinancialAggregator(store, ledger, rates=rates)

        history = await aggregator.proposal_history(WALLET_ONE)

        assert history.proposals.succeeded
        assert len(history.proposals.value) == 10
        assert ledger.peak <= 2

    @pytest.mark.asyncio
    async def test_nested_dashboard_reads_share_one_bound(self, store, rates, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENT_QUERIES", "3")
        ledger = SlowLedger()
        ledger.on_read(WALLET_ONE, WALLET_BALANCE, WEI)
        set_proposals(ledger, WALLET_ONE, [proposal(0)] * 8)
        ledger.on_read(None, GET_TRANSFERS, {"transfers": []})
        ledger.on_read(None, GET_TRANSACTIONS, {"transactions": [
            {"hash": "0x" + f"{n:02x}" * 32, "blockNumber": hex(n), "from": BOB, "to": WALLET_ONE, "value": "0"}
            for n in range(8)
        ]})
        ledger.on_read(None, GET_BLOCK_BY_NUMBER, {"timestamp": hex(BLOCK_TIME)})
        aggregator = FinancialAggregator(store, ledger, rates=rates)

        view = await aggregator.dashboard(WALLET_ONE)

        assert view.proposals.value.pending == 8
        assert len(view.recent_transactions.value) == 8
        assert ledger.peak <= 3

    @pytest.mark.asyncio
    async def test_bound_of_one_does_not_deadlock(self, store, rates, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENT_QUERIES", "1")
        ledger = SlowLedger()
        set_proposals(ledger, WALLET_ONE, [proposal(1)] * 3)
        aggregator = FinancialAggregator(store, ledger, rates=rates)

        view = await asyncio.wait_for(aggregator.dashboard(WALLET_ONE), timeout=2)

        assert view.proposals.value.executed == 3
        assert ledger.peak == 1
