"""
Financial Aggregator

Reconstructs a financial picture from two sources that were never
designed to agree: the record store (who belongs to which wallet)
and live ledger reads (how much is where).

DESIGN DECISION: Every view is computed per request and never cached.
Balances move on the ledger without telling us.

DESIGN DECISION: Sub-queries run concurrently and settle independently.
Each view makes one semaphore and every ledger read it triggers,
nested ones included, takes a permit from it, so a view never has
more than max_concurrent_queries reads in flight. Only leaf reads
hold permits; a section waiting on its own reads holds none. A failing section becomes an explicit
SubQueryResult(failed | unsupported) with an empty substitute; it
never cancels its siblings and never aborts the view.

The one exception is the personal balance: without it there is no
answer to give, so its failure propagates.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Iterable, Optional
from uuid import UUID

import structlog

from coperacha.aggregation.conversions import parse_timestamp, time_since, to_int
from coperacha.aggregation.rates import ExchangeRateService
from coperacha.audit import AuditLogger
from coperacha.config import get_settings
from coperacha.models.finance import (
    Amount,
    BalanceSummary,
    ContributionReport,
    MemberContribution,
    Proposal,
    ProposalCounts,
    ProposalHistory,
    ProposalStatus,
    SubQueryResult,
    TransactionDirection,
    TransactionRecord,
    WalletBalance,
    WalletDashboard,
)
from coperacha.services.ledger import (
    LedgerClientInterface,
    LedgerError,
    UnsupportedCapabilityError,
)
from coperacha.services.ledger.contracts import (
    GET_BALANCE,
    GET_BLOCK_BY_NUMBER,
    GET_PROPOSAL,
    GET_TRANSACTIONS,
    GET_TRANSFERS,
    PROPOSAL_COUNT,
    WALLET_BALANCE,
    decode_proposal,
    decode_proposal_status,
)
from coperacha.services.storage import RecordStoreInterface

logger = structlog.get_logger(__name__)

MIN_TRANSACTIONS = 1
MAX_TRANSACTIONS = 50
DEFAULT_PERSONAL_TRANSACTIONS = 6


class NotRegisteredError(Exception):
    """The identity has no record or no primary address yet."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Identity {identity} has no registered address")


def _items(payload: Any, key: str) -> list[dict]:
    """Indexing extensions answer with {key: [...]}, {data: [...]} or a bare list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return payload.get(key) or payload.get("data") or []
    return []


def _address(entry: dict, *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if value:
            return str(value).lower()
    return ""


class FinancialAggregator:
    """
    Read-side service behind the balance, dashboard, contribution
    and proposal replies.

    Sections and their substitutes on failure:
        balance             -> Amount.zero()
        members             -> []
        proposals           -> ProposalCounts()
        top_contributors    -> []
        recent_transactions -> []
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        ledger: LedgerClientInterface,
        rates: Optional[ExchangeRateService] = None,
        audit_logger: Optional[AuditLogger] = None,
        transfers_page_size: int = 100,
        dashboard_transfers_page_size: int = 50,
    ):
        self._store = store
        self._ledger = ledger
        self._rates = rates or ExchangeRateService(store, audit_logger)
        self._audit_logger = audit_logger
        self._settings = get_settings().app
        self._transfers_page_size = transfers_page_size
        self._dashboard_page_size = dashboard_transfers_page_size

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    def _request_bound(self) -> asyncio.Semaphore:
        """A fresh read bound for one view."""
        return asyncio.Semaphore(self._settings.max_concurrent_queries)

    async def _settle(self, coros: Iterable[Awaitable[Any]]) -> list[Any]:
        """
        Run coroutines concurrently and wait for all of them.

        Each slot holds either the result or the exception it raised.
        Concurrency is bounded by the reads themselves (see _read).
        """
        return await asyncio.gather(*coros, return_exceptions=True)

    async def _read(
        self,
        bound: asyncio.Semaphore,
        contract_address: Optional[str],
        method: str,
        args: list,
    ) -> Any:
        async with bound:
            return await self._ledger.read(contract_address, method, args)

    async def _section(
        self,
        name: str,
        subject: str,
        outcome: Any,
        default: Any,
        correlation_id: Optional[UUID],
    ) -> SubQueryResult:
        """Turn a settled outcome into a SubQueryResult, auditing failures."""
        if isinstance(outcome, UnsupportedCapabilityError):
            logger.warning("subquery_unsupported", section=name, subject=subject, method=outcome.method)
            if self._audit_logger:
                await self._audit_logger.log_capability_unsupported(
                    method=outcome.method,
                    subject=subject,
                    correlation_id=correlation_id,
                )
            return SubQueryResult.unsupported(str(outcome), default)

        if isinstance(outcome, BaseException):
            logger.warning("subquery_failed", section=name, subject=subject, error=str(outcome))
            if self._audit_logger:
                await self._audit_logger.log_subquery_failed(
                    section=name,
                    subject=subject,
                    error_message=str(outcome),
                    correlation_id=correlation_id,
                )
            return SubQueryResult.failed(str(outcome), default)

        return SubQueryResult.ok(outcome)

    async def _audit_query(
        self,
        query_type: str,
        subject: str,
        sections: dict[str, SubQueryResult],
        correlation_id: Optional[UUID],
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_query_executed(
                query_type=query_type,
                subject=subject,
                failed_sections=[n for n, r in sections.items() if not r.succeeded],
                correlation_id=correlation_id,
            )

    # =========================================================================
    # LEDGER READS
    # =========================================================================

    async def _native_balance(self, bound: asyncio.Semaphore, address: str) -> int:
        return to_int(await self._read(bound, None, GET_BALANCE, [address, "latest"]))

    async def _wallet_balance(self, bound: asyncio.Semaphore, wallet_address: str) -> int:
        return to_int(await self._read(bound, wallet_address, WALLET_BALANCE, []))

    async def _proposal_count(self, bound: asyncio.Semaphore, wallet_address: str) -> int:
        return to_int(await self._read(bound, wallet_address, PROPOSAL_COUNT, []))

    async def _read_proposal(self, bound: asyncio.Semaphore, wallet_address: str, proposal_id: int) -> Any:
        return await self._read(bound, wallet_address, GET_PROPOSAL, [proposal_id])

    async def _proposal_counts(self, bound: asyncio.Semaphore, wallet_address: str) -> ProposalCounts:
        """
        Count proposals by status. A proposal that can't be read or
        decoded is left out of the per-status counts.
        """
        total = await self._proposal_count(bound, wallet_address)
        raws = await self._settle(
            self._read_proposal(bound, wallet_address, i) for i in range(total)
        )

        counts = ProposalCounts(total=total)
        for proposal_id, raw in enumerate(raws):
            if isinstance(raw, BaseException):
                logger.info("proposal_skipped", wallet=wallet_address, proposal_id=proposal_id, error=str(raw))
                continue
            try:
                status = decode_proposal_status(raw[6])
            except (IndexError, TypeError, LedgerError) as e:
                logger.info("proposal_skipped", wallet=wallet_address, proposal_id=proposal_id, error=str(e))
                continue
            if status == ProposalStatus.PENDING:
                counts.pending += 1
            elif status == ProposalStatus.EXECUTED:
                counts.executed += 1
            else:
                counts.expired += 1
        return counts

    async def _proposal_list(
        self,
        bound: asyncio.Semaphore,
        wallet_address: str,
        rate: Decimal,
    ) -> list[Proposal]:
        """Every proposal by index; any unreadable one fails the whole list."""
        total = await self._proposal_count(bound, wallet_address)
        raws = await self._settle(
            self._read_proposal(bound, wallet_address, i) for i in range(total)
        )
        proposals = []
        for proposal_id, raw in enumerate(raws):
            if isinstance(raw, BaseException):
                raise raw
            proposals.append(decode_proposal(proposal_id, raw, rate))
        return proposals

    async def _contributions(
        self,
        bound: asyncio.Semaphore,
        wallet_address: str,
        page_size: int,
        rate: Decimal,
    ) -> list[MemberContribution]:
        """Incoming native transfers grouped by source, largest first."""
        payload = await self._read(bound, None, GET_TRANSFERS, [{
            "address": wallet_address,
            "page": 1,
            "perPage": page_size,
            "direction": "incoming",
            "contract": "native",
        }])

        totals: "OrderedDict[str, int]" = OrderedDict()
        for transfer in _items(payload, "transfers"):
            source = _address(transfer, "from", "fromAddress")
            value = to_int(transfer.get("value") or transfer.get("valueWei") or 0)
            totals[source] = totals.get(source, 0) + value

        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [
            MemberContribution(address=source, total=Amount.from_wei(wei, rate))
            for source, wei in ranked
        ]

    async def _block_time(self, bound: asyncio.Semaphore, block_number: Any) -> datetime:
        block = await self._read(
            bound, None, GET_BLOCK_BY_NUMBER, [hex(to_int(block_number)), False]
        )
        moment = parse_timestamp((block or {}).get("timestamp"))
        if moment is None:
            raise ValueError(f"Block {block_number} has no timestamp")
        return moment

    async def _transaction_record(
        self,
        bound: asyncio.Semaphore,
        entry: dict,
        address: str,
        rate: Decimal,
        now: datetime,
    ) -> TransactionRecord:
        moment = parse_timestamp(entry.get("timestamp") or entry.get("blockTimestamp"))
        block_number = entry.get("blockNumber") or entry.get("block")
        if moment is None and block_number is not None:
            try:
                moment = await self._block_time(bound, block_number)
            except Exception as e:
                logger.info("block_time_unavailable", block=block_number, error=str(e))
        moment = moment or now

        to_address = _address(entry, "to", "toAddress")
        direction = (
            TransactionDirection.INCOMING
            if to_address == address
            else TransactionDirection.OUTGOING
        )
        return TransactionRecord(
            hash=str(entry.get("hash") or entry.get("transactionHash") or ""),
            direction=direction,
            from_address=_address(entry, "from", "fromAddress"),
            to_address=to_address,
            amount=Amount.from_wei(to_int(entry.get("value") or entry.get("valueWei") or 0), rate),
            timestamp=moment,
            age=time_since(moment, now),
        )

    async def _recent_transactions(
        self,
        bound: asyncio.Semaphore,
        address: str,
        limit: int,
        rate: Decimal,
    ) -> list[TransactionRecord]:
        address = address.lower()
        payload = await self._read(bound, None, GET_TRANSACTIONS, [{
            "address": address,
            "page": 1,
            "perPage": limit,
            "sort": "desc",
        }])
        entries = [e for e in _items(payload, "transactions") if isinstance(e, dict)][:limit]

        now = datetime.now(timezone.utc)
        outcomes = await self._settle(
            self._transaction_record(bound, entry, address, rate, now) for entry in entries
        )
        records = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.info("transaction_skipped", address=address, error=str(outcome))
                continue
            records.append(outcome)
        return records

    # =========================================================================
    # VIEWS
    # =========================================================================

    async def personal_and_community_balance(
        self,
        identity: str,
        correlation_id: Optional[UUID] = None,
    ) -> BalanceSummary:
        """
        Personal balance plus the sum of every linked community wallet.

        Raises:
            NotRegisteredError: If the identity has no record or address
            LedgerError: If the personal balance can't be read
        """
        record = await self._store.find_by_phone(identity)
        if record is None or not record.address:
            raise NotRegisteredError(identity)

        rate = await self._rates.get_rate()
        bound = self._request_bound()
        outcomes = await self._settle(
            [self._native_balance(bound, record.address)]
            + [self._wallet_balance(bound, w) for w in record.wallets]
        )

        personal = outcomes[0]
        if isinstance(personal, BaseException):
            raise personal

        wallets = []
        community_wei = 0
        for wallet_address, outcome in zip(record.wallets, outcomes[1:]):
            if not isinstance(outcome, BaseException):
                community_wei += outcome
                outcome = Amount.from_wei(outcome, rate)
            result = await self._section(
                f"wallet_balance:{wallet_address}",
                identity,
                outcome,
                Amount.zero(),
                correlation_id,
            )
            wallets.append(WalletBalance(wallet_address=wallet_address, result=result))

        summary = BalanceSummary(
            address=record.address,
            personal=Amount.from_wei(personal, rate),
            community_total=Amount.from_wei(community_wei, rate),
            wallets=wallets,
            exchange_rate=rate,
        )
        await self._audit_query(
            "balance",
            identity,
            {w.wallet_address: w.result for w in wallets},
            correlation_id,
        )
        return summary

    async def dashboard(
        self,
        wallet_address: str,
        correlation_id: Optional[UUID] = None,
    ) -> WalletDashboard:
        """Summary of one community wallet; never raises for a section."""
        wallet_address = wallet_address.lower()
        rate = await self._rates.get_rate()
        bound = self._request_bound()

        async def balance() -> Amount:
            return Amount.from_wei(await self._wallet_balance(bound, wallet_address), rate)

        async def top_contributors() -> list[MemberContribution]:
            ranked = await self._contributions(
                bound,
                wallet_address,
                self._dashboard_page_size,
                rate,
            )
            return ranked[:self._settings.top_contributors_limit]

        outcomes = await self._settle([
            balance(),
            self._store.list_wallet_members(wallet_address),
            self._proposal_counts(bound, wallet_address),
            top_contributors(),
            self._recent_transactions(
                bound, wallet_address, self._settings.recent_transactions_limit, rate
            ),
        ])

        names = ["balance", "members", "proposals", "top_contributors", "recent_transactions"]
        defaults = [Amount.zero(), [], ProposalCounts(), [], []]
        sections = {}
        for name, outcome, default in zip(names, outcomes, defaults):
            sections[name] = await self._section(
                name, wallet_address, outcome, default, correlation_id
            )

        await self._audit_query("dashboard", wallet_address, sections, correlation_id)
        return WalletDashboard(wallet_address=wallet_address, **sections)

    async def contributions(
        self,
        wallet_address: str,
        correlation_id: Optional[UUID] = None,
    ) -> ContributionReport:
        """
        Every contributor of a wallet, largest first.

        Raises:
            UnsupportedCapabilityError: If the node lacks the transfers index
            LedgerError: For any other read failure
        """
        wallet_address = wallet_address.lower()
        rate = await self._rates.get_rate()
        try:
            ranked = await self._contributions(
                self._request_bound(),
                wallet_address,
                self._transfers_page_size,
                rate,
            )
        except UnsupportedCapabilityError as e:
            if self._audit_logger:
                await self._audit_logger.log_capability_unsupported(
                    method=e.method,
                    subject=wallet_address,
                    correlation_id=correlation_id,
                )
            raise

        await self._audit_query("contributions", wallet_address, {}, correlation_id)
        return ContributionReport(wallet_address=wallet_address, contributions=ranked)

    async def proposal_history(
        self,
        wallet_address: str,
        correlation_id: Optional[UUID] = None,
    ) -> ProposalHistory:
        """Every proposal of a wallet plus its latest transactions."""
        wallet_address = wallet_address.lower()
        rate = await self._rates.get_rate()
        bound = self._request_bound()

        proposals_outcome, transactions_outcome = await self._settle([
            self._proposal_list(bound, wallet_address, rate),
            self._recent_transactions(
                bound, wallet_address, self._settings.recent_transactions_limit, rate
            ),
        ])
        sections = {
            "proposals": await self._section(
                "proposals", wallet_address, proposals_outcome, [], correlation_id
            ),
            "recent_transactions": await self._section(
                "recent_transactions", wallet_address, transactions_outcome, [], correlation_id
            ),
        }

        await self._audit_query("proposal_history", wallet_address, sections, correlation_id)
        return ProposalHistory(
            wallet_address=wallet_address,
            total_proposals=len(sections["proposals"].value or []),
            **sections,
        )

    async def recent_transactions(
        self,
        address: str,
        limit: int = DEFAULT_PERSONAL_TRANSACTIONS,
        correlation_id: Optional[UUID] = None,
    ) -> list[TransactionRecord]:
        """
        Latest transactions of any address, newest first.
        limit is clamped to 1..50.

        Raises:
            UnsupportedCapabilityError: If the node lacks the transactions index
        """
        limit = max(MIN_TRANSACTIONS, min(int(limit), MAX_TRANSACTIONS))
        rate = await self._rates.get_rate()
        try:
            records = await self._recent_transactions(self._request_bound(), address, limit, rate)
        except UnsupportedCapabilityError as e:
            if self._audit_logger:
                await self._audit_logger.log_capability_unsupported(
                    method=e.method,
                    subject=address.lower(),
                    correlation_id=correlation_id,
                )
            raise

        await self._audit_query("recent_transactions", address.lower(), {}, correlation_id)
        return records
