"""
Financial View Models

These models are the read side of the system: balances, contributions,
proposals and transactions reconstructed from ledger reads and the
record store. None of them is ever persisted.

DESIGN DECISION: Ledger amounts travel as integers in the smallest
unit (wei) and are converted only when an Amount is built. Native and
local values are Decimals, never floats.

DESIGN DECISION: Every independently fetched section of a view is
wrapped in a SubQueryResult. A section that failed is still present,
with an explicit status, so renderers can say what is missing instead
of silently showing zeros.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

WEI_PER_NATIVE = Decimal(10) ** 18
CENT = Decimal("0.01")


# =============================================================================
# ENUMS
# =============================================================================

class ProposalType(str, Enum):
    """What a proposal would do if executed."""
    EXPENSE = "expense"
    MEMBERSHIP_CHANGE = "membership_change"


class ProposalStatus(str, Enum):
    """Lifecycle of a proposal on the ledger."""
    PENDING = "pending"
    EXECUTED = "executed"
    EXPIRED = "expired"


class TransactionDirection(str, Enum):
    """Direction of a transaction relative to the wallet being viewed."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class SubQueryStatus(str, Enum):
    """Outcome of one section of an aggregated view."""
    OK = "ok"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"  # ledger node lacks the indexing method


# =============================================================================
# AMOUNTS
# =============================================================================

class Amount(BaseModel):
    """
    A ledger amount in all three representations.

    wei is the source of truth; native and local are derived.
    """

    wei: int = Field(
        ...,
        ge=0,
        description="Amount in the ledger's smallest unit"
    )
    native: Decimal = Field(
        ...,
        description="Amount in native currency (e.g. ETH)"
    )
    local: Decimal = Field(
        ...,
        description="Amount in local currency, rounded to 2 decimals"
    )

    @classmethod
    def from_wei(cls, wei: int, rate: Decimal) -> 'Amount':
        native = Decimal(int(wei)) / WEI_PER_NATIVE
        local = (native * Decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)
        return cls(wei=int(wei), native=native, local=local)

    @classmethod
    def zero(cls) -> 'Amount':
        return cls(wei=0, native=Decimal(0), local=Decimal("0.00"))


# =============================================================================
# SUB-QUERY RESULTS
# =============================================================================

class SubQueryResult(BaseModel):
    """
    One section of an aggregated view.

    value holds the section payload on success and the empty/zero
    substitute otherwise.
    """

    status: SubQueryStatus
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: Any) -> 'SubQueryResult':
        return cls(status=SubQueryStatus.OK, value=value)

    @classmethod
    def failed(cls, error: str, default: Any = None) -> 'SubQueryResult':
        return cls(status=SubQueryStatus.FAILED, value=default, error=error)

    @classmethod
    def unsupported(cls, error: str, default: Any = None) -> 'SubQueryResult':
        return cls(status=SubQueryStatus.UNSUPPORTED, value=default, error=error)

    @property
    def succeeded(self) -> bool:
        return self.status == SubQueryStatus.OK


# =============================================================================
# VIEW PARTS
# =============================================================================

class WalletBalance(BaseModel):
    """Balance of one linked community wallet."""

    wallet_address: str
    result: SubQueryResult

    @property
    def amount(self) -> Amount:
        return self.result.value if self.result.succeeded else Amount.zero()


class BalanceSummary(BaseModel):
    """Personal balance plus the total held in linked community wallets."""

    address: str
    personal: Amount
    community_total: Amount
    wallets: list[WalletBalance] = Field(default_factory=list)
    exchange_rate: Decimal
    computed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def failed_wallets(self) -> list[str]:
        return [w.wallet_address for w in self.wallets if not w.result.succeeded]


class MemberContribution(BaseModel):
    """Total sent into a wallet by one source address."""

    address: str
    total: Amount


class ProposalCounts(BaseModel):
    """How many proposals a wallet has, by status."""

    total: int = Field(default=0, ge=0)
    pending: int = Field(default=0, ge=0)
    executed: int = Field(default=0, ge=0)
    expired: int = Field(default=0, ge=0)


class Proposal(BaseModel):
    """A single proposal read from a community wallet."""

    id: int = Field(..., ge=0)
    recipient: str
    amount: Amount
    description: str = ""
    deadline: datetime
    confirmations: int = Field(default=0, ge=0)
    type: ProposalType
    status: ProposalStatus


class TransactionRecord(BaseModel):
    """A transaction touching a wallet, with its direction relative to it."""

    hash: str
    direction: TransactionDirection
    from_address: str = ""
    to_address: str = ""
    amount: Amount
    timestamp: datetime
    age: str = Field(
        ...,
        description="Human label such as 'hace 3 horas'"
    )


# =============================================================================
# AGGREGATED VIEWS
# =============================================================================

class WalletDashboard(BaseModel):
    """
    Summary of one community wallet.

    Sections:
        balance             -> Amount
        members             -> list[IdentityRecord]
        proposals           -> ProposalCounts
        top_contributors    -> list[MemberContribution]
        recent_transactions -> list[TransactionRecord]
    """

    wallet_address: str
    balance: SubQueryResult
    members: SubQueryResult
    proposals: SubQueryResult
    top_contributors: SubQueryResult
    recent_transactions: SubQueryResult
    computed_at: datetime = Field(default_factory=datetime.utcnow)


class ContributionReport(BaseModel):
    """Every contributor of a wallet, largest first."""

    wallet_address: str
    contributions: list[MemberContribution] = Field(default_factory=list)


class ProposalHistory(BaseModel):
    """
    Proposals and latest transactions of a community wallet.

    Sections:
        proposals           -> list[Proposal]
        recent_transactions -> list[TransactionRecord]
    """

    wallet_address: str
    total_proposals: int = Field(default=0, ge=0)
    proposals: SubQueryResult
    recent_transactions: SubQueryResult
