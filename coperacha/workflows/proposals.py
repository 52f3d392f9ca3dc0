"""
Proposal Workflow

Spending and membership changes in a community wallet go through
proposals that members confirm on the ledger.

DESIGN DECISION: Amounts may be given in wei, native currency or
local currency. Local amounts are converted with the rate read at
submission time; the ledger only ever sees wei.

Like every ledger write, proposals and votes are never retried.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from coperacha.aggregation import ExchangeRateService, amount_to_wei
from coperacha.aggregation.conversions import UNIT_NATIVE
from coperacha.audit import AuditLogger
from coperacha.models.finance import ProposalType
from coperacha.models.ledger import LedgerReceipt
from coperacha.services.ledger import LedgerClientInterface, ProposalExpiredError
from coperacha.services.ledger.contracts import CONFIRM_PROPOSAL, CREATE_PROPOSAL
from coperacha.validation import ValidationError, is_valid_address


def _require_address(field: str, value: str) -> str:
    if not is_valid_address(value):
        raise ValidationError(field, f"Not a valid address: {value!r}", invalid=[str(value)])
    return value.strip().lower()


def _require_text(field: str, value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(field, f"{field} cannot be empty")
    return value


class ProposalWorkflow:
    """
    Submit and confirm community wallet proposals.
    """

    def __init__(
        self,
        ledger: LedgerClientInterface,
        rates: ExchangeRateService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._rates = rates
        self._audit_logger = audit_logger

    async def _submit(
        self,
        wallet_address: str,
        proposal_type: ProposalType,
        args: list[Any],
        correlation_id: Optional[UUID],
    ) -> LedgerReceipt:
        receipt = await self._ledger.write(wallet_address, CREATE_PROPOSAL, args)
        if self._audit_logger:
            await self._audit_logger.log_proposal_submitted(
                wallet_address=wallet_address,
                proposal_type=proposal_type.value,
                tx_hash=receipt.tx_hash,
                correlation_id=correlation_id,
            )
        return receipt

    async def propose_expense(
        self,
        wallet_address: str,
        recipient: str,
        member: str,
        amount: Any,
        description: str,
        unit: str = UNIT_NATIVE,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerReceipt:
        """
        Propose paying `amount` from the wallet to `recipient`.

        Raises:
            ValidationError: On a bad address, empty description or bad amount
            LedgerWriteError: If the ledger rejected the proposal
        """
        wallet_address = _require_address("wallet", wallet_address)
        recipient = _require_address("recipient", recipient)
        member = _require_address("member", member)
        description = _require_text("description", description)

        rate: Decimal = await self._rates.get_rate()
        try:
            wei = amount_to_wei(amount, unit, rate)
        except ValueError as e:
            raise ValidationError("amount", str(e))

        return await self._submit(
            wallet_address,
            ProposalType.EXPENSE,
            [recipient, member, wei, description, True],
            correlation_id,
        )

    async def propose_member(
        self,
        wallet_address: str,
        new_member: str,
        member: str,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerReceipt:
        """Propose adding `new_member` to the wallet."""
        wallet_address = _require_address("wallet", wallet_address)
        new_member = _require_address("new_member", new_member)
        member = _require_address("member", member)
        description = _require_text("description", description)

        return await self._submit(
            wallet_address,
            ProposalType.MEMBERSHIP_CHANGE,
            [new_member, member, 0, description, False],
            correlation_id,
        )

    async def confirm_proposal(
        self,
        wallet_address: str,
        proposal_id: int,
        member: str,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerReceipt:
        """
        Vote for a proposal on behalf of `member`.

        Raises:
            ProposalExpiredError: If the voting deadline has passed
            LedgerWriteError: For any other rejection
        """
        wallet_address = _require_address("wallet", wallet_address)
        member = _require_address("member", member)
        if int(proposal_id) < 0:
            raise ValidationError("proposal_id", "Proposal ids start at 0")

        try:
            receipt = await self._ledger.write(
                wallet_address, CONFIRM_PROPOSAL, [int(proposal_id), member]
            )
        except ProposalExpiredError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="ledger",
                    error_message=f"Proposal #{proposal_id} expired: {e}",
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_proposal_confirmed(
                wallet_address=wallet_address,
                proposal_id=int(proposal_id),
                member=member,
                tx_hash=receipt.tx_hash,
                correlation_id=correlation_id,
            )
        return receipt
