"""
Tests for Coperacha models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Flow tests for the dialogue engine (with fake ledger and in-memory stores)
3. No real ledger or Sheets calls in tests
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError as ModelValidationError

from coperacha.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from coperacha.models.finance import (
    Amount,
    SubQueryResult,
    SubQueryStatus,
    WalletBalance,
)
from coperacha.models.identity import CommunityWalletDraft, IdentityRecord
from coperacha.models.ledger import LedgerReceipt

ALICE = "0x" + "A1" * 20
BOB = "0x" + "b2" * 20


class TestIdentityModels:
    """Tests for identity and draft models."""

    def test_identity_normalizes(self):
        """Email and addresses are lower-cased, whitespace stripped."""
        record = IdentityRecord(
            phone=" 50411110000 ",
            name="  Juan Pérez ",
            email="Juan@Example.COM",
            address=ALICE,
            wallets=[BOB.upper().replace("0X", "0x"), BOB],
        )
        assert record.phone == "50411110000"
        assert record.name == "Juan Pérez"
        assert record.email == "juan@example.com"
        assert record.address == ALICE.lower()
        assert record.wallets == [BOB]
        assert record.has_address

    def test_identity_without_address(self):
        """Registration may happen before an address is known."""
        record = IdentityRecord(phone="1", name="Ana", email="ana@example.com", address="  ")
        assert record.address is None
        assert not record.has_address

    def test_identity_rejects_empty_name(self):
        with pytest.raises(ModelValidationError):
            IdentityRecord(phone="1", name="", email="ana@example.com")

    def test_identity_keeps_long_transport_ids(self):
        """Chat gateways may append a domain suffix to the number."""
        phone = "5049999000011112222333344445555@c.us"
        record = IdentityRecord(phone=phone, name="Ana", email="ana@example.com")
        assert record.phone == phone

    def test_draft_includes_creator_once(self):
        """Test that the creator is always a member once members exist."""
        draft = CommunityWalletDraft(creator=ALICE, name="Viaje")
        assert draft.members == []
        assert not draft.is_complete

        with_members = draft.with_members([BOB, ALICE.lower(), BOB])
        assert with_members.members == [BOB, ALICE.lower()]
        assert with_members.is_complete
        # the original draft is untouched
        assert draft.members == []

    def test_draft_description_length(self):
        with pytest.raises(ModelValidationError):
            CommunityWalletDraft(creator=ALICE, name="Viaje", description="x" * 1001)


class TestFinanceModels:
    """Tests for amounts and sub-query results."""

    def test_amount_from_wei(self):
        amount = Amount.from_wei(3 * 10 ** 17, Decimal("80000"))
        assert amount.wei == 3 * 10 ** 17
        assert amount.native == Decimal("0.3")
        assert amount.local == Decimal("24000.00")

    def test_amount_rejects_negative_wei(self):
        with pytest.raises(ModelValidationError):
            Amount(wei=-1, native=Decimal(0), local=Decimal(0))

    def test_sub_query_result_states(self):
        ok = SubQueryResult.ok(5)
        failed = SubQueryResult.failed("timeout", default=0)
        unsupported = SubQueryResult.unsupported("method not found", default=[])

        assert ok.succeeded and ok.value == 5
        assert not failed.succeeded and failed.value == 0
        assert failed.status == SubQueryStatus.FAILED
        assert unsupported.status == SubQueryStatus.UNSUPPORTED
        assert unsupported.value == []

    def test_failed_wallet_balance_reads_as_zero(self):
        balance = WalletBalance(wallet_address=BOB, result=SubQueryResult.failed("down"))
        assert balance.amount == Amount.zero()

    def test_receipt_first_event(self):
        receipt = LedgerReceipt(
            tx_hash="0x01",
            events={"WalletCreated": [{"wallet": BOB}, {"wallet": ALICE}]},
        )
        assert receipt.first_event("WalletCreated") == {"wallet": BOB}
        assert receipt.first_event("ProposalCreated") is None


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SESSION_STARTED,
            description="Conversation started",
        )
        assert event.event_type == AuditEventType.SESSION_STARTED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            description="Community wallet created on the ledger",
            details={"tx_hash": "0x01", "members": [ALICE]},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "wallet_created"
        assert log_dict["details"]["tx_hash"] == "0x01"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.SESSION_EXITED,
            description="User left the conversation",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "session_exited"  # event_type
        assert row[8] == ""  # no details
        assert row[10] == "True"  # is_user_action

    def test_audit_event_builder_membership_link_failed(self):
        """Test AuditEventBuilder.membership_link_failed."""
        correlation_id = uuid4()

        event = AuditEventBuilder.membership_link_failed(
            wallet_address=BOB,
            members=[ALICE, BOB],
            error_message="quota exceeded",
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.MEMBERSHIP_LINK_FAILED
        assert event.severity == AuditSeverity.ERROR
        assert event.entity_id == BOB
        assert event.correlation_id == correlation_id
        assert event.details["members"] == [ALICE, BOB]

    def test_audit_event_builder_session_exited(self):
        """Test AuditEventBuilder.session_exited."""
        event = AuditEventBuilder.session_exited(
            identity="50411110000",
            previous_state="awaiting_email",
        )

        assert event.event_type == AuditEventType.SESSION_EXITED
        assert event.entity_type == "session"
        assert event.is_user_action is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
