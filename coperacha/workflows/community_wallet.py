"""
Community Wallet Workflow

Turns a confirmed draft into a community wallet:
1. Submit `create(members, creator, name, description)` to the factory
2. Read the new wallet address from the WalletCreated event
3. Link the wallet to every member found in the record store

CRITICAL: Step 1 is never retried. If it succeeded and step 3 fails,
the wallet exists on the ledger but not in the members' records.
That is reported as a partial success and audited; nothing here
tries to reconcile it later.

Linking is add-to-set, so running it again for the same wallet is
harmless.
"""

from typing import Optional
from uuid import UUID

import structlog

from coperacha.aggregation import NotRegisteredError
from coperacha.audit import AuditLogger
from coperacha.models.identity import CommunityWalletDraft, WalletCreationResult
from coperacha.services.ledger import LedgerClientInterface, LedgerWriteError
from coperacha.services.ledger.contracts import (
    CREATE_WALLET,
    GET_ALL_WALLETS,
    WALLET_CREATED_EVENT,
)
from coperacha.services.storage import RecordStoreInterface, StorageError
from coperacha.validation import ValidationError, is_valid_address

logger = structlog.get_logger(__name__)


class CommunityWalletWorkflow:
    """
    Creation and lookup of community wallets.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        ledger: LedgerClientInterface,
        factory_address: str,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._factory_address = factory_address
        self._audit_logger = audit_logger

    async def start(self, identity: str) -> CommunityWalletDraft:
        """
        Open a draft with the identity's primary address as creator.

        Raises:
            NotRegisteredError: If the identity has no primary address
        """
        record = await self._store.find_by_phone(identity)
        if record is None or not record.address:
            raise NotRegisteredError(identity)
        return CommunityWalletDraft(creator=record.address)

    async def create(
        self,
        draft: CommunityWalletDraft,
        correlation_id: Optional[UUID] = None,
    ) -> WalletCreationResult:
        """
        Create the wallet on the ledger and link its members.

        Returns:
            WalletCreationResult; linked is False when the ledger write
            succeeded but the record store update did not

        Raises:
            ValidationError: If the draft is missing its name or members
            LedgerWriteError: If the ledger rejected the creation
        """
        if not draft.is_complete:
            raise ValidationError("draft", "The wallet needs a name and at least one member")

        members = list(draft.members)
        try:
            receipt = await self._ledger.write(
                self._factory_address,
                CREATE_WALLET,
                [members, draft.creator, draft.name, draft.description or ""],
            )
            event = receipt.first_event(WALLET_CREATED_EVENT)
            wallet_address = str((event or {}).get("walletAddress") or "").lower()
            if not is_valid_address(wallet_address):
                raise LedgerWriteError(
                    f"Transaction {receipt.tx_hash} has no {WALLET_CREATED_EVENT} event"
                )
        except LedgerWriteError as e:
            if self._audit_logger:
                await self._audit_logger.log_wallet_creation_failed(
                    creator=draft.creator,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_wallet_created(
                wallet_address=wallet_address,
                tx_hash=receipt.tx_hash,
                members=members,
                correlation_id=correlation_id,
            )

        result = WalletCreationResult(
            wallet_address=wallet_address,
            tx_hash=receipt.tx_hash,
            members=members,
        )

        try:
            linked = await self._store.add_wallet_to_members(members, wallet_address)
            logger.info("wallet_members_linked", wallet=wallet_address, linked=linked)
        except StorageError as e:
            logger.error("wallet_members_link_failed", wallet=wallet_address, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_membership_link_failed(
                    wallet_address=wallet_address,
                    members=members,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            result.linked = False
            result.link_error = str(e)

        return result

    async def list_all_wallets(self) -> list[str]:
        """Every wallet the factory has ever created."""
        wallets = await self._ledger.read(self._factory_address, GET_ALL_WALLETS, [])
        return [str(w).lower() for w in wallets or []]

    async def is_address_registered(self, address: str) -> bool:
        """Does any identity use this address as its primary address?"""
        if not is_valid_address(address):
            return False
        return await self._store.find_by_address(address) is not None
