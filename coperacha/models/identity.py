"""
Identity and Community Wallet Models

These models describe the people the assistant talks to and the
community wallets they create together.

DESIGN DECISION: Addresses are lower-cased at the model boundary.
The record store, the validator and the ledger views all compare
addresses as lower-case strings, so normalizing once here keeps
every lookup consistent.
"""

from datetime import datetime
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def _normalize_address(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().lower()
    return value or None


class IdentityRecord(BaseModel):
    """
    A registered person, as kept by the record store.

    Phone, email and primary address are each globally unique.
    The store enforces that; this model only normalizes.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(
        ...,
        min_length=1,
        description="Phone-equivalent identity string, as the transport gives it"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Full name given during registration"
    )
    email: str = Field(
        ...,
        min_length=3,
        max_length=254,
        description="Email address (lower-cased)"
    )
    address: Optional[str] = Field(
        default=None,
        description="Primary ledger address (lower-cased)"
    )
    wallets: list[str] = Field(
        default_factory=list,
        description="Linked community wallet addresses"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the record was created"
    )

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator('address')
    @classmethod
    def lower_address(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_address(v)

    @field_validator('wallets')
    @classmethod
    def dedupe_wallets(cls, v: list[str]) -> list[str]:
        """Linked wallets behave as a set; keep first-seen order."""
        seen: list[str] = []
        for wallet in v:
            wallet = _normalize_address(wallet)
            if wallet and wallet not in seen:
                seen.append(wallet)
        return seen

    @property
    def has_address(self) -> bool:
        return bool(self.address)


class CommunityWalletDraft(BaseModel):
    """
    An in-progress community wallet, collected over three turns.

    Lives only inside a session. The member set always includes
    the creator once members have been set.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    creator: str = Field(
        ...,
        description="Primary address of the person creating the wallet"
    )
    name: Optional[str] = Field(
        default=None,
        max_length=200,
    )
    description: str = Field(
        default="",
        max_length=1000,
    )
    members: list[str] = Field(
        default_factory=list,
        description="Lower-cased, deduplicated member addresses"
    )

    @field_validator('creator')
    @classmethod
    def lower_creator(cls, v: str) -> str:
        return _normalize_address(v) or ""

    @model_validator(mode='after')
    def include_creator(self) -> 'CommunityWalletDraft':
        """Creator is always a member once a member list exists."""
        if self.members:
            members = []
            for member in [*self.members, self.creator]:
                member = _normalize_address(member)
                if member and member not in members:
                    members.append(member)
            self.members = members
        return self

    def with_members(self, members: list[str]) -> 'CommunityWalletDraft':
        """Return a copy of the draft with the given members plus the creator."""
        return CommunityWalletDraft(**{**self.model_dump(), "members": list(members)})

    @property
    def is_complete(self) -> bool:
        return bool(self.name) and bool(self.members)


class WalletCreationResult(BaseModel):
    """
    Outcome of a confirmed community wallet creation.

    A result exists only when the ledger write succeeded.
    Member linking may still have failed (see linked / link_error).
    """

    wallet_address: str
    tx_hash: str
    members: list[str] = Field(default_factory=list)
    linked: bool = Field(
        default=True,
        description="Did the record store accept the membership update?"
    )
    link_error: Optional[str] = None
