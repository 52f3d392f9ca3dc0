"""
Conversation Session Models

A session is the per-identity conversation state: where the person
is in the dialogue and what they have told us so far.

DESIGN DECISION: The state machine is explicit. Every state is an
enum member and every allowed move is listed in ALLOWED_TRANSITIONS.
Session.transition() refuses anything else, so a wrong move shows up
as an error in tests instead of a confused conversation in production.

Resetting to IDLE (exit command, inactivity timeout) is allowed from
any state and always clears the session data.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from coperacha.models.identity import CommunityWalletDraft


class DialogueState(str, Enum):
    """All states of the conversation."""
    IDLE = "idle"

    # Registration
    ASK_REGISTRATION = "ask_registration"
    AWAITING_NAME = "awaiting_name"
    AWAITING_EMAIL = "awaiting_email"
    CONFIRM_EMAIL = "confirm_email"

    # Personal wallet linkage
    ASK_WALLET_OPTION = "ask_wallet_option"
    AWAITING_WALLET = "awaiting_wallet"
    CONFIRM_WALLET = "confirm_wallet"

    # Steady state
    AWAITING_MENU_OPTION = "awaiting_menu_option"

    # Community wallet creation
    CREATE_NAME = "create_name"
    CREATE_DESC = "create_desc"
    CREATE_MEMBERS = "create_members"
    CREATE_CONFIRM = "create_confirm"

    # Community wallet browsing
    SELECT_WALLET = "select_wallet"
    WALLET_SUBMENU = "wallet_submenu"


ALLOWED_TRANSITIONS: dict[DialogueState, frozenset[DialogueState]] = {
    DialogueState.IDLE: frozenset({
        DialogueState.ASK_REGISTRATION,
        DialogueState.AWAITING_MENU_OPTION,
    }),
    DialogueState.ASK_REGISTRATION: frozenset({
        DialogueState.AWAITING_NAME,
    }),
    DialogueState.AWAITING_NAME: frozenset({
        DialogueState.AWAITING_EMAIL,
    }),
    DialogueState.AWAITING_EMAIL: frozenset({
        DialogueState.CONFIRM_EMAIL,
    }),
    DialogueState.CONFIRM_EMAIL: frozenset({
        DialogueState.ASK_WALLET_OPTION,
        DialogueState.AWAITING_EMAIL,
    }),
    DialogueState.ASK_WALLET_OPTION: frozenset({
        DialogueState.AWAITING_WALLET,
    }),
    DialogueState.AWAITING_WALLET: frozenset({
        DialogueState.CONFIRM_WALLET,
    }),
    DialogueState.CONFIRM_WALLET: frozenset({
        DialogueState.AWAITING_MENU_OPTION,
        DialogueState.ASK_WALLET_OPTION,
        DialogueState.AWAITING_EMAIL,  # email taken by someone else
    }),
    DialogueState.AWAITING_MENU_OPTION: frozenset({
        DialogueState.CREATE_NAME,
        DialogueState.SELECT_WALLET,
    }),
    DialogueState.CREATE_NAME: frozenset({
        DialogueState.CREATE_DESC,
    }),
    DialogueState.CREATE_DESC: frozenset({
        DialogueState.CREATE_MEMBERS,
    }),
    DialogueState.CREATE_MEMBERS: frozenset({
        DialogueState.CREATE_CONFIRM,
    }),
    DialogueState.CREATE_CONFIRM: frozenset({
        DialogueState.AWAITING_MENU_OPTION,
    }),
    DialogueState.SELECT_WALLET: frozenset({
        DialogueState.WALLET_SUBMENU,
    }),
    DialogueState.WALLET_SUBMENU: frozenset({
        DialogueState.AWAITING_MENU_OPTION,
    }),
}


class InvalidTransitionError(Exception):
    """A handler tried a move that is not in ALLOWED_TRANSITIONS."""

    def __init__(self, source: DialogueState, target: DialogueState):
        self.source = source
        self.target = target
        super().__init__(f"Transition not allowed: {source.value} -> {target.value}")


class SessionData(BaseModel):
    """
    Workflow-scoped values collected during a conversation.

    Everything here is throwaway: it is cleared as soon as the
    session returns to IDLE.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    draft: Optional[CommunityWalletDraft] = None
    wallet_list: list[str] = Field(default_factory=list)
    selected_wallet: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self == SessionData()


class Session(BaseModel):
    """
    The conversation state for a single identity.

    Only the session registry creates sessions and only the dialogue
    engine (or the registry's timeout) mutates them.
    """

    identity: str = Field(
        ...,
        min_length=1,
        description="Phone-equivalent identity key"
    )
    state: DialogueState = Field(
        default=DialogueState.IDLE,
    )
    data: SessionData = Field(
        default_factory=SessionData,
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    def transition(self, target: DialogueState) -> None:
        """
        Move to a new state.

        Staying in the current state is always allowed. Moving to
        IDLE goes through reset() so the data is cleared.
        """
        if target == self.state:
            return
        if target == DialogueState.IDLE:
            self.reset()
            return
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        self.state = target
        self.updated_at = datetime.utcnow()

    def reset(self) -> None:
        """Return to IDLE and forget everything collected so far."""
        self.state = DialogueState.IDLE
        self.data = SessionData()
        self.updated_at = datetime.utcnow()

    @property
    def is_idle(self) -> bool:
        return self.state == DialogueState.IDLE
