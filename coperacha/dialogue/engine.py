"""
Dialogue Engine

Consumes one inbound message at a time, advances the identity's
session through the state machine and returns the replies.

DESIGN DECISION: One handler per state, registered in a single map.
The engine refuses to start if any DialogueState has no handler, so a
new state can't be added without deciding what it does.

DESIGN DECISION: The whole turn (reading the session, calling the
store, the aggregator or the ledger, sending the replies) happens
while holding the identity's lock. A person who types fast still
gets their replies in order, and the inactivity timer can never
reset a session mid-turn.

Failure policy:
- Bad input           -> corrective reply, state unchanged
- Read side down      -> degraded or "not available" reply, state unchanged
- Write failed        -> reported, sub-workflow ends, back to the menu
- Registration write  -> duplicates re-ask the conflicting field,
                         anything else resets to IDLE
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as RecordValidationError

from coperacha.aggregation import FinancialAggregator, NotRegisteredError
from coperacha.audit import AuditLogger, create_correlation_id
from coperacha.config import get_settings
from coperacha.dialogue import messages
from coperacha.models.identity import IdentityRecord
from coperacha.models.session import DialogueState, Session
from coperacha.services.ledger import LedgerError, UnsupportedCapabilityError
from coperacha.services.storage import DuplicateError, RecordStoreInterface, StorageError
from coperacha.services.transport import TransportError, TransportInterface
from coperacha.sessions import SessionRegistry
from coperacha.validation import (
    ValidationError,
    is_valid_address,
    is_valid_email,
    parse_address_list,
    parse_yes_no,
)
from coperacha.workflows import CommunityWalletWorkflow

logger = structlog.get_logger(__name__)

MAX_NAME_LENGTH = 200
MAX_EMAIL_LENGTH = 254
MAX_DESCRIPTION_LENGTH = 1000
SKIP_TOKEN = "skip"
MENU_TOKEN = "menu"
REGISTER_TOKEN = "registrar"


@dataclass
class Turn:
    """One inbound message as the handlers see it."""
    identity: str
    raw: str        # trimmed, original case
    token: str      # trimmed, lower-case
    correlation_id: UUID


Handler = Callable[[Session, Turn], Awaitable[list[str]]]


class DialogueEngine:
    """
    The conversation state machine.

    Flow per message:
    1. Lock the identity's session
    2. Exit phrase -> reset and stop the timer
       Anything else -> restart the timer, run the state's handler
    3. Send the replies through the transport, still under the lock
    """

    def __init__(
        self,
        registry: SessionRegistry,
        store: RecordStoreInterface,
        aggregator: FinancialAggregator,
        wallet_workflow: CommunityWalletWorkflow,
        transport: TransportInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._registry = registry
        self._store = store
        self._aggregator = aggregator
        self._wallets = wallet_workflow
        self._transport = transport
        self._audit_logger = audit_logger
        self._settings = get_settings().app
        self._exit_phrases = set(self._settings.exit_phrases_list)

        self._handlers: dict[DialogueState, Handler] = {
            DialogueState.IDLE: self._on_idle,
            DialogueState.ASK_REGISTRATION: self._on_ask_registration,
            DialogueState.AWAITING_NAME: self._on_awaiting_name,
            DialogueState.AWAITING_EMAIL: self._on_awaiting_email,
            DialogueState.CONFIRM_EMAIL: self._on_confirm_email,
            DialogueState.ASK_WALLET_OPTION: self._on_ask_wallet_option,
            DialogueState.AWAITING_WALLET: self._on_awaiting_wallet,
            DialogueState.CONFIRM_WALLET: self._on_confirm_wallet,
            DialogueState.AWAITING_MENU_OPTION: self._on_menu_option,
            DialogueState.CREATE_NAME: self._on_create_name,
            DialogueState.CREATE_DESC: self._on_create_description,
            DialogueState.CREATE_MEMBERS: self._on_create_members,
            DialogueState.CREATE_CONFIRM: self._on_create_confirm,
            DialogueState.SELECT_WALLET: self._on_select_wallet,
            DialogueState.WALLET_SUBMENU: self._on_wallet_submenu,
        }
        missing = [s.value for s in DialogueState if s not in self._handlers]
        if missing:
            raise RuntimeError(f"No dialogue handler for states: {', '.join(missing)}")

        self._registry.on_expire = self._on_expire

    @property
    def handled_states(self) -> frozenset[DialogueState]:
        return frozenset(self._handlers)

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def handle_message(
        self,
        identity: str,
        text: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        """
        Process one inbound message and deliver the replies.

        Returns:
            The replies, in the order they were sent
        """
        correlation_id = correlation_id or create_correlation_id()
        raw = (text or "").strip()
        turn = Turn(identity=identity, raw=raw, token=raw.lower(), correlation_id=correlation_id)

        async with self._registry.acquire(identity) as session:
            if turn.token in self._exit_phrases:
                replies = await self._exit(session, turn)
            else:
                self._registry.touch(identity)
                handler = self._handlers[session.state]
                try:
                    replies = await handler(session, turn)
                except (StorageError, LedgerError) as e:
                    logger.error(
                        "dialogue_service_error",
                        identity=identity,
                        state=session.state.value,
                        error=str(e),
                    )
                    if self._audit_logger:
                        await self._audit_logger.log_external_service_error(
                            service=type(e).__name__,
                            error_message=str(e),
                            correlation_id=correlation_id,
                        )
                    replies = [messages.SERVICE_UNAVAILABLE]

            await self._deliver(identity, replies)
        return replies

    async def _exit(self, session: Session, turn: Turn) -> list[str]:
        previous = session.state
        self._registry.cancel_timeout(turn.identity)
        session.reset()
        if self._audit_logger:
            await self._audit_logger.log_session_exited(
                identity=turn.identity,
                previous_state=previous.value,
                correlation_id=turn.correlation_id,
            )
        return [messages.EXITED]

    async def _on_expire(self, identity: str, previous: DialogueState) -> None:
        """Called by the registry, under the identity's lock, once per expiry."""
        if self._audit_logger:
            await self._audit_logger.log_session_expired(
                identity=identity,
                previous_state=previous.value,
            )
        await self._deliver(identity, [messages.EXPIRED])

    async def _deliver(self, identity: str, replies: list[str]) -> None:
        for reply in replies:
            try:
                await self._transport.send(identity, reply)
            except TransportError as e:
                logger.error("transport_send_failed", identity=identity, error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_external_service_error(
                        service="transport",
                        error_message=str(e),
                    )
                return

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def _on_idle(self, session: Session, turn: Turn) -> list[str]:
        record = await self._store.find_by_phone(turn.identity)
        if self._audit_logger:
            await self._audit_logger.log_session_started(
                identity=turn.identity,
                registered=record is not None,
                correlation_id=turn.correlation_id,
            )

        if record is None:
            session.transition(DialogueState.ASK_REGISTRATION)
            return [messages.NOT_REGISTERED, messages.ASK_REGISTRATION]

        session.transition(DialogueState.AWAITING_MENU_OPTION)
        return [messages.greeting(record.name), messages.MAIN_MENU]

    async def _on_ask_registration(self, session: Session, turn: Turn) -> list[str]:
        answer = parse_yes_no(turn.token)
        if answer is None:
            return [messages.YES_NO_REPROMPT]
        if not answer:
            session.transition(DialogueState.IDLE)
            return [messages.REGISTRATION_DECLINED]

        session.transition(DialogueState.AWAITING_NAME)
        return [messages.ASK_NAME]

    async def _on_awaiting_name(self, session: Session, turn: Turn) -> list[str]:
        if not turn.raw:
            return [messages.INVALID_NAME]
        if len(turn.raw) > MAX_NAME_LENGTH:
            return [messages.text_too_long(MAX_NAME_LENGTH)]

        session.data.name = turn.raw
        session.transition(DialogueState.AWAITING_EMAIL)
        return [messages.ASK_EMAIL]

    async def _on_awaiting_email(self, session: Session, turn: Turn) -> list[str]:
        if not is_valid_email(turn.raw) or len(turn.raw) > MAX_EMAIL_LENGTH:
            return [messages.INVALID_EMAIL]

        session.data.email = turn.token
        session.transition(DialogueState.CONFIRM_EMAIL)
        return [messages.confirm_email(session.data.email)]

    async def _on_confirm_email(self, session: Session, turn: Turn) -> list[str]:
        answer = parse_yes_no(turn.token)
        if answer is None:
            return [messages.YES_NO_REPROMPT]
        if not answer:
            session.data.email = None
            session.transition(DialogueState.AWAITING_EMAIL)
            return [messages.REASK_EMAIL]

        session.transition(DialogueState.ASK_WALLET_OPTION)
        return [messages.ASK_WALLET_OPTION]

    async def _on_ask_wallet_option(self, session: Session, turn: Turn) -> list[str]:
        if turn.token == "1":
            session.transition(DialogueState.AWAITING_WALLET)
            return [messages.ASK_WALLET_ADDRESS]
        if turn.token == "2":
            session.transition(DialogueState.AWAITING_WALLET)
            return [messages.wallet_register_link(self._settings.wallet_register_url)]
        return [messages.WALLET_OPTION_REPROMPT]

    async def _on_awaiting_wallet(self, session: Session, turn: Turn) -> list[str]:
        if not is_valid_address(turn.raw):
            return [messages.INVALID_ADDRESS]

        session.data.address = turn.token
        session.transition(DialogueState.CONFIRM_WALLET)
        return [messages.confirm_wallet(session.data.address)]

    async def _on_confirm_wallet(self, session: Session, turn: Turn) -> list[str]:
        answer = parse_yes_no(turn.token)
        if answer is None:
            return [messages.YES_NO_REPROMPT]
        if not answer:
            session.data.address = None
            session.transition(DialogueState.ASK_WALLET_OPTION)
            return [messages.REASK_WALLET]

        data = session.data
        try:
            record = IdentityRecord(
                phone=turn.identity,
                name=data.name,
                email=data.email,
                address=data.address,
            )
            await self._store.insert(record)
        except DuplicateError as e:
            return await self._recover_duplicate(session, turn, e)
        except (StorageError, RecordValidationError) as e:
            logger.error("registration_write_failed", identity=turn.identity, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_registration_failed(
                    identity=turn.identity,
                    error_message=str(e),
                    correlation_id=turn.correlation_id,
                )
            session.transition(DialogueState.IDLE)
            return [messages.REGISTRATION_FAILED]

        if self._audit_logger:
            await self._audit_logger.log_registration_completed(
                identity=turn.identity,
                address=record.address,
                correlation_id=turn.correlation_id,
            )
        data.name = data.email = data.address = None
        session.transition(DialogueState.AWAITING_MENU_OPTION)
        return [messages.registration_completed(record.name), messages.MAIN_MENU]

    async def _recover_duplicate(
        self,
        session: Session,
        turn: Turn,
        error: DuplicateError,
    ) -> list[str]:
        """Re-ask whichever field collided with an existing identity."""
        if self._audit_logger:
            await self._audit_logger.log_registration_failed(
                identity=turn.identity,
                error_message=str(error),
                field=error.field,
                correlation_id=turn.correlation_id,
            )

        if error.field == "email":
            session.data.email = None
            session.transition(DialogueState.AWAITING_EMAIL)
            return [messages.EMAIL_TAKEN]
        if error.field == "address":
            session.data.address = None
            session.transition(DialogueState.ASK_WALLET_OPTION)
            return [messages.ADDRESS_TAKEN]

        # phone: this identity is already registered
        session.data.name = session.data.email = session.data.address = None
        session.transition(DialogueState.AWAITING_MENU_OPTION)
        return [messages.PHONE_TAKEN, messages.MAIN_MENU]

    # =========================================================================
    # MAIN MENU
    # =========================================================================

    async def _on_menu_option(self, session: Session, turn: Turn) -> list[str]:
        if turn.token == "1":
            return await self._show_balance(turn)

        if turn.token == "2":
            try:
                draft = await self._wallets.start(turn.identity)
            except NotRegisteredError:
                return [messages.NO_CREATOR_ADDRESS]
            session.data.draft = draft
            session.transition(DialogueState.CREATE_NAME)
            return [messages.CREATE_ASK_NAME]

        if turn.token == "3":
            record = await self._store.find_by_phone(turn.identity)
            wallets = list(record.wallets) if record else []
            if not wallets:
                return [messages.NO_COMMUNITY_WALLETS]
            session.data.wallet_list = wallets
            session.data.selected_wallet = None
            session.transition(DialogueState.SELECT_WALLET)
            return [messages.wallet_list(wallets)]

        if turn.token == REGISTER_TOKEN:
            return [messages.ALREADY_REGISTERED]

        return [messages.MENU_REPROMPT]

    async def _show_balance(self, turn: Turn) -> list[str]:
        try:
            summary = await self._aggregator.personal_and_community_balance(
                turn.identity,
                correlation_id=turn.correlation_id,
            )
        except NotRegisteredError:
            return [messages.NO_ADDRESS]
        except (LedgerError, UnsupportedCapabilityError) as e:
            logger.warning("balance_unavailable", identity=turn.identity, error=str(e))
            return [messages.BALANCE_UNAVAILABLE]
        return [messages.balance_summary(
            summary,
            symbol=self._settings.native_symbol,
            currency=self._settings.local_currency,
        )]

    # =========================================================================
    # COMMUNITY WALLET CREATION
    # =========================================================================

    async def _on_create_name(self, session: Session, turn: Turn) -> list[str]:
        if not turn.raw:
            return [messages.INVALID_NAME]
        if len(turn.raw) > MAX_NAME_LENGTH:
            return [messages.text_too_long(MAX_NAME_LENGTH)]

        session.data.draft.name = turn.raw
        session.transition(DialogueState.CREATE_DESC)
        return [messages.CREATE_ASK_DESCRIPTION]

    async def _on_create_description(self, session: Session, turn: Turn) -> list[str]:
        if not turn.raw:
            return [messages.CREATE_ASK_DESCRIPTION]
        if len(turn.raw) > MAX_DESCRIPTION_LENGTH:
            return [messages.text_too_long(MAX_DESCRIPTION_LENGTH)]

        description = "" if turn.token == SKIP_TOKEN else turn.raw
        session.data.draft.description = description
        session.transition(DialogueState.CREATE_MEMBERS)
        return [messages.CREATE_ASK_MEMBERS]

    async def _on_create_members(self, session: Session, turn: Turn) -> list[str]:
        valid, invalid = parse_address_list(turn.raw)
        if invalid:
            return [messages.invalid_members(invalid)]
        if not valid:
            return [messages.NO_VALID_MEMBERS]

        session.data.draft = session.data.draft.with_members(valid)
        session.transition(DialogueState.CREATE_CONFIRM)
        return [messages.creation_summary(session.data.draft)]

    async def _on_create_confirm(self, session: Session, turn: Turn) -> list[str]:
        answer = parse_yes_no(turn.token)
        if answer is None:
            return [messages.CREATE_CONFIRM_REPROMPT]

        draft = session.data.draft
        session.data.draft = None
        session.transition(DialogueState.AWAITING_MENU_OPTION)

        if not answer:
            return [messages.CREATION_CANCELLED]

        if self._audit_logger:
            await self._audit_logger.log_wallet_creation_confirmed(
                identity=turn.identity,
                name=draft.name,
                members=draft.members,
                correlation_id=turn.correlation_id,
            )
        try:
            result = await self._wallets.create(draft, correlation_id=turn.correlation_id)
        except (LedgerError, ValidationError) as e:
            return [messages.wallet_creation_failed(str(e))]
        return [messages.wallet_created(result)]

    # =========================================================================
    # COMMUNITY WALLET BROWSING
    # =========================================================================

    async def _on_select_wallet(self, session: Session, turn: Turn) -> list[str]:
        wallets = session.data.wallet_list
        if not turn.token.isdigit() or not 1 <= int(turn.token) <= len(wallets):
            return [messages.INVALID_WALLET_SELECTION]

        session.data.selected_wallet = wallets[int(turn.token) - 1]
        session.transition(DialogueState.WALLET_SUBMENU)
        return [messages.wallet_selected(session.data.selected_wallet)]

    async def _on_wallet_submenu(self, session: Session, turn: Turn) -> list[str]:
        wallet = session.data.selected_wallet
        if not wallet:
            session.transition(DialogueState.AWAITING_MENU_OPTION)
            return [messages.MISSING_SELECTION]

        if turn.token == "a":
            return await self._show_dashboard(wallet, turn)
        if turn.token == "b":
            return await self._show_contributions(wallet, turn)
        if turn.token == "c":
            return await self._show_history(wallet, turn)
        if turn.token == MENU_TOKEN:
            session.data.selected_wallet = None
            session.data.wallet_list = []
            session.transition(DialogueState.AWAITING_MENU_OPTION)
            return [messages.BACK_TO_MENU]
        return [messages.SUBMENU_REPROMPT]

    async def _show_dashboard(self, wallet: str, turn: Turn) -> list[str]:
        try:
            view = await self._aggregator.dashboard(wallet, correlation_id=turn.correlation_id)
        except (LedgerError, StorageError) as e:
            logger.warning("dashboard_unavailable", wallet=wallet, error=str(e))
            return [messages.DASHBOARD_UNAVAILABLE]
        return [messages.dashboard(
            view,
            symbol=self._settings.native_symbol,
            currency=self._settings.local_currency,
        )]

    async def _show_contributions(self, wallet: str, turn: Turn) -> list[str]:
        try:
            report = await self._aggregator.contributions(wallet, correlation_id=turn.correlation_id)
        except UnsupportedCapabilityError:
            return [messages.CONTRIBUTIONS_UNSUPPORTED]
        except LedgerError as e:
            logger.warning("contributions_unavailable", wallet=wallet, error=str(e))
            return [messages.CONTRIBUTIONS_UNAVAILABLE]

        if not report.contributions:
            return [messages.NO_CONTRIBUTIONS]
        return [messages.contributions(
            report,
            limit=self._settings.contributions_display_limit,
            symbol=self._settings.native_symbol,
            currency=self._settings.local_currency,
        )]

    async def _show_history(self, wallet: str, turn: Turn) -> list[str]:
        try:
            history = await self._aggregator.proposal_history(wallet, correlation_id=turn.correlation_id)
        except (LedgerError, StorageError) as e:
            logger.warning("history_unavailable", wallet=wallet, error=str(e))
            return [messages.HISTORY_UNAVAILABLE]
        return [messages.proposal_history(history, symbol=self._settings.native_symbol)]
