"""
Streamlit Console for Coperacha

Stands in for the chat gateway during development and demos: pick a
phone number, type messages, read the assistant's replies.

DESIGN PRINCIPLES:
1. The console talks to the same runtime a real gateway would
2. Replies are read from the transport outbox, so messages the bot
   sends on its own (inactivity timeout) show up too
3. Nothing here bypasses the dialogue engine

The engine keeps timers and locks on an event loop, so the console
runs one loop in a background thread for the life of the process
instead of a fresh loop per call.
"""

import asyncio
import threading
from decimal import Decimal

import streamlit as st

from coperacha.aggregation.conversions import AMOUNT_UNITS, UNIT_NATIVE
from coperacha.config import validate_all_settings
from coperacha.orchestrator import AppComponents, create_app_components
from coperacha.services.ledger import LedgerError, ProposalExpiredError, UnsupportedCapabilityError
from coperacha.validation import ValidationError


# Page configuration
st.set_page_config(
    page_title="Coperacha",
    page_icon="🤝",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .info-box {
        padding: 20px;
        background-color: #cce5ff;
        border-radius: 10px;
        border-left: 5px solid #004085;
        margin: 10px 0;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One long-lived loop, running in a daemon thread."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, name="coperacha-loop", daemon=True)
    thread.start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    future = asyncio.run_coroutine_threadsafe(coro, get_event_loop())
    return future.result()


async def _build_components() -> AppComponents:
    return create_app_components(use_storage=True)


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    return run_async(_build_components())


def main():
    """Main application entry point."""
    st.sidebar.title("🤝 Coperacha")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["💬 Chat", "🏦 Community Wallets", "💱 Exchange Rate", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **How to use:**
        1. Enter a phone number
        2. Say "hola" to start
        3. Write "adiós" to leave at any time

        Sessions expire after a few minutes without messages.
        """
    )

    if page == "⚙️ Settings":
        render_settings_page()
        return

    try:
        components = get_components()
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        st.info("Open ⚙️ Settings to see which configuration is missing.")
        return

    if page == "💬 Chat":
        render_chat_page(components)
    elif page == "🏦 Community Wallets":
        render_wallets_page(components)
    elif page == "💱 Exchange Rate":
        render_rate_page(components)


def _transcript(phone: str) -> list[tuple[str, str]]:
    transcripts = st.session_state.setdefault("transcripts", {})
    return transcripts.setdefault(phone, [])


def _collect_replies(components: AppComponents, phone: str) -> None:
    """Move everything the bot sent to this phone into the transcript."""
    replies = run_async(components.transport.drain(phone))
    _transcript(phone).extend(("assistant", reply) for reply in replies)


def render_chat_page(components: AppComponents):
    """Render the simulated chat."""
    st.title("💬 Chat")

    phone = st.text_input(
        "Phone number",
        value=st.session_state.get("phone", "50499990000"),
        help="The identity the assistant sees",
    ).strip()
    if not phone:
        st.info("Enter a phone number to start chatting.")
        return
    st.session_state.phone = phone

    # pick up anything sent while we were away (e.g. a timeout notice)
    _collect_replies(components, phone)

    for role, text in _transcript(phone):
        with st.chat_message(role):
            st.markdown(text)

    message = st.chat_input("Escribe un mensaje...")
    if message:
        _transcript(phone).append(("user", message))
        with st.spinner("..."):
            run_async(components.runtime.handle(phone, message))
        _collect_replies(components, phone)
        st.rerun()

    session = components.registry.get(phone)
    if session:
        st.caption(f"State: `{session.state.value}`")


def render_rate_page(components: AppComponents):
    """Render the exchange rate administration page."""
    st.title("💱 Exchange Rate")

    rate = run_async(components.rates.get_rate())
    st.markdown(f'<div class="big-number">1 ETH = {rate:,} HNL</div>', unsafe_allow_html=True)

    st.markdown("---")
    new_rate = st.text_input("New rate (HNL per ETH)", value="")
    if st.button("💾 Save Rate", type="primary"):
        try:
            stored = run_async(components.rates.set_rate(new_rate))
            st.success(f"Saved: 1 ETH = {Decimal(stored):,} HNL")
        except ValidationError as e:
            st.error(f"Invalid rate: {e}")
        except Exception as e:
            st.error(f"Could not save the rate: {e}")


def _show_receipt(receipt) -> None:
    st.success(f"Mined: {receipt.tx_hash}")
    if receipt.block_number is not None:
        st.caption(f"Block {receipt.block_number}")


def render_wallets_page(components: AppComponents):
    """Render the community wallet and proposal administration page."""
    st.title("🏦 Community Wallets")

    st.markdown("### All Wallets")
    if st.button("🔄 Load wallets from the factory"):
        try:
            st.session_state.all_wallets = run_async(components.wallet_workflow.list_all_wallets())
        except LedgerError as e:
            st.error(f"Could not read the factory: {e}")
    wallets = st.session_state.get("all_wallets", [])
    if wallets:
        st.dataframe([{"#": i, "wallet": w} for i, w in enumerate(wallets, start=1)], hide_index=True)

    st.markdown("### Address Lookup")
    address = st.text_input("Address (0x...)", key="lookup_address").strip()
    if address:
        if run_async(components.wallet_workflow.is_address_registered(address)):
            st.success("✅ A registered person uses this address")
        else:
            st.warning("No registered person uses this address")

        limit = st.number_input("Transactions to show", min_value=1, max_value=50, value=6)
        if st.button("🔁 Recent transactions"):
            try:
                records = run_async(components.aggregator.recent_transactions(address, limit=int(limit)))
            except UnsupportedCapabilityError:
                st.error("The node does not index transactions.")
            except LedgerError as e:
                st.error(f"Could not read transactions: {e}")
            else:
                if not records:
                    st.info("No transactions found.")
                else:
                    st.dataframe([
                        {
                            "direction": r.direction.value,
                            "amount (ETH)": str(r.amount.native),
                            "from": r.from_address,
                            "to": r.to_address,
                            "when": r.age,
                            "hash": r.hash,
                        }
                        for r in records
                    ], hide_index=True)

    st.markdown("---")
    st.markdown("### Proposals")
    proposals = components.proposal_workflow
    expense_tab, member_tab, confirm_tab = st.tabs(["💸 Expense", "👤 New member", "🗳️ Confirm"])

    with expense_tab:
        with st.form("expense_proposal"):
            wallet = st.text_input("Wallet", key="expense_wallet")
            recipient = st.text_input("Recipient", key="expense_recipient")
            member = st.text_input("Proposing member", key="expense_member")
            amount = st.text_input("Amount", key="expense_amount")
            unit = st.selectbox("Unit", AMOUNT_UNITS, index=AMOUNT_UNITS.index(UNIT_NATIVE), key="expense_unit")
            description = st.text_input("Description", key="expense_description")
            submitted = st.form_submit_button("Submit proposal", type="primary")
        if submitted:
            try:
                _show_receipt(run_async(proposals.propose_expense(
                    wallet, recipient, member, amount, description, unit=unit
                )))
            except ValidationError as e:
                st.error(f"Invalid proposal: {e}")
            except LedgerError as e:
                st.error(f"The ledger rejected the proposal: {e}")

    with member_tab:
        with st.form("member_proposal"):
            wallet = st.text_input("Wallet", key="member_wallet")
            new_member = st.text_input("New member", key="member_new_member")
            member = st.text_input("Proposing member", key="member_member")
            description = st.text_input("Description", key="member_description")
            submitted = st.form_submit_button("Submit proposal", type="primary")
        if submitted:
            try:
                _show_receipt(run_async(proposals.propose_member(
                    wallet, new_member, member, description
                )))
            except ValidationError as e:
                st.error(f"Invalid proposal: {e}")
            except LedgerError as e:
                st.error(f"The ledger rejected the proposal: {e}")

    with confirm_tab:
        with st.form("confirm_proposal"):
            wallet = st.text_input("Wallet", key="confirm_wallet")
            proposal_id = st.number_input("Proposal #", min_value=0, value=0, step=1, key="confirm_proposal_id")
            member = st.text_input("Confirming member", key="confirm_member")
            submitted = st.form_submit_button("Confirm", type="primary")
        if submitted:
            try:
                _show_receipt(run_async(proposals.confirm_proposal(
                    wallet, int(proposal_id), member
                )))
            except ValidationError as e:
                st.error(f"Invalid confirmation: {e}")
            except ProposalExpiredError:
                st.error(f"Proposal #{int(proposal_id)} has expired.")
            except LedgerError as e:
                st.error(f"The ledger rejected the confirmation: {e}")


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    services = [
        ("Ledger node", "ledger"),
        ("Google Sheets (Storage)", "google_sheets"),
        ("Application", "app"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with the `LEDGER_*` "
        "and `GOOGLE_SHEETS_*` variables. Without Google Sheets the assistant "
        "keeps its records in memory."
    )


if __name__ == "__main__":
    main()
