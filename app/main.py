"""
Streamlit Frontend for Wallet Ledger

The UI is a thin caller of LedgerService. It never computes or writes
a balance itself.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Both views visible side by side (Physical vs Logical)
3. Clear error messages in simple language
4. Visual feedback for all operations
5. No hidden actions: discrepancies are shown, never auto-fixed
"""

import asyncio
import logging
import threading
from datetime import datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import streamlit as st

from walletledger.config import get_settings, validate_all_settings
from walletledger.ledger import (
    BalanceDiscrepancyDetector,
    LedgerError,
    PartialMutationError,
    ValidationError,
)
from walletledger.models import TransactionDraft, TransactionType, WalletKind
from walletledger.orchestrator import LedgerService, create_ledger_components


# Page configuration
st.set_page_config(
    page_title="Wallet Ledger",
    page_icon="💰",
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
    .success-box {
        padding: 20px;
        background-color: #d4edda;
        border-radius: 10px;
        border-left: 5px solid #28a745;
        margin: 10px 0;
    }
    .error-box {
        padding: 20px;
        background-color: #f8d7da;
        border-radius: 10px;
        border-left: 5px solid #dc3545;
        margin: 10px 0;
    }
</style>
""", unsafe_allow_html=True)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """
    One event loop for the whole server, running in a daemon thread.

    The cached LedgerService is shared by every session, so its per-user
    locks must all live on the same loop.
    """
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="ledger-loop", daemon=True).start()
    return loop


def run_async(coro):
    """Run an engine coroutine on the shared loop and wait for its result."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


@st.cache_resource
def get_service() -> LedgerService:
    """Get or create the ledger service (cached)."""
    logging.basicConfig(
        level=logging.DEBUG if get_settings().app.debug_mode else logging.INFO
    )
    return create_ledger_components(use_storage=True)


def current_user_id() -> str:
    if "user_id" not in st.session_state:
        st.session_state.user_id = get_settings().app.default_user_id
    return st.session_state.user_id


def parse_amount(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.strip())
    except (InvalidOperation, AttributeError):
        return None


def show_ledger_error(error: LedgerError) -> None:
    """Render an engine error in plain language."""
    if isinstance(error, PartialMutationError):
        if error.compensated:
            st.error(
                f"❌ The change could not be completed (step: {error.stage}). "
                "Your balances were restored; please try again."
            )
        else:
            st.error(
                f"🚨 The change failed half-way (step: {error.stage}) and balances "
                "could NOT be restored. Open 'Discrepancy Debug' and reconcile manually."
            )
    elif isinstance(error, ValidationError) and error.issues:
        for issue in error.issues:
            if issue.severity == "error":
                st.error(f"❌ {issue.message}")
            else:
                st.warning(f"⚠️ {issue.message}")
    else:
        st.error(f"❌ {error}")


def main():
    """Main application entry point."""
    service = get_service()
    user_id = current_user_id()

    # Sidebar navigation
    st.sidebar.title("💰 Wallet Ledger")
    st.sidebar.caption(f"User: {user_id}")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["👛 Wallets", "🧾 Transactions", "🔎 Discrepancy Debug", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **How it works:**
        - Physical wallets are where money actually is
        - Logical wallets are what the money is for
        - Both views must always add up to the same total
        """
    )

    # Route to appropriate page
    if page == "👛 Wallets":
        render_wallets_page(service, user_id)
    elif page == "🧾 Transactions":
        render_transactions_page(service, user_id)
    elif page == "🔎 Discrepancy Debug":
        render_discrepancy_page(service, user_id)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_wallets_page(service: LedgerService, user_id: str):
    """Render the wallet overview and the new-wallet form."""
    st.title("👛 Wallets")

    wallets = run_async(service.list_wallets(user_id))
    detector = BalanceDiscrepancyDetector(get_settings().ledger.discrepancy_tolerance)
    physical = detector.total_physical_balance(wallets)
    logical = detector.total_logical_balance(wallets)

    col1, col2, col3 = st.columns(3)
    col1.metric("Physical total", f"{physical:,.2f}")
    col2.metric("Logical total", f"{logical:,.2f}")
    col3.metric("Difference", f"{detector.discrepancy_amount(physical, logical):,.2f}")

    if detector.has_discrepancy(physical, logical):
        st.markdown("""
        <div class="error-box">
            <h4>⚠️ The two views do not match</h4>
            <p>Open 'Discrepancy Debug' to find the first transaction where they diverged.</p>
        </div>
        """, unsafe_allow_html=True)
    elif wallets:
        st.markdown("""
        <div class="success-box">
            <h4>✅ Physical and Logical totals match</h4>
        </div>
        """, unsafe_allow_html=True)

    for kind in WalletKind:
        st.markdown(f"### {kind.value.title()} wallets")
        rows = [
            {
                "Name": w.name,
                "Balance": f"{w.balance:,.2f}",
                "Initial": f"{w.initial_balance:,.2f}",
                "From transactions": f"{w.transaction_balance:,.2f}",
            }
            for w in wallets if w.kind == kind
        ]
        if rows:
            st.table(rows)
        else:
            st.info(f"No {kind.value} wallets yet.")

    st.markdown("---")
    st.markdown("### ➕ New wallet")
    with st.form("new_wallet"):
        name = st.text_input("Name")
        kind = st.selectbox(
            "Kind",
            options=list(WalletKind),
            format_func=lambda k: k.value.title(),
        )
        raw_initial = st.text_input("Initial balance", value="0")
        submitted = st.form_submit_button("Create wallet", type="primary")

    if submitted:
        initial = parse_amount(raw_initial)
        if initial is None:
            st.error("❌ Initial balance must be a number")
            return
        try:
            wallet = run_async(service.create_wallet(user_id, name, kind, initial))
            st.success(f"✅ Created {wallet.kind.value} wallet '{wallet.name}'")
            st.rerun()
        except LedgerError as e:
            show_ledger_error(e)


def render_transaction_form(
    service: LedgerService,
    user_id: str,
    key: str,
    initial: Optional[TransactionDraft] = None,
) -> Optional[TransactionDraft]:
    """Form for a new or edited transaction. Returns a draft when submitted."""
    wallets = run_async(service.list_wallets(user_id))
    by_id = {w.id: w for w in wallets}
    labels = {w.id: f"{w.name} ({w.kind.value})" for w in wallets}
    physical_ids = [""] + [w.id for w in wallets if w.is_physical]
    logical_ids = [""] + [w.id for w in wallets if w.is_logical]
    all_ids = [""] + list(by_id)
    chosen = set(initial.effective_wallet_ids) if initial else set()

    def index_of(options: list[str], wanted: set[str]) -> int:
        for i, option in enumerate(options):
            if option and option in wanted:
                return i
        return 0

    with st.form(key):
        type_ = st.selectbox(
            "Type",
            options=list(TransactionType),
            index=list(TransactionType).index(initial.type) if initial else 0,
            format_func=lambda t: t.value.title(),
        )
        title = st.text_input("Title", value=initial.title if initial else "")
        raw_amount = st.text_input("Amount", value=str(initial.amount) if initial else "")
        day = st.date_input(
            "Date",
            value=initial.transaction_date.date() if initial else datetime.now(timezone.utc).date(),
        )

        st.caption("Income / expense")
        col1, col2 = st.columns(2)
        physical_id = col1.selectbox(
            "Physical wallet", options=physical_ids, index=index_of(physical_ids, chosen),
            format_func=lambda wid: labels.get(wid, "-"),
        )
        logical_id = col2.selectbox(
            "Logical wallet", options=logical_ids, index=index_of(logical_ids, chosen),
            format_func=lambda wid: labels.get(wid, "-"),
        )

        st.caption("Transfer")
        col3, col4 = st.columns(2)
        source_id = col3.selectbox(
            "From", options=all_ids,
            index=index_of(all_ids, {initial.source_wallet_id} if initial else set()),
            format_func=lambda wid: labels.get(wid, "-"),
        )
        destination_id = col4.selectbox(
            "To", options=all_ids,
            index=index_of(all_ids, {initial.destination_wallet_id} if initial else set()),
            format_func=lambda wid: labels.get(wid, "-"),
        )

        submitted = st.form_submit_button("Save", type="primary")

    if not submitted:
        return None

    amount = parse_amount(raw_amount)
    if amount is None:
        st.error("❌ Amount must be a number")
        return None

    return TransactionDraft(
        type=type_,
        title=title,
        amount=amount,
        affected_wallet_ids=tuple(wid for wid in (physical_id, logical_id) if wid),
        source_wallet_id=source_id,
        destination_wallet_id=destination_id,
        transaction_date=datetime.combine(day, time(12, 0), tzinfo=timezone.utc),
    )


def render_transactions_page(service: LedgerService, user_id: str):
    """Render transaction entry, history, edit and delete."""
    st.title("🧾 Transactions")

    with st.expander("➕ New transaction", expanded=True):
        draft = render_transaction_form(service, user_id, "new_transaction")
        if draft is not None:
            try:
                run_async(service.create_transaction(user_id, draft))
                st.success("✅ Transaction saved")
                st.rerun()
            except LedgerError as e:
                show_ledger_error(e)

    st.markdown("---")
    transactions = run_async(service.list_transactions(user_id))
    if not transactions:
        st.info("📋 Your transactions will appear here once you add them.")
        return

    for transaction in transactions:
        label = (
            f"{transaction.transaction_date:%Y-%m-%d} · {transaction.type.value} · "
            f"{transaction.amount:,.2f} · {transaction.title or '(untitled)'}"
        )
        with st.expander(label):
            edited = render_transaction_form(
                service,
                user_id,
                f"edit_{transaction.id}",
                initial=TransactionDraft.from_transaction(transaction),
            )
            if edited is not None:
                try:
                    run_async(service.edit_transaction(user_id, transaction.id, edited))
                    st.success("✅ Transaction updated")
                    st.rerun()
                except LedgerError as e:
                    show_ledger_error(e)

            if st.button("🗑️ Delete", key=f"delete_{transaction.id}"):
                try:
                    run_async(service.delete_transaction(user_id, transaction.id))
                    st.success("✅ Transaction deleted")
                    st.rerun()
                except LedgerError as e:
                    show_ledger_error(e)


def render_discrepancy_page(service: LedgerService, user_id: str):
    """Render the running balances, newest first, with the first discrepancy marked."""
    st.title("🔎 Discrepancy Debug")

    report = run_async(service.running_balance_report(user_id))

    if report.first_discrepancy_id is None:
        st.success(f"✅ No discrepancy in {report.transaction_count} transactions")
    else:
        st.error(f"⚠️ First discrepancy at transaction {report.first_discrepancy_id}")

    if report.unknown_wallet_ids:
        st.warning(
            "Transactions reference wallets that no longer exist: "
            + ", ".join(report.unknown_wallet_ids)
        )
    if report.invalid_transaction_ids:
        st.warning(
            "Transactions with an unusable amount were skipped: "
            + ", ".join(report.invalid_transaction_ids)
        )
    if report.balance_drift:
        st.warning(
            f"{len(report.balance_drift)} wallet(s) hold a stored balance that "
            "differs from their replayed history."
        )

    rows = [
        {
            "": "🚩" if entry.is_first_discrepancy else "",
            "Date": f"{entry.transaction.transaction_date:%Y-%m-%d %H:%M}",
            "Title": entry.transaction.title,
            "Type": entry.transaction.type.value,
            "Amount": f"{entry.transaction.amount:,.2f}",
            "Physical after": f"{entry.physical_total_after:,.2f}",
            "Logical after": f"{entry.logical_total_after:,.2f}",
            "Difference": f"{entry.discrepancy:,.2f}",
        }
        for entry in report.entries
    ]
    if rows:
        st.table(rows)


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Ledger engine", "ledger"),
        ("Google Sheets (Storage)", "google_sheets"),
        ("Application", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown(f"**Storage backend:** `{get_settings().app.storage_backend}`")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
