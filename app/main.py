"""
Streamlit Frontend for Household Ledger

This is the screen both household members use every day.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Explicit confirmation for imports and deletes
3. Clear error messages in simple language
4. No business rules here - every action goes through the orchestrator

All ledger work runs on ONE background asyncio loop so the debounce
timer and cloud writes keep running between Streamlit reruns.
"""

import asyncio
import threading
from datetime import date

import streamlit as st

from household_ledger.config import validate_all_settings
from household_ledger.models.ledger import (
    ALL_USERS,
    HouseholdUser,
    ManualEntryDraft,
    StagingState,
    TransactionType,
    UploadedDocument,
)
from household_ledger.notices import NoticeKind
from household_ledger.orchestrator import (
    ReceiptScanFlow,
    SessionFlow,
    StatementImportFlow,
    create_app_components,
)


# Page configuration
st.set_page_config(
    page_title="Household Ledger",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

MIME_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "pdf": "application/pdf",
}


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One long-lived loop in a daemon thread (cached for the process)."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, daemon=True).start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


def run_on_loop(fn, *args, **kwargs):
    """Run a plain flow method on the ledger loop (mutations arm the sync timer)."""
    async def _call():
        return fn(*args, **kwargs)
    return run_async(_call())


def get_components() -> tuple[SessionFlow, ReceiptScanFlow, StatementImportFlow]:
    """Get or create this browser session's flows."""
    if "components" not in st.session_state:
        try:
            st.session_state.components = create_app_components(use_cloud_storage=True)
        except Exception as e:
            st.error(f"Failed to initialize: {e}")
            st.stop()
    return st.session_state.components


def to_document(uploaded_file) -> UploadedDocument:
    extension = uploaded_file.name.rsplit(".", 1)[-1].lower()
    return UploadedDocument(
        filename=uploaded_file.name,
        mime_type=uploaded_file.type or MIME_BY_EXTENSION.get(extension, ""),
        data=uploaded_file.getvalue(),
    )


def render_notices(session_flow: SessionFlow):
    for notice in session_flow.notices.active():
        if notice.kind == NoticeKind.ERROR:
            st.error(notice.message)
        elif notice.kind == NoticeKind.SUCCESS:
            st.success(notice.message)
        else:
            st.info(notice.message)


def main():
    """Main application entry point."""
    session_flow, receipt_flow, statement_flow = get_components()
    run_async(session_flow.start())

    if not session_flow.is_signed_in:
        render_login_page(session_flow)
        return

    current = session_flow.current
    st.sidebar.title("💰 Household Ledger")
    st.sidebar.caption(current.session.email)

    names = current.ledger.user_names
    view_options = {
        "Both": ALL_USERS,
        names.user_a: HouseholdUser.USER_A,
        names.user_b: HouseholdUser.USER_B,
    }
    view_label = st.sidebar.radio("Showing:", list(view_options), index=0)
    view_user = view_options[view_label]

    page = st.sidebar.radio(
        "Navigate to:",
        ["📒 Dashboard", "🧾 Scan Receipt", "📄 Import Statement", "🏷️ Categories", "📊 Reports", "👤 Profile"],
        index=0,
    )
    if st.sidebar.button("Sign out"):
        run_async(session_flow.sign_out())
        st.rerun()
    if not current.coordinator.load_complete:
        st.sidebar.warning("Your saved data could not be loaded. Changes are not being saved.")
        if st.sidebar.button("Retry loading"):
            with st.spinner("Loading..."):
                run_async(session_flow.retry_initial_load())
            st.rerun()

    render_notices(session_flow)

    if page == "📒 Dashboard":
        render_dashboard(session_flow, view_user)
    elif page == "🧾 Scan Receipt":
        render_receipt_page(session_flow, receipt_flow)
    elif page == "📄 Import Statement":
        render_statement_page(session_flow, statement_flow)
    elif page == "🏷️ Categories":
        render_categories_page(session_flow)
    elif page == "📊 Reports":
        render_reports_page(session_flow, view_user)
    elif page == "👤 Profile":
        render_profile_page(session_flow)


def render_login_page(session_flow: SessionFlow):
    st.title("💰 Household Ledger")
    render_notices(session_flow)
    with st.form("login"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in")
    if submitted:
        with st.spinner("Signing in..."):
            _, ok, message = run_async(session_flow.sign_in(email, password))
        if ok:
            st.rerun()
        else:
            st.error(message)


def render_dashboard(session_flow: SessionFlow, view_user):
    current = session_flow.current
    summary = session_flow.summary(view_user)

    col1, col2, col3 = st.columns(3)
    col1.metric("Income", f"{summary.income:,.2f}")
    col2.metric("Expenses", f"{summary.expenses:,.2f}")
    col3.metric("Balance", f"{summary.balance:,.2f}")

    st.subheader("Add transaction")
    tx_type = st.radio("Type", [t.value for t in TransactionType], horizontal=True)
    categories = current.ledger.categories.by_type(TransactionType(tx_type))
    with st.form("add_transaction", clear_on_submit=True):
        amount = st.text_input("Amount")
        description = st.text_input("Description")
        category = st.selectbox("Category", categories, format_func=lambda c: c.name)
        owner = st.selectbox(
            "Who",
            list(HouseholdUser),
            index=list(HouseholdUser).index(current.acting_user),
            format_func=session_flow.display_name,
        )
        spent_on = st.date_input("Date", value=date.today())
        tags = st.text_input("Tags (comma separated)")
        submitted = st.form_submit_button("Add")
    if submitted:
        draft = ManualEntryDraft(
            type=TransactionType(tx_type),
            owner=owner,
            amount=amount,
            description=description,
            category_id=category.id if category else None,
            date=spent_on,
            tags=tags,
        )
        stored, result = run_on_loop(session_flow.add_manual_transaction, draft)
        if stored is None:
            st.error(current.validator.get_user_friendly_summary(result))
        else:
            st.rerun()

    st.subheader("Transactions")
    for tx in session_flow.visible_transactions(view_user, sort_field="date"):
        col1, col2, col3, col4, col5 = st.columns([2, 4, 2, 1, 1])
        sign = "+" if tx.type == TransactionType.INCOME else "-"
        col1.write(tx.date.date().isoformat())
        col2.write(f"**{tx.description}** · {session_flow.category_label(tx.category_id)} · {session_flow.display_name(tx.owner)}")
        col3.write(f"{sign}{tx.amount:,.2f}")
        if col4.button("✏️", key=f"edit_{tx.id}"):
            st.session_state.editing = tx.id
        if col5.button("🗑️", key=f"del_{tx.id}"):
            st.session_state.confirm_delete = tx.id
        if st.session_state.get("editing") == tx.id:
            render_edit_form(session_flow, tx)
        if st.session_state.get("confirm_delete") == tx.id:
            st.warning("Delete this transaction?")
            if st.button("Yes, delete", key=f"confirm_{tx.id}"):
                run_on_loop(session_flow.remove_transaction, tx.id, confirm=True)
                st.session_state.confirm_delete = None
                st.rerun()


def render_edit_form(session_flow: SessionFlow, tx):
    current = session_flow.current
    categories = current.ledger.categories.by_type(tx.type)
    category_ids = [c.id for c in categories]
    with st.form(f"edit_{tx.id}"):
        amount = st.text_input("Amount", value=str(tx.amount))
        description = st.text_input("Description", value=tx.description)
        category = st.selectbox(
            "Category",
            categories,
            index=category_ids.index(tx.category_id) if tx.category_id in category_ids else 0,
            format_func=lambda c: c.name,
        )
        owner = st.selectbox(
            "Who",
            list(HouseholdUser),
            index=list(HouseholdUser).index(tx.owner),
            format_func=session_flow.display_name,
        )
        spent_on = st.date_input("Date", value=tx.date.date())
        tags = st.text_input("Tags (comma separated)", value=", ".join(tx.tags))
        col1, col2 = st.columns(2)
        save = col1.form_submit_button("Save")
        cancel = col2.form_submit_button("Cancel")
    if cancel:
        st.session_state.editing = None
        st.rerun()
    if save:
        draft = ManualEntryDraft(
            type=tx.type,
            owner=owner,
            amount=amount,
            description=description,
            category_id=category.id if category else None,
            date=spent_on,
            tags=tags,
        )
        updated, result = run_on_loop(session_flow.update_transaction, tx.id, draft)
        if updated is None:
            st.error(current.validator.get_user_friendly_summary(result))
        else:
            st.session_state.editing = None
            st.rerun()


def render_receipt_page(session_flow: SessionFlow, receipt_flow: ReceiptScanFlow):
    st.header("🧾 Scan Receipt")
    uploaded_file = st.file_uploader(
        "Photo of the receipt",
        type=session_flow.app_settings.supported_formats_list,
    )
    if uploaded_file and st.button("Read receipt"):
        with st.spinner("Reading..."):
            fields, message = run_async(receipt_flow.scan_receipt(to_document(uploaded_file)))
        st.session_state.receipt_fields = fields
        if fields is None:
            st.error(message)

    fields = st.session_state.get("receipt_fields")
    if fields is None:
        return

    with st.form("receipt_review"):
        amount = st.number_input("Amount", min_value=0.0, value=float(fields.amount), step=0.01)
        description = st.text_input("Description", value=fields.description)
        category = st.text_input("Category", value=fields.category)
        spent_on = st.date_input("Date", value=fields.parsed_date())
        tags = st.text_input("Tags", value=", ".join(fields.tags))
        save = st.form_submit_button("Save expense")
    if save:
        reviewed = fields.model_copy(update={
            "amount": round(amount, 2),
            "description": description,
            "category": category,
            "date": spent_on.isoformat(),
            "tags": [t.strip() for t in tags.split(",") if t.strip()],
        })
        stored, message = run_on_loop(receipt_flow.add_scanned_receipt, reviewed)
        if stored is None:
            st.error(message)
        else:
            st.session_state.receipt_fields = None
            st.rerun()


def render_statement_page(session_flow: SessionFlow, statement_flow: StatementImportFlow):
    st.header("📄 Import Statement")
    staging = session_flow.current.staging

    if staging.state == StagingState.EMPTY:
        uploaded_file = st.file_uploader(
            "Card statement (image or PDF)",
            type=session_flow.app_settings.supported_formats_list,
        )
        if uploaded_file and st.button("Analyze statement"):
            with st.spinner("Analyzing..."):
                run_async(statement_flow.analyze_statement(to_document(uploaded_file)))
            st.rerun()
        return

    expense_names = session_flow.current.ledger.categories.names(TransactionType.EXPENSE)
    for item in staging.items:
        cols = st.columns([2, 4, 3, 2, 1])
        new_date = cols[0].date_input("Date", value=item.date, key=f"d_{item.temp_id}")
        new_desc = cols[1].text_input("Description", value=item.description, key=f"s_{item.temp_id}")
        options = expense_names if item.category in expense_names else expense_names + [item.category]
        new_cat = cols[2].selectbox("Category", options, index=options.index(item.category), key=f"c_{item.temp_id}")
        new_amount = cols[3].text_input("Amount", value=str(item.amount), key=f"a_{item.temp_id}")
        if cols[4].button("✖", key=f"r_{item.temp_id}"):
            run_on_loop(statement_flow.remove_staged, item.temp_id)
            st.rerun()

        for field, value, old in (
            ("date", new_date, item.date),
            ("description", new_desc, item.description),
            ("amount", new_amount, str(item.amount)),
        ):
            if value != old:
                ok, message = run_on_loop(statement_flow.update_staged, item.temp_id, field, value)
                if not ok:
                    st.error(message)
        if not item.is_category_resolved or new_cat != item.category:
            ok, message = run_on_loop(statement_flow.update_staged, item.temp_id, "category", new_cat)
            if not ok:
                st.warning(message)
                if st.button(f"Create category '{new_cat}'", key=f"n_{item.temp_id}"):
                    run_on_loop(statement_flow.create_staged_category, item.temp_id, new_cat)
                    st.rerun()

    st.markdown(f"**Total: {staging.running_total:,.2f}**")
    create_missing = False
    if staging.unresolved_categories:
        create_missing = st.checkbox(
            "Create missing categories on import: " + ", ".join(staging.unresolved_categories)
        )
    col1, col2 = st.columns(2)
    if col1.button("Import transactions"):
        run_on_loop(statement_flow.commit_import, create_missing)
        st.rerun()
    if col2.button("Cancel"):
        run_on_loop(statement_flow.cancel_import)
        st.rerun()


def render_categories_page(session_flow: SessionFlow):
    st.header("🏷️ Categories")
    categories = session_flow.current.ledger.categories
    for tx_type in TransactionType:
        st.subheader(tx_type.value.capitalize())
        for category in categories.by_type(tx_type):
            col1, col2, col3 = st.columns([4, 1, 1])
            new_name = col1.text_input("Name", value=category.name, key=f"cat_{category.id}", label_visibility="collapsed")
            if col2.button("Rename", key=f"ren_{category.id}") and new_name != category.name:
                _, message = run_on_loop(session_flow.rename_category, category.id, new_name, tx_type)
                st.info(message)
                st.rerun()
            if col3.button("Delete", key=f"delc_{category.id}"):
                st.session_state.confirm_delete_category = category.id
            if st.session_state.get("confirm_delete_category") == category.id:
                _, warning = run_on_loop(session_flow.delete_category, category.id, tx_type)
                st.warning(warning)
                yes, no = st.columns(2)
                if yes.button("Yes, delete", key=f"confirmc_{category.id}"):
                    run_on_loop(session_flow.delete_category, category.id, tx_type, confirm=True)
                    st.session_state.confirm_delete_category = None
                    st.rerun()
                if no.button("Keep it", key=f"keepc_{category.id}"):
                    st.session_state.confirm_delete_category = None
                    st.rerun()
        with st.form(f"add_{tx_type.value}", clear_on_submit=True):
            name = st.text_input(f"New {tx_type.value} category")
            if st.form_submit_button("Add"):
                _, message = run_on_loop(session_flow.add_category, name, tx_type)
                st.info(message)


def render_reports_page(session_flow: SessionFlow, view_user):
    st.header("📊 Reports")
    by_category = session_flow.category_report(view_user)
    if by_category:
        st.subheader("Expenses by category")
        st.bar_chart({row.label: float(row.total) for row in by_category})
    by_month = session_flow.monthly_report(view_user)
    if by_month:
        st.subheader("Income vs expenses by month")
        st.bar_chart({
            "income": {row.month: float(row.income) for row in by_month},
            "expense": {row.month: float(row.expense) for row in by_month},
        })
    by_tag = session_flow.tag_report(view_user)
    if by_tag:
        st.subheader("Top tags")
        st.table([{"tag": r.tag, "total": f"{r.total:,.2f}", "entries": r.count} for r in by_tag[:10]])
    if not (by_category or by_month):
        st.info("No transactions yet.")


def render_profile_page(session_flow: SessionFlow):
    st.header("👤 Profile")
    names = session_flow.current.ledger.user_names
    with st.form("names"):
        user_a = st.text_input("First member", value=names.user_a)
        user_b = st.text_input("Second member", value=names.user_b)
        if st.form_submit_button("Save"):
            ok, message = run_on_loop(session_flow.update_user_names, user_a, user_b)
            if ok:
                st.success(message)
            else:
                st.error(message)

    st.subheader("Connection status")
    status = validate_all_settings()
    services = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Firebase (Sign-in)", "firebase"),
        ("Gemini (Receipts and statements)", "gemini"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.subheader("Recent activity")
    for event in session_flow.audit_logger.recent_events(limit=20):
        st.caption(f"{event.timestamp:%Y-%m-%d %H:%M} · {event.description}")


if __name__ == "__main__":
    main()
