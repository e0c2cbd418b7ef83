"""
Main Orchestrator for Household Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Session (sign in → fetch ledger → sync on change → sign out)
2. Receipt scan (photo → extraction → pre-filled expense)
3. Statement import (file → extraction → staging → review → commit)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Network and extraction failures never escape a flow; they become notices
- Statement items never reach the ledger without an explicit commit
- Destructive deletes need explicit confirmation
- Every user action is audited

Flows return tuples like (result, ok, message) so the UI can render the
outcome without catching exceptions.
"""

import asyncio
import datetime as dt
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from household_ledger.audit import AuditLogger
from household_ledger.config import get_settings
from household_ledger.config.settings import AppSettings, SyncSettings
from household_ledger.models.audit import AuditEventBuilder, AuditEventType
from household_ledger.models.ledger import (
    ALL_USERS,
    DEFAULT_EXPENSE_CATEGORY,
    DEFAULT_RECEIPT_DESCRIPTION,
    MAX_CATEGORY_NAME_LENGTH,
    Category,
    ExpenseFields,
    HouseholdUser,
    ManualEntryDraft,
    StagedTransaction,
    Transaction,
    TransactionType,
    UploadedDocument,
    UserNames,
    ValidationIssue,
    ValidationResult,
    ViewUser,
)
from household_ledger.notices import NoticeBoard
from household_ledger.reports import (
    CategoryTotal,
    MonthTotal,
    Summary,
    TagTotal,
    sort_transactions,
    summarize,
    totals_by_category,
    totals_by_month,
    totals_by_tag,
)
from household_ledger.services.extraction import (
    ExtractionError,
    GeminiExtractionService,
)
from household_ledger.services.identity import (
    AuthError,
    FirebaseIdentityProvider,
    IdentityProviderInterface,
    Session,
)
from household_ledger.services.storage import (
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
)
from household_ledger.staging import (
    ImportStagingBuffer,
    StagingError,
    UnknownCategoryError,
)
from household_ledger.stores import Ledger
from household_ledger.subscriptions import Subscription
from household_ledger.sync import SyncCoordinator
from household_ledger.validation import EntryValidator, ValidationError

logger = structlog.get_logger(__name__)

_NAME_TOO_LONG = f"Category names can be at most {MAX_CATEGORY_NAME_LENGTH} characters."


class NotSignedInError(RuntimeError):
    """A ledger operation was attempted without an open session."""
    pass


def acting_user_for(email: str, user_a_prefix: Optional[str]) -> HouseholdUser:
    """
    Map a signed-in account to a household member.

    Emails starting with the configured prefix act as user A, all others
    as user B. Without a prefix everybody acts as user A.
    """
    if not user_a_prefix:
        return HouseholdUser.USER_A
    if email.strip().lower().startswith(user_a_prefix.strip().lower()):
        return HouseholdUser.USER_A
    return HouseholdUser.USER_B


class LedgerSession:
    """Everything owned by one signed-in account. Dropped on sign-out."""

    def __init__(
        self,
        session: Session,
        ledger: Ledger,
        coordinator: SyncCoordinator,
        staging: ImportStagingBuffer,
        acting_user: HouseholdUser,
    ):
        self.session = session
        self.ledger = ledger
        self.coordinator = coordinator
        self.staging = staging
        self.acting_user = acting_user
        self.validator = EntryValidator(ledger.categories)

    @property
    def user_id(self) -> str:
        return self.session.user_id

    def close(self) -> None:
        """Stop syncing first, then clear staged and local state."""
        self.coordinator.close()
        self.staging.cancel()
        self.ledger.reset()


class SessionFlow:
    """
    Orchestrates the signed-in lifecycle and all direct ledger edits.

    Flow:
    1. Sign in → identity provider reports a session
    2. Open → build Ledger, SyncCoordinator, staging buffer
    3. Initial load → fetch once with retry, enable debounced pushes
    4. Edit → every mutation schedules a cloud write
    5. Sign out → flush, close coordinator, cancel staging, reset ledger
    """

    def __init__(
        self,
        identity: IdentityProviderInterface,
        document_store: DocumentStoreInterface,
        notices: Optional[NoticeBoard] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
        sync_settings: Optional[SyncSettings] = None,
    ):
        settings = get_settings() if app_settings is None or sync_settings is None else None
        self._app_settings = app_settings or settings.app
        self._sync_settings = sync_settings or settings.sync
        self._identity = identity
        self._store = document_store
        self._notices = notices or NoticeBoard.from_settings(self._app_settings)
        self._audit_logger = audit_logger or AuditLogger()

        self._current: Optional[LedgerSession] = None
        self._opening: Optional[asyncio.Task] = None
        self._identity_subscription: Optional[Subscription] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def notices(self) -> NoticeBoard:
        return self._notices

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    @property
    def app_settings(self) -> AppSettings:
        return self._app_settings

    @property
    def current(self) -> Optional[LedgerSession]:
        return self._current

    @property
    def is_signed_in(self) -> bool:
        return self._current is not None

    def require_session(self) -> LedgerSession:
        if self._current is None:
            raise NotSignedInError("Sign in first")
        return self._current

    async def start(self) -> None:
        """Listen to the identity provider. Resumes an existing session if there is one."""
        if self._identity_subscription is None:
            self._identity_subscription = self._identity.on_session_change(self._on_session_change)
        if self._opening is not None:
            await self._opening

    async def stop(self) -> None:
        """Detach from the identity provider and drop local state."""
        if self._identity_subscription is not None:
            self._identity_subscription.close()
            self._identity_subscription = None
        self._close_current()

    def _on_session_change(self, session: Optional[Session]) -> None:
        if session is None:
            self._close_current()
            return
        if self._current is not None and self._current.user_id == session.user_id:
            return
        self._close_current()
        self._opening = asyncio.ensure_future(self._open(session))

    async def _open(self, session: Session) -> LedgerSession:
        default_names = UserNames(
            user_a=self._app_settings.user_a_default_name,
            user_b=self._app_settings.user_b_default_name,
        )
        ledger = Ledger(default_names)
        coordinator = SyncCoordinator(
            ledger,
            self._store,
            session.user_id,
            settings=self._sync_settings,
            notices=self._notices,
            audit_logger=self._audit_logger,
        )
        opened = LedgerSession(
            session=session,
            ledger=ledger,
            coordinator=coordinator,
            staging=ImportStagingBuffer(ledger),
            acting_user=acting_user_for(session.email, self._app_settings.user_a_email_prefix),
        )
        self._current = opened
        logger.info("session_opened", user_id=session.user_id, acting_user=opened.acting_user.value)
        await coordinator.initial_load()
        return opened

    def _close_current(self) -> None:
        if self._opening is not None and not self._opening.done():
            self._opening.cancel()
        self._opening = None
        if self._current is not None:
            closing, self._current = self._current, None
            closing.close()
            logger.info("session_closed", user_id=closing.user_id)

    async def sign_in(self, email: str, password: str) -> tuple[Optional[LedgerSession], bool, str]:
        """
        Sign in and load the household ledger.

        Returns:
            (ledger_session, signed_in, message)
        """
        await self.start()
        try:
            session = await self._identity.sign_in(email, password)
        except AuthError as e:
            self._audit_logger.log_auth_failed(email=email, reason=e.kind.value)
            self._notices.error(str(e))
            return None, False, str(e)

        if self._opening is not None:
            try:
                await self._opening
            except asyncio.CancelledError:
                pass

        # Providers that don't notify synchronously
        if self._current is None or self._current.user_id != session.user_id:
            self._on_session_change(session)
            await self._opening

        self._audit_logger.log_signed_in(email=session.email, user_id=session.user_id)
        return self._current, True, f"Signed in as {session.email}"

    async def sign_out(self) -> None:
        """Persist pending changes, then end the session and clear local state."""
        current = self._current
        email = current.session.email if current else None
        if current is not None and current.coordinator.load_complete:
            await current.coordinator.flush()
        await self._identity.sign_out()
        self._close_current()
        self._audit_logger.log_signed_out(email=email)

    async def flush(self) -> None:
        if self._current is not None:
            await self._current.coordinator.flush()

    async def retry_initial_load(self) -> bool:
        current = self.require_session()
        return await current.coordinator.initial_load()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def add_manual_transaction(
        self,
        draft: ManualEntryDraft,
    ) -> tuple[Optional[Transaction], ValidationResult]:
        """
        Validate a form entry and add it to the ledger.

        Returns:
            (stored transaction or None, validation result)
        """
        current = self.require_session()
        try:
            transaction, result = current.validator.build_transaction(draft, current.acting_user)
        except ValidationError as e:
            self._audit_logger.log(AuditEventBuilder.manual_entry_rejected(
                issues=[issue.model_dump() for issue in e.result.errors],
                actor=current.acting_user.value,
            ))
            return None, e.result

        stored = current.ledger.transactions.add(transaction)
        self._audit_logger.log_transaction_added(
            transaction_id=stored.id,
            transaction_type=stored.type.value,
            amount=str(stored.amount),
            actor=current.acting_user.value,
        )
        self._notices.success("Transaction added.")
        return stored, result

    def update_transaction(
        self,
        transaction_id: str,
        draft: ManualEntryDraft,
    ) -> tuple[Optional[Transaction], ValidationResult]:
        """
        Validate an edited entry and replace the stored one.

        The id and created_at of the original are kept, as are its owner
        and date when the draft leaves them blank.
        """
        current = self.require_session()
        original = current.ledger.transactions.get(transaction_id)
        if original is None:
            return None, ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                is_valid=False,
                issues=[ValidationIssue(
                    field="id",
                    issue_type="missing",
                    message="Transaction not found",
                    severity="error",
                )],
            )

        try:
            edited, result = current.validator.build_transaction(draft, original.owner)
        except ValidationError as e:
            return None, e.result

        updates = {"id": original.id, "created_at": original.created_at}
        if not draft.date:
            updates["date"] = original.date
        edited = edited.model_copy(update=updates)
        current.ledger.transactions.update(edited)
        self._audit_logger.log_transaction_changed(
            AuditEventType.TRANSACTION_UPDATED,
            transaction_id=edited.id,
            actor=current.acting_user.value,
        )
        self._notices.success("Transaction updated.")
        return edited, result

    def remove_transaction(self, transaction_id: str, confirm: bool = False) -> tuple[bool, str]:
        current = self.require_session()
        if not confirm:
            return False, "Confirm to delete this transaction."
        removed = current.ledger.transactions.remove(transaction_id)
        if not removed:
            return False, "Transaction not found."
        self._audit_logger.log_transaction_changed(
            AuditEventType.TRANSACTION_REMOVED,
            transaction_id=transaction_id,
            actor=current.acting_user.value,
        )
        self._notices.success("Transaction deleted.")
        return True, "Transaction deleted."

    # -------------------------------------------------------------------------
    # Categories & names
    # -------------------------------------------------------------------------

    def add_category(
        self,
        name: str,
        category_type: TransactionType,
    ) -> tuple[Optional[Category], str]:
        current = self.require_session()
        if not name or not name.strip():
            return None, "Category name cannot be empty."
        if len(name.strip()) > MAX_CATEGORY_NAME_LENGTH:
            return None, _NAME_TOO_LONG
        category = current.ledger.categories.add(name, category_type)
        if category is None:
            return None, f"Category '{name.strip()}' already exists."
        self._audit_logger.log_category_changed(
            AuditEventType.CATEGORY_ADDED,
            category_id=category.id,
            name=category.name,
            category_type=category.type.value,
        )
        return category, f"Category '{category.name}' added."

    def rename_category(
        self,
        category_id: str,
        new_name: str,
        category_type: TransactionType,
    ) -> tuple[Optional[Category], str]:
        current = self.require_session()
        if not new_name or not new_name.strip():
            return None, "Category name cannot be empty."
        if len(new_name.strip()) > MAX_CATEGORY_NAME_LENGTH:
            return None, _NAME_TOO_LONG
        renamed = current.ledger.categories.rename(category_id, new_name, category_type)
        if renamed is None:
            return None, "Category not found or name already in use."
        self._audit_logger.log_category_changed(
            AuditEventType.CATEGORY_RENAMED,
            category_id=renamed.id,
            name=renamed.name,
            category_type=renamed.type.value,
        )
        return renamed, f"Category renamed to '{renamed.name}'."

    def delete_category(
        self,
        category_id: str,
        category_type: TransactionType,
        confirm: bool = False,
    ) -> tuple[bool, str]:
        """Delete a category. Transactions that use it keep their reference."""
        current = self.require_session()
        category = current.ledger.categories.get(category_id, category_type)
        if category is None:
            return False, "Category not found."
        in_use = sum(1 for t in current.ledger.transactions if t.category_id == category_id)
        if not confirm:
            warning = f" {in_use} transactions use it." if in_use else ""
            return False, f"Confirm to delete '{category.name}'.{warning}"
        current.ledger.categories.delete(category_id, category_type)
        self._audit_logger.log_category_changed(
            AuditEventType.CATEGORY_DELETED,
            category_id=category.id,
            name=category.name,
            category_type=category.type.value,
        )
        return True, f"Category '{category.name}' deleted."

    def update_user_names(self, user_a: str, user_b: str) -> tuple[bool, str]:
        current = self.require_session()
        try:
            names = UserNames(user_a=user_a, user_b=user_b)
        except ValueError:
            return False, "Names must be between 1 and 50 characters."
        current.ledger.update_user_names(names)
        self._audit_logger.log(AuditEventBuilder.user_names_updated(
            user_a=names.user_a,
            user_b=names.user_b,
            actor=current.acting_user.value,
        ))
        return True, "Names updated."

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def visible_transactions(
        self,
        view_user: ViewUser = ALL_USERS,
        sort_field: Optional[str] = None,
        descending: bool = True,
    ) -> list[Transaction]:
        current = self.require_session()
        entries = current.ledger.transactions.filter_by_user(view_user)
        if sort_field:
            entries = sort_transactions(entries, sort_field, descending)
        return entries

    def summary(self, view_user: ViewUser = ALL_USERS) -> Summary:
        return summarize(self.visible_transactions(view_user))

    def category_report(
        self,
        view_user: ViewUser = ALL_USERS,
        transaction_type: TransactionType = TransactionType.EXPENSE,
    ) -> list[CategoryTotal]:
        current = self.require_session()
        return totals_by_category(
            self.visible_transactions(view_user),
            current.ledger.categories,
            transaction_type,
        )

    def monthly_report(self, view_user: ViewUser = ALL_USERS) -> list[MonthTotal]:
        return totals_by_month(self.visible_transactions(view_user))

    def tag_report(self, view_user: ViewUser = ALL_USERS) -> list[TagTotal]:
        return totals_by_tag(self.visible_transactions(view_user))

    def category_label(self, category_id: str) -> str:
        return self.require_session().ledger.categories.label_for(category_id)

    def display_name(self, user: HouseholdUser) -> str:
        return self.require_session().ledger.user_names.display(user)


def _check_upload(document: UploadedDocument, settings: AppSettings) -> Optional[str]:
    if document.size_bytes > settings.max_upload_size_bytes:
        return f"File is too large (max {settings.max_upload_size_mb} MB)."
    if document.size_bytes == 0:
        return "File is empty."
    return None


class ReceiptScanFlow:
    """
    Orchestrates receipt scanning.

    Flow:
    1. Extract → Gemini reads amount, description, date, category, tags
    2. Add → expense recorded for the acting user; a missing suggested
       category is created on the fly
    """

    def __init__(
        self,
        session_flow: SessionFlow,
        extraction_service: Optional[GeminiExtractionService] = None,
    ):
        self._sessions = session_flow
        self._extraction = extraction_service or GeminiExtractionService()

    async def scan_receipt(self, document: UploadedDocument) -> tuple[Optional[ExpenseFields], str]:
        """
        Returns:
            (extracted fields or None, message)
        """
        current = self._sessions.require_session()
        notices = self._sessions.notices
        audit = self._sessions.audit_logger

        problem = _check_upload(document, self._sessions.app_settings)
        if problem:
            notices.error(problem)
            return None, problem

        try:
            fields = await self._extraction.extract_receipt(
                document,
                current.ledger.categories.names(TransactionType.EXPENSE),
            )
        except ExtractionError as e:
            audit.log_extraction_failed("receipt", document.filename, e.kind.value, str(e))
            message = "Could not read the receipt. Try a clearer photo."
            notices.error(message)
            return None, message

        audit.log_extraction_completed("receipt", document.filename, 1)
        return fields, "Receipt read. Review the values before saving."

    def add_scanned_receipt(
        self,
        fields: ExpenseFields,
        owner: Optional[HouseholdUser] = None,
    ) -> tuple[Optional[Transaction], str]:
        """
        Record the reviewed receipt as an expense.

        The reviewed values are validated again (the form edits a copy),
        so over-long text is clipped and a negative amount is refused
        before any category is created.

        Returns:
            (stored transaction or None, message)
        """
        current = self._sessions.require_session()
        try:
            fields = ExpenseFields.model_validate(fields.model_dump())
        except PydanticValidationError:
            message = "Check the receipt values and try again."
            self._sessions.notices.error(message)
            return None, message

        categories = current.ledger.categories
        name = fields.category or DEFAULT_EXPENSE_CATEGORY
        category = categories.find_by_name(name, TransactionType.EXPENSE)
        if category is None:
            category = categories.add(name, TransactionType.EXPENSE)
            self._sessions.audit_logger.log_category_changed(
                AuditEventType.CATEGORY_ADDED,
                category_id=category.id,
                name=category.name,
                category_type=category.type.value,
            )

        spent_on = fields.parsed_date()
        stored = current.ledger.transactions.add(Transaction(
            owner=owner or current.acting_user,
            type=TransactionType.EXPENSE,
            category_id=category.id,
            description=fields.description or DEFAULT_RECEIPT_DESCRIPTION,
            amount=fields.amount,
            tags=fields.tags,
            date=dt.datetime.combine(spent_on, dt.time.min, tzinfo=dt.timezone.utc),
        ))
        self._sessions.audit_logger.log_transaction_added(
            transaction_id=stored.id,
            transaction_type=stored.type.value,
            amount=str(stored.amount),
            actor=current.acting_user.value,
            source="receipt",
        )
        message = "Expense added from receipt."
        self._sessions.notices.success(message)
        return stored, message


class StatementImportFlow:
    """
    Orchestrates statement import.

    Flow:
    1. Extract → Gemini lists every expense on the statement
    2. Stage → items land in the import staging buffer (PAUSE for review)
    3. Review → edit, remove, create categories
    4. Commit or cancel

    Human confirmation (commit) is MANDATORY.
    """

    def __init__(
        self,
        session_flow: SessionFlow,
        extraction_service: Optional[GeminiExtractionService] = None,
    ):
        self._sessions = session_flow
        self._extraction = extraction_service or GeminiExtractionService()

    def _staging(self) -> ImportStagingBuffer:
        return self._sessions.require_session().staging

    async def analyze_statement(
        self,
        document: UploadedDocument,
    ) -> tuple[list[StagedTransaction], str]:
        """
        Returns:
            (staged items, message). Empty list when nothing was staged.
        """
        current = self._sessions.require_session()
        notices = self._sessions.notices
        audit = self._sessions.audit_logger

        problem = _check_upload(document, self._sessions.app_settings)
        if problem:
            notices.error(problem)
            return [], problem

        try:
            found = await self._extraction.extract_statement(
                document,
                current.ledger.categories.names(TransactionType.EXPENSE),
                current.acting_user,
            )
        except ExtractionError as e:
            audit.log_extraction_failed("statement", document.filename, e.kind.value, str(e))
            message = "Could not process the statement. Try a sharper image."
            notices.error(message)
            return [], message

        audit.log_extraction_completed("statement", document.filename, len(found))
        if not found:
            message = "No transactions found on this statement."
            notices.info(message)
            return [], message

        staged = current.staging.stage(found, current.acting_user)
        audit.log(AuditEventBuilder.import_event(
            AuditEventType.IMPORT_STAGED,
            item_count=len(staged),
            total=str(current.staging.running_total),
        ))
        message = f"{len(staged)} transactions found. Review them before importing."
        notices.success(message)
        return staged, message

    def update_staged(self, temp_id: str, field: str, value) -> tuple[bool, str]:
        try:
            self._staging().update_field(temp_id, field, value)
        except UnknownCategoryError as e:
            return False, f"Category '{e.name}' does not exist. Create it?"
        except StagingError as e:
            return False, str(e)
        return True, "Updated."

    def create_staged_category(self, temp_id: str, name: str) -> tuple[bool, str]:
        try:
            item = self._staging().create_category(temp_id, name)
        except StagingError as e:
            return False, str(e)
        return True, f"Category '{item.category}' is ready to use."

    def remove_staged(self, temp_id: str) -> bool:
        return self._staging().remove(temp_id)

    def commit_import(
        self,
        create_missing_categories: bool = False,
    ) -> tuple[list[Transaction], bool, str]:
        current = self._sessions.require_session()
        total = current.staging.running_total
        transactions, committed, message = current.staging.commit(
            create_missing_categories=create_missing_categories,
        )
        if not committed:
            self._sessions.notices.error(message)
            return transactions, committed, message

        self._sessions.audit_logger.log(AuditEventBuilder.import_event(
            AuditEventType.IMPORT_COMMITTED,
            item_count=len(transactions),
            total=str(total),
            actor=current.acting_user.value,
        ))
        self._sessions.notices.success(message)
        return transactions, committed, message

    def cancel_import(self) -> int:
        current = self._sessions.require_session()
        dropped = current.staging.cancel()
        self._sessions.audit_logger.log(AuditEventBuilder.import_event(
            AuditEventType.IMPORT_CANCELLED,
            item_count=dropped,
            total="0",
            actor=current.acting_user.value,
        ))
        return dropped


def create_app_components(
    identity: Optional[IdentityProviderInterface] = None,
    document_store: Optional[DocumentStoreInterface] = None,
    extraction_service: Optional[GeminiExtractionService] = None,
    use_cloud_storage: bool = True,
) -> tuple[SessionFlow, ReceiptScanFlow, StatementImportFlow]:
    """
    Factory function to create all application components.

    Args:
        identity: Identity provider (defaults to Firebase)
        document_store: Remote store (defaults to Google Sheets)
        extraction_service: Extraction adapter (defaults to Gemini)
        use_cloud_storage: Set to False to keep the ledger in memory only.

    Returns:
        (session_flow, receipt_flow, statement_flow)
    """
    settings = get_settings()

    if document_store is None:
        if use_cloud_storage:
            try:
                document_store = GoogleSheetsDocumentStore(GoogleSheetsClient())
            except Exception as e:
                # Storage not configured - continue in memory
                logger.warning("storage_not_configured", error=str(e))
                document_store = InMemoryDocumentStore()
        else:
            document_store = InMemoryDocumentStore()

    session_flow = SessionFlow(
        identity=identity or FirebaseIdentityProvider(),
        document_store=document_store,
        app_settings=settings.app,
        sync_settings=settings.sync,
    )
    extraction = extraction_service or GeminiExtractionService()

    return (
        session_flow,
        ReceiptScanFlow(session_flow, extraction),
        StatementImportFlow(session_flow, extraction),
    )
