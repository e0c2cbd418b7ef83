"""
Sync Coordinator

Keeps the remote ledger document in step with the local Ledger.

DESIGN DECISION: Local state is authoritative (push-on-change).
- After sign-in the remote document is fetched ONCE (with retry) and
  loaded, or defaults are seeded locally when there is no document yet.
- Only after that load completes does the coordinator listen to the
  ledger; every mutation re-arms a debounce timer and the timer writes the
  LATEST full snapshot with a merge-write.
- If the initial fetch fails, the push path stays disabled so empty
  defaults can never overwrite real remote data.

The coordinator is the only component that writes to the remote store.
"""

from enum import Enum
from typing import Optional

import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_ledger.audit.logger import AuditLogger
from household_ledger.config.settings import SyncSettings
from household_ledger.models.audit import AuditEventBuilder, AuditEventType
from household_ledger.models.ledger import LedgerSnapshot
from household_ledger.notices import NoticeBoard
from household_ledger.services.storage.interface import (
    DocumentStoreInterface,
    StorageError,
)
from household_ledger.stores.ledger import Ledger
from household_ledger.subscriptions import Subscription
from household_ledger.sync.debounce import DebouncedScheduler

logger = structlog.get_logger(__name__)


class SyncErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"


class SyncError(Exception):
    """The remote store could not be reached after every retry."""

    def __init__(self, message: str, attempts: int, kind: SyncErrorKind = SyncErrorKind.UNAVAILABLE):
        self.kind = kind
        self.attempts = attempts
        super().__init__(message)


class SyncCoordinator:
    """
    Fetch-once initial load plus debounced push of the whole ledger.

    One coordinator per signed-in session; close() it before the
    ledger is reset on logout.
    """

    def __init__(
        self,
        ledger: Ledger,
        store: DocumentStoreInterface,
        user_id: str,
        settings: Optional[SyncSettings] = None,
        notices: Optional[NoticeBoard] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._store = store
        self._user_id = user_id
        self._settings = settings or SyncSettings()
        self._notices = notices
        self._audit = audit_logger or AuditLogger()

        self._load_complete = False
        self._closed = False
        self._subscription: Optional[Subscription] = None
        self._scheduler = DebouncedScheduler(
            self._settings.debounce_seconds,
            self._push,
        )
        self.last_error: Optional[SyncError] = None

    @property
    def load_complete(self) -> bool:
        return self._load_complete

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def scheduler(self) -> DebouncedScheduler:
        return self._scheduler

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.backoff_base_seconds,
                max=self._settings.backoff_max_seconds,
            ),
            retry=retry_if_exception_type(StorageError),
            reraise=True,
        )

    def _fail(self, operation: str, error: Exception) -> SyncError:
        attempts = self._settings.max_attempts
        sync_error = SyncError(f"Cloud {operation} failed: {error}", attempts=attempts)
        self.last_error = sync_error
        self._audit.log_sync_failed(
            operation=operation,
            error_message=str(error),
            attempts=attempts,
            user_id=self._user_id,
        )
        return sync_error

    # -------------------------------------------------------------------------
    # Initial load
    # -------------------------------------------------------------------------

    async def initial_load(self) -> bool:
        """
        Fetch the remote document once and enable pushing.

        Returns True when the push path is enabled. On failure local
        defaults are shown, a notice is posted, and pushing stays off;
        calling initial_load() again retries.
        """
        if self._closed:
            return False

        try:
            async for attempt in self._retrying():
                with attempt:
                    document = await self._store.get_document(self._user_id)
        except (StorageError, RetryError) as e:
            self._fail("read", e)
            self._ledger.reset()
            logger.warning("sync_initial_load_failed", user_id=self._user_id, error=str(e))
            if self._notices is not None:
                self._notices.error("Could not load your data from the cloud. Changes will not be saved.")
            return False

        # Signed out while the fetch was in flight
        if self._closed:
            return False

        if document:
            try:
                snapshot = LedgerSnapshot.from_document(document)
            except ValidationError as e:
                self._fail("read", e)
                self._ledger.reset()
                logger.error("sync_document_invalid", user_id=self._user_id, error=str(e))
                if self._notices is not None:
                    self._notices.error("Your cloud data could not be read. Changes will not be saved.")
                return False
            self._ledger.load(snapshot)
            event_type = AuditEventType.LEDGER_LOADED
        else:
            # Nothing stored yet: seed locally, write on the first mutation
            self._ledger.reset()
            event_type = AuditEventType.LEDGER_SEEDED

        self._audit.log(AuditEventBuilder.ledger_synced(
            event_type=event_type,
            user_id=self._user_id,
            transaction_count=len(self._ledger.transactions),
        ))

        self._load_complete = True
        self.last_error = None
        if self._subscription is None:
            self._subscription = self._ledger.subscribe(self._on_ledger_change)
        return True

    # -------------------------------------------------------------------------
    # Push path
    # -------------------------------------------------------------------------

    def _on_ledger_change(self) -> None:
        if self._load_complete and not self._closed:
            self._scheduler.trigger()

    async def _push(self) -> None:
        """Write the current snapshot. Failures become a notice, never an exception."""
        if self._closed:
            return
        document = self._ledger.snapshot().to_document()
        try:
            async for attempt in self._retrying():
                with attempt:
                    await self._store.set_document(self._user_id, document, merge=True)
        except (StorageError, RetryError) as e:
            self._fail("write", e)
            logger.warning("sync_write_failed", user_id=self._user_id, error=str(e))
            if self._notices is not None:
                self._notices.error("Could not save to the cloud. Your changes are kept on this device.")
            return

        self.last_error = None
        self._audit.log(AuditEventBuilder.ledger_synced(
            event_type=AuditEventType.LEDGER_SAVED,
            user_id=self._user_id,
            transaction_count=len(document.get("transactions", [])),
        ))

    async def flush(self) -> None:
        """Write now if a push is pending, then wait for running writes."""
        if self._load_complete and not self._closed:
            await self._scheduler.flush()
        await self._scheduler.wait_idle()

    def close(self) -> None:
        """Stop listening and drop any pending write. Idempotent."""
        self._closed = True
        self._scheduler.cancel()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
