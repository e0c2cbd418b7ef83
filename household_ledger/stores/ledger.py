"""
Ledger

The single owned object holding everything a signed-in household sees:
transactions, categories and member display names.

DESIGN DECISION: There are no module-level globals. A Ledger is created
per session and dropped on logout; listeners (the sync coordinator) hold
a Subscription and must close it before the ledger is reset.
"""

from typing import Callable, Optional

import structlog

from household_ledger.models.ledger import (
    LedgerSnapshot,
    UserNames,
    default_categories,
)
from household_ledger.stores.categories import CategoryStore
from household_ledger.stores.transactions import TransactionStore
from household_ledger.subscriptions import Subscription

logger = structlog.get_logger(__name__)


class Ledger:
    """Transaction Store + Category Store + display names, with one change feed."""

    def __init__(self, default_user_names: UserNames):
        self._default_user_names = default_user_names
        self._listeners: list[Callable[[], None]] = []
        self._muted = False
        self.transactions = TransactionStore(on_change=self._notify)
        self.categories = CategoryStore(on_change=self._notify)
        self.user_names = default_user_names

    def _notify(self) -> None:
        if self._muted:
            return
        for listener in list(self._listeners):
            listener()

    def subscribe(self, listener: Callable[[], None]) -> Subscription:
        """Call `listener` after every mutation. Loads and resets are silent."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(_unsubscribe)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def update_user_names(self, user_names: UserNames) -> None:
        self.user_names = user_names
        self._notify()

    def snapshot(self) -> LedgerSnapshot:
        """The full current state, as written to the remote store."""
        return LedgerSnapshot(
            transactions=self.transactions.all(),
            categories=self.categories.to_book(),
            user_names=self.user_names,
        )

    def load(self, snapshot: LedgerSnapshot) -> None:
        """
        Replace local state with a fetched document.

        Sections missing from the document fall back to defaults.
        """
        self._muted = True
        try:
            self.transactions.replace_all(snapshot.transactions)
            self.categories.replace_all(snapshot.categories or default_categories())
            self.user_names = snapshot.user_names or self._default_user_names
        finally:
            self._muted = False
        logger.info(
            "ledger_loaded",
            transactions=len(self.transactions),
            has_categories=snapshot.categories is not None,
        )

    def reset(self, user_names: Optional[UserNames] = None) -> None:
        """Back to an empty ledger with default categories (used on logout)."""
        self._muted = True
        try:
            self.transactions.clear()
            self.categories.reset_to_defaults()
            self.user_names = user_names or self._default_user_names
        finally:
            self._muted = False
