"""
Abstract Identity Provider Interface

DESIGN DECISION: Authentication is delegated to a hosted provider.
The app only needs:
1. sign_in / sign_out
2. a stable user id (the key of the ledger document) and an email
3. a way to be told when the session changes

Listener bookkeeping lives here so every provider delivers session
changes the same way: the current session immediately on subscribe,
then once per change.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field

from household_ledger.subscriptions import Subscription

logger = structlog.get_logger(__name__)


class Session(BaseModel):
    """An authenticated session."""

    user_id: str = Field(..., min_length=1)
    email: str
    id_token: str = Field(default="", repr=False)


SessionCallback = Callable[[Optional[Session]], None]


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    UNAVAILABLE = "unavailable"


class AuthError(Exception):
    """Sign-in failed. Never retried automatically."""

    def __init__(self, message: str, kind: AuthErrorKind):
        self.kind = kind
        super().__init__(message)


class IdentityProviderInterface(ABC):
    """
    Abstract interface for the identity collaborator.

    Implementations call _set_session() whenever the session changes.
    """

    def __init__(self):
        self._session: Optional[Session] = None
        self._callbacks: list[SessionCallback] = []

    @property
    def current_session(self) -> Optional[Session]:
        return self._session

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Session:
        """
        Authenticate with email and password.

        Raises:
            AuthError: INVALID_CREDENTIAL or UNAVAILABLE
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session (no-op when signed out)."""
        pass

    def on_session_change(self, callback: SessionCallback) -> Subscription:
        """Deliver the current session now and on every later change."""
        self._callbacks.append(callback)
        callback(self._session)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(_unsubscribe)

    def _set_session(self, session: Optional[Session]) -> None:
        self._session = session
        for callback in list(self._callbacks):
            callback(session)
