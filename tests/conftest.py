"""
Shared fixtures and fakes.

No test talks to Gemini, Firebase or Google Sheets: the model, the
identity provider and the document store are replaced by the small fakes
below, which record what they were asked to do.
"""

from types import SimpleNamespace
from typing import Any, Optional, Union

import pytest

# Configures structlog for the whole test session
import household_ledger.audit.logger  # noqa: F401
from household_ledger.config.settings import AppSettings, GeminiSettings, SyncSettings
from household_ledger.models.ledger import UploadedDocument, UserNames
from household_ledger.services.identity.interface import (
    AuthError,
    AuthErrorKind,
    IdentityProviderInterface,
    Session,
)
from household_ledger.services.storage.interface import ConnectionError
from household_ledger.services.storage.memory import InMemoryDocumentStore
from household_ledger.stores.ledger import Ledger


class FakeGeminiModel:
    """Stands in for genai.GenerativeModel; replies are queued strings or exceptions."""

    def __init__(self, *replies: Union[str, Exception]):
        self._replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def generate_content_async(self, contents, **kwargs):
        self.calls.append({"contents": contents, **kwargs})
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


class FakeIdentityProvider(IdentityProviderInterface):
    """Email/password table in memory."""

    def __init__(self, accounts: Optional[dict[str, tuple[str, str]]] = None):
        super().__init__()
        # email -> (password, user_id)
        self._accounts = accounts or {}
        self.unavailable = False

    async def sign_in(self, email: str, password: str) -> Session:
        if self.unavailable:
            raise AuthError("Sign-in is unavailable", AuthErrorKind.UNAVAILABLE)
        account = self._accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError("Invalid email or password.", AuthErrorKind.INVALID_CREDENTIAL)
        session = Session(user_id=account[1], email=email, id_token="token")
        self._set_session(session)
        return session

    async def sign_out(self) -> None:
        self._set_session(None)


class FlakyDocumentStore(InMemoryDocumentStore):
    """In-memory store that can fail a number of reads/writes and records writes."""

    def __init__(self, documents=None, fail_reads: int = 0, fail_writes: int = 0):
        super().__init__(documents)
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.read_attempts = 0
        self.write_attempts = 0
        self.writes: list[tuple[str, dict]] = []

    async def get_document(self, key):
        self.read_attempts += 1
        if self.fail_reads > 0:
            self.fail_reads -= 1
            raise ConnectionError("backend unreachable")
        return await super().get_document(key)

    async def set_document(self, key, data, merge=True):
        self.write_attempts += 1
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise ConnectionError("backend unreachable")
        self.writes.append((key, data))
        await super().set_document(key, data, merge=merge)


@pytest.fixture
def user_names() -> UserNames:
    return UserNames(user_a="Alex", user_b="Blair")


@pytest.fixture
def ledger(user_names) -> Ledger:
    return Ledger(user_names)


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(
        debounce_seconds=0.05,
        max_attempts=3,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
    )


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        user_a_default_name="Alex",
        user_b_default_name="Blair",
        user_a_email_prefix="alex",
    )


@pytest.fixture
def gemini_settings() -> GeminiSettings:
    return GeminiSettings(api_key="test-key")


@pytest.fixture
def store() -> FlakyDocumentStore:
    return FlakyDocumentStore()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider({
        "alex@example.com": ("secret", "uid-alex"),
        "blair@example.com": ("secret", "uid-blair"),
    })


@pytest.fixture
def receipt_image() -> UploadedDocument:
    return UploadedDocument(
        filename="receipt.jpg",
        mime_type="image/jpeg",
        data=b"\xff\xd8\xff\xe0fake-jpeg",
    )
