"""
Transient user-facing notices.

Network and extraction failures never propagate to the UI as exceptions;
they are posted here and disappear on their own after a short delay
(errors 5 s, successes 3 s by default).
"""

import time
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from household_ledger.config.settings import AppSettings


class NoticeKind(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


class Notice(BaseModel):
    """A single dismissible message."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    kind: NoticeKind
    message: str
    posted_at: float
    ttl_seconds: float

    def expired(self, now: float) -> bool:
        return now - self.posted_at >= self.ttl_seconds


class NoticeBoard:
    """Newest-last list of notices with automatic expiry."""

    def __init__(
        self,
        error_seconds: float = 5.0,
        success_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = {
            NoticeKind.ERROR: error_seconds,
            NoticeKind.SUCCESS: success_seconds,
            NoticeKind.INFO: success_seconds,
        }
        self._clock = clock
        self._notices: list[Notice] = []

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "NoticeBoard":
        return cls(
            error_seconds=settings.error_notice_seconds,
            success_seconds=settings.success_notice_seconds,
        )

    def post(self, kind: NoticeKind, message: str) -> Notice:
        notice = Notice(
            kind=kind,
            message=message,
            posted_at=self._clock(),
            ttl_seconds=self._ttl[kind],
        )
        self._notices.append(notice)
        return notice

    def error(self, message: str) -> Notice:
        return self.post(NoticeKind.ERROR, message)

    def success(self, message: str) -> Notice:
        return self.post(NoticeKind.SUCCESS, message)

    def info(self, message: str) -> Notice:
        return self.post(NoticeKind.INFO, message)

    def active(self, now: Optional[float] = None) -> list[Notice]:
        """Unexpired notices. Expired ones are dropped as a side effect."""
        now = self._clock() if now is None else now
        self._notices = [n for n in self._notices if not n.expired(now)]
        return list(self._notices)

    def dismiss(self, notice_id: str) -> bool:
        before = len(self._notices)
        self._notices = [n for n in self._notices if n.id != notice_id]
        return len(self._notices) != before

    def clear(self) -> None:
        self._notices = []
