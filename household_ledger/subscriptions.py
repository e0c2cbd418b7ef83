"""Cancellable listener handles."""

from typing import Callable, Optional


class Subscription:
    """
    Handle returned by every subscribe-style call.

    close() is idempotent; the unsubscribe callback runs at most once.
    """

    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe: Optional[Callable[[], None]] = unsubscribe

    @property
    def closed(self) -> bool:
        return self._unsubscribe is None

    def close(self) -> None:
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()
