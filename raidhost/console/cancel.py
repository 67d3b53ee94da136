"""
Cancellation and deadlines for console I/O.

Every suspending call in a bot session takes the session's CancelToken and a
deadline. Waiting is done on the token itself so a cancel wakes the sleeper
immediately instead of after the full sleep.
"""

import threading
import time
from typing import Optional

from ..exceptions import SessionCancelled, TransportError


class CancelToken:
    """A one-shot cancellation flag shared by everything one session does."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SessionCancelled("session cancelled")

    def sleep(self, seconds: float) -> None:
        """
        Sleep for up to `seconds`, waking early on cancel.

        Raises:
            SessionCancelled: if the token is (or becomes) cancelled.
        """
        if seconds > 0:
            self._event.wait(seconds)
        self.raise_if_cancelled()


class Deadline:
    """Absolute expiry time for a single command round-trip."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._expires = time.monotonic() + timeout

    @property
    def remaining(self) -> float:
        return self._expires - time.monotonic()

    @property
    def expired(self) -> bool:
        return self.remaining <= 0

    def check(self, what: str = "command") -> None:
        if self.expired:
            raise TransportError(f"{what} timed out after {self.timeout:.1f}s")


def check_token(cancel: Optional[CancelToken]) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()
