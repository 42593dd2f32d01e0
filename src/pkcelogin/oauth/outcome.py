"""Single-assignment slot shared by the redirect listener and the coordinator.

The listener thread writes into a :class:`RedirectOutcome` at most once; the
coordinator thread blocks on :meth:`RedirectOutcome.wait` until that write
happens, the slot is closed, or a deadline passes.
"""

from __future__ import annotations

import enum
import threading
from typing import Optional


class OutcomeKind(str, enum.Enum):
    """Tag of the value held by a :class:`RedirectOutcome`."""

    PENDING = "pending"
    CODE_RECEIVED = "code_received"
    REJECTED = "rejected"


class RedirectOutcome:
    """Thread-safe, write-once result of the redirect.

    Transitions only ``PENDING -> CODE_RECEIVED`` or ``PENDING -> REJECTED``.
    Every write after the first returns ``False`` and leaves the slot as it
    was. :meth:`close` wakes any waiter and refuses all later writes without
    changing the kind; it is how cancellation reaches a blocked coordinator.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._kind = OutcomeKind.PENDING
        self._code: Optional[str] = None
        self._reason: Optional[str] = None
        self._closed = False

    def __repr__(self) -> str:
        return f"RedirectOutcome(kind={self.kind.value})"

    @property
    def kind(self) -> OutcomeKind:
        with self._cond:
            return self._kind

    @property
    def code(self) -> Optional[str]:
        """The authorization code, once ``CODE_RECEIVED``."""
        with self._cond:
            return self._code

    @property
    def reason(self) -> Optional[str]:
        """Why the redirect was rejected, once ``REJECTED``."""
        with self._cond:
            return self._reason

    @property
    def is_pending(self) -> bool:
        return self.kind is OutcomeKind.PENDING

    @property
    def is_closed(self) -> bool:
        with self._cond:
            return self._closed

    def set_code(self, code: str) -> bool:
        """Publish ``CODE_RECEIVED(code)``. Returns ``False`` if already set or closed."""
        return self._publish(OutcomeKind.CODE_RECEIVED, code=code)

    def reject(self, reason: str) -> bool:
        """Publish ``REJECTED(reason)``. Returns ``False`` if already set or closed."""
        return self._publish(OutcomeKind.REJECTED, reason=reason)

    def close(self) -> None:
        """Wake all waiters and refuse further writes."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the slot is written or closed.

        Args:
            timeout: Seconds to wait, or ``None`` to wait indefinitely.

        Returns:
            ``True`` when an outcome has been published, ``False`` if the
            wait ended because of the timeout or :meth:`close`.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._kind is not OutcomeKind.PENDING or self._closed,
                timeout=timeout,
            )
            return self._kind is not OutcomeKind.PENDING

    def _publish(
        self,
        kind: OutcomeKind,
        code: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        with self._cond:
            if self._kind is not OutcomeKind.PENDING or self._closed:
                return False
            self._kind = kind
            self._code = code
            self._reason = reason
            self._cond.notify_all()
            return True
