"""
Scan context passed explicitly through controller, runner and scanners.

Carries cancellation (an event plus an optional deadline) and the
structured logging fields of the current span, so every log line emitted
while scanning can be attributed to a layer and scanner.
"""

import logging
import threading
import time
from typing import Optional

from constants import INFLIGHT_POLL_INTERVAL
from core.exceptions import ScanCancelled


class SpanAdapter(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with the span's fields."""

    def process(self, msg, kwargs):
        if self.extra:
            fields = " ".join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"[{fields}] {msg}"
        return msg, kwargs


class _Scope:
    """Cancellation state shared by a context and the spans derived from it."""

    def __init__(self, deadline: Optional[float], parent: Optional["_Scope"]):
        self.event = threading.Event()
        self.deadline = deadline
        self.parent = parent
        self.reason: Optional[str] = None

    def cancel(self, reason: str) -> None:
        if not self.event.is_set():
            self.reason = reason
        self.event.set()

    def cancelled(self) -> bool:
        if self.event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel("deadline exceeded")
            return True
        if self.parent is not None and self.parent.cancelled():
            self.cancel(self.parent.reason or "parent cancelled")
            return True
        return False

    def remaining(self) -> Optional[float]:
        remaining = None
        scope = self
        while scope is not None:
            if scope.deadline is not None:
                left = max(0.0, scope.deadline - time.monotonic())
                remaining = left if remaining is None else min(remaining, left)
            scope = scope.parent
        return remaining


class ScanContext:
    """
    Cancellation and logging span for one indexing request.

    Contexts derived with ``with_fields`` share cancellation with their
    origin. Contexts derived with ``child`` can be cancelled on their own
    but are also cancelled whenever their parent is.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        fields: Optional[dict] = None,
        _scope: Optional[_Scope] = None,
    ):
        """
        Initialize a scan context.

        Args:
            timeout: Seconds until the context expires (None for no deadline)
            fields: Structured logging fields for this span
        """
        if _scope is None:
            deadline = time.monotonic() + timeout if timeout is not None else None
            _scope = _Scope(deadline, None)
        self._scope = _scope
        self.fields = dict(fields or {})

    def with_fields(self, **fields) -> "ScanContext":
        """Derive a span with extra fields, sharing this context's cancellation."""
        return ScanContext(fields={**self.fields, **fields}, _scope=self._scope)

    def child(self, timeout: Optional[float] = None) -> "ScanContext":
        """Derive a context that can be cancelled without cancelling this one."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        return ScanContext(fields=self.fields, _scope=_Scope(deadline, self._scope))

    def span(self, logger: logging.Logger) -> SpanAdapter:
        """Bind a logger to this span's fields."""
        return SpanAdapter(logger, dict(self.fields))

    def cancel(self, reason: str = "scan cancelled") -> None:
        """Cancel this context and every context derived from it."""
        self._scope.cancel(reason)

    @property
    def cancelled(self) -> bool:
        return self._scope.cancelled()

    @property
    def reason(self) -> Optional[str]:
        return self._scope.reason

    def remaining(self) -> Optional[float]:
        """Seconds left before the nearest deadline, or None when there is none."""
        return self._scope.remaining()

    def check(self) -> None:
        """
        Raise if the context has been cancelled.

        Raises:
            ScanCancelled: If cancelled or past the deadline
        """
        if self.cancelled:
            raise ScanCancelled(self.reason or "scan cancelled")

    def wait(self, timeout: float) -> bool:
        """
        Sleep up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if the context is cancelled
        """
        end = time.monotonic() + timeout
        while not self.cancelled:
            left = end - time.monotonic()
            if left <= 0:
                break
            self._scope.event.wait(min(left, INFLIGHT_POLL_INTERVAL))
        return self.cancelled
