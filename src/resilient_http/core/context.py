"""Call context: cancellation signal, deadline and log fields."""

import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from .exceptions import CancelledError


class Context:
    """Context passed through a call and its attempts.

    Carries three things:
        - a cancellation signal shared with derived contexts
        - an optional deadline (monotonic clock)
        - key-value fields attached to every log event of the call

    Derived contexts are cheap. ``with_fields`` shares the parent's signal,
    ``with_cancel`` and ``with_timeout`` create a child signal that is
    cancelled together with the parent.

    Example:
        >>> ctx, cancel = background().with_cancel()
        >>> ctx = ctx.with_fields(request_id="abc")
        >>> client.get(url, ctx=ctx)     # from another thread: cancel()
    """

    def __init__(
        self,
        fields: Optional[Mapping[str, Any]] = None,
        deadline: Optional[float] = None,
        event: Optional[threading.Event] = None,
    ):
        self._fields: Dict[str, Any] = dict(fields or {})
        self._deadline = deadline
        self._event = event if event is not None else threading.Event()
        self._reason: Optional[str] = None
        self._children: List['Context'] = []
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        # Only with_cancel children and deadlines can end a context in flight
        self._cancellable = deadline is not None

    # ==================== Derivation ====================

    def with_fields(self, **fields: Any) -> 'Context':
        """Return a context with extra log fields, sharing this cancellation signal."""
        merged = dict(self._fields)
        merged.update(fields)
        derived = Context(fields=merged, deadline=self._deadline, event=self._event)
        # Same signal, so the derived view shares children and callbacks too
        derived._children = self._children
        derived._callbacks = self._callbacks
        derived._lock = self._lock
        derived._root = getattr(self, '_root', self)
        derived._cancellable = self._cancellable
        return derived

    def with_cancel(self) -> tuple:
        """Return ``(child, cancel)``; calling ``cancel()`` cancels only the child."""
        child = Context(fields=self._fields, deadline=self._deadline)
        child._cancellable = True
        self._signal_root()._add_child(child)
        return child, child.cancel

    def with_timeout(self, seconds: float) -> 'Context':
        """Return a child context whose deadline is at most ``seconds`` from now."""
        deadline = time.monotonic() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        child = Context(fields=self._fields, deadline=deadline)
        self._signal_root()._add_child(child)
        return child

    # ==================== Cancellation ====================

    def _signal_root(self) -> 'Context':
        return getattr(self, '_root', self)

    def _add_child(self, child: 'Context') -> None:
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._children.append(child)
        if cancelled:
            child._cancel(self._signal_root()._reason or "cancelled")

    def cancel(self) -> None:
        """Cancel this context and every context derived from it."""
        self._signal_root()._cancel("cancelled")

    def _cancel(self, reason: str) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
            callbacks = list(self._callbacks)
            self._children.clear()
            self._callbacks.clear()

        for child in children:
            child._cancel(reason)
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register ``callback`` to run once when the context is cancelled.

        Runs immediately if already cancelled. Returns a function that
        unregisters the callback. Deadlines do not trigger callbacks;
        callers combine them with ``remaining()``.
        """
        root = self._signal_root()
        with root._lock:
            if not root._event.is_set():
                root._callbacks.append(callback)

                def unregister() -> None:
                    with root._lock:
                        if callback in root._callbacks:
                            root._callbacks.remove(callback)

                return unregister
        callback()
        return lambda: None

    # ==================== State ====================

    @property
    def fields(self) -> Dict[str, Any]:
        """Log fields (copy)."""
        return dict(self._fields)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def cancellable(self) -> bool:
        """True for contexts made by ``with_cancel`` or carrying a deadline."""
        return self._cancellable

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, ``None`` when there is no deadline."""
        if self._deadline is None:
            return None
        return self._deadline - time.monotonic()

    def err(self) -> Optional[CancelledError]:
        """Return the cancellation error, or ``None`` while the context is live."""
        if self._event.is_set():
            return CancelledError(self._signal_root()._reason or "cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            return CancelledError("deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        error = self.err()
        if error is not None:
            raise error

    def sleep(self, seconds: float) -> None:
        """
        Block for ``seconds`` unless the context ends first.

        Raises:
            CancelledError: cancelled or deadline reached while waiting
        """
        self.raise_if_done()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(max(remaining, 0))
            self.raise_if_done()
            raise CancelledError("deadline exceeded")
        if self._event.wait(seconds):
            self.raise_if_done()

    def bound_timeout(self, timeout: float) -> float:
        """Clamp an attempt timeout to the time left before the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return max(min(timeout, remaining), 0.001)


def background() -> Context:
    """Root context: never cancelled on its own, no deadline, no fields."""
    return Context()
