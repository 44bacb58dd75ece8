"""
Cancellation handle for branch operations.

A ``CancelToken`` is passed into every transactional call.  Cancelling it
from another thread interrupts the statement in flight (via the driver's
own cancel hook) and makes the engine roll the transaction back.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional


class _Registration:
    """One ``on_cancel`` block's callback; runs only while the block is active."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.active = True
        self.lock = threading.Lock()

    def fire(self) -> None:
        with self.lock:
            if self.active:
                self.callback()

    def deactivate(self) -> None:
        # waits for a callback already running on another thread
        with self.lock:
            self.active = False


class CancelToken:
    """Thread-safe, one-shot cancellation flag with interrupt callbacks."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._registrations: List[_Registration] = []
        self._timer: Optional[threading.Timer] = None
        self.reason: Optional[str] = None

    @classmethod
    def after(cls, seconds: float) -> "CancelToken":
        """Token that cancels itself once ``seconds`` have elapsed."""
        token = cls()
        timer = threading.Timer(seconds, token.cancel, kwargs={"reason": f"deadline of {seconds}s exceeded"})
        timer.daemon = True
        token._timer = timer
        timer.start()
        return token

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            registrations = list(self._registrations)
        if self._timer is not None:
            self._timer.cancel()
        for reg in registrations:
            reg.fire()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Iterator[None]:
        """
        Run ``callback`` if the token fires while the block is active.

        Leaving the block waits for a callback that is already running, and
        no callback runs once the block has been left.
        """
        reg = _Registration(callback)
        with self._lock:
            fire_now = self._event.is_set()
            if not fire_now:
                self._registrations.append(reg)
        if fire_now:
            reg.fire()
        try:
            yield
        finally:
            reg.deactivate()
            with self._lock:
                if reg in self._registrations:
                    self._registrations.remove(reg)


def interrupt_dbapi(dbapi_conn) -> Callable[[], None]:
    """Build a callback that aborts the statement running on a raw DBAPI connection."""

    def _interrupt() -> None:
        # psycopg2 / psycopg expose cancel(); sqlite3 exposes interrupt()
        for name in ("cancel", "interrupt"):
            fn = getattr(dbapi_conn, name, None)
            if callable(fn):
                fn()
                return

    return _interrupt
