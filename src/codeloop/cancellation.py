"""Cooperative cancellation shared by the agent loop and its subprocesses."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from codeloop.exceptions import TaskCancelledError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot cancellation signal.

    The loop polls :attr:`cancelled` at its suspension points. Whatever is
    in flight (a subprocess, a model request) registers a callback with
    :meth:`on_cancel` so that :meth:`cancel` can interrupt it promptly.

    Usage::

        token = CancellationToken()
        unregister = token.on_cancel(lambda: proc.kill())
        try:
            ...
        finally:
            unregister()
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Set the signal and run every registered callback once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.debug("Cancellation callback failed", exc_info=True)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` to run on cancellation.

        Runs immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                handle = self._next_id
                self._next_id += 1
                self._callbacks[handle] = callback

                def _unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(handle, None)

                return _unregister
        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        """Raise TaskCancelledError if the token has been cancelled."""
        if self._event.is_set():
            raise TaskCancelledError()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; True if cancelled."""
        return self._event.wait(timeout)
