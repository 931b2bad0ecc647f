"""Time source and cancellation for the broadcast and confirmation loops.

Both loops only ever wait through :py:meth:`Clock.sleep`, which wakes up
as soon as the passed :py:class:`CancelToken` fires. Tests substitute a
clock that advances virtual time instead of sleeping.
"""

import threading
import time


class OperationCancelled(Exception):
    """A :py:class:`CancelToken` fired while waiting."""


class CancelToken:
    """Cooperative cancellation flag shared between a loop and its owner.

    Example::

        cancel = CancelToken()
        signal.signal(signal.SIGTERM, lambda *args: cancel.cancel())
        lifecycle.submit_and_confirm(tx, cancel=cancel)
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self):
        """Raise :py:class:`OperationCancelled` if cancelled."""
        if self._event.is_set():
            raise OperationCancelled()

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``, return ``True`` if cancelled meanwhile."""
        return self._event.wait(seconds)


class Clock:
    """Wall clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: CancelToken | None = None):
        """Sleep, waking up early with :py:class:`OperationCancelled`."""
        if cancel is not None:
            cancel.check()
        if seconds <= 0:
            return
        if cancel is None:
            time.sleep(seconds)
        elif cancel.wait(seconds):
            raise OperationCancelled()


#: Default clock instance
SYSTEM_CLOCK = Clock()
