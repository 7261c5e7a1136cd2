"""Backend-independent completion handles.

:class:`FutureEvent` wraps work running on an executor (CPU queue),
:class:`CompletedEvent` represents work that already ran synchronously, and
:class:`UserEvent` is completed by the host. It can gate a launch on
something outside any queue.
"""

from __future__ import annotations

import concurrent.futures
import threading
from collections.abc import Sequence

from paeth.exceptions import DeviceFailure
from paeth.protocols import Event


class CompletedEvent:
    """Event for work that already finished, optionally with an error."""

    def __init__(self, label: str = "", error: BaseException | None = None):
        self.label = label
        self._error = error

    def done(self) -> bool:
        return True

    def failed(self) -> bool:
        return self._error is not None

    def wait(self, timeout: float | None = None) -> None:
        if self._error is not None:
            raise DeviceFailure(f"{self.label or 'kernel'} failed: {self._error}") from self._error

    def __repr__(self) -> str:
        state = "failed" if self.failed() else "complete"
        return f"CompletedEvent({self.label!r}, {state})"


class FutureEvent:
    """Event backed by a :class:`concurrent.futures.Future`."""

    def __init__(self, future: concurrent.futures.Future, label: str = ""):
        self.future = future
        self.label = label

    def done(self) -> bool:
        return self.future.done()

    def failed(self) -> bool:
        return self.future.done() and self.future.exception() is not None

    def wait(self, timeout: float | None = None) -> None:
        try:
            self.future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            raise TimeoutError(f"{self.label or 'kernel'} did not finish in {timeout}s") from exc
        except DeviceFailure:
            raise
        except Exception as exc:
            raise DeviceFailure(f"{self.label or 'kernel'} failed: {exc}") from exc

    def __repr__(self) -> str:
        if not self.done():
            state = "pending"
        else:
            state = "failed" if self.failed() else "complete"
        return f"FutureEvent({self.label!r}, {state})"


class UserEvent:
    """Host-completed event.

    Example:
        >>> gate = UserEvent()
        >>> evt = rotator.forward(src, dst, rotation, wait_for=[gate])
        >>> gate.set()  # releases the x pass
        >>> evt.wait()
    """

    def __init__(self, label: str = "user"):
        self.label = label
        self._flag = threading.Event()
        self._error: BaseException | None = None

    def set(self) -> None:
        """Mark the event complete."""
        self._flag.set()

    def set_error(self, error: BaseException) -> None:
        """Mark the event failed; dependent work fails with it."""
        self._error = error
        self._flag.set()

    def done(self) -> bool:
        return self._flag.is_set()

    def failed(self) -> bool:
        return self._flag.is_set() and self._error is not None

    def wait(self, timeout: float | None = None) -> None:
        if not self._flag.wait(timeout):
            raise TimeoutError(f"{self.label} was not set within {timeout}s")
        if self._error is not None:
            raise DeviceFailure(f"{self.label} failed: {self._error}") from self._error


def wait_all(events: Sequence[Event], timeout: float | None = None) -> None:
    """Wait for every event in ``events``, raising the first failure."""
    for event in events:
        event.wait(timeout)
