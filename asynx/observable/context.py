"""
asynx PropagationContext - Breadth-First Change Propagation
===========================================================

Notifications are queued and drained iteratively instead of being delivered
recursively. A long chain of derived observables therefore cannot overflow the
stack, and an observer that sets another observable while being notified only
enqueues more work.

TransactionContext defers the draining until the outermost transaction exits,
so several cells can be updated while every observer sees only the final
values.
"""

import logging
import threading
from collections import deque
from typing import Any, Callable


class PropagationContext:
    """Manages breadth-first change propagation to prevent stack overflow."""

    _local = threading.local()

    @classmethod
    def _get_state(cls) -> dict:
        if not hasattr(cls._local, "state"):
            cls._local.state = {"is_propagating": False, "pending": deque()}
        return cls._local.state

    @classmethod
    def _enqueue_notification(
        cls, observer: Callable, observable: Any, value: Any
    ) -> None:
        cls._get_state()["pending"].append((observer, observable, value))

    @classmethod
    def _process_notifications(cls) -> None:
        """
        Drain the pending queue.

        Re-entrant calls return immediately: the outer drain loop picks up
        anything enqueued while it runs. Work is also held back while a
        transaction is open.
        """
        state = cls._get_state()
        if state["is_propagating"] or TransactionContext._get_active():
            return

        state["is_propagating"] = True
        try:
            while state["pending"]:
                observer, observable, value = state["pending"].popleft()
                if (
                    hasattr(observable, "_should_notify_observers")
                    and not observable._should_notify_observers()
                ):
                    continue
                observer(value)
        except BaseException:
            # A failing observer leaves the rest of the queue undeliverable
            dropped = len(state["pending"])
            state["pending"].clear()
            if dropped:
                logging.debug(f"Dropped {dropped} pending notifications after error")
            raise
        finally:
            state["is_propagating"] = False

    @classmethod
    def _reset_state(cls) -> None:
        """Reset the propagation state for testing."""
        cls._local.__dict__.clear()


class TransactionContext:
    """Batches observable updates and flushes notifications on commit."""

    _local = threading.local()

    @classmethod
    def _get_active(cls) -> list:
        if not hasattr(cls._local, "active"):
            cls._local.active = []
        return cls._local.active

    def __init__(self, observable: Any = None):
        self.observable = observable
        self._is_outermost = False

    def __enter__(self):
        active = self._get_active()
        self._is_outermost = not active
        active.append(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        active = self._get_active()
        active.pop()
        if self._is_outermost and not active:
            PropagationContext._process_notifications()

    @classmethod
    def _reset_state(cls) -> None:
        """Reset the transaction state for testing."""
        cls._local.__dict__.clear()


def transaction() -> TransactionContext:
    """Open a transaction that is not tied to a particular observable."""
    return TransactionContext()
