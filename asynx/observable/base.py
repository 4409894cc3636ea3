"""
asynx BaseObservable - Core Reactive Value Implementation
=========================================================

This module provides the building blocks every reactive node in asynx shares:

- Observer management and subscription
- Notification through the breadth-first PropagationContext
- Change detection (observers only hear about values that actually changed)
- The `>>` / `then` operator that derives a read-only ComputedObservable

`Observable` is the mutable cell. Everything else (computed nodes, engine
state, source snapshots) is built from it.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from .context import PropagationContext, TransactionContext

T = TypeVar("T")


class BaseObservable(ABC, Generic[T]):
    """
    Abstract base class for all observables in asynx.

    Subclasses must implement `set()`. Observers are kept in insertion order
    so notification order is deterministic.
    """

    def __init__(self, key: Optional[str] = None, initial_value: Optional[T] = None):
        self._key = key or "<unnamed>"
        self._observers: Dict[Callable, None] = {}
        self._lock = threading.RLock()
        self._value = initial_value
        self._is_notifying = False

    @property
    def key(self) -> str:
        """Get the key/identifier for this observable."""
        return self._key

    @property
    def value(self) -> T:
        """Get the current value."""
        return self._value

    def get(self) -> T:
        """Explicit getter (alias for value property)."""
        return self.value

    @abstractmethod
    def set(self, value: T) -> "BaseObservable[T]":
        """Set the value of this observable."""

    def add_observer(self, observer: Callable) -> None:
        """Add an observer for change notifications."""
        with self._lock:
            self._observers[observer] = None

    def remove_observer(self, observer: Callable) -> None:
        """Remove an observer from change notifications."""
        with self._lock:
            self._observers.pop(observer, None)

    def has_observer(self, observer: Callable) -> bool:
        """Check if an observer is registered."""
        with self._lock:
            return observer in self._observers

    def subscribe(self, func: Callable[[T], Any]) -> "BaseObservable[T]":
        """Subscribe to value changes."""
        self.add_observer(func)
        return self

    def unsubscribe(self, func: Callable[[T], Any]) -> None:
        """Unsubscribe from value changes."""
        self.remove_observer(func)

    def _update(self, new_value: T) -> bool:
        """Store a value and notify observers if it differs from the current one."""
        old_value = self._value
        if old_value is new_value or old_value == new_value:
            return False
        self._value = new_value
        self._notify_observers(new_value)
        return True

    def _notify_observers(self, value: T) -> None:
        """
        Notify all observers of a value change.

        Notifications go through the propagation queue, so observers of a long
        chain are called iteratively rather than recursively.
        """
        if self._is_notifying:
            raise RuntimeError(
                f"Circular dependency detected: cannot notify '{self._key}' while it is already notifying observers"
            )

        self._is_notifying = True
        try:
            with self._lock:
                observers_snapshot = tuple(self._observers)

            for observer in observers_snapshot:
                PropagationContext._enqueue_notification(observer, self, value)
        finally:
            self._is_notifying = False

        PropagationContext._process_notifications()

    def _should_notify_observers(self) -> bool:
        """Hook for subclasses to suppress queued notifications."""
        return True

    def transaction(self) -> TransactionContext:
        """Create a transaction context for batching updates."""
        return TransactionContext(self)

    @classmethod
    def _reset_notification_state(cls) -> None:
        """Reset notification state for testing."""
        PropagationContext._reset_state()
        TransactionContext._reset_state()

    # Operators

    def __rshift__(self, transform: Callable[[T], Any]) -> "BaseObservable[Any]":
        """Map operator: obs >> f derives a read-only observable."""
        from .computed import ComputedObservable

        return ComputedObservable([self], transform)

    def then(self, transform: Callable[[T], Any]) -> "BaseObservable[Any]":
        """Alias for >> operator."""
        return self >> transform

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._key!r}, {self._value!r})"


class Observable(BaseObservable[T]):
    """
    A mutable reactive cell.

    ```python
    from asynx import Observable

    page = Observable("page", 1)
    page.subscribe(lambda value: print("page is now", value))
    page.set(2)  # prints "page is now 2"
    page.set(2)  # no notification, value unchanged
    ```
    """

    def set(self, value: T) -> "Observable[T]":
        self._update(value)
        return self

    @BaseObservable.value.setter
    def value(self, new_value: T) -> None:
        self.set(new_value)
