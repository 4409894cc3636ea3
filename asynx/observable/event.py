"""
asynx Event - Discrete Reactive Streams
=======================================

An Event carries payloads instead of holding a value. Calling it delivers the
payload to every observer through the same propagation queue observables use,
so observers run in a predictable order even when events fire from inside
other notifications.

```python
from asynx import Event

load_more = Event("load_more")
load_more.subscribe(lambda page: print("loading", page))
load_more(2)  # prints "loading 2"

# prepend builds a new event that maps its payload into this one
load_next = load_more.prepend(lambda _: 3)
load_next()   # prints "loading 3"
```
"""

import threading
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from .context import PropagationContext

T = TypeVar("T")
P = TypeVar("P")


class _NULL_EVENT:
    """Sentinel for an event fired without a payload."""

    def __repr__(self):
        return "NULL_EVENT"


NULL_EVENT = _NULL_EVENT()


class Event(Generic[T]):
    """A callable, subscribable stream of payloads."""

    def __init__(self, key: Optional[str] = None):
        self._key = key or "<event>"
        self._observers: Dict[Callable, None] = {}
        self._lock = threading.RLock()

    @property
    def key(self) -> str:
        return self._key

    def __call__(self, payload: Any = NULL_EVENT) -> None:
        self.fire(None if payload is NULL_EVENT else payload)

    def fire(self, payload: T) -> None:
        """Deliver `payload` to every observer."""
        with self._lock:
            observers_snapshot = tuple(self._observers)

        for observer in observers_snapshot:
            PropagationContext._enqueue_notification(observer, self, payload)
        PropagationContext._process_notifications()

    def subscribe(self, func: Callable[[T], Any]) -> "Event[T]":
        with self._lock:
            self._observers[func] = None
        return self

    def unsubscribe(self, func: Callable[[T], Any]) -> None:
        with self._lock:
            self._observers.pop(func, None)

    def has_observer(self, func: Callable) -> bool:
        with self._lock:
            return func in self._observers

    def prepend(self, fn: Callable[[P], T], key: Optional[str] = None) -> "Event[P]":
        """Create an event whose payloads are mapped through `fn` into this one."""
        upstream: Event[P] = Event(key or f"{self._key}.prepend")
        upstream.subscribe(lambda payload: self.fire(fn(payload)))
        return upstream

    def __repr__(self) -> str:
        return f"Event({self._key!r})"
