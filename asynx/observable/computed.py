"""
asynx ComputedObservable - Read-Only Derived Values
===================================================

A ComputedObservable derives its value from one or more source observables
through a pure transform. It is push-based: whenever a source notifies, the
transform is re-evaluated immediately and observers are notified if the result
changed.

```python
from asynx import Observable

price = Observable("price", 10)
quantity = Observable("quantity", 3)

total = ComputedObservable([price, quantity], lambda p, q: p * q)
total.value          # 30
price.set(20)
total.value          # 60
total.set(0)         # ReadOnlyError: ComputedObservable is read-only
```

The single-source form is usually written with the `>>` operator:
`doubled = price >> (lambda p: p * 2)`.
"""

from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from ..errors import ReadOnlyError
from .base import BaseObservable

T = TypeVar("T")


class ComputationState(Enum):
    """State machine for the derived value lifecycle."""

    CLEAN = "clean"  # Value is up-to-date
    COMPUTING = "computing"  # Transform is running
    DETACHED = "detached"  # Unsubscribed from sources, value frozen


class ComputedObservable(BaseObservable[T]):
    """
    Read-only observable derived from `sources` by `transform`.

    The transform is called with one positional argument per source, in the
    order the sources were given.
    """

    def __init__(
        self,
        sources: Sequence[BaseObservable[Any]],
        transform: Callable[..., T],
        key: Optional[str] = None,
    ):
        if not sources:
            raise ValueError("At least one source observable must be provided")

        self._sources: List[BaseObservable[Any]] = list(sources)
        self._transform = transform
        self._computation_state = ComputationState.COMPUTING
        super().__init__(
            key or f"<computed:{getattr(transform, '__name__', 'transform')}>",
            self._compute_value(),
        )
        self._computation_state = ComputationState.CLEAN

        for source in self._sources:
            source.subscribe(self._on_source_change)

    @property
    def sources(self) -> List[BaseObservable[Any]]:
        return list(self._sources)

    def _compute_value(self) -> T:
        return self._transform(*(source.value for source in self._sources))

    def _on_source_change(self, _value: Any) -> None:
        """Recompute from the current source values and notify on change."""
        if self._computation_state is not ComputationState.CLEAN:
            return

        self._computation_state = ComputationState.COMPUTING
        try:
            new_value = self._compute_value()
        finally:
            self._computation_state = ComputationState.CLEAN
        self._update(new_value)

    def detach(self) -> None:
        """Stop following the sources. The last computed value is kept."""
        for source in self._sources:
            source.unsubscribe(self._on_source_change)
        self._computation_state = ComputationState.DETACHED

    def set(self, value: T) -> None:
        """Prevent direct modification of derived values."""
        raise ReadOnlyError(
            f"{self.__class__.__name__} is read-only. "
            f"Update source observables instead."
        )
