"""
asynx CombineState - The Four-Phase Lifecycle
=============================================

The published state of an engine instance is exactly one of four frozen
variants. The `is_*` flags are derived from the variant, never stored, so they
cannot disagree with each other.

- `Idle` - no data and nothing running (initial state, or after a decline)
- `Pending` - a run is in flight; keeps the last Ready data and, when the run
  started from a failure, the previous error
- `Ready` - the latest committed data
- `Error` - the failure cause plus the last Ready data
"""

from dataclasses import dataclass
from typing import Any, Optional, Union


class _StateFlags:
    """Tag-derived flags shared by every variant."""

    __slots__ = ()

    @property
    def is_idle(self) -> bool:
        return isinstance(self, Idle)

    @property
    def is_pending(self) -> bool:
        return isinstance(self, Pending)

    @property
    def is_ready(self) -> bool:
        return isinstance(self, Ready)

    @property
    def is_error(self) -> bool:
        return isinstance(self, Error)

    @property
    def is_stable(self) -> bool:
        """True for every variant except Pending."""
        return not isinstance(self, Pending)


@dataclass(frozen=True)
class Idle(_StateFlags):
    pass


@dataclass(frozen=True)
class Pending(_StateFlags):
    prev_data: Any = None
    prev_error: Optional[BaseException] = None
    # Only set on an extension's own state view, when its trigger started the run
    params: Any = None


@dataclass(frozen=True)
class Ready(_StateFlags):
    data: Any = None


@dataclass(frozen=True)
class Error(_StateFlags):
    cause: Optional[BaseException] = None
    prev_data: Any = None


CombineState = Union[Idle, Pending, Ready, Error]

IDLE = Idle()


def last_data(state: CombineState) -> Any:
    """Ready data, or the last known-good data kept by Pending and Error."""
    if isinstance(state, Ready):
        return state.data
    if isinstance(state, (Pending, Error)):
        return state.prev_data
    return None
