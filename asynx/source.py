"""
asynx Source Resolver - Dependency Snapshots
============================================

An engine instance can depend on:

- a single observable cell,
- another engine instance,
- a record (mapping) whose values are cells or engine instances.

`resolve_source()` turns any of these into one read-only observable of
`SourceSnapshot(value, status)`. The status aggregates the readiness of every
engine instance involved; the value is only materialized when the status is
READY, so a producer never sees a partially resolved record.

Aggregation for records:

1. UNINITIALIZED unless every engine-instance key has left Idle
2. ERROR if any key is in Error
3. PENDING if any key is Pending
4. READY otherwise (plain cells are always ready)
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Tuple, Union

from .errors import SourceError
from .observable import BaseObservable, ComputedObservable, Observable
from .state import CombineState, Error, Idle, Pending, Ready


class SourceStatus(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    PENDING = "pending"
    ERROR = "error"


@dataclass(frozen=True)
class SourceSnapshot:
    value: Any = None
    status: SourceStatus = SourceStatus.UNINITIALIZED

    @property
    def is_ready(self) -> bool:
        return self.status is SourceStatus.READY


class CombineNode(ABC):
    """
    Marker base class for engine instances.

    The resolver uses it to tell nested engine instances apart from plain
    cells inside a source record.
    """

    @property
    @abstractmethod
    def state(self) -> BaseObservable[CombineState]:
        """Read-only observable of the instance's CombineState."""


SourceSpec = Union[
    BaseObservable[Any],
    CombineNode,
    Mapping[str, Union[BaseObservable[Any], CombineNode]],
]


def is_async_combine(thing: Any) -> bool:
    """Check whether `thing` is an engine instance."""
    return isinstance(thing, CombineNode)


def state_contribution(state: CombineState) -> Tuple[Any, SourceStatus]:
    """Map an upstream instance state to its (value, status) contribution."""
    if isinstance(state, Ready):
        return state.data, SourceStatus.READY
    if isinstance(state, Pending):
        return None, SourceStatus.PENDING
    if isinstance(state, Error):
        return None, SourceStatus.ERROR
    if isinstance(state, Idle):
        return None, SourceStatus.UNINITIALIZED
    raise SourceError(f"Unknown combine state: {state!r}")


def aggregate_status(statuses: List[SourceStatus]) -> SourceStatus:
    """Combine the statuses of every engine-instance key of a record."""
    if SourceStatus.UNINITIALIZED in statuses:
        return SourceStatus.UNINITIALIZED
    if SourceStatus.ERROR in statuses:
        return SourceStatus.ERROR
    if SourceStatus.PENDING in statuses:
        return SourceStatus.PENDING
    return SourceStatus.READY


def _check_member(key: str, member: Any) -> None:
    if not isinstance(member, (BaseObservable, CombineNode)):
        raise SourceError(
            f"Source record key {key!r} must be an observable or an async combine, "
            f"got {type(member).__name__}"
        )


def resolve_source(spec: SourceSpec) -> ComputedObservable[SourceSnapshot]:
    """Build the snapshot stream for a source specification."""
    if isinstance(spec, CombineNode):
        return ComputedObservable(
            [spec.state],
            lambda state: SourceSnapshot(*state_contribution(state)),
            key="<source:combine>",
        )

    if isinstance(spec, BaseObservable):
        return ComputedObservable(
            [spec],
            lambda value: SourceSnapshot(value, SourceStatus.READY),
            key=f"<source:{spec.key}>",
        )

    if isinstance(spec, Mapping):
        return _resolve_record(spec)

    raise SourceError(
        f"Source must be an observable, an async combine or a mapping of them, "
        f"got {type(spec).__name__}"
    )


def _resolve_record(
    spec: Mapping[str, Union[BaseObservable[Any], CombineNode]],
) -> ComputedObservable[SourceSnapshot]:
    keys = list(spec)
    members = [spec[key] for key in keys]
    for key, member in zip(keys, members):
        _check_member(key, member)

    is_combine = [isinstance(member, CombineNode) for member in members]
    observed = [
        member.state if combine else member
        for member, combine in zip(members, is_combine)
    ]

    def snapshot(*values: Any) -> SourceSnapshot:
        resolved = {}
        statuses = []
        for key, value, combine in zip(keys, values, is_combine):
            if combine:
                value, status = state_contribution(value)
                statuses.append(status)
            resolved[key] = value

        status = aggregate_status(statuses)
        if status is not SourceStatus.READY:
            return SourceSnapshot(None, status)
        return SourceSnapshot(resolved, SourceStatus.READY)

    if not observed:
        # Nothing to follow: an empty record is always ready
        return ComputedObservable(
            [Observable("<source:empty>")],
            lambda _: SourceSnapshot({}, SourceStatus.READY),
            key="<source:record>",
        )

    return ComputedObservable(observed, snapshot, key="<source:record>")
