"""
asynx Observable Module
=======================

The reactive primitives the async-derivation engine is built on: mutable
cells, read-only computed nodes, discrete events and the propagation and
transaction contexts that deliver their notifications.
"""

from .base import BaseObservable, Observable
from .computed import ComputationState, ComputedObservable
from .context import PropagationContext, TransactionContext, transaction
from .event import NULL_EVENT, Event


def _reset_notification_state() -> None:
    """Reset thread-local propagation state (testing utility)."""
    BaseObservable._reset_notification_state()


__all__ = [
    "BaseObservable",
    "Observable",
    "ComputedObservable",
    "ComputationState",
    "Event",
    "NULL_EVENT",
    "PropagationContext",
    "TransactionContext",
    "transaction",
    "_reset_notification_state",
]
