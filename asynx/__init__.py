"""
asynx - Async Derivations over Reactive Observables

Derive a value from reactive sources with an async producer and publish the
outcome as a four-phase state (Idle / Pending / Ready / Error), with
latest-wins cancellation, batch coalescing, structural dedup and composable
middleware extensions.
"""

from .cancellation import CancellationToken
from .combine import AsyncCombine, CombineConfig, ExecutionRecord, create
from .compose import compose
from .configuration import Configuration, configure
from .errors import (
    AbortError,
    AsynxError,
    CombineError,
    Decline,
    ExtensionError,
    ReadOnlyError,
    SourceError,
)
from .extension import (
    Context,
    ExtendedProducer,
    Extension,
    ExtensionApi,
    ExtensionConfig,
    ExtensionResult,
    ExtensionTrigger,
    define_extension,
)
from .observable import (
    NULL_EVENT,
    BaseObservable,
    ComputedObservable,
    Event,
    Observable,
    transaction,
)
from .source import (
    CombineNode,
    SourceSnapshot,
    SourceStatus,
    is_async_combine,
    resolve_source,
)
from .state import IDLE, CombineState, Error, Idle, Pending, Ready
from .util import is_equal, source_changed

__all__ = [
    # Engine
    "AsyncCombine",
    "CombineConfig",
    "ExecutionRecord",
    "create",
    "is_async_combine",
    # Configuration
    "Configuration",
    "configure",
    # Extensions
    "Context",
    "ExtendedProducer",
    "Extension",
    "ExtensionApi",
    "ExtensionConfig",
    "ExtensionResult",
    "ExtensionTrigger",
    "compose",
    "define_extension",
    # State
    "CombineState",
    "Idle",
    "Pending",
    "Ready",
    "Error",
    "IDLE",
    # Sources
    "CombineNode",
    "SourceSnapshot",
    "SourceStatus",
    "resolve_source",
    # Cancellation
    "CancellationToken",
    # Reactive primitives
    "BaseObservable",
    "Observable",
    "ComputedObservable",
    "Event",
    "NULL_EVENT",
    "transaction",
    # Utilities
    "is_equal",
    "source_changed",
    # Errors
    "AsynxError",
    "AbortError",
    "CombineError",
    "Decline",
    "ExtensionError",
    "ReadOnlyError",
    "SourceError",
]
