"""
asynx AsyncCombine - The Async-Derivation Engine
================================================

An AsyncCombine runs a producer whenever its sources change and publishes the
outcome as a four-phase CombineState (Idle / Pending / Ready / Error).

```python
import asyncio
from asynx import Observable, create

user_id = Observable("user_id", 1)

async def load_user(user_id, context, prev_data):
    return await context.token.race(api.get_user(user_id))

user = create(user_id, load_user)

async def main():
    user_id.set(2)
    user_id.set(3)            # coalesced with the previous change
    state = await user.settled()
    print(state)              # Ready(data=<user 3>)
```

Execution model
---------------

Triggering events (a source snapshot change, a manual `trigger()`, an
extension trigger) are coalesced into a batch that starts on the next event
loop iteration. Starting a batch:

1. revokes the previous execution token and creates a new one,
2. reads the source snapshot; an unready dependency stops the run (a stale
   Pending left by the revoked attempt rolls back to the last stable state),
3. skips the run (rolling back to the last stable state) when the source is
   structurally unchanged and no manual trigger is in the batch,
4. enters Pending and runs the extension chain around the producer.

A commit only happens while the attempt's token is still live. Because the
next attempt always revokes it first, an older attempt can never overwrite a
newer one, whatever order they finish in.

`set_data(value)` bypasses all of this: it commits `Ready(value)`
synchronously, revokes the in-flight attempt and the queued batch, and forgets
the last committed source value.
"""

import asyncio
import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, List, Optional, TypeVar, Union

from .cancellation import CancellationToken
from .errors import AbortError, CombineError, Decline, ExtensionError
from .extension import (
    Context,
    ExtendedProducer,
    Extension,
    ExtensionApi,
    ExtensionConfig,
    ExtensionTrigger,
    Producer,
    _settle,
    build_chain,
)
from .observable import BaseObservable, ComputedObservable, Event, Observable
from .source import CombineNode, SourceSnapshot, SourceSpec, resolve_source
from .state import IDLE, CombineState, Error, Pending, Ready, last_data
from .util import source_changed

T = TypeVar("T")

_counter = itertools.count(1)


class _NO_SOURCE:
    """Sentinel: no source value has been committed yet."""

    def __repr__(self):
        return "NO_SOURCE"


NO_SOURCE = _NO_SOURCE()


# ============================================================================
# CONFIGURATION
# ============================================================================


@dataclass(frozen=True)
class CombineConfig:
    """
    Per-instance options. `None` means "inherit the default".

    - on_error: called with the cause whenever an attempt ends in Error
    - source_update_filter: `(prev, next) -> bool`, True means "changed"
    - log_errors: log uncaught producer errors (default True)
    """

    on_error: Optional[Callable[[BaseException], Any]] = None
    source_update_filter: Optional[Callable[[Any, Any], bool]] = None
    log_errors: Optional[bool] = None

    @classmethod
    def coerce(cls, value: Union["CombineConfig", Mapping, None]) -> "CombineConfig":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise TypeError(
            f"config must be a CombineConfig or a mapping, got {type(value).__name__}"
        )

    def merged_with(
        self, override: Union["CombineConfig", Mapping, None]
    ) -> "CombineConfig":
        """Return these defaults overridden by every non-None field of `override`."""
        override = CombineConfig.coerce(override)
        return CombineConfig(
            on_error=_first_set(override.on_error, self.on_error),
            source_update_filter=_first_set(
                override.source_update_filter, self.source_update_filter
            ),
            log_errors=_first_set(override.log_errors, self.log_errors),
        )


def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


# ============================================================================
# EXECUTION RECORDS
# ============================================================================


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable inputs of one producer run."""

    token: CancellationToken
    source_value: Any
    prev_source: Any
    prev_data: Any
    trigger: Optional[ExtensionTrigger] = None


@dataclass
class _Batch:
    """Triggering events collected before the next run starts."""

    token: CancellationToken
    flushed: "asyncio.Future[None]"
    check_equality: bool = True
    trigger: Optional[ExtensionTrigger] = None

    def close(self) -> None:
        if not self.flushed.done():
            self.flushed.set_result(None)


@dataclass
class _ExtensionSlot:
    cell: Observable
    config: ExtensionConfig = field(default_factory=ExtensionConfig)


def _log_once(instance: "AsyncCombine[Any]", cause: BaseException) -> None:
    # The mark lives on the cause, so an error shared by nested instances is
    # logged by the first one only
    if getattr(cause, "_asynx_logged", False):
        return
    try:
        cause._asynx_logged = True
    except AttributeError:
        logging.debug(f"Cannot mark {type(cause).__name__} as logged")
    logging.error(f"Uncaught error in {instance!r}: {cause!r}", exc_info=cause)


# ============================================================================
# ENGINE
# ============================================================================


class AsyncCombine(CombineNode, Generic[T]):
    """
    One async-derivation unit.

    Public surface: `state`, `data`, `is_error`, `is_pending` (read-only
    observables), `trigger` (Event), `set_data()`, `settled()`, `dispose()`,
    plus whatever the extensions contribute through `extend`.
    """

    def __init__(
        self,
        source: SourceSpec,
        producer: Union[Producer, ExtendedProducer],
        config: Union[CombineConfig, Mapping, None] = None,
        *,
        base_extension: Optional[Extension] = None,
        key: Optional[str] = None,
    ):
        self._key = key or f"combine${next(_counter)}"
        self._config = CombineConfig.coerce(config)
        self._source_update_filter = self._config.source_update_filter or source_changed
        self._log_errors = (
            True if self._config.log_errors is None else self._config.log_errors
        )
        self._extra: dict = {}
        self._disposed = False

        # Single writer: only _commit() sets this cell
        self._state_cell: Observable[CombineState] = Observable(
            f"{self._key}.state", IDLE
        )
        self._state = ComputedObservable(
            [self._state_cell], lambda state: state, key=f"{self._key}.$state"
        )
        self._data = self._state >> last_data
        self._is_error = self._state >> (lambda state: state.is_error)
        self._is_pending = self._state >> (lambda state: state.is_pending)

        self._trigger_events: Event[Optional[ExtensionTrigger]] = Event(
            f"{self._key}.trigger"
        )
        self.trigger: Event[Any] = self._trigger_events.prepend(
            lambda _: None, key=f"{self._key}.manual_trigger"
        )

        self._prev_source: Any = NO_SOURCE
        self._prev_data: Any = None
        self._stable_state: CombineState = IDLE
        self._token = CancellationToken()
        self._batch: Optional[_Batch] = None
        self._execution: Optional["asyncio.Task[None]"] = None
        self._active_trigger: Optional[ExtensionTrigger] = None

        self._producer, self._slots = self._init_extensions(producer, base_extension)
        self._configs = [slot.config for slot in self._slots]

        self._source = resolve_source(source)
        self._source.subscribe(self._on_source_change)
        self._trigger_events.subscribe(self._on_trigger)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def key(self) -> str:
        return self._key

    @property
    def state(self) -> BaseObservable[CombineState]:
        return self._state

    @property
    def data(self) -> BaseObservable[Optional[T]]:
        """Last Ready data, or the last known-good data while Pending or Error."""
        return self._data

    @property
    def is_error(self) -> BaseObservable[bool]:
        return self._is_error

    @property
    def is_pending(self) -> BaseObservable[bool]:
        return self._is_pending

    @property
    def source(self) -> BaseObservable[SourceSnapshot]:
        return self._source

    @property
    def is_settled(self) -> bool:
        """True when no batch is queued and no attempt is running."""
        execution = self._execution
        return self._batch is None and (execution is None or execution.done())

    def set_data(self, value: T) -> None:
        """Commit `Ready(value)` now, cancelling any queued or running attempt."""
        self._cancel_batch()
        self._token.cancel()
        self._prev_source = NO_SOURCE
        self._prev_data = value
        self._commit(Ready(value))

    async def settled(self) -> CombineState:
        """Wait until no batch is queued and no attempt is running."""
        while True:
            batch = self._batch
            if batch is not None:
                await asyncio.shield(batch.flushed)
                continue
            execution = self._execution
            if execution is not None and not execution.done():
                await asyncio.wait({execution})
                continue
            return self._state_cell.value

    def dispose(self) -> None:
        """Release the source subscriptions and revoke pending work."""
        if self._disposed:
            return
        self._disposed = True
        self._cancel_batch()
        self._token.cancel()
        self._source.unsubscribe(self._on_source_change)
        self._source.detach()
        self._trigger_events.unsubscribe(self._on_trigger)

    def __getattr__(self, name: str) -> Any:
        extra = self.__dict__.get("_extra")
        if extra is not None and name in extra:
            return extra[name]
        raise AttributeError(
            f"{type(self).__name__!r} object has no attribute {name!r}"
        )

    def __repr__(self) -> str:
        return f"AsyncCombine({self._key!r}, {self._state_cell.value!r})"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _init_extensions(
        self,
        producer: Union[Producer, ExtendedProducer],
        base_extension: Optional[Extension],
    ):
        factories = list(base_extension.factories) if base_extension else []
        if isinstance(producer, ExtendedProducer):
            fn = producer.fn
            factories.extend(producer.factories)
        elif callable(producer):
            fn = producer
        else:
            raise TypeError(
                f"producer must be callable or an extended producer, "
                f"got {type(producer).__name__}"
            )

        slots: List[_ExtensionSlot] = []
        for index, factory in enumerate(factories):
            cell: Observable[CombineState] = Observable(
                f"{self._key}.extension[{index}].state", IDLE
            )
            api = ExtensionApi(
                state=ComputedObservable(
                    [cell], lambda state: state, key=f"{self._key}.extension[{index}]"
                ),
                trigger=self._trigger_events.prepend(
                    lambda params, index=index: ExtensionTrigger(index, params),
                    key=f"{self._key}.extension[{index}].trigger",
                ),
            )
            config = ExtensionConfig.coerce(factory(api))
            self._add_extra(config.extend)
            slots.append(_ExtensionSlot(cell, config))
        return fn, slots

    def _add_extra(self, extend: Mapping) -> None:
        for name, value in extend.items():
            if name in self._extra or hasattr(type(self), name) or name in self.__dict__:
                raise ExtensionError(
                    f"Extension field {name!r} collides with an existing attribute"
                )
            self._extra[name] = value

    # ------------------------------------------------------------------
    # Triggering and batching
    # ------------------------------------------------------------------

    def _on_source_change(self, _snapshot: SourceSnapshot) -> None:
        self._schedule(manual=False)

    def _on_trigger(self, trigger: Optional[ExtensionTrigger]) -> None:
        self._schedule(manual=True, trigger=trigger)

    def _schedule(
        self, manual: bool, trigger: Optional[ExtensionTrigger] = None
    ) -> None:
        if self._disposed:
            return

        batch = self._batch
        if batch is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError(
                    f"{self!r} can only be triggered while an event loop is running"
                ) from None
            batch = _Batch(token=CancellationToken(), flushed=loop.create_future())
            self._batch = batch
            loop.call_soon(self._flush, batch)

        if manual:
            batch.check_equality = False
            batch.trigger = trigger

    def _cancel_batch(self) -> None:
        batch = self._batch
        if batch is None:
            return
        self._batch = None
        batch.token.cancel()
        batch.close()

    def _flush(self, batch: _Batch) -> None:
        if batch.token.is_cancelled():
            return
        if self._batch is batch:
            self._batch = None
        try:
            self._start(batch)
        finally:
            batch.token.cancel()
            batch.close()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _start(self, batch: _Batch) -> None:
        """
        Start the run for `batch`, or settle without one.

        An unready source or an unchanged source revokes the previous attempt.
        A Pending left behind by that attempt is rolled back to the last stable
        state, which can re-publish an Error from an older source value.
        """
        self._token.cancel()
        token = CancellationToken()
        self._token = token

        snapshot = self._source.value
        if not snapshot.is_ready:
            logging.debug(f"{self!r}: source is {snapshot.status.value}, waiting")
            token.cancel()
            if self._state_cell.value.is_pending:
                self._commit(self._stable_state)
            return

        source_value = snapshot.value
        if batch.check_equality and self._prev_source is not NO_SOURCE:
            try:
                changed = self._source_update_filter(self._prev_source, source_value)
            except Exception as error:
                token.cancel()
                self._schedule_failure(error)
                return
            if not changed:
                logging.debug(f"{self!r}: source unchanged, skipping run")
                token.cancel()
                self._commit(self._stable_state)
                return

        record = ExecutionRecord(
            token=token,
            source_value=source_value,
            prev_source=None if self._prev_source is NO_SOURCE else self._prev_source,
            prev_data=self._prev_data,
            trigger=batch.trigger,
        )
        stable = self._stable_state
        self._active_trigger = record.trigger
        self._commit(
            Pending(
                prev_data=self._prev_data,
                prev_error=stable.cause if isinstance(stable, Error) else None,
            )
        )
        self._execution = asyncio.get_running_loop().create_task(
            self._execute(record)
        )

    async def _execute(self, record: ExecutionRecord) -> None:
        token = record.token
        context = Context(
            {
                "token": token,
                "prev_source": record.prev_source,
                "prev_data": record.prev_data,
            }
        )
        chain = build_chain(
            self._producer, self._configs, record.source_value, record.trigger
        )

        try:
            result = await token.race(chain(context))
        except Decline:
            self._decline()
        except AbortError:
            logging.debug(f"{self!r}: discarded aborted attempt")
        except Exception as error:
            if token.is_cancelled():
                logging.debug(f"{self!r}: discarded superseded attempt")
                return
            await self._fail(error)
        else:
            self._prev_source = record.source_value
            self._prev_data = result.get_data()
            self._commit(Ready(self._prev_data))
        finally:
            token.cancel()

    def _decline(self) -> None:
        self._prev_source = NO_SOURCE
        self._prev_data = None
        self._commit(IDLE)

    async def _fail(self, error: Exception) -> None:
        combine_error = error if isinstance(error, CombineError) else CombineError(error)
        cause = combine_error.cause

        self._commit(Error(cause=cause, prev_data=self._prev_data))

        if self._log_errors:
            _log_once(self, cause)

        on_error = self._config.on_error
        if on_error is None:
            return
        try:
            await _settle(on_error(cause))
        except Exception:
            logging.exception(f"on_error handler of {self!r} failed")

    def _schedule_failure(self, error: Exception) -> None:
        self._execution = asyncio.get_running_loop().create_task(self._fail(error))

    def _commit(self, state: CombineState) -> None:
        """Replace the published state and refresh the extension views."""
        if state.is_stable:
            self._stable_state = state
        self._state_cell.set(state)

        trigger = self._active_trigger
        for index, slot in enumerate(self._slots):
            if isinstance(state, Pending):
                params = (
                    trigger.params
                    if trigger is not None and trigger.index == index
                    else None
                )
                slot.cell.set(replace(state, params=params))
            else:
                slot.cell.set(state)


def create(
    source: SourceSpec,
    producer: Union[Producer, ExtendedProducer],
    config: Union[CombineConfig, Mapping, None] = None,
) -> AsyncCombine[Any]:
    """Create an engine instance deriving a value from `source` with `producer`."""
    return AsyncCombine(source, producer, config)
