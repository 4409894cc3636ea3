"""
asynx Extensions - Middleware Around the Producer
=================================================

An extension is registered as a factory. The engine calls every factory once,
at construction, with a private `ExtensionApi`:

- `state`: read-only view of the engine state. While Pending, `params` holds
  the params of this extension's trigger when that trigger started the run.
- `trigger(params)`: a manual trigger tagged with the extension's slot.

The factory returns an `ExtensionConfig` (or a mapping with the same keys):

- `handler(next, context, params)`: wraps the rest of the chain. It must call
  `await next(patch)` to continue; `patch` is merged into the context every
  inner handler and the producer receive. `params` is only passed when this
  extension's own trigger fired the run.
- `extend`: extra attributes merged onto the engine instance.

```python
from asynx import ExtensionConfig, create, define_extension

@define_extension
def paginated(api):
    async def handler(next, context, params):
        offset = len(context.prev_data["items"]) if context.prev_data else 0
        result = await next({"offset": offset})
        result.merge_with_prev_data(array_key="items")
        return result

    return ExtensionConfig(handler=handler, extend={"load_next": api.trigger})

feed = create(page_size, paginated(fetch_page))
feed.load_next()
```

Handlers are folded right-to-left into one callable, so a single call runs
each handler exactly once per execution, outermost (first registered) first.
"""

import inspect
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
)

from .errors import ExtensionError
from .observable import BaseObservable, Event
from .state import CombineState

if TYPE_CHECKING:
    from .configuration import Configuration


Producer = Callable[[Any, "Context", Any], Any]
Next = Callable[..., Awaitable["ExtensionResult"]]
Handler = Callable[[Next, "Context", Any], Any]


@dataclass(frozen=True)
class ExtensionTrigger:
    """Which extension slot fired a manual trigger, and with what params."""

    index: int
    params: Any = None


@dataclass(frozen=True)
class ExtensionApi:
    """What an extension factory receives from the engine."""

    state: BaseObservable[CombineState]
    trigger: Event[Any]


@dataclass(frozen=True)
class ExtensionConfig:
    handler: Optional[Handler] = None
    extend: Mapping = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "ExtensionConfig":
        """Accept an ExtensionConfig, a mapping with the same keys, or None."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            unknown = set(value) - {"handler", "extend"}
            if unknown:
                raise ExtensionError(
                    f"Unknown extension config keys: {', '.join(sorted(unknown))}"
                )
            return cls(handler=value.get("handler"), extend=value.get("extend") or {})
        raise ExtensionError(
            f"Extension factory must return an ExtensionConfig or a mapping, "
            f"got {type(value).__name__}"
        )


class Context(Mapping):
    """
    Read-only execution context with attribute access.

    Always carries `token`, `prev_source` and `prev_data`; extensions add
    their own fields through `next(patch)`.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping):
        object.__setattr__(self, "_fields", dict(fields))

    def merge(self, patch: Optional[Mapping] = None) -> "Context":
        if not patch:
            return self
        return Context({**self._fields, **patch})

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __getattr__(self, name: str) -> Any:
        try:
            return self._fields[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Context is read-only")

    def __repr__(self) -> str:
        return f"Context({self._fields!r})"


class ExtensionResult:
    """
    The chain's result for one execution.

    The producer's data is wrapped once at the innermost level and the same
    object travels back out through every handler, so the merge guard holds
    for the whole execution.
    """

    __slots__ = ("_data", "_prev_data", "_merged")

    def __init__(self, data: Any, prev_data: Any = None):
        self._data = data
        self._prev_data = prev_data
        self._merged = False

    @property
    def data(self) -> Any:
        return self._data

    def get_data(self) -> Any:
        return self._data

    def merge_with_prev_data(self, array_key: Optional[str] = None) -> None:
        """
        Prepend the previous Ready data's list to this result's list.

        With `array_key` the lists live under that key of a mapping. No-op
        without previous data, and only the first call per execution merges.
        """
        if self._prev_data is None or self._merged:
            return
        self._merged = True

        next_items = _array_at(self._data, array_key)
        prev_items = _array_at(self._prev_data, array_key)
        merged = [*prev_items, *next_items]

        if array_key is None:
            self._data = merged
        else:
            self._data = {**self._data, array_key: merged}

    def __repr__(self) -> str:
        return f"ExtensionResult({self._data!r})"


def _array_at(data: Any, array_key: Optional[str]) -> list:
    items = data
    if array_key is not None:
        items = data.get(array_key) if isinstance(data, Mapping) else None
    if not isinstance(items, list):
        raise ExtensionError(
            f"Merging with previous data is only allowed for lists, "
            f"but got {type(items).__name__}"
        )
    return items


ExtensionFactory = Callable[[ExtensionApi], Any]


class ExtendedProducer:
    """A producer together with the extension factories that wrap it."""

    __slots__ = ("fn", "factories")

    def __init__(self, fn: Producer, factories: Sequence[ExtensionFactory]):
        self.fn = fn
        self.factories: List[ExtensionFactory] = list(factories)

    def __repr__(self) -> str:
        name = getattr(self.fn, "__name__", repr(self.fn))
        return f"ExtendedProducer({name}, extensions={len(self.factories)})"


class Extension:
    """
    An ordered list of extension factories.

    Calling it with a producer returns an `ExtendedProducer` accepted by
    `create()`. Extensions are combined with `compose()` and bound as the base
    of a configuration with `configure(extension=...)`.
    """

    __slots__ = ("_factories", "_bound_to")

    def __init__(self, factories: Sequence[ExtensionFactory]):
        self._factories: List[ExtensionFactory] = list(factories)
        self._bound_to: Optional["Configuration"] = None

    @property
    def factories(self) -> List[ExtensionFactory]:
        return list(self._factories)

    @property
    def is_bound(self) -> bool:
        return self._bound_to is not None

    def _ensure_unbound(self) -> None:
        if self._bound_to is not None:
            raise ExtensionError(
                "This extension is bound as the base extension of a configuration "
                "and cannot be used on its own"
            )

    def _bind(self, configuration: "Configuration") -> None:
        self._ensure_unbound()
        self._bound_to = configuration

    def __call__(self, fn: Producer) -> ExtendedProducer:
        self._ensure_unbound()
        if not callable(fn):
            raise ExtensionError(f"Producer must be callable, got {type(fn).__name__}")
        return ExtendedProducer(fn, self._factories)

    def __repr__(self) -> str:
        return f"Extension(factories={len(self._factories)})"


def define_extension(factory: ExtensionFactory) -> Extension:
    """Turn an extension factory into an Extension. Usable as a decorator."""
    if not callable(factory):
        raise ExtensionError(
            f"Extension factory must be callable, got {type(factory).__name__}"
        )
    return Extension([factory])


# ============================================================================
# CHAIN EXECUTION
# ============================================================================


async def _settle(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


ChainStep = Callable[[Context], Awaitable[ExtensionResult]]


def build_chain(
    producer: Producer,
    configs: Sequence[ExtensionConfig],
    source_value: Any,
    trigger: Optional[ExtensionTrigger] = None,
) -> ChainStep:
    """
    Fold the handlers right-to-left around the producer.

    The returned coroutine function takes the base context and resolves to
    the single ExtensionResult of this execution.
    """

    async def innermost(context: Context) -> ExtensionResult:
        prev_data = context.get("prev_data")
        data = await _settle(producer(source_value, context, prev_data))
        return ExtensionResult(data, prev_data)

    step: ChainStep = innermost
    for index in reversed(range(len(configs))):
        handler = configs[index].handler
        if handler is None:
            continue
        params = trigger.params if trigger is not None and trigger.index == index else None
        step = _wrap(handler, step, params)
    return step


def _wrap(handler: Handler, inner: ChainStep, params: Any) -> ChainStep:
    async def step(context: Context) -> ExtensionResult:
        called: Dict[str, ExtensionResult] = {}

        async def next_(patch: Optional[Mapping] = None) -> ExtensionResult:
            result = await inner(context.merge(patch))
            called["result"] = result
            return result

        returned = await _settle(handler(next_, context, params))
        if "result" not in called:
            raise ExtensionError(
                f"Extension handler {getattr(handler, '__name__', handler)!r} "
                f"returned without calling next()"
            )
        if returned is None:
            return called["result"]
        if isinstance(returned, ExtensionResult):
            return returned
        return ExtensionResult(returned, context.get("prev_data"))

    return step
