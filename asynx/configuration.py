"""
asynx Configuration - Shared Defaults and Base Extensions
=========================================================

`configure()` returns a factory namespace whose `create()` applies shared
defaults and a base extension to every instance it builds:

```python
from asynx import configure

api = configure(
    extension=with_retry,
    on_error=report_to_sentry,
    log_errors=False,
)

user = api.create(user_id, load_user)
```

Per-instance `config` passed to `api.create()` overrides the defaults field by
field. The base extension runs outside every per-instance extension and, once
bound, can no longer be composed or applied on its own.
"""

from collections.abc import Mapping
from typing import Any, Callable, Optional, Union

from .combine import AsyncCombine, CombineConfig
from .extension import ExtendedProducer, Extension, ExtensionFactory, Producer
from .extension import define_extension as _define_extension
from .source import SourceSpec


class Configuration:
    """Factory namespace produced by `configure()`."""

    def __init__(
        self,
        extension: Optional[Extension] = None,
        defaults: Optional[CombineConfig] = None,
    ):
        if extension is not None and not isinstance(extension, Extension):
            raise TypeError(
                f"extension must be an Extension, got {type(extension).__name__}"
            )
        self._extension = extension
        self._defaults = defaults or CombineConfig()
        if extension is not None:
            extension._bind(self)

    @property
    def extension(self) -> Optional[Extension]:
        return self._extension

    @property
    def defaults(self) -> CombineConfig:
        return self._defaults

    def create(
        self,
        source: SourceSpec,
        producer: Union[Producer, ExtendedProducer],
        config: Union[CombineConfig, Mapping, None] = None,
    ) -> AsyncCombine[Any]:
        """Create an instance with this configuration's defaults and base extension."""
        return AsyncCombine(
            source,
            producer,
            self._defaults.merged_with(config),
            base_extension=self._extension,
        )

    def define_extension(self, factory: ExtensionFactory) -> Extension:
        return _define_extension(factory)

    def __repr__(self) -> str:
        return f"Configuration(extension={self._extension!r}, defaults={self._defaults!r})"


def configure(
    extension: Optional[Extension] = None,
    on_error: Optional[Callable[[BaseException], Any]] = None,
    source_update_filter: Optional[Callable[[Any, Any], bool]] = None,
    log_errors: Optional[bool] = None,
) -> Configuration:
    """Bind a base extension and default options into a new Configuration."""
    return Configuration(
        extension,
        CombineConfig(
            on_error=on_error,
            source_update_filter=source_update_filter,
            log_errors=log_errors,
        ),
    )
