"""
asynx compose - Combining Extensions
====================================

`compose(ext1, ext2, ...)` concatenates the extensions' factory lists in
order. The first extension's handler runs outermost. Each factory keeps its
own trigger slot, its own params and its own state view. Composing the same
factory twice keeps only its first occurrence.

```python
paginated_with_retry = compose(paginated, retry)
feed = create(query, paginated_with_retry(fetch_page))
```
"""

from typing import List

from .errors import ExtensionError
from .extension import Extension, ExtensionFactory


def compose(*extensions: Extension) -> Extension:
    """Combine extensions into one, preserving their relative order."""
    if not extensions:
        raise ExtensionError("compose() needs at least one extension")

    factories: List[ExtensionFactory] = []
    for extension in extensions:
        if not isinstance(extension, Extension):
            raise ExtensionError(
                f"compose() accepts extensions only, got {type(extension).__name__}"
            )
        extension._ensure_unbound()
        for factory in extension.factories:
            if factory not in factories:
                factories.append(factory)

    return Extension(factories)
