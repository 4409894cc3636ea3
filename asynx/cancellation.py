"""
asynx CancellationToken - Cooperative Cancellation
==================================================

Every execution attempt owns one token. Starting the next attempt revokes the
previous token, and so does settling the attempt. Nothing is cancelled
implicitly: an operation only stops early when it is raced against the token.

```python
async def producer(source, context, prev_data):
    # Rejects with AbortError as soon as a newer run revokes the token.
    # fetch() itself keeps running in the background.
    return await context.token.race(fetch(source))
```
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, TypeVar

from .errors import AbortError

T = TypeVar("T")


class CancellationToken:
    """A revocable signal shared between the engine and one execution attempt."""

    __slots__ = ("_cancelled", "_callbacks", "_next_handle")

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: Dict[int, Callable[[], Any]] = {}
        self._next_handle = 0

    def is_cancelled(self) -> bool:
        """Return True once the token has been revoked."""
        return self._cancelled

    def cancel(self) -> None:
        """Revoke the token and run the registered callbacks (idempotent)."""
        if self._cancelled:
            return
        self._cancelled = True
        callbacks = list(self._callbacks.values())
        self._callbacks.clear()
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """
        Register `callback` to run when the token is revoked.

        Returns a function that unregisters the callback. On a revoked token
        the callback runs immediately.
        """
        if self._cancelled:
            callback()
            return lambda: None

        handle = self._next_handle
        self._next_handle += 1
        self._callbacks[handle] = callback

        def remove() -> None:
            self._callbacks.pop(handle, None)

        return remove

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise AbortError()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token is revoked first.

        Raises AbortError when the token wins. The awaitable is never
        cancelled; it keeps running and its outcome is discarded.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise AbortError()

        work = asyncio.ensure_future(awaitable)
        revoked = asyncio.get_running_loop().create_future()

        def on_revoke() -> None:
            if not revoked.done():
                revoked.set_result(None)

        remove = self.on_cancel(on_revoke)
        try:
            await asyncio.wait({work, revoked}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            remove()
            revoked.cancel()

        if self._cancelled:
            if not work.done():
                work.add_done_callback(_discard_outcome)
            else:
                _discard_outcome(work)
            raise AbortError()
        return work.result()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


def _discard_outcome(future: "asyncio.Future[Any]") -> None:
    """Retrieve the outcome of an abandoned operation so it is not reported as unhandled."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logging.debug(f"Discarded error from cancelled operation: {error!r}")
