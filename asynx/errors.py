"""
asynx exceptions.

`Decline` and `AbortError` are control-flow signals: the engine handles them
without logging and without calling `on_error`. `CombineError` wraps every
other failure of a producer or extension exactly once.
"""


class AsynxError(Exception):
    """Base class for all asynx errors."""


class ReadOnlyError(AsynxError, ValueError):
    """A derived observable was set directly."""


class SourceError(AsynxError, TypeError):
    """A source specification could not be resolved."""


class ExtensionError(AsynxError):
    """An extension was misconfigured or misused."""


class AbortError(AsynxError):
    """The cancellation token an operation was raced against was revoked."""


class Decline(AsynxError):
    """
    Raised by a producer to decline producing a value.

    The instance returns to `Idle` and forgets its previous data and source.
    """


class CombineError(AsynxError):
    """A producer or extension failed; `cause` is the original exception."""

    def __init__(self, cause: BaseException):
        super().__init__(cause)
        self.cause = cause

    def __str__(self) -> str:
        return f"{type(self.cause).__name__}: {self.cause}"
