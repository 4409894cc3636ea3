"""
asynx Utils
===========

Helpers shared by the engine:

- is_equal: type-strict deep structural equality
- source_changed: the default source update filter built on it
"""

from .equal import is_equal, source_changed

__all__ = ["is_equal", "source_changed"]
