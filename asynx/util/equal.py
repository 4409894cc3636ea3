"""
Structural Equality
===================

Deep equality used to decide whether a newly resolved source value differs
from the last committed one.

Unlike `==`, values of different concrete types are never equal, so `1`,
`1.0` and `True` are three distinct source values. Mappings compare their key
sets and values, lists and tuples compare element-wise, and everything else
falls back to `==`. Recursion is iterative so deeply nested values cannot
overflow the stack.
"""

from collections.abc import Mapping
from typing import Any, List, Tuple


def is_equal(first: Any, second: Any) -> bool:
    """Return True when `first` and `second` are structurally equal."""
    stack: List[Tuple[Any, Any]] = [(first, second)]

    while stack:
        left, right = stack.pop()

        if left is right:
            continue
        if type(left) is not type(right):
            return False

        if isinstance(left, Mapping):
            if len(left) != len(right):
                return False
            for key, value in left.items():
                if key not in right:
                    return False
                stack.append((value, right[key]))
        elif isinstance(left, (list, tuple)):
            if len(left) != len(right):
                return False
            stack.extend(zip(left, right))
        elif left != right:
            return False

    return True


def source_changed(prev: Any, next: Any) -> bool:
    """Default source update filter: proceed only on a structural change."""
    return not is_equal(prev, next)
