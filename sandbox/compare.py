"""
Structural (deep) equality used to judge candidate output against the reference.
"""

from __future__ import annotations

import math
import numbers
from collections.abc import Mapping, Set


def _is_number(value: object) -> bool:
    return isinstance(value, numbers.Number) and not isinstance(value, bool)


def is_equal(left: object, right: object) -> bool:
    """Return True when ``left`` and ``right`` are structurally equal.

    - ``bool`` never equals a non-bool; ints and floats compare numerically
      and NaN equals NaN. No other cross-type coercion is applied.
    - Lists and tuples are ordered sequences compared element by element.
    - Mappings compare by key set and per-key value, ignoring insertion order.
    - Sets compare by membership.
    - Other objects of the same type compare by ``vars()`` when available,
      otherwise by ``==``.
    """
    return _equal(left, right, set())


def _equal(left: object, right: object, active: set[tuple[int, int]]) -> bool:
    if left is right:
        return True

    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right

    if _is_number(left) and _is_number(right):
        if isinstance(left, float) and isinstance(right, float):
            if math.isnan(left) and math.isnan(right):
                return True
        return left == right

    if isinstance(left, str) or isinstance(right, str):
        return isinstance(left, str) and isinstance(right, str) and left == right

    if isinstance(left, (bytes, bytearray)) or isinstance(right, (bytes, bytearray)):
        return (
            isinstance(left, (bytes, bytearray))
            and isinstance(right, (bytes, bytearray))
            and bytes(left) == bytes(right)
        )

    # Pairs already being compared further up the stack are cyclic references.
    key = (id(left), id(right))
    if key in active:
        return True

    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        active.add(key)
        try:
            return all(_equal(a, b, active) for a, b in zip(left, right))
        finally:
            active.discard(key)

    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if left.keys() != right.keys():
            return False
        active.add(key)
        try:
            return all(_equal(left[k], right[k], active) for k in left)
        finally:
            active.discard(key)

    if isinstance(left, Set) and isinstance(right, Set):
        return left == right

    if type(left) is not type(right):
        return False

    left_attrs = getattr(left, "__dict__", None)
    right_attrs = getattr(right, "__dict__", None)
    if isinstance(left_attrs, dict) and isinstance(right_attrs, dict):
        active.add(key)
        try:
            return _equal(left_attrs, right_attrs, active)
        finally:
            active.discard(key)

    return bool(left == right)
