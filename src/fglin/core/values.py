# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Variable assignment: key -> manifold value.

``Values`` is the read-only input of cost evaluation and linearization.
Callers fill it with ``insert`` while building an initial estimate; factors
only ever read from it through ``at``, which checks both presence and the
runtime type the factor expects.
"""

from __future__ import annotations
from typing import Any, Dict, Iterator, Optional, Tuple

from .config import default_tol
from .errors import KeyNotFound, TypeMismatch
from .types import Key, KeyTuple


class Values:
    """Mapping from ``Key`` to a manifold value (``Point2``, ``Pose2``, ...)."""

    def __init__(self):
        self._values: Dict[Key, Any] = {}

    def insert(self, key: Key, value: Any) -> None:
        if key in self._values:
            raise ValueError(f"Key {key!r} already present in values")
        self._values[key] = value

    def update(self, key: Key, value: Any) -> None:
        current = self.at(key)
        if type(value) is not type(current):
            raise TypeMismatch(key, type(current), type(value))
        self._values[key] = value

    def at(self, key: Key, expected_type: Optional[type] = None) -> Any:
        """
        Fetch the value for ``key``.

        Raises:
            KeyNotFound: ``key`` is absent.
            TypeMismatch: the stored value is not an ``expected_type``.
        """
        try:
            value = self._values[key]
        except KeyError:
            raise KeyNotFound(key) from None
        if expected_type is not None and not isinstance(value, expected_type):
            raise TypeMismatch(key, expected_type, type(value))
        return value

    def contains(self, key: Key) -> bool:
        return key in self._values

    def __contains__(self, key: Key) -> bool:
        return key in self._values

    def keys(self) -> KeyTuple:
        return tuple(sorted(self._values))

    def items(self) -> Tuple[Tuple[Key, Any], ...]:
        return tuple((key, self._values[key]) for key in self.keys())

    def dims(self) -> Dict[Key, int]:
        """Tangent dimension of every stored value."""
        return {key: value.dim() for key, value in self.items()}

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys())

    def equals(self, other: "Values", tol: float | None = None) -> bool:
        if not isinstance(other, Values) or self.keys() != other.keys():
            return False
        tol = default_tol(tol)
        return all(
            type(v) is type(other._values[k]) and v.equals(other._values[k], tol)
            for k, v in self._values.items()
        )

    def __repr__(self) -> str:
        body = ", ".join(f"{k!r}: {v!r}" for k, v in self.items())
        return f"Values({{{body}}})"
