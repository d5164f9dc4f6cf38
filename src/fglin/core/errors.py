# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Error taxonomy for fglin.

Every failure of cost evaluation or linearization is fatal to the single
call that hit it and propagates to the caller; nothing here is retried or
replaced by a default value. Each error also derives from the matching
builtin so callers can catch ``KeyError`` / ``TypeError`` / ``ValueError``
without importing this module.

Classes
-------
FactorGraphError
    Root of the hierarchy.

KeyNotFound
    A scoped key is absent from a ``Values`` assignment (or from a delta map
    handed to a Jacobian factor).

TypeMismatch
    The value stored under a key is not of the manifold type a factor expects.

DimensionMismatch
    A noise model, residual, Jacobian block or right-hand side disagree on
    their number of rows or columns.

ArityMismatch
    A key list of the wrong length was given to ``rekey`` or to a factor
    constructor.
"""

from __future__ import annotations


class FactorGraphError(Exception):
    """Base class for all fglin errors."""


class KeyNotFound(FactorGraphError, KeyError):
    def __init__(self, key, where: str = "values"):
        self.key = key
        super().__init__(f"Key {key!r} not found in {where}")

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return self.args[0]


class TypeMismatch(FactorGraphError, TypeError):
    def __init__(self, key, expected: type, actual: type):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Value for key {key!r} has type {actual.__name__}, "
            f"expected {expected.__name__}"
        )


class DimensionMismatch(FactorGraphError, ValueError):
    def __init__(self, message: str, expected: int | None = None, actual: int | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class ArityMismatch(FactorGraphError, ValueError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} keys, got {actual}")
