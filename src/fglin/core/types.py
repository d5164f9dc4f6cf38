# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Core type aliases for fglin.

These aliases are deliberately thin: keys are any hashable, totally ordered
token (ints, strings, tuples such as ``("x", 1)``), and all numeric data is a
``jax.numpy`` array.

Aliases
-------
Key
    Opaque identifier of one optimization variable. Factors only reference
    keys; they never own variable storage.

Vector
    1-D array of shape ``(n,)``.

Matrix
    2-D array of shape ``(m, n)``. Jacobian blocks are always matrices, even
    for scalar residuals (shape ``(1, 1)``).
"""

from __future__ import annotations
from typing import Hashable, Tuple

import jax.numpy as jnp

from . import config as _config  # noqa: F401  x64 must be on before any array exists

Key = Hashable
KeyTuple = Tuple[Key, ...]

Vector = jnp.ndarray
Matrix = jnp.ndarray


def as_vector(v) -> Vector:
    """Coerce scalars / sequences / arrays into a flat float vector."""
    return jnp.reshape(jnp.asarray(v, dtype=float), (-1,))


def as_matrix(m) -> Matrix:
    """Coerce into a 2-D float matrix; a scalar becomes ``(1, 1)``."""
    m = jnp.asarray(m, dtype=float)
    if m.ndim == 0:
        return jnp.reshape(m, (1, 1))
    if m.ndim == 1:
        # a row vector, the natural Jacobian of a scalar residual
        return jnp.reshape(m, (1, -1))
    return m
