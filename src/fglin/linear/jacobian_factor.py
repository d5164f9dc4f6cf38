# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Linear (Jacobian) factors: the output of linearization.

A ``JacobianFactor`` represents the linear least-squares term

    ½ ‖ whiten( Σ_i A_i dx_i − b ) ‖²

over the tangent-space updates ``dx_i`` of its keys. It is a plain,
immutable data holder handed to an external linear solver; fglin never
eliminates or solves it.

A ``GaussianFactorGraph`` is the ordered collection of Jacobian factors
produced by ``NonlinearFactorGraph.linearize_all``. It can evaluate its total
linear error for a given update and stack itself into one dense ``(A, b)``
system for inspection or small dense solves.
"""

from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp

from fglin.core.config import default_tol
from fglin.core.errors import DimensionMismatch, KeyNotFound
from fglin.core.types import Key, KeyTuple, Matrix, Vector, as_matrix, as_vector

from .noise_model import NoiseModel, Unit


class JacobianFactor:
    """
    Linear factor ``Σ_i A_i dx_i ≈ b`` with an attached noise model.

    Args:
        terms: ordered ``(key, A_i)`` pairs.
        b: right-hand side.
        model: noise model of the rows; ``None`` means ``Unit(len(b))``.

    Raises:
        DimensionMismatch: a block's rows, ``len(b)`` and ``model.dim`` disagree.
        ValueError: a key appears twice.
    """

    def __init__(
        self,
        terms: Iterable[Tuple[Key, Matrix]],
        b,
        model: Optional[NoiseModel] = None,
    ):
        b = as_vector(b)
        rows = b.shape[0]
        if model is None:
            model = Unit.create(rows)
        if model.dim != rows:
            raise DimensionMismatch(
                f"Noise model dimension {model.dim} does not match rhs length {rows}",
                expected=rows,
                actual=model.dim,
            )

        keys: List[Key] = []
        blocks: Dict[Key, Matrix] = {}
        for key, A in terms:
            A = as_matrix(A)
            if A.shape[0] != rows:
                raise DimensionMismatch(
                    f"Block for key {key!r} has {A.shape[0]} rows, rhs has {rows}",
                    expected=rows,
                    actual=A.shape[0],
                )
            if key in blocks:
                raise ValueError(f"Duplicate key {key!r} in JacobianFactor")
            keys.append(key)
            blocks[key] = A

        self._keys: KeyTuple = tuple(keys)
        self._blocks = blocks
        self._b = b
        self._model = model

    # --- Accessors ---

    def keys(self) -> KeyTuple:
        return self._keys

    def size(self) -> int:
        return len(self._keys)

    def rows(self) -> int:
        return int(self._b.shape[0])

    def get_a(self, key: Key) -> Matrix:
        try:
            return self._blocks[key]
        except KeyError:
            raise KeyNotFound(key, "JacobianFactor") from None

    def get_b(self) -> Vector:
        return self._b

    def get_model(self) -> NoiseModel:
        return self._model

    def terms(self) -> List[Tuple[Key, Matrix]]:
        return [(key, self._blocks[key]) for key in self._keys]

    def dims(self) -> Dict[Key, int]:
        """Tangent dimension (block column count) per key."""
        return {key: int(self._blocks[key].shape[1]) for key in self._keys}

    # --- Evaluation ---

    def unwhitened_error(self, delta: Mapping[Key, Vector]) -> Vector:
        """``Σ_i A_i dx_i − b`` for the updates in ``delta``."""
        r = -self._b
        for key in self._keys:
            if key not in delta:
                raise KeyNotFound(key, "delta")
            dx = as_vector(delta[key])
            A = self._blocks[key]
            if dx.shape[0] != A.shape[1]:
                raise DimensionMismatch(
                    f"Update for key {key!r} has {dx.shape[0]} entries, block expects {A.shape[1]}",
                    expected=A.shape[1],
                    actual=dx.shape[0],
                )
            r = r + A @ dx
        return r

    def error(self, delta: Mapping[Key, Vector]) -> float:
        w = self._model.whiten(self.unwhitened_error(delta))
        return 0.5 * float(jnp.dot(w, w))

    def zero_delta(self) -> Dict[Key, Vector]:
        return {key: jnp.zeros(dim) for key, dim in self.dims().items()}

    def dense(self, ordering: Optional[Sequence[Key]] = None) -> Tuple[Matrix, Vector]:
        """
        Whitened dense ``(A, b)``; columns laid out per ``ordering``.

        Keys in ``ordering`` the factor does not touch get zero columns; the
        factor's own keys must all appear in it.
        """
        return _stack([self], ordering if ordering is not None else self._keys, self.dims())

    # --- Testable ---

    def equals(self, other: "JacobianFactor", tol: float | None = None) -> bool:
        if not isinstance(other, JacobianFactor):
            return False
        tol = default_tol(tol)
        if self._keys != other._keys or self.rows() != other.rows():
            return False
        for key in self._keys:
            A, B = self._blocks[key], other._blocks[key]
            if A.shape != B.shape or not bool(jnp.allclose(A, B, atol=tol, rtol=0.0)):
                return False
        if not bool(jnp.allclose(self._b, other._b, atol=tol, rtol=0.0)):
            return False
        return self._model.equals(other._model, tol)

    def __repr__(self) -> str:
        return f"JacobianFactor(keys={self._keys}, rows={self.rows()}, model={self._model!r})"


class GaussianFactorGraph:
    """Ordered collection of linear factors."""

    def __init__(self, factors: Iterable[JacobianFactor] = ()):
        self._factors: List[JacobianFactor] = []
        for factor in factors:
            self.append(factor)

    def append(self, factor: JacobianFactor) -> None:
        if not isinstance(factor, JacobianFactor):
            raise TypeError(f"Expected JacobianFactor, got {type(factor).__name__}")
        self._factors.append(factor)

    def __len__(self) -> int:
        return len(self._factors)

    def __getitem__(self, i: int) -> JacobianFactor:
        return self._factors[i]

    def __iter__(self) -> Iterator[JacobianFactor]:
        return iter(self._factors)

    def keys(self) -> KeyTuple:
        return tuple(sorted({key for f in self._factors for key in f.keys()}))

    def dims(self) -> Dict[Key, int]:
        dims: Dict[Key, int] = {}
        for f in self._factors:
            for key, d in f.dims().items():
                if dims.setdefault(key, d) != d:
                    raise DimensionMismatch(
                        f"Key {key!r} has blocks with {dims[key]} and {d} columns",
                        expected=dims[key],
                        actual=d,
                    )
        return dims

    def error(self, delta: Mapping[Key, Vector]) -> float:
        return sum(f.error(delta) for f in self._factors)

    def dense(self, ordering: Optional[Sequence[Key]] = None) -> Tuple[Matrix, Vector]:
        """Stack all factors into one whitened ``(A, b)``; default ordering is sorted keys."""
        return _stack(self._factors, ordering if ordering is not None else self.keys(), self.dims())

    def equals(self, other: "GaussianFactorGraph", tol: float | None = None) -> bool:
        if not isinstance(other, GaussianFactorGraph) or len(self) != len(other):
            return False
        return all(a.equals(b, tol) for a, b in zip(self._factors, other._factors))

    def __repr__(self) -> str:
        return f"GaussianFactorGraph(size={len(self._factors)})"


def _stack(
    factors: Sequence[JacobianFactor],
    ordering: Sequence[Key],
    dims: Mapping[Key, int],
) -> Tuple[Matrix, Vector]:
    ordering = tuple(ordering)
    for f in factors:
        for key in f.keys():
            if key not in ordering:
                raise KeyNotFound(key, "ordering")
    widths = [dims.get(key, 0) for key in ordering]

    row_blocks = []
    rhs = []
    for f in factors:
        model = f.get_model()
        cols = []
        for key, width in zip(ordering, widths):
            if key in f.keys():
                cols.append(model.whiten_matrix(f.get_a(key)))
            else:
                cols.append(jnp.zeros((f.rows(), width)))
        row_blocks.append(jnp.concatenate(cols, axis=1) if cols else jnp.zeros((f.rows(), 0)))
        rhs.append(model.whiten(f.get_b()))

    if not row_blocks:
        return jnp.zeros((0, sum(widths))), jnp.zeros((0,))
    return jnp.concatenate(row_blocks, axis=0), jnp.concatenate(rhs)
