# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Manifold-valued variable types for fglin.

Factors differentiate with respect to a *local* perturbation of each variable,
expressed in that variable's tangent space. This module provides the value
types stored in ``Values`` together with the chart that defines "local":

    • ``retract(delta)``            (tangent -> manifold, around self)
    • ``local_coordinates(other)``  (manifold -> tangent, inverse of retract)
    • ``dim()``                     (tangent dimension = Jacobian columns)

Types
-----
Point2
    Euclidean 2-vector. Retraction is plain addition.

LieVector
    Euclidean n-vector. Retraction is plain addition.

Pose2
    Planar rigid transform ``(x, y, theta)``. The chart composes with a small
    pose built directly from the tangent vector:

        p.retract(d)           = p ∘ Pose2(d)
        p.local_coordinates(q) = vector(p⁻¹ ∘ q)

    so analytic Jacobians of pose factors are exact in this chart.

Notes
-----
All arithmetic goes through ``jax.numpy`` and no method converts to Python
floats, so values can be rebuilt from tracers inside ``jax.jacfwd``. This is
what ``core.derivatives`` relies on to check analytic Jacobians.
"""

from __future__ import annotations

import jax.numpy as jnp

from fglin.core.config import default_tol
from fglin.core.errors import DimensionMismatch
from fglin.core.types import Vector, Matrix, as_vector


def wrap_angle(theta):
    """Wrap an angle to (-pi, pi]."""
    return jnp.arctan2(jnp.sin(theta), jnp.cos(theta))


def rot2(theta) -> Matrix:
    c, s = jnp.cos(theta), jnp.sin(theta)
    return jnp.array([[c, -s], [s, c]])


class _VectorSpaceValue:
    """Shared implementation of the Euclidean value types."""

    __slots__ = ("_v",)

    def __init__(self, v):
        self._v = as_vector(v)

    @classmethod
    def from_vector(cls, v) -> "_VectorSpaceValue":
        obj = cls.__new__(cls)
        obj._v = as_vector(v)
        return obj

    def dim(self) -> int:
        return int(self._v.shape[0])

    def vector(self) -> Vector:
        return self._v

    def retract(self, delta) -> "_VectorSpaceValue":
        delta = as_vector(delta)
        if delta.shape[0] != self.dim():
            raise DimensionMismatch(
                f"{type(self).__name__}.retract expects a {self.dim()}-vector, got {delta.shape[0]}",
                expected=self.dim(),
                actual=delta.shape[0],
            )
        return type(self).from_vector(self._v + delta)

    def local_coordinates(self, other) -> Vector:
        return other._v - self._v

    def equals(self, other, tol: float | None = None) -> bool:
        if type(other) is not type(self) or other.dim() != self.dim():
            return False
        return bool(jnp.allclose(self._v, other._v, atol=default_tol(tol), rtol=0.0))

    def __add__(self, other):
        return type(self).from_vector(self._v + other._v)

    def __sub__(self, other):
        return type(self).from_vector(self._v - other._v)

    def __neg__(self):
        return type(self).from_vector(-self._v)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(map(float, self._v))})"


class Point2(_VectorSpaceValue):
    """2D point in the plane."""

    __slots__ = ()

    def __init__(self, x, y):
        super().__init__(jnp.stack([jnp.asarray(x, dtype=float), jnp.asarray(y, dtype=float)]))

    @classmethod
    def from_vector(cls, v) -> "Point2":
        v = as_vector(v)
        if v.shape[0] != 2:
            raise DimensionMismatch(f"Point2 needs 2 coordinates, got {v.shape[0]}", 2, v.shape[0])
        return super().from_vector(v)

    @property
    def x(self):
        return self._v[0]

    @property
    def y(self):
        return self._v[1]

    def __repr__(self) -> str:
        return f"Point2({float(self._v[0])}, {float(self._v[1])})"


class LieVector(_VectorSpaceValue):
    """n-dimensional vector treated as a (trivial) Lie group under addition."""

    __slots__ = ()


class Pose2:
    """
    Planar pose (x, y, theta), theta stored wrapped to (-pi, pi].
    """

    __slots__ = ("_v",)

    def __init__(self, x, y, theta):
        self._v = jnp.stack(
            [
                jnp.asarray(x, dtype=float),
                jnp.asarray(y, dtype=float),
                wrap_angle(jnp.asarray(theta, dtype=float)),
            ]
        )

    @classmethod
    def from_vector(cls, v) -> "Pose2":
        v = as_vector(v)
        if v.shape[0] != 3:
            raise DimensionMismatch(f"Pose2 needs 3 coordinates, got {v.shape[0]}", 3, v.shape[0])
        return cls(v[0], v[1], v[2])

    @classmethod
    def identity(cls) -> "Pose2":
        return cls(0.0, 0.0, 0.0)

    def dim(self) -> int:
        return 3

    def vector(self) -> Vector:
        return self._v

    @property
    def x(self):
        return self._v[0]

    @property
    def y(self):
        return self._v[1]

    @property
    def theta(self):
        return self._v[2]

    def translation(self) -> Vector:
        return self._v[:2]

    def rotation_matrix(self) -> Matrix:
        return rot2(self._v[2])

    # --- Group operations ---

    def compose(self, other: "Pose2") -> "Pose2":
        t = self.translation() + self.rotation_matrix() @ other.translation()
        return Pose2(t[0], t[1], self._v[2] + other._v[2])

    def inverse(self) -> "Pose2":
        t = -(self.rotation_matrix().T @ self.translation())
        return Pose2(t[0], t[1], -self._v[2])

    def between(self, other: "Pose2") -> "Pose2":
        """self⁻¹ ∘ other"""
        return self.inverse().compose(other)

    def transform_from(self, point: Point2) -> Point2:
        return Point2.from_vector(self.translation() + self.rotation_matrix() @ point.vector())

    def __mul__(self, other: "Pose2") -> "Pose2":
        return self.compose(other)

    # --- Chart ---

    def retract(self, delta) -> "Pose2":
        delta = as_vector(delta)
        if delta.shape[0] != 3:
            raise DimensionMismatch(f"Pose2.retract expects a 3-vector, got {delta.shape[0]}", 3, delta.shape[0])
        return self.compose(Pose2.from_vector(delta))

    def local_coordinates(self, other: "Pose2") -> Vector:
        return self.between(other).vector()

    def equals(self, other, tol: float | None = None) -> bool:
        if type(other) is not Pose2:
            return False
        tol = default_tol(tol)
        dt = jnp.abs(self.translation() - other.translation())
        dtheta = jnp.abs(wrap_angle(self._v[2] - other._v[2]))
        return bool(jnp.all(dt <= tol) and dtheta <= tol)

    def __repr__(self) -> str:
        x, y, theta = (float(c) for c in self._v)
        return f"Pose2({x}, {y}, {theta})"
