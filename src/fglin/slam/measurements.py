# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Measurement factors for fglin.

Each class here is a ``NoiseModelFactor`` that supplies only a residual and
its analytic Jacobians; costing and linearization are inherited.

1. Planar point models
----------------------
The classic "simulated 2D" models used to validate factor-graph code on
``Point2`` variables:

    • ``PointPrior``:        r = x − μ                  H = I
    • ``PointOdometry``:     r = (x₂ − x₁) − z          H₁ = −I, H₂ = I
    • ``PointMeasurement``:  r = (l − x) − z            H_x = −I, H_l = I

2. Vector priors
----------------
    • ``VectorPrior``:       r = x − μ on ``LieVector`` of any dimension.

3. Planar pose models
---------------------
Residuals live in the ``Pose2`` chart (see ``slam.manifold``):

    • ``PosePrior``:    r = local(μ, x)            = vec(μ⁻¹ x)
    • ``PoseBetween``:  r = local(z, x₁⁻¹ x₂)       = vec(z⁻¹ x₁⁻¹ x₂)

With E = z⁻¹ x₁⁻¹ x₂, M = z⁻¹ and B = x₁⁻¹ x₂ the exact chart Jacobians are

    H₂ = [[R_E, 0], [0, 1]]
    H₁ = [[−R_M, −R_M J t_B], [0, 0, −1]],   J = [[0, −1], [1, 0]]

Notes
-----
Residuals are written with ``jax.numpy`` only, so ``core.derivatives`` can
differentiate them to verify the analytic Jacobians above.
"""

from __future__ import annotations
from typing import Any, List

import jax.numpy as jnp

from fglin.core.config import default_tol
from fglin.core.types import Key, Vector, as_vector
from fglin.linear.noise_model import NoiseModel
from fglin.nonlinear.nonlinear_factor import NoiseModelFactor, NonlinearFactor

from .manifold import LieVector, Point2, Pose2

_J = jnp.array([[0.0, -1.0], [1.0, 0.0]])


class _MeasuredFactor(NoiseModelFactor):
    """Shared ``measured`` storage and equality."""

    def __init__(self, measured: Any, noise_model: NoiseModel, keys):
        super().__init__(noise_model, keys)
        self._measured = measured

    @property
    def measured(self) -> Any:
        return self._measured

    def equals(self, other: NonlinearFactor, tol: float | None = None) -> bool:
        return super().equals(other, tol) and self._measured.equals(
            other._measured, default_tol(tol)
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(keys={self._keys}, measured={self._measured!r}, "
            f"noise_model={self._noise_model!r})"
        )


# --- Planar point models ---


class PointPrior(_MeasuredFactor):
    """Unary prior on a ``Point2``."""

    value_types = (Point2,)

    def __init__(self, mu: Point2, noise_model: NoiseModel, key: Key):
        super().__init__(mu, noise_model, (key,))

    def evaluate_error(self, x: Point2, H: List[Any] | None = None) -> Vector:
        if H is not None:
            H[0] = jnp.eye(2)
        return x.vector() - self._measured.vector()


class PointOdometry(_MeasuredFactor):
    """Relative displacement between two ``Point2`` poses."""

    value_types = (Point2, Point2)

    def __init__(self, z: Point2, noise_model: NoiseModel, key1: Key, key2: Key):
        super().__init__(z, noise_model, (key1, key2))

    def evaluate_error(self, x1: Point2, x2: Point2, H: List[Any] | None = None) -> Vector:
        if H is not None:
            H[0] = -jnp.eye(2)
            H[1] = jnp.eye(2)
        return (x2.vector() - x1.vector()) - self._measured.vector()


class PointMeasurement(_MeasuredFactor):
    """Landmark position relative to a ``Point2`` pose."""

    value_types = (Point2, Point2)

    def __init__(self, z: Point2, noise_model: NoiseModel, pose_key: Key, landmark_key: Key):
        super().__init__(z, noise_model, (pose_key, landmark_key))

    def evaluate_error(self, x: Point2, l: Point2, H: List[Any] | None = None) -> Vector:
        if H is not None:
            H[0] = -jnp.eye(2)
            H[1] = jnp.eye(2)
        return (l.vector() - x.vector()) - self._measured.vector()


# --- Vector priors ---


class VectorPrior(_MeasuredFactor):
    """Unary prior on a ``LieVector``."""

    value_types = (LieVector,)

    def __init__(self, mu, noise_model: NoiseModel, key: Key):
        if not isinstance(mu, LieVector):
            mu = LieVector(as_vector(mu))
        super().__init__(mu, noise_model, (key,))

    def evaluate_error(self, x: LieVector, H: List[Any] | None = None) -> Vector:
        if H is not None:
            H[0] = jnp.eye(x.dim())
        return x.vector() - self._measured.vector()


# --- Planar pose models ---


def _chart_jacobian(E: Pose2) -> jnp.ndarray:
    """∂ vec(E ∘ Pose2(d)) / ∂d at d = 0."""
    H = jnp.zeros((3, 3))
    H = H.at[:2, :2].set(E.rotation_matrix())
    return H.at[2, 2].set(1.0)


class PosePrior(_MeasuredFactor):
    """Unary prior on a ``Pose2``."""

    value_types = (Pose2,)

    def __init__(self, prior: Pose2, noise_model: NoiseModel, key: Key):
        super().__init__(prior, noise_model, (key,))

    def evaluate_error(self, x: Pose2, H: List[Any] | None = None) -> Vector:
        E = self._measured.between(x)
        if H is not None:
            H[0] = _chart_jacobian(E)
        return E.vector()


class PoseBetween(_MeasuredFactor):
    """Relative pose measurement ``z ≈ x₁⁻¹ x₂``."""

    value_types = (Pose2, Pose2)

    def __init__(self, measured: Pose2, noise_model: NoiseModel, key1: Key, key2: Key):
        super().__init__(measured, noise_model, (key1, key2))

    def evaluate_error(self, x1: Pose2, x2: Pose2, H: List[Any] | None = None) -> Vector:
        M = self._measured.inverse()
        B = x1.between(x2)
        E = M.compose(B)
        if H is not None:
            R_M = M.rotation_matrix()
            H1 = jnp.zeros((3, 3))
            H1 = H1.at[:2, :2].set(-R_M)
            H1 = H1.at[:2, 2].set(-(R_M @ (_J @ B.translation())))
            H[0] = H1.at[2, 2].set(-1.0)
            H[1] = _chart_jacobian(E)
        return E.vector()
