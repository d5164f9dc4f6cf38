"""
Shared fixtures: the classic small planar example.

Two robot positions x1, x2 and one landmark l1, all ``Point2``:

    f0: prior on x1 at (0, 0),             sigma 0.1
    f1: odometry x1 -> x2 of (1.5, 0),     sigma 0.1
    f2: landmark l1 seen from x1 at (0, -1),    sigma 0.2
    f3: landmark l1 seen from x2 at (-1.5, -1), sigma 0.2

Linearized at the noisy values below this graph has a hand-computed
Gaussian counterpart, returned by ``small_linear_graph``.
"""

from __future__ import annotations

import jax.numpy as jnp
import pytest

from fglin.core.factor_graph import NonlinearFactorGraph
from fglin.core.values import Values
from fglin.linear.jacobian_factor import GaussianFactorGraph, JacobianFactor
from fglin.linear.noise_model import Isotropic
from fglin.slam.manifold import Point2
from fglin.slam.measurements import PointMeasurement, PointOdometry, PointPrior


def create_nonlinear_factor_graph() -> NonlinearFactorGraph:
    sigma0_1 = Isotropic.from_sigma(2, 0.1)
    sigma0_2 = Isotropic.from_sigma(2, 0.2)

    fg = NonlinearFactorGraph()
    fg.add(PointPrior(Point2(0.0, 0.0), sigma0_1, "x1"))
    fg.add(PointOdometry(Point2(1.5, 0.0), sigma0_1, "x1", "x2"))
    fg.add(PointMeasurement(Point2(0.0, -1.0), sigma0_2, "x1", "l1"))
    fg.add(PointMeasurement(Point2(-1.5, -1.0), sigma0_2, "x2", "l1"))
    return fg


def create_noisy_values() -> Values:
    values = Values()
    values.insert("x1", Point2(0.1, 0.1))
    values.insert("x2", Point2(1.4, 0.2))
    values.insert("l1", Point2(0.1, -1.1))
    return values


def create_gaussian_factor_graph() -> GaussianFactorGraph:
    I = jnp.eye(2)
    return GaussianFactorGraph(
        [
            JacobianFactor([("x1", 10.0 * I)], jnp.array([-1.0, -1.0])),
            JacobianFactor([("x1", -10.0 * I), ("x2", 10.0 * I)], jnp.array([2.0, -1.0])),
            JacobianFactor([("x1", -5.0 * I), ("l1", 5.0 * I)], jnp.array([0.0, 1.0])),
            JacobianFactor([("x2", -5.0 * I), ("l1", 5.0 * I)], jnp.array([-1.0, 1.5])),
        ]
    )


@pytest.fixture
def small_graph() -> NonlinearFactorGraph:
    return create_nonlinear_factor_graph()


@pytest.fixture
def noisy_values() -> Values:
    return create_noisy_values()


@pytest.fixture
def small_linear_graph() -> GaussianFactorGraph:
    return create_gaussian_factor_graph()
