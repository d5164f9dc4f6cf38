from __future__ import annotations

import jax.numpy as jnp
import pytest

from fglin.core.errors import ArityMismatch, DimensionMismatch, KeyNotFound, TypeMismatch
from fglin.core.values import Values
from fglin.linear.jacobian_factor import JacobianFactor
from fglin.linear.noise_model import Constrained, Diagonal, Isotropic, Unit
from fglin.nonlinear.nonlinear_factor import NoiseModelFactor
from fglin.slam.manifold import LieVector, Point2, Pose2
from fglin.slam.measurements import PointMeasurement, PointPrior


class _SumFactor(NoiseModelFactor):
    """
    e = x1 + ... + xK on scalar LieVectors, with Jacobians 1, 2, ..., K
    (deliberately not the true derivatives, so each block is identifiable).
    """

    def __init__(self, keys=None):
        if keys is None:
            keys = [f"x{i + 1}" for i in range(len(self.value_types))]
        super().__init__(Diagonal.from_sigmas([2.0]), keys)

    def evaluate_error(self, *x, H=None):
        if H is not None:
            for i in range(len(x)):
                H[i] = jnp.array([[float(i + 1)]])
        return jnp.array([sum(float(xi.vector()[0]) for xi in x)])


class SumFactor4(_SumFactor):
    value_types = (LieVector,) * 4


class SumFactor5(_SumFactor):
    value_types = (LieVector,) * 5


class SumFactor6(_SumFactor):
    value_types = (LieVector,) * 6


def _scalar_values(n: int) -> Values:
    values = Values()
    for i in range(n):
        values.insert(f"x{i + 1}", LieVector([float(i + 1)]))
    return values


# --- equality and size ---


def test_equals_measurement_factors():
    sigma = Isotropic.from_sigma(2, 1.0)
    f0 = PointMeasurement(Point2(0.0, -1.0), sigma, "x1", "l1")
    f1 = PointMeasurement(Point2(-1.5, -1.0), sigma, "x2", "l1")

    assert f0.equals(f0)
    assert not f0.equals(f1)
    assert not f1.equals(f0)


def test_equals_factors_from_graph(small_graph):
    f0, f1 = small_graph[0], small_graph[1]

    assert f0.equals(f0)
    assert not f0.equals(f1)
    assert not f1.equals(f0)


def test_equals_discriminates_noise_and_measurement():
    f = PointPrior(Point2(1.0, 2.0), Isotropic.from_sigma(2, 0.1), "x1")

    assert f.equals(PointPrior(Point2(1.0, 2.0), Isotropic.from_sigma(2, 0.1), "x1"))
    assert not f.equals(PointPrior(Point2(1.0, 2.0), Isotropic.from_sigma(2, 0.2), "x1"))
    assert not f.equals(PointPrior(Point2(1.0, 2.5), Isotropic.from_sigma(2, 0.1), "x1"))
    assert f.equals(PointPrior(Point2(1.0, 2.0 + 1e-12), Isotropic.from_sigma(2, 0.1), "x1"))


def test_size(small_graph):
    assert small_graph[0].size() == 1
    assert small_graph[1].size() == 2
    assert small_graph[2].size() == 2


# --- error ---


def test_unwhitened_error_and_error(small_graph, noisy_values):
    factor = small_graph[0]

    e = factor.unwhitened_error(noisy_values)
    assert jnp.allclose(e, 0.1 * jnp.ones(2), atol=1e-12)

    # 0.5 * [1 1] . [1 1]
    assert factor.error(noisy_values) == pytest.approx(1.0, abs=1e-8)


def test_error_is_half_squared_whitened_norm(small_graph, noisy_values):
    for factor in small_graph:
        w = factor.noise_model.whiten(factor.unwhitened_error(noisy_values))
        assert factor.error(noisy_values) == pytest.approx(0.5 * float(jnp.dot(w, w)), rel=1e-12)
        assert jnp.allclose(factor.whitened_error(noisy_values), w)


# --- linearization ---


@pytest.mark.parametrize("index", [0, 1, 2, 3])
def test_linearize_matches_small_linear_graph(small_graph, noisy_values, small_linear_graph, index):
    actual = small_graph[index].linearize(noisy_values)
    assert actual.equals(small_linear_graph[index], tol=1e-9)


def test_linearization_reproduces_cost(small_graph, noisy_values):
    for factor in small_graph:
        linear = factor.linearize(noisy_values)
        b = linear.get_b()
        assert float(jnp.dot(b, b)) == pytest.approx(2.0 * factor.error(noisy_values), rel=1e-12)
        assert linear.error(linear.zero_delta()) == pytest.approx(factor.error(noisy_values), rel=1e-12)


def test_linearize_constraint_prior():
    constraint = Constrained.from_mixed_sigmas([0.2, 0.0])
    f0 = PointPrior(Point2(1.0, -1.0), constraint, "x1")

    values = Values()
    values.insert("x1", Point2(1.0, 2.0))
    actual = f0.linearize(values)

    expected = JacobianFactor(
        [("x1", jnp.array([[5.0, 0.0], [0.0, 1.0]]))],
        jnp.array([0.0, -3.0]),
        Constrained.from_mixed_sigmas([1.0, 0.0]),
    )
    assert actual.equals(expected)
    assert actual.get_model().is_constrained()
    assert bool(actual.get_model().constrained_rows()[1])


def test_linearize_constraint_measurement():
    constraint = Constrained.from_mixed_sigmas([0.2, 0.0])
    f0 = PointMeasurement(Point2(1.0, -1.0), constraint, "x1", "l1")

    values = Values()
    values.insert("x1", Point2(1.0, 2.0))
    values.insert("l1", Point2(5.0, 4.0))
    actual = f0.linearize(values)

    A = jnp.array([[5.0, 0.0], [0.0, 1.0]])
    expected = JacobianFactor(
        [("x1", -1.0 * A), ("l1", A)],
        jnp.array([-15.0, -3.0]),
        Constrained.from_mixed_sigmas([1.0, 0.0]),
    )
    assert actual.equals(expected)

    # zero-step cost still equals the nonlinear cost with a hard row
    assert actual.error(actual.zero_delta()) == pytest.approx(f0.error(values), rel=1e-12)


def test_linearize_soft_model_attaches_unit(small_graph, noisy_values):
    linear = small_graph[1].linearize(noisy_values)
    assert isinstance(linear.get_model(), Unit)
    assert linear.get_model().dim == 2


# --- the variadic family ---


@pytest.mark.parametrize(
    "factor_cls, n, expected_e, expected_error, expected_b",
    [
        (SumFactor4, 4, 10.0, 25.0 / 2.0, -5.0),
        (SumFactor5, 5, 15.0, 56.25 / 2.0, -7.5),
        (SumFactor6, 6, 21.0, 110.25 / 2.0, -10.5),
    ],
)
def test_noise_model_factor_arities(factor_cls, n, expected_e, expected_error, expected_b):
    tf = factor_cls()
    tv = _scalar_values(n)

    assert jnp.allclose(tf.unwhitened_error(tv), jnp.array([expected_e]))
    assert tf.error(tv) == pytest.approx(expected_error, abs=1e-9)

    jf = tf.linearize(tv)
    assert jf.keys() == tuple(f"x{i + 1}" for i in range(n))
    for i, key in enumerate(jf.keys()):
        assert jnp.allclose(jf.get_a(key), jnp.array([[0.5 * (i + 1)]]))
    assert jnp.allclose(jf.get_b(), jnp.array([expected_b]))


def test_arbitrary_arity():
    class SumFactor9(_SumFactor):
        value_types = (LieVector,) * 9

    tf = SumFactor9()
    jf = tf.linearize(_scalar_values(9))

    assert jf.size() == 9
    assert jnp.allclose(jf.get_b(), jnp.array([-22.5]))
    assert jnp.allclose(jf.get_a("x9"), jnp.array([[4.5]]))


def test_wrong_number_of_keys_for_arity():
    with pytest.raises(ArityMismatch):
        SumFactor4(keys=["x1", "x2", "x3"])


def test_duplicate_keys_rejected():
    with pytest.raises(ValueError):
        SumFactor4(keys=["x1", "x2", "x2", "x4"])


# --- clone / rekey ---


def test_clone_rekey():
    init = SumFactor4()
    assert init.keys() == ("x1", "x2", "x3", "x4")

    act_clone = init.clone()
    assert act_clone is not init
    assert type(act_clone) is SumFactor4
    assert init.equals(act_clone)

    act_rekey = init.rekey(["x5", "x6", "x7", "x8"])
    assert act_rekey is not init
    assert type(act_rekey) is SumFactor4

    # init is unchanged
    assert init.keys() == ("x1", "x2", "x3", "x4")
    assert act_rekey.keys() == ("x5", "x6", "x7", "x8")
    assert act_rekey.noise_model is init.noise_model


def test_rekey_with_mapping():
    f = PointMeasurement(Point2(0.0, -1.0), Isotropic.from_sigma(2, 0.2), "x1", "l1")

    g = f.rekey({"l1": "l7"})

    assert g.keys() == ("x1", "l7")
    assert f.keys() == ("x1", "l1")
    assert g.measured.equals(f.measured)


def test_rekey_wrong_length_raises():
    init = SumFactor4()
    with pytest.raises(ArityMismatch):
        init.rekey(["x5", "x6", "x7"])
    assert init.keys() == ("x1", "x2", "x3", "x4")


# --- failures ---


def test_missing_key_propagates(small_graph):
    values = Values()
    values.insert("x1", Point2(0.1, 0.1))

    with pytest.raises(KeyNotFound):
        small_graph[1].error(values)
    with pytest.raises(KeyError):
        small_graph[1].linearize(values)


def test_wrong_value_type_propagates():
    f = PointPrior(Point2(0.0, 0.0), Isotropic.from_sigma(2, 0.1), "x1")
    values = Values()
    values.insert("x1", Pose2(0.0, 0.0, 0.0))

    with pytest.raises(TypeMismatch):
        f.error(values)


def test_noise_model_dimension_mismatch():
    f = PointPrior(Point2(0.0, 0.0), Isotropic.from_sigma(3, 0.1), "x1")
    values = Values()
    values.insert("x1", Point2(1.0, 1.0))

    with pytest.raises(DimensionMismatch):
        f.error(values)
    with pytest.raises(DimensionMismatch):
        f.linearize(values)


def test_bad_jacobian_shape_and_missing_jacobian():
    class WrongShape(NoiseModelFactor):
        value_types = (Point2,)

        def evaluate_error(self, x, H=None):
            if H is not None:
                H[0] = jnp.eye(3)[:2]
            return x.vector()

    class NoJacobian(NoiseModelFactor):
        value_types = (Point2,)

        def evaluate_error(self, x, H=None):
            return x.vector()

    values = Values()
    values.insert("x1", Point2(1.0, 1.0))

    with pytest.raises(DimensionMismatch):
        WrongShape(Unit.create(2), ["x1"]).linearize(values)
    with pytest.raises(ValueError):
        NoJacobian(Unit.create(2), ["x1"]).linearize(values)

    # error does not need Jacobians
    assert NoJacobian(Unit.create(2), ["x1"]).error(values) == pytest.approx(1.0)


def test_rekey_rejects_string():
    f = PointMeasurement(Point2(0.0, -1.0), Isotropic.from_sigma(2, 0.2), "x1", "l1")

    with pytest.raises(TypeError):
        f.rekey("ab")
    with pytest.raises(TypeError):
        f.rekey(b"ab")
    assert f.keys() == ("x1", "l1")
