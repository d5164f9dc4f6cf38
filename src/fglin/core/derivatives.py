# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Automatic-differentiation checks for analytic factor Jacobians.

Measurement authors hand-write the Jacobians returned by
``NoiseModelFactor.evaluate_error``; a sign or chart mistake there silently
corrupts every Gauss–Newton step built from it. The helpers below compute the
same derivatives with ``jax.jacfwd`` through the variable's retraction:

    J_i = ∂ e( x₁, …, x_i ⊕ d, …, x_K ) / ∂d  at d = 0

so they are taken in exactly the tangent space the analytic ones use.

Functions
---------
numerical_derivative(fn, value)
    Jacobian of ``fn(value.retract(d))`` at ``d = 0``.

numerical_jacobians(factor, values)
    One derivative per scoped key of a ``NoiseModelFactor``.

check_factor_jacobians(factor, values, tol)
    Compare analytic and automatic Jacobians; log and return False on any
    mismatch.
"""

from __future__ import annotations
from typing import Any, Callable, List

import jax
import jax.numpy as jnp

from .logging_config import get_logger
from .types import Matrix, as_matrix, as_vector
from .values import Values

logger = get_logger(__name__)


def numerical_derivative(fn: Callable[[Any], Any], value: Any) -> Matrix:
    """
    Args:
        fn: maps a manifold value to a vector; must be traceable by JAX.
        value: point at which to differentiate; needs ``retract`` and ``dim``.

    Returns:
        (m, value.dim()) Jacobian.
    """

    def local(delta: jnp.ndarray) -> jnp.ndarray:
        return as_vector(fn(value.retract(delta)))

    return jax.jacfwd(local)(jnp.zeros(value.dim()))


def numerical_jacobians(factor, values: Values) -> List[Matrix]:
    """Automatic Jacobians of ``factor``'s unwhitened error, in scope order."""
    x = factor.fetch(values)
    jacobians = []
    for i, xi in enumerate(x):

        def partial(v, i=i):
            args = list(x)
            args[i] = v
            return factor.evaluate_error(*args)

        jacobians.append(numerical_derivative(partial, xi))
    return jacobians


def check_factor_jacobians(factor, values: Values, tol: float = 1e-7) -> bool:
    """True when every analytic Jacobian matches ``jax.jacfwd`` within ``tol``."""
    x = factor.fetch(values)
    H: List[Any] = [None] * factor.size()
    factor.evaluate_error(*x, H=H)
    expected = numerical_jacobians(factor, values)

    ok = True
    for key, analytic, numeric in zip(factor.keys(), H, expected):
        if analytic is None:
            logger.warning("%s: no analytic Jacobian for key %r", type(factor).__name__, key)
            ok = False
            continue
        analytic = as_matrix(analytic)
        if analytic.shape != numeric.shape or not bool(
            jnp.allclose(analytic, numeric, atol=tol, rtol=0.0)
        ):
            logger.warning(
                "%s: Jacobian mismatch for key %r\nanalytic:\n%s\nnumerical:\n%s",
                type(factor).__name__,
                key,
                analytic,
                numeric,
            )
            ok = False
    return ok
