# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Nonlinear factors and their Gauss–Newton linearization.

This module is the numerical heart of fglin. It defines:

NonlinearFactor
    The abstract contract every factor satisfies: an ordered scope of keys,
    a scalar cost ``error(values)`` and a first-order approximation
    ``linearize(values) -> JacobianFactor``. Factors are immutable; ``clone``
    and ``rekey`` return new instances of the same runtime type.

NoiseModelFactor
    One generic implementation for factors of *any* arity K whose cost is a
    noise-whitened squared residual. A measurement type declares the manifold
    types of its K variables in ``value_types`` and implements a single
    method:

        evaluate_error(self, x1, ..., xK, H=None) -> error vector

    When ``H`` is a list, slot ``H[i]`` must be filled with
    ``∂error / ∂local(x_{i+1})``, a ``(dim, x.dim())`` matrix taken in the
    tangent space of that variable (see ``slam.manifold``).

Linearization
-------------
Around a linearization point with raw residual ``e`` and Jacobians ``H_i``:

    ( W_i , b , model ) = noise_model.whiten_system({key_i: H_i}, −e)

and the returned factor is ``Σ_i W_i dx_i ≈ b``. The negated rhs makes the
factor's zero-step cost equal the nonlinear cost,

    ½ ‖b‖² = ½ ‖whiten(e)‖² = error(values),

and its least-squares solution the Gauss–Newton step. For a ``Constrained``
model the hard rows keep weight 1 and the attached model keeps its zero
sigmas, so a downstream solver still sees them as exact equalities.

Notes
-----
Nothing in here mutates a factor or a ``Values``, so ``error`` and
``linearize`` on distinct factors may run concurrently.
"""

from __future__ import annotations
import copy
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterable, List, Mapping, Sequence, Tuple, Union

import jax.numpy as jnp

from fglin.core.config import get_config
from fglin.core.errors import ArityMismatch, DimensionMismatch
from fglin.core.logging_config import get_logger
from fglin.core.types import Key, KeyTuple, Vector, as_matrix, as_vector
from fglin.core.values import Values
from fglin.linear.jacobian_factor import JacobianFactor
from fglin.linear.noise_model import NoiseModel

logger = get_logger(__name__)


def _check_unique(keys: KeyTuple) -> None:
    if len(set(keys)) != len(keys):
        raise ValueError(f"Factor keys must be unique, got {keys}")


class NonlinearFactor(ABC):
    """Abstract nonlinear factor over an ordered scope of keys."""

    def __init__(self, keys: Iterable[Key]):
        keys = tuple(keys)
        _check_unique(keys)
        self._keys: KeyTuple = keys

    def size(self) -> int:
        return len(self._keys)

    def keys(self) -> KeyTuple:
        return self._keys

    @abstractmethod
    def dim(self) -> int:
        """Dimension of the error vector."""

    @abstractmethod
    def error(self, values: Values) -> float:
        ...

    @abstractmethod
    def linearize(self, values: Values) -> JacobianFactor:
        ...

    def equals(self, other: "NonlinearFactor", tol: float | None = None) -> bool:
        """Structural equality: same concrete type and same ordered keys."""
        return type(other) is type(self) and other._keys == self._keys

    def clone(self) -> "NonlinearFactor":
        # factors are immutable, so a shallow copy is a full copy
        return copy.copy(self)

    def rekey(self, new_keys: Union[Sequence[Key], Mapping[Key, Key]]) -> "NonlinearFactor":
        """
        Copy of this factor with a new scope.

        Args:
            new_keys: either a sequence replacing the keys positionally (must
                have ``size()`` entries), or a mapping old -> new where keys
                missing from the mapping are kept.

        Raises:
            ArityMismatch: a sequence of the wrong length.
            TypeError: a ``str`` or ``bytes`` in place of a key sequence.
        """
        if isinstance(new_keys, (str, bytes)):
            raise TypeError(
                f"rekey expects a sequence of keys or a mapping, "
                f"got {type(new_keys).__name__} {new_keys!r}"
            )
        if isinstance(new_keys, Mapping):
            keys = tuple(new_keys.get(k, k) for k in self._keys)
        else:
            keys = tuple(new_keys)
            if len(keys) != self.size():
                raise ArityMismatch(self.size(), len(keys))
        _check_unique(keys)
        result = self.clone()
        result._keys = keys
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(keys={self._keys})"


class NoiseModelFactor(NonlinearFactor):
    """
    Generic K-variable factor with a noise-whitened squared-residual cost.

    Subclasses set ``value_types`` (one manifold type per key, in scope order)
    and implement ``evaluate_error``. Everything else, including
    linearization, is shared across arities.
    """

    value_types: ClassVar[Tuple[type, ...]] = ()

    def __init__(self, noise_model: NoiseModel, keys: Iterable[Key]):
        super().__init__(keys)
        if not isinstance(noise_model, NoiseModel):
            raise TypeError(f"Expected a NoiseModel, got {type(noise_model).__name__}")
        types = self.value_types
        if types and len(types) != self.size():
            raise ArityMismatch(len(types), self.size())
        self._noise_model = noise_model

    @property
    def noise_model(self) -> NoiseModel:
        return self._noise_model

    def dim(self) -> int:
        return self._noise_model.dim

    def _types(self) -> Tuple[type, ...]:
        return self.value_types or (object,) * self.size()

    def fetch(self, values: Values) -> List[Any]:
        """Values of the scoped variables, in scope order, type-checked."""
        return [values.at(key, t) for key, t in zip(self._keys, self._types())]

    @abstractmethod
    def evaluate_error(self, *x: Any, H: List[Any] | None = None) -> Vector:
        """
        Raw (unwhitened) residual of the measurement at ``x``.

        If ``H`` is not None it holds one slot per variable; fill ``H[i]``
        with the Jacobian of the residual w.r.t. a local perturbation of
        ``x[i]``.
        """

    def _residual(self, e) -> Vector:
        e = as_vector(e)
        if e.shape[0] != self.dim():
            raise DimensionMismatch(
                f"{type(self).__name__} returned a {e.shape[0]}-dim error, "
                f"noise model has dimension {self.dim()}",
                expected=self.dim(),
                actual=e.shape[0],
            )
        return e

    def unwhitened_error(self, values: Values) -> Vector:
        return self._residual(self.evaluate_error(*self.fetch(values)))

    def whitened_error(self, values: Values) -> Vector:
        return self._noise_model.whiten(self.unwhitened_error(values))

    def error(self, values: Values) -> float:
        w = self.whitened_error(values)
        return 0.5 * float(jnp.dot(w, w))

    def linearize(self, values: Values) -> JacobianFactor:
        x = self.fetch(values)
        H: List[Any] = [None] * self.size()
        e = self._residual(self.evaluate_error(*x, H=H))

        check_finite = get_config().check_finite
        if check_finite and not bool(jnp.all(jnp.isfinite(e))):
            raise ValueError(f"{type(self).__name__} returned a non-finite error {e}")
        blocks = {}
        for key, xi, Hi in zip(self._keys, x, H):
            if Hi is None:
                raise ValueError(
                    f"{type(self).__name__}.evaluate_error did not fill the Jacobian for key {key!r}"
                )
            Hi = as_matrix(Hi)
            if Hi.shape != (self.dim(), xi.dim()):
                raise DimensionMismatch(
                    f"Jacobian for key {key!r} has shape {Hi.shape}, "
                    f"expected {(self.dim(), xi.dim())}",
                )
            if check_finite and not bool(jnp.all(jnp.isfinite(Hi))):
                raise ValueError(f"Jacobian for key {key!r} has non-finite entries")
            blocks[key] = Hi

        A, b, model = self._noise_model.whiten_system(blocks, -e)
        logger.debug(
            "Linearized %s over %s: %d rows, model %r",
            type(self).__name__,
            self._keys,
            self.dim(),
            model,
        )
        return JacobianFactor(list(A.items()), b, model)

    def equals(self, other: "NonlinearFactor", tol: float | None = None) -> bool:
        return super().equals(other, tol) and self._noise_model.equals(other._noise_model, tol)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(keys={self._keys}, noise_model={self._noise_model!r})"
