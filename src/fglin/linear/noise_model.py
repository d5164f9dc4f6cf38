# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Gaussian noise models for fglin.

A noise model encapsulates the uncertainty of one measurement and turns a raw
residual into a *whitened* one, in which every row has unit variance and the
cost is a plain sum of squares:

    whiten(r) = R r            with Rᵀ R = Σ⁻¹

The same row scaling applied to a whole linear system ``Σ_i A_i dx_i = b`` is
``whiten_system``; it keeps the system equivalent and returns the noise model
the resulting Jacobian factor must carry.

Hierarchy
---------
NoiseModel
    Abstract contract (dimension checks, whiten / unwhiten / whiten_system).

Gaussian
    Full square-root information matrix ``R``.

Diagonal(Gaussian)
    One sigma per row. ``from_sigmas`` is "smart": all-equal sigmas give an
    ``Isotropic`` model and any exact zero gives a ``Constrained`` one.

Constrained(Diagonal)
    Mixed sigmas where ``sigma_i == 0`` marks a hard equality constraint.
    Those rows are whitened with weight 1 instead of ``1/0``, and the model
    attached to the whitened system keeps the zeros so that a downstream
    solver still treats the rows as exact.

Isotropic(Diagonal)
    A single sigma for every row.

Unit(Isotropic)
    sigma = 1; whitening is the identity. Attached to every whitened system
    that has no hard constraints.

Notes
-----
Models are immutable and freely shared between factors and threads. Only an
exact zero sigma is a hard constraint; tiny nonzero sigmas are ordinary
(very stiff) soft weights.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Tuple

import jax.numpy as jnp

from fglin.core.config import default_tol
from fglin.core.errors import DimensionMismatch
from fglin.core.logging_config import get_logger
from fglin.core.types import Key, Matrix, Vector, as_matrix, as_vector

logger = get_logger(__name__)

# Weights above this are still soft, but worth a debug record.
STIFF_WEIGHT = 1e9

DEFAULT_MU = 1000.0


class NoiseModel(ABC):
    """Abstract noise model of fixed dimension."""

    def __init__(self, dim: int):
        self._dim = int(dim)

    @property
    def dim(self) -> int:
        return self._dim

    def _check_rows(self, rows: int, what: str) -> None:
        if rows != self._dim:
            raise DimensionMismatch(
                f"{type(self).__name__} has dimension {self._dim} but {what} has {rows} rows",
                expected=self._dim,
                actual=rows,
            )

    @abstractmethod
    def whiten(self, v) -> Vector:
        ...

    @abstractmethod
    def unwhiten(self, v) -> Vector:
        ...

    @abstractmethod
    def whiten_matrix(self, A) -> Matrix:
        ...

    @abstractmethod
    def unit(self) -> "NoiseModel":
        """Model attached to a system after it has been whitened by ``self``."""

    @abstractmethod
    def equals(self, other: "NoiseModel", tol: float | None = None) -> bool:
        ...

    def is_constrained(self) -> bool:
        return False

    def distance(self, v) -> float:
        """Squared Mahalanobis distance ``||whiten(v)||²``."""
        w = self.whiten(v)
        return float(jnp.dot(w, w))

    def whiten_system(
        self, blocks: Mapping[Key, Matrix], b
    ) -> Tuple[Dict[Key, Matrix], Vector, "NoiseModel"]:
        """
        Whiten every Jacobian block and the right-hand side with the same rows.

        Args:
            blocks: key -> Jacobian block, each with ``dim`` rows.
            b: right-hand side with ``dim`` entries.

        Returns:
            (whitened blocks in the same key order, whitened rhs, model to
            attach to the resulting linear factor)
        """
        b = as_vector(b)
        self._check_rows(b.shape[0], "right-hand side")
        whitened: Dict[Key, Matrix] = {}
        for key, A in blocks.items():
            A = as_matrix(A)
            self._check_rows(A.shape[0], f"Jacobian block for key {key!r}")
            whitened[key] = self.whiten_matrix(A)
        return whitened, self.whiten(b), self.unit()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dim={self._dim})"


class Gaussian(NoiseModel):
    """
    Full-covariance model stored as a square-root information matrix ``R``.
    """

    def __init__(self, sqrt_information):
        R = as_matrix(sqrt_information)
        if R.shape[0] != R.shape[1]:
            raise ValueError(f"Square-root information must be square, got shape {R.shape}")
        super().__init__(R.shape[0])
        self._R = R

    @staticmethod
    def from_sqrt_information(R) -> "Gaussian":
        return Gaussian(R)

    @staticmethod
    def from_information(information) -> "Gaussian":
        """
        Raises:
            ValueError: ``information`` is not square, symmetric and
                positive-definite.
        """
        info = _check_spd_input(information, "Information")
        # upper-triangular R with Rᵀ R = information
        R = jnp.linalg.cholesky(info).T
        if not bool(jnp.all(jnp.isfinite(R))):
            raise ValueError("Information matrix is not positive-definite")
        return Gaussian(R)

    @staticmethod
    def from_covariance(covariance) -> "Gaussian":
        cov = _check_spd_input(covariance, "Covariance")
        info = jnp.linalg.inv(cov)
        if not bool(jnp.all(jnp.isfinite(info))):
            raise ValueError("Covariance matrix is singular")
        # inv() leaves rounding asymmetry
        info = 0.5 * (info + info.T)
        try:
            return Gaussian.from_information(info)
        except ValueError:
            raise ValueError("Covariance matrix is not positive-definite") from None

    @property
    def sqrt_information(self) -> Matrix:
        return self._R

    def information(self) -> Matrix:
        return self.sqrt_information.T @ self.sqrt_information

    def covariance(self) -> Matrix:
        return jnp.linalg.inv(self.information())

    def whiten(self, v) -> Vector:
        v = as_vector(v)
        self._check_rows(v.shape[0], "vector")
        return self._R @ v

    def unwhiten(self, v) -> Vector:
        v = as_vector(v)
        self._check_rows(v.shape[0], "vector")
        return jnp.linalg.solve(self._R, v)

    def whiten_matrix(self, A) -> Matrix:
        A = as_matrix(A)
        self._check_rows(A.shape[0], "matrix")
        return self._R @ A

    def unit(self) -> NoiseModel:
        return Unit.create(self.dim)

    def equals(self, other: NoiseModel, tol: float | None = None) -> bool:
        if type(other) is not type(self) or other.dim != self.dim:
            return False
        return bool(jnp.allclose(self._R, other._R, atol=default_tol(tol), rtol=0.0))


class Diagonal(Gaussian):
    """Independent rows, one standard deviation each."""

    def __init__(self, sigmas):
        sigmas = as_vector(sigmas)
        _validate_sigmas(sigmas)
        if bool(jnp.any(sigmas == 0.0)):
            raise ValueError(
                "Diagonal noise model cannot have zero sigmas; use Constrained.from_mixed_sigmas"
            )
        NoiseModel.__init__(self, sigmas.shape[0])
        self._sigmas = sigmas
        self._weights = 1.0 / sigmas
        _log_stiff_rows(self)

    @staticmethod
    def from_sigmas(sigmas, smart: bool = True) -> "Diagonal":
        sigmas = as_vector(sigmas)
        if smart:
            _validate_sigmas(sigmas)
            if bool(jnp.any(sigmas == 0.0)):
                return Constrained.from_mixed_sigmas(sigmas)
            if bool(jnp.all(sigmas == sigmas[0])):
                return Isotropic.from_sigma(sigmas.shape[0], float(sigmas[0]))
        return Diagonal(sigmas)

    @staticmethod
    def from_variances(variances, smart: bool = True) -> "Diagonal":
        return Diagonal.from_sigmas(jnp.sqrt(as_vector(variances)), smart=smart)

    @staticmethod
    def from_precisions(precisions, smart: bool = True) -> "Diagonal":
        return Diagonal.from_variances(1.0 / as_vector(precisions), smart=smart)

    @property
    def sigmas(self) -> Vector:
        return self._sigmas

    @property
    def precisions(self) -> Vector:
        return 1.0 / (self._sigmas * self._sigmas)

    @property
    def sqrt_information(self) -> Matrix:
        return jnp.diag(self._weights)

    def whiten(self, v) -> Vector:
        v = as_vector(v)
        self._check_rows(v.shape[0], "vector")
        return self._weights * v

    def unwhiten(self, v) -> Vector:
        v = as_vector(v)
        self._check_rows(v.shape[0], "vector")
        return v / self._weights

    def whiten_matrix(self, A) -> Matrix:
        A = as_matrix(A)
        self._check_rows(A.shape[0], "matrix")
        return self._weights[:, None] * A

    def equals(self, other: NoiseModel, tol: float | None = None) -> bool:
        if type(other) is not type(self) or other.dim != self.dim:
            return False
        return bool(jnp.allclose(self._sigmas, other._sigmas, atol=default_tol(tol), rtol=0.0))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(sigmas={list(map(float, self._sigmas))})"


class Constrained(Diagonal):
    """
    Diagonal model whose zero-sigma rows are hard equality constraints.

    Whitening divides soft rows by their sigma and leaves hard rows at
    weight 1. ``mu`` is the per-row penalty a constrained solver may use for
    the hard rows; it is carried along and compared, nothing more.
    """

    def __init__(self, sigmas, mu=None):
        sigmas = as_vector(sigmas)
        _validate_sigmas(sigmas)
        NoiseModel.__init__(self, sigmas.shape[0])
        self._sigmas = sigmas
        hard = sigmas == 0.0
        self._hard = hard
        self._weights = jnp.where(hard, 1.0, 1.0 / jnp.where(hard, 1.0, sigmas))
        if mu is None:
            mu = jnp.full(sigmas.shape, DEFAULT_MU)
        self._mu = as_vector(mu)
        if self._mu.shape[0] != self.dim:
            raise DimensionMismatch(
                f"Constrained mu has {self._mu.shape[0]} entries, expected {self.dim}",
                expected=self.dim,
                actual=self._mu.shape[0],
            )
        logger.debug(
            "Constrained model dim=%d with %d hard rows", self.dim, int(jnp.sum(hard))
        )
        _log_stiff_rows(self)

    @staticmethod
    def from_mixed_sigmas(sigmas, mu=None) -> "Constrained":
        return Constrained(sigmas, mu)

    @staticmethod
    def all(dim: int, mu: float = DEFAULT_MU) -> "Constrained":
        """Every row a hard constraint."""
        return Constrained(jnp.zeros(dim), jnp.full((dim,), mu))

    @property
    def mu(self) -> Vector:
        return self._mu

    @property
    def precisions(self) -> Vector:
        return jnp.where(self._hard, jnp.inf, 1.0 / jnp.where(self._hard, 1.0, self._sigmas) ** 2)

    @property
    def sqrt_information(self) -> Matrix:
        raise ValueError("Hard-constraint rows have no finite square-root information")

    def is_constrained(self) -> bool:
        return True

    def constrained_rows(self) -> Vector:
        """Boolean mask of the hard rows."""
        return self._hard

    def unit(self) -> "Constrained":
        # soft rows become unit sigma, hard rows stay exactly zero
        return Constrained(jnp.where(self._hard, 0.0, 1.0), self._mu)

    def equals(self, other: NoiseModel, tol: float | None = None) -> bool:
        if not super().equals(other, tol):
            return False
        return bool(jnp.allclose(self._mu, other._mu, atol=default_tol(tol), rtol=0.0))


class Isotropic(Diagonal):
    """Same sigma on every row."""

    def __init__(self, dim: int, sigma: float):
        super().__init__(jnp.full((int(dim),), float(sigma)))

    @staticmethod
    def from_sigma(dim: int, sigma: float, smart: bool = True) -> "Isotropic":
        if smart and sigma == 1.0:
            return Unit.create(dim)
        return Isotropic(dim, sigma)

    @staticmethod
    def from_variance(dim: int, variance: float, smart: bool = True) -> "Isotropic":
        return Isotropic.from_sigma(dim, float(variance) ** 0.5, smart=smart)

    @staticmethod
    def from_precision(dim: int, precision: float, smart: bool = True) -> "Isotropic":
        return Isotropic.from_variance(dim, 1.0 / float(precision), smart=smart)

    @property
    def sigma(self) -> float:
        return float(self._sigmas[0])

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dim={self.dim}, sigma={self.sigma})"


class Unit(Isotropic):
    """Unit covariance; whitening is the identity."""

    def __init__(self, dim: int):
        super().__init__(dim, 1.0)

    @staticmethod
    def create(dim: int) -> "Unit":
        return Unit(dim)

    def whiten(self, v) -> Vector:
        v = as_vector(v)
        self._check_rows(v.shape[0], "vector")
        return v

    def unwhiten(self, v) -> Vector:
        return self.whiten(v)

    def whiten_matrix(self, A) -> Matrix:
        A = as_matrix(A)
        self._check_rows(A.shape[0], "matrix")
        return A

    def unit(self) -> "Unit":
        return self

    def __repr__(self) -> str:
        return f"Unit(dim={self.dim})"


def _check_spd_input(M, what: str) -> Matrix:
    M = as_matrix(M)
    if M.shape[0] != M.shape[1]:
        raise ValueError(f"{what} matrix must be square, got shape {M.shape}")
    if not bool(jnp.all(jnp.isfinite(M))):
        raise ValueError(f"{what} matrix has non-finite entries")
    if not bool(jnp.allclose(M, M.T, atol=default_tol(None), rtol=1e-12)):
        raise ValueError(f"{what} matrix must be symmetric")
    return M


def _validate_sigmas(sigmas: Vector) -> None:
    if sigmas.shape[0] == 0:
        raise ValueError("Noise model needs at least one sigma")
    if bool(jnp.any(sigmas < 0.0)) or bool(jnp.any(jnp.isnan(sigmas))):
        raise ValueError(f"Sigmas must be non-negative, got {list(map(float, sigmas))}")


def _log_stiff_rows(model: Diagonal) -> None:
    stiff = int(jnp.sum((model._weights > STIFF_WEIGHT) & (model._sigmas > 0.0)))
    if stiff:
        logger.debug(
            "%s has %d row(s) with sigma below %g; treated as soft constraints",
            type(model).__name__,
            stiff,
            1.0 / STIFF_WEIGHT,
        )
