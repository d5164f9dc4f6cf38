# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Factors defined by a plain error function instead of a subclass.

Useful for one-off measurement models in scripts and tests:

    def range_error(factor, x, H=None):
        d = jnp.linalg.norm(x.vector())
        if H is not None:
            H[0] = (x.vector() / d)[None, :]
        return jnp.array([d - 5.0])

    f = CustomFactor(Isotropic.from_sigma(1, 0.1), ["x1"], range_error, [Point2])
"""

from __future__ import annotations
from typing import Any, Callable, Iterable, List, Optional, Sequence

from fglin.core.types import Key, Vector
from fglin.linear.noise_model import NoiseModel

from .nonlinear_factor import NoiseModelFactor, NonlinearFactor

ErrorFunc = Callable[..., Vector]


class CustomFactor(NoiseModelFactor):
    """
    ``NoiseModelFactor`` whose ``evaluate_error`` forwards to
    ``error_func(factor, *x, H=H)``.

    ``value_types`` (optional) type-checks the fetched values; ``None``
    accepts any stored type.
    """

    def __init__(
        self,
        noise_model: NoiseModel,
        keys: Iterable[Key],
        error_func: ErrorFunc,
        value_types: Optional[Sequence[type]] = None,
    ):
        keys = tuple(keys)
        if value_types is not None:
            # instance attribute shadows the (empty) class-level declaration
            self.value_types = tuple(value_types)
        super().__init__(noise_model, keys)
        self._error_func = error_func

    @property
    def error_func(self) -> ErrorFunc:
        return self._error_func

    def evaluate_error(self, *x: Any, H: List[Any] | None = None) -> Vector:
        return self._error_func(self, *x, H=H)

    def equals(self, other: NonlinearFactor, tol: float | None = None) -> bool:
        return super().equals(other, tol) and other._error_func is self._error_func
