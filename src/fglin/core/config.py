# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Process-wide configuration for fglin.

Configuration is a plain dataclass with defaults. A single instance is active
at a time; it is read by the numerical modules and replaced (never mutated)
through ``set_config``.

Fields
------
enable_x64
    Turn on double precision in JAX. Linearization compares against exact
    reference values (e.g. ``1/0.2 == 5``), so float32 is not good enough.
    Applied on import of this module and on every ``set_config`` call.

equality_tol
    Default absolute tolerance used by the ``equals`` methods of noise models,
    factors, values and factor collections.

check_finite
    When True, ``NoiseModelFactor.linearize`` rejects a residual or Jacobian
    block containing NaN or inf. Jacobian block shapes are always checked
    against ``(dim, value.dim())`` regardless of this flag.
"""

from __future__ import annotations
from dataclasses import dataclass

import jax


@dataclass(frozen=True)
class KernelConfig:
    enable_x64: bool = True
    equality_tol: float = 1e-9
    check_finite: bool = True


_config = KernelConfig()


def _apply(cfg: KernelConfig) -> None:
    jax.config.update("jax_enable_x64", cfg.enable_x64)


def get_config() -> KernelConfig:
    return _config


def set_config(cfg: KernelConfig) -> KernelConfig:
    """Install ``cfg`` as the active config and return the previous one."""
    global _config
    previous = _config
    _config = cfg
    _apply(cfg)
    return previous


def default_tol(tol: float | None) -> float:
    """Resolve an optional ``tol`` argument against the active config."""
    return _config.equality_tol if tol is None else tol


_apply(_config)
