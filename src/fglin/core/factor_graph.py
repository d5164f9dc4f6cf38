# Copyright (c) 2025.
# This file is part of fglin, released under the MIT License.
"""
Nonlinear factor graph container for fglin.

``NonlinearFactorGraph`` is an ordered list of nonlinear factors. It stores
and exposes them, and offers the two collection-level operations an external
optimizer needs on every iteration:

total_error(values)
    Σ_f f.error(values), the nonlinear least-squares cost.

linearize_all(values)
    Element-wise ``linearize``, collected into a ``GaussianFactorGraph`` in
    the same order as the factors.

Factors are immutable and shared by reference: the same factor instance may
sit in several graphs at once. Order matters for indexing and for
``equals``; it does not matter for the total cost.

The graph holds no elimination, ordering or solver logic; those belong to
whatever consumes the linearized graph.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Mapping

from fglin.linear.jacobian_factor import GaussianFactorGraph
from fglin.nonlinear.nonlinear_factor import NonlinearFactor

from .logging_config import get_logger
from .types import Key, KeyTuple
from .values import Values

logger = get_logger(__name__)


@dataclass(eq=False)
class NonlinearFactorGraph:
    """
    Ordered collection of nonlinear factors.

    - factors: factors in insertion order
    """
    factors: List[NonlinearFactor] = field(default_factory=list)

    def __post_init__(self) -> None:
        factors, self.factors = list(self.factors), []
        self.extend(factors)

    def add(self, factor: NonlinearFactor) -> None:
        if not isinstance(factor, NonlinearFactor):
            raise TypeError(f"Expected a NonlinearFactor, got {type(factor).__name__}")
        self.factors.append(factor)

    def extend(self, factors: Iterable[NonlinearFactor]) -> None:
        for factor in factors:
            self.add(factor)

    def __len__(self) -> int:
        return len(self.factors)

    def __getitem__(self, i: int) -> NonlinearFactor:
        return self.factors[i]

    def __iter__(self) -> Iterator[NonlinearFactor]:
        return iter(self.factors)

    def size(self) -> int:
        return len(self.factors)

    def keys(self) -> KeyTuple:
        return tuple(sorted({key for f in self.factors for key in f.keys()}))

    # --- Evaluation ---

    def total_error(self, values: Values) -> float:
        total = 0.0
        for factor in self.factors:
            total += factor.error(values)
        logger.debug("Total error over %d factors: %g", len(self.factors), total)
        return total

    def linearize_all(self, values: Values) -> GaussianFactorGraph:
        linear = GaussianFactorGraph(f.linearize(values) for f in self.factors)
        logger.debug("Linearized %d factors", len(linear))
        return linear

    # --- Structure ---

    def rekey(self, mapping: Mapping[Key, Key]) -> "NonlinearFactorGraph":
        """New graph with every factor rekeyed by ``mapping``; unmapped keys stay."""
        return NonlinearFactorGraph([f.rekey(mapping) for f in self.factors])

    def equals(self, other: "NonlinearFactorGraph", tol: float | None = None) -> bool:
        if not isinstance(other, NonlinearFactorGraph) or len(self) != len(other):
            return False
        return all(a.equals(b, tol) for a, b in zip(self.factors, other.factors))

    def __repr__(self) -> str:
        return f"NonlinearFactorGraph(size={len(self.factors)})"
