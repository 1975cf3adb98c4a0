"""
Cone decomposition of the constraint space, as seen by the equilibration.

Each set only knows its dimension and two scaling hooks:

    rectify_scaling(e, work) -> bool
        For sets whose geometry forbids non-uniform (anisotropic) rescaling,
        write into `work` the multiplicative correction that turns `e` into a
        single representative value on the block. Returns True when a
        correction was written, False when `e` already is uniform or the set
        accepts elementwise scaling.

    scale(e)
        Propagate the final dual scaling into auxiliary data the set carries
        (only the Box bounds today).

The representative value is the geometric mean of the block, which keeps the
product of the block's factors (the volume change of the block) unchanged.

Projections are owned by the solver and are not part of this module.
"""

from __future__ import annotations

import logging
import math
from typing import Iterator, List, Sequence, Tuple

import numpy as np

# relative spread below which a block counts as uniformly scaled
UNIFORM_RTOL = 1e-14


def _is_uniform(e: np.ndarray) -> bool:
    if e.size <= 1:
        return True
    hi = float(np.max(e))
    return float(np.ptp(e)) <= UNIFORM_RTOL * hi


def rectify_scalar_scaling(e: np.ndarray, work: np.ndarray) -> bool:
    """work <- gmean(e) / e, unless e is already uniform."""
    if _is_uniform(e):
        return False
    rep = float(np.exp(np.mean(np.log(e))))
    np.divide(rep, e, out=work)
    return True


# ======================================
# Base
# ======================================
class AbstractConvexSet:
    """A block of `dim` consecutive constraint rows."""

    uniform_scaling: bool = False

    def __init__(self, dim: int):
        dim = int(dim)
        if dim < 0:
            raise ValueError(f"{type(self).__name__}: dimension must be non-negative, got {dim}")
        self.dim = dim

    def rectify_scaling(self, e: np.ndarray, work: np.ndarray) -> bool:
        if self.uniform_scaling:
            return rectify_scalar_scaling(e, work)
        return False

    def scale(self, e: np.ndarray) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dim={self.dim})"


# ---------- elementwise-scalable sets ----------
class ZeroSet(AbstractConvexSet):
    """{0}^dim (equality rows)."""


class Nonnegatives(AbstractConvexSet):
    """Nonnegative orthant."""


class Box(AbstractConvexSet):
    """{s : l <= s <= u}; the bounds follow the dual scaling of their rows."""

    def __init__(self, l: Sequence[float], u: Sequence[float]):
        l = np.array(l, dtype=float).ravel()
        u = np.array(u, dtype=float).ravel()
        if l.shape != u.shape:
            raise ValueError(f"Box: bounds have different lengths {l.size} and {u.size}")
        if np.any(l > u):
            raise ValueError("Box: lower bound exceeds upper bound")
        super().__init__(l.size)
        self.l = l
        self.u = u

    def scale(self, e: np.ndarray) -> None:
        self.l *= e
        self.u *= e


# ---------- sets that only admit a scalar scaling ----------
class SecondOrderCone(AbstractConvexSet):
    """{(t, x) : ||x||_2 <= t}."""

    uniform_scaling = True

    def __init__(self, dim: int):
        super().__init__(dim)
        if self.dim < 1:
            raise ValueError("SecondOrderCone: dimension must be at least 1")


class PsdCone(AbstractConvexSet):
    """Vectorized (column-stacked, full) k×k positive semidefinite matrices."""

    uniform_scaling = True

    def __init__(self, dim: int):
        super().__init__(dim)
        k = math.isqrt(self.dim)
        if k * k != self.dim:
            raise ValueError(f"PsdCone: dimension {self.dim} is not a perfect square")
        self.sqrt_dim = k


class PsdConeTriangle(AbstractConvexSet):
    """Upper triangle of a k×k PSD matrix, k(k+1)/2 entries."""

    uniform_scaling = True

    def __init__(self, dim: int):
        super().__init__(dim)
        k = (math.isqrt(8 * self.dim + 1) - 1) // 2
        if k * (k + 1) // 2 != self.dim:
            raise ValueError(f"PsdConeTriangle: dimension {self.dim} is not a triangular number")
        self.sqrt_dim = k


class ExponentialCone(AbstractConvexSet):
    """closure{(x, y, z) : y exp(x/y) <= z, y > 0}."""

    uniform_scaling = True

    def __init__(self, dim: int = 3):
        super().__init__(dim)
        if self.dim != 3:
            raise ValueError(f"{type(self).__name__}: dimension must be 3, got {self.dim}")


class DualExponentialCone(ExponentialCone):
    pass


class PowerCone(AbstractConvexSet):
    """{(x, y, z) : x^α y^(1-α) >= |z|, x, y >= 0}."""

    uniform_scaling = True

    def __init__(self, alpha: float, dim: int = 3):
        super().__init__(dim)
        if self.dim != 3:
            raise ValueError(f"{type(self).__name__}: dimension must be 3, got {self.dim}")
        alpha = float(alpha)
        if not (0.0 < alpha < 1.0):
            raise ValueError(f"{type(self).__name__}: alpha must lie in (0, 1), got {alpha}")
        self.alpha = alpha

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dim={self.dim}, alpha={self.alpha})"


class DualPowerCone(PowerCone):
    pass


# ======================================
# Product of sets
# ======================================
class CompositeConvexSet(AbstractConvexSet):
    """Ordered product of sets; block i occupies rows offsets[i]:offsets[i+1]."""

    def __init__(self, sets: Sequence[AbstractConvexSet]):
        sets = list(sets)
        for C in sets:
            if not isinstance(C, AbstractConvexSet):
                raise TypeError(f"CompositeConvexSet: expected convex sets, got {type(C).__name__}")
        self.sets: List[AbstractConvexSet] = sets
        self.offsets = np.concatenate([[0], np.cumsum([C.dim for C in sets], dtype=int)]).astype(int)
        super().__init__(int(self.offsets[-1]))
        self.uniform_scaling = any(C.uniform_scaling for C in sets)

    def __iter__(self) -> Iterator[AbstractConvexSet]:
        return iter(self.sets)

    def __len__(self) -> int:
        return len(self.sets)

    def blocks(self) -> Iterator[Tuple[AbstractConvexSet, slice]]:
        for i, C in enumerate(self.sets):
            yield C, slice(int(self.offsets[i]), int(self.offsets[i + 1]))

    def split(self, v: np.ndarray) -> List[np.ndarray]:
        """Views of v, one per block."""
        if v.shape[0] != self.dim:
            raise ValueError(f"Vector of length {v.shape[0]} does not match set dimension {self.dim}")
        return [v[sl] for _, sl in self.blocks()]

    def rectify_scaling(self, e: np.ndarray, work: np.ndarray) -> bool:
        changed = False
        for C, sl in self.blocks():
            # every block must be visited, so no short-circuit
            block_changed = C.rectify_scaling(e[sl], work[sl])
            if block_changed:
                logging.debug(f"Rectified scaling of {C!r} on rows {sl.start}:{sl.stop}")
            changed = block_changed or changed
        return changed

    def scale(self, e: np.ndarray) -> None:
        for C, sl in self.blocks():
            C.scale(e[sl])

    def __repr__(self) -> str:
        return f"CompositeConvexSet({self.sets!r})"


def as_composite(C) -> CompositeConvexSet:
    """Wrap a set (or a sequence of sets) into a composite set."""
    if isinstance(C, CompositeConvexSet):
        return C
    if isinstance(C, AbstractConvexSet):
        return CompositeConvexSet([C])
    return CompositeConvexSet(C)
