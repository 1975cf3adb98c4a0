"""
Problem data, scaling state and iterates owned by one solve.

The workspace is what the forward and reverse equilibration operate on:

    ws = Workspace(P, q, A, b, C, settings=ScalingConfig(scaling=10))
    info = equilibrate(ws)
    ...                      # solver iterates on ws.p / ws.vars
    reverse_equilibrate(ws)  # ws.vars back in original units

P, A, q and b are rescaled in place. Dense inputs that are already float64
are used as-is (no copy) and float CSC/CSR inputs keep their object identity
(duplicate entries are summed in place). Any other input (integer dtypes,
lists, COO/LIL/... storage) is copied, so the caller's object is then left
untouched and the scaled data lives only in `ws.p`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

from .blocks.aux import ArrayLike, as_config
from .blocks.cones import CompositeConvexSet, as_composite


def _as_float_matrix(M, name: str) -> ArrayLike:
    if sp.issparse(M):
        if M.format not in ("csc", "csr"):
            logging.debug(f"{name}: converting {M.format} storage to csc, caller's matrix is not updated in place")
            M = M.tocsc()
        if not np.issubdtype(M.dtype, np.floating):
            logging.debug(f"{name}: copying {M.dtype} data to float64, caller's matrix is not updated in place")
            M = M.astype(np.float64)
        # duplicates add up in scipy, the norm kernels read stored entries
        M.sum_duplicates()
        return M
    if not (isinstance(M, np.ndarray) and M.dtype == np.float64):
        logging.debug(f"{name}: copying input to a float64 ndarray, caller's data is not updated in place")
    M = np.asarray(M, dtype=np.float64)
    if M.ndim != 2:
        raise ValueError(f"{name} must be 2-D, got shape {M.shape}")
    return M


def _as_float_vector(v, n: int, name: str) -> np.ndarray:
    if not (isinstance(v, np.ndarray) and v.dtype == np.float64 and v.ndim == 1):
        logging.debug(f"{name}: copying input to a 1-D float64 array, caller's data is not updated in place")
    v = np.asarray(v, dtype=np.float64)
    if v.ndim != 1:
        v = v.reshape(-1)
    if v.size != n:
        raise ValueError(f"{name} has length {v.size}, expected {n}")
    return v


# ======================================
# Problem data
# ======================================
@dataclass
class ProblemData:
    """min ½xᵀPx + qᵀx  s.t.  Ax + s = b, s ∈ C."""

    P: ArrayLike
    q: np.ndarray
    A: ArrayLike
    b: np.ndarray
    C: CompositeConvexSet

    def __post_init__(self):
        self.A = _as_float_matrix(self.A, "A")
        m, n = self.A.shape
        self.P = _as_float_matrix(self.P, "P")
        if self.P.shape != (n, n):
            raise ValueError(f"P has shape {self.P.shape}, expected {(n, n)} to match A {self.A.shape}")
        self.q = _as_float_vector(self.q, n, "q")
        self.b = _as_float_vector(self.b, m, "b")
        self.C = as_composite(self.C)
        if self.C.dim != m:
            raise ValueError(f"Cone dimensions add up to {self.C.dim}, but A has {m} rows")

    @property
    def n(self) -> int:
        return self.A.shape[1]

    @property
    def m(self) -> int:
        return self.A.shape[0]


# ======================================
# Scaling state
# ======================================
@dataclass
class ScaleMatrices:
    """
    Cumulative diagonal scalings D (primal), E (dual) and cost factor c.

    Scaled data relates to the original as
        P̃ = c D P D,  q̃ = c D q,  Ã = E A D,  b̃ = E b.
    Dinv, Einv and cinv are only valid once the forward pass has finished;
    until then they double as work buffers.
    """

    D: np.ndarray
    E: np.ndarray
    Dinv: np.ndarray
    Einv: np.ndarray
    c: float = 1.0
    cinv: float = 1.0

    @classmethod
    def identity(cls, n: int, m: int) -> "ScaleMatrices":
        return cls(D=np.ones(n), E=np.ones(m), Dinv=np.ones(n), Einv=np.ones(m))

    def reset(self) -> None:
        for d in (self.D, self.E, self.Dinv, self.Einv):
            d.fill(1.0)
        self.c = 1.0
        self.cinv = 1.0


# ======================================
# Iterates
# ======================================
@dataclass
class Variables:
    x: np.ndarray
    s: np.ndarray
    mu: np.ndarray

    @classmethod
    def zeros(cls, n: int, m: int) -> "Variables":
        return cls(x=np.zeros(n), s=np.zeros(m), mu=np.zeros(m))


# ======================================
# Workspace
# ======================================
class Workspace:
    """Everything one solve owns: data `p`, scaling `sm`, iterates `vars`."""

    def __init__(
        self,
        P,
        q,
        A,
        b,
        C,
        settings=None,
        x0=None,
        s0=None,
        mu0=None,
    ):
        self.p = ProblemData(P=P, q=q, A=A, b=b, C=C)
        self.settings = as_config(settings)
        n, m = self.p.n, self.p.m
        self.sm = ScaleMatrices.identity(n, m)
        self.vars = Variables.zeros(n, m)
        # "raw" -> "scaled" -> "unscaled"
        self.phase = "raw"
        self.warm_start(x=x0, s=s0, mu=mu0)

    def warm_start(self, x=None, s=None, mu=None) -> None:
        """Set initial iterates (original units); must precede equilibration."""
        if self.phase != "raw":
            raise RuntimeError("warm starts must be set before equilibrate()")
        n, m = self.p.n, self.p.m
        if x is not None:
            self.vars.x[:] = _as_float_vector(x, n, "x")
        if s is not None:
            self.vars.s[:] = _as_float_vector(s, m, "s")
        if mu is not None:
            self.vars.mu[:] = _as_float_vector(mu, m, "mu")
