# Shared building blocks for the equilibration routines: configuration,
# the identity marker and in-place diagonal kernels for dense/CSC/CSR data.

from __future__ import annotations

# =========================
# Standard library
# =========================
from dataclasses import dataclass
from typing import Any, Union

# =========================
# Third-party
# =========================
import numpy as np
import scipy.sparse as sp
from numba import njit

ArrayLike = Union[np.ndarray, sp.spmatrix, sp.sparray]


# ======================================
# Global configuration
# ======================================
@dataclass
class ScalingConfig:
    """
    Settings consumed by the forward/reverse equilibration.

    Notes
    -----
    • `scaling` is the number of Ruiz passes; 0 disables equilibration.
    • Every per-pass factor is clipped to [min_scaling, max_scaling] before
      its inverse square root is taken.
    """

    scaling: int = 10
    min_scaling: float = 1e-4
    max_scaling: float = 1e4
    reverse_scale_problem_data: bool = True
    verbose: bool = False

    def __post_init__(self):
        self.scaling = int(self.scaling)
        self.min_scaling = float(self.min_scaling)
        self.max_scaling = float(self.max_scaling)
        if self.scaling < 0:
            raise ValueError(f"scaling must be a non-negative integer, got {self.scaling}")
        if not (0.0 < self.min_scaling <= 1.0 <= self.max_scaling):
            raise ValueError(
                "scaling bounds must satisfy 0 < min_scaling <= 1 <= max_scaling, "
                f"got [{self.min_scaling}, {self.max_scaling}]"
            )


def cfg_get(cfg: Any, name: str, default: Any) -> Any:
    """Config getter supporting dataclass objects or plain dicts."""
    if isinstance(cfg, dict):
        return cfg.get(name, default)
    return getattr(cfg, name, default)


def as_config(cfg: Any) -> ScalingConfig:
    if cfg is None:
        return ScalingConfig()
    if isinstance(cfg, ScalingConfig):
        return cfg
    return ScalingConfig(
        scaling=cfg_get(cfg, "scaling", 10),
        min_scaling=cfg_get(cfg, "min_scaling", 1e-4),
        max_scaling=cfg_get(cfg, "max_scaling", 1e4),
        reverse_scale_problem_data=cfg_get(cfg, "reverse_scale_problem_data", True),
        verbose=cfg_get(cfg, "verbose", False),
    )


# ======================================
# Identity marker
# ======================================
class IdentityMatrix:
    """Stands in for a unit diagonal so that side of a product is skipped."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "IDENTITY"


IDENTITY = IdentityMatrix()


def is_identity(d) -> bool:
    return d is IDENTITY


def diag_mul(d, v: np.ndarray) -> None:
    """v <- diag(d) v, in place."""
    if not is_identity(d):
        v *= d


# ======================================
# Storage helpers
# ======================================
def _storage(M: ArrayLike) -> str:
    if sp.issparse(M):
        if M.format in ("csc", "csr"):
            return M.format
        raise TypeError(f"Unsupported sparse format '{M.format}', convert to CSC or CSR first")
    if isinstance(M, np.ndarray) and M.ndim == 2:
        return "dense"
    raise TypeError(f"Expected a 2-D ndarray or CSC/CSR matrix, got {type(M).__name__}")


def _major_counts(M) -> np.ndarray:
    return np.diff(M.indptr)


# ---------- infinity-norm kernels over compressed storage ----------
@njit(cache=True)
def _major_inf_norms(indptr, data, out):
    # out[j] = max(out[j], max |data| of slice j); NaN is kept once seen
    for j in range(indptr.size - 1):
        v = out[j]
        for k in range(indptr[j], indptr[j + 1]):
            a = abs(data[k])
            if a > v or a != a:
                v = a
        out[j] = v


@njit(cache=True)
def _minor_inf_norms(indptr, indices, data, out):
    for k in range(indptr[indptr.size - 1]):
        a = abs(data[k])
        i = indices[k]
        if a > out[i] or a != a:
            out[i] = a


def _dense_inf_norms(M: np.ndarray, axis: int, out: np.ndarray) -> None:
    if M.shape[axis] == 0:
        return
    np.maximum(out, np.max(np.abs(M), axis=axis), out=out)


def col_norms(out: np.ndarray, M: ArrayLike, reset: bool = True) -> np.ndarray:
    """
    Column infinity norms of M into `out`.

    With reset=False the norms are accumulated (max) on top of the values
    already in `out`, which yields the column norms of a stacked matrix.
    """
    if reset:
        out.fill(0.0)
    kind = _storage(M)
    if kind == "dense":
        _dense_inf_norms(M, 0, out)
    elif kind == "csc":
        _major_inf_norms(M.indptr, M.data, out)
    else:
        _minor_inf_norms(M.indptr, M.indices, M.data, out)
    return out


def row_norms(out: np.ndarray, M: ArrayLike, reset: bool = True) -> np.ndarray:
    """Row infinity norms of M into `out` (column norms of Mᵀ)."""
    if reset:
        out.fill(0.0)
    kind = _storage(M)
    if kind == "dense":
        _dense_inf_norms(M, 1, out)
    elif kind == "csr":
        _major_inf_norms(M.indptr, M.data, out)
    else:
        _minor_inf_norms(M.indptr, M.indices, M.data, out)
    return out


# ---------- in-place diagonal products ----------
def lrmul(L, M: ArrayLike, R) -> None:
    """M <- diag(L) M diag(R), in place. Either side may be IDENTITY."""
    kind = _storage(M)
    if kind == "dense":
        if not is_identity(L):
            M *= L[:, None]
        if not is_identity(R):
            M *= R[None, :]
        return

    nnz = M.indptr[-1]
    data = M.data[:nnz]
    # CSC: indices are rows and slices are columns; CSR the other way round
    minor_d, major_d = (L, R) if kind == "csc" else (R, L)
    if not is_identity(minor_d):
        data *= minor_d[M.indices[:nnz]]
    if not is_identity(major_d):
        data *= np.repeat(major_d, _major_counts(M))


def scalarmul(M: ArrayLike, c: float) -> None:
    """M <- c M, in place."""
    if _storage(M) == "dense":
        M *= c
    else:
        M.data *= c


def is_symmetric(M: ArrayLike) -> bool:
    if M.shape[0] != M.shape[1]:
        return False
    if _storage(M) == "dense":
        return bool(np.array_equal(M, M.T))
    return (M != M.T).nnz == 0


def symmetrize_full(M: ArrayLike) -> None:
    """M <- ½(M + Mᵀ), in place (sparse matrices keep their identity)."""
    kind = _storage(M)
    if kind == "dense":
        M[...] = 0.5 * (M + M.T)
        return
    S = (0.5 * (M + M.T)).asformat(kind)
    M.data, M.indices, M.indptr = S.data, S.indices, S.indptr
    M.has_sorted_indices = False


def inv_sqrt(v: np.ndarray) -> np.ndarray:
    """v <- 1 / sqrt(v), in place."""
    np.sqrt(v, out=v)
    np.reciprocal(v, out=v)
    return v


def clip(s, lo: float, hi: float, degenerate: float = 1.0):
    """
    Clip scaling candidates into [lo, hi].

    Non-positive entries (zero norms, i.e. no information) map to
    `degenerate` instead of `lo`. Arrays are clipped in place and returned;
    scalars are returned as float. NaN passes through.
    """
    if np.ndim(s) == 0:
        s = float(s)
        if s <= 0.0:
            return degenerate
        return min(max(s, lo), hi)
    bad = s <= 0.0
    np.clip(s, lo, hi, out=s)
    s[bad] = degenerate
    return s
