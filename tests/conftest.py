"""
Shared fixtures: small, badly scaled conic QPs in dense, CSC or CSR storage.

The cone layout used throughout is

    ZeroSet(2) × Nonnegatives(3) × Box(2) × SOC(3) × Exp × PsdTriangle(3)

i.e. m = 16 constraint rows.
"""

import numpy as np
import pytest
import scipy.sparse as sp

from coneq.blocks.cones import (
    Box,
    CompositeConvexSet,
    ExponentialCone,
    Nonnegatives,
    PsdConeTriangle,
    SecondOrderCone,
    ZeroSet,
)

STORAGES = ["dense", "csc", "csr"]

BOX_L = np.array([-1.0, -2.0])
BOX_U = np.array([3.0, 0.5])


def to_storage(M, storage):
    M = M.toarray() if sp.issparse(M) else np.asarray(M, dtype=float)
    if storage == "dense":
        return M.copy()
    if storage == "csc":
        return sp.csc_matrix(M)
    return sp.csr_matrix(M)


def dense(M):
    return M.toarray() if sp.issparse(M) else np.asarray(M)


def make_cones():
    return CompositeConvexSet(
        [
            ZeroSet(2),
            Nonnegatives(3),
            Box(BOX_L, BOX_U),
            SecondOrderCone(3),
            ExponentialCone(),
            PsdConeTriangle(3),
        ]
    )


@pytest.fixture
def make_qp():
    """Factory returning (P, q, A, b, C) with badly scaled rows and columns."""

    def _make(storage="csc", n=6, seed=0):
        rng = np.random.default_rng(seed)
        C = make_cones()
        m = C.dim

        col_scale = np.logspace(-2, 2, n)
        F = rng.standard_normal((n, n)) * col_scale
        P = F.T @ F
        P = 0.5 * (P + P.T)

        A = rng.standard_normal((m, n))
        A[rng.random((m, n)) < 0.3] = 0.0
        # keep every row and column structurally non-empty
        A[np.arange(m), np.arange(m) % n] = 1.0 + rng.random(m)
        A *= np.logspace(-3, 3, m)[:, None]

        q = rng.standard_normal(n) * 10.0
        b = rng.standard_normal(m)
        return to_storage(P, storage), q, to_storage(A, storage), b, C

    return _make
