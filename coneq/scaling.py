"""
Ruiz equilibration of conic QP data.

    minimize    ½ xᵀ P x + qᵀ x
    subject to  A x + s = b,  s ∈ C

is replaced before the solve by the equivalent problem in scaled variables

    P̃ = c D P D,   q̃ = c D q,   Ã = E A D,   b̃ = E b,

where D (n×n) and E (m×m) are positive diagonals and c > 0. Iterates map as
x̃ = D⁻¹ x, s̃ = E s, μ̃ = c E⁻¹ μ.

Forward pass (`equilibrate`)
----------------------------
A fixed number of passes (no convergence test), each one
  1. column infinity norms of [P; A] and row infinity norms of A,
  2. clipped to [min_scaling, max_scaling] (zero norms -> 1),
  3. replaced by their inverse square roots,
  4. applied to the data and accumulated into D and E,
  5. followed by a scalar rescaling of the objective, from the mean column
     norm of P and ‖q‖∞ (skipped for that pass if either is zero).
Afterwards cone blocks that only admit a scalar scaling (SOC, PSD, exp, pow)
are rectified to a single factor per block, the cones see the final E, and the
inverses Dinv, Einv, cinv are formed once.

Reverse pass (`reverse_equilibrate`)
------------------------------------
Maps x, s, μ back with the stored inverses and, when
`reverse_scale_problem_data` is set, restores P, A, q, b (and cone data).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .blocks.aux import (
    IDENTITY,
    ArrayLike,
    ScalingConfig,
    as_config,
    clip,
    col_norms,
    diag_mul,
    inv_sqrt,
    is_symmetric,
    lrmul,
    row_norms,
    scalarmul,
    symmetrize_full,
)
from .blocks.cones import CompositeConvexSet
from .workspace import Workspace


# ---------- telemetry ----------
@dataclass
class ScalingInfo:
    passes: int
    cost_scale: float
    cost_scaled_passes: int
    rectified: bool
    # max/min ratio over non-zero norms; 1.0 is perfectly equilibrated
    col_ratio_before: float
    col_ratio_after: float
    row_ratio_before: float
    row_ratio_after: float


def _spread(v: np.ndarray) -> float:
    nz = v[v > 0.0]
    if nz.size == 0:
        return 1.0
    return float(nz.max() / nz.min())


# ---------- norms & limits ----------
def kkt_col_norms(
    P: ArrayLike, A: ArrayLike, norm_lhs: np.ndarray, norm_rhs: np.ndarray
) -> None:
    """Column norms of [P; A] into norm_lhs, row norms of A into norm_rhs."""
    col_norms(norm_lhs, P, reset=True)   # start from zero
    col_norms(norm_lhs, A, reset=False)  # accumulate on top of P's norms
    row_norms(norm_rhs, A)               # same as column norms of Aᵀ


def limit_scaling(s, settings: ScalingConfig):
    return clip(s, settings.min_scaling, settings.max_scaling, 1.0)


# ---------- data ----------
def scale_data(
    P: ArrayLike,
    A: ArrayLike,
    q: np.ndarray,
    b: np.ndarray,
    Ds,
    Es,
    cs: float = 1.0,
) -> None:
    """
    In place:  P <- cs Ds P Ds,  A <- Es A Ds,  q <- cs Ds q,  b <- Es b.

    Ds / Es are 1-D diagonals or IDENTITY.
    """
    lrmul(Ds, P, Ds)
    lrmul(Es, A, Ds)
    diag_mul(Ds, q)
    diag_mul(Es, b)
    if cs != 1.0:
        scalarmul(P, cs)
        q *= cs


# ---------- cones ----------
def rectify_set_scalings(E: np.ndarray, Ework: np.ndarray, C: CompositeConvexSet) -> bool:
    """
    Write into Ework the correction that makes E uniform on every block whose
    cone only admits a scalar scaling. True if any block needed it.
    """
    Ework.fill(1.0)
    return C.rectify_scaling(E, Ework)


def scale_sets(E: np.ndarray, C: CompositeConvexSet) -> None:
    C.scale(E)


# ---------- forward ----------
def scale_ruiz(ws: Workspace) -> ScalingInfo:
    settings = ws.settings
    sm = ws.sm

    # unit scaling to start
    sm.reset()
    D, E = sm.D, sm.E
    c = 1.0

    # the inverse scalings are only formed at the end, so their
    # storage serves as work vectors until then
    Dwork, Ework = sm.Dinv, sm.Einv

    P, A, q, b, C = ws.p.P, ws.p.A, ws.p.q, ws.p.b, ws.p.C

    kkt_col_norms(P, A, Dwork, Ework)
    col_ratio_before, row_ratio_before = _spread(Dwork), _spread(Ework)

    cost_scaled_passes = 0
    for k in range(settings.scaling):
        kkt_col_norms(P, A, Dwork, Ework)
        limit_scaling(Dwork, settings)
        limit_scaling(Ework, settings)

        inv_sqrt(Dwork)
        inv_sqrt(Ework)

        scale_data(P, A, q, b, Dwork, Ework, 1.0)
        D *= Dwork  # D <- Dwork D
        E *= Ework  # E <- Ework E

        # Dwork now holds the column norms of the rescaled P
        col_norms(Dwork, P)
        mean_col_norm_P = float(np.mean(Dwork)) if Dwork.size else 0.0
        inf_norm_q = float(np.max(np.abs(q))) if q.size else 0.0

        if mean_col_norm_P != 0.0 and inf_norm_q != 0.0:
            inf_norm_q = limit_scaling(inf_norm_q, settings)
            scale_cost = max(inf_norm_q, mean_col_norm_P)
            scale_cost = limit_scaling(scale_cost, settings)
            ctmp = 1.0 / scale_cost

            scalarmul(P, ctmp)
            q *= ctmp
            c *= ctmp
            cost_scaled_passes += 1
            logging.debug(f"Ruiz pass {k + 1}/{settings.scaling}: cost factor {ctmp:.3e} (c={c:.3e})")
        else:
            logging.debug(
                f"Ruiz pass {k + 1}/{settings.scaling}: objective scaling skipped "
                f"(mean col norm P={mean_col_norm_P:.3e}, |q|_inf={inf_norm_q:.3e})"
            )

    # blocks that only admit a scalar scaling get one factor each; the
    # data is only touched again if some block actually changed
    rectified = False
    if C.uniform_scaling:
        rectified = rectify_set_scalings(E, Ework, C)
        if rectified:
            scale_data(P, A, q, b, IDENTITY, Ework, 1.0)
            E *= Ework
            logging.debug("Rectified dual scaling on uniform-scaling cone blocks")

    if (settings.scaling > 0 or rectified) and not is_symmetric(P):
        symmetrize_full(P)

    scale_sets(E, C)

    kkt_col_norms(P, A, Dwork, Ework)
    info = ScalingInfo(
        passes=settings.scaling,
        cost_scale=c,
        cost_scaled_passes=cost_scaled_passes,
        rectified=rectified,
        col_ratio_before=col_ratio_before,
        col_ratio_after=_spread(Dwork),
        row_ratio_before=row_ratio_before,
        row_ratio_after=_spread(Ework),
    )

    np.reciprocal(D, out=sm.Dinv)
    np.reciprocal(E, out=sm.Einv)
    sm.c = c
    sm.cinv = 1.0 / c

    # warm-started iterates into scaled space
    v = ws.vars
    v.x *= sm.Dinv
    v.mu *= sm.Einv
    v.s *= sm.E
    v.mu *= c

    return info


def equilibrate(ws: Workspace, settings: Optional[ScalingConfig] = None) -> ScalingInfo:
    """Scale ws.p and the warm start in place; fills ws.sm. Runs once per workspace."""
    if ws.phase != "raw":
        raise RuntimeError(f"equilibrate() called on a workspace in phase '{ws.phase}'")
    if settings is not None:
        ws.settings = as_config(settings)

    info = scale_ruiz(ws)
    ws.phase = "scaled"

    level = logging.INFO if ws.settings.verbose else logging.DEBUG
    logging.log(
        level,
        f"Equilibration: {info.passes} passes, c={info.cost_scale:.3e}, "
        f"col norm spread {info.col_ratio_before:.2e} -> {info.col_ratio_after:.2e}, "
        f"row norm spread {info.row_ratio_before:.2e} -> {info.row_ratio_after:.2e}"
        + (", rectified" if info.rectified else ""),
    )
    return info


# ---------- reverse ----------
def reverse_scaling(ws: Workspace) -> None:
    sm = ws.sm
    cinv = sm.cinv
    v = ws.vars
    v.x *= sm.D
    v.s *= sm.Einv
    v.mu *= sm.E
    v.mu *= cinv

    # model data back to original units
    if ws.settings.reverse_scale_problem_data:
        p = ws.p
        scale_data(p.P, p.A, p.q, p.b, sm.Dinv, sm.Einv, cinv)
        scale_sets(sm.Einv, p.C)


def reverse_equilibrate(ws: Workspace) -> None:
    """Map the terminal iterate (and optionally the data) back to original units."""
    if ws.phase != "scaled":
        raise RuntimeError(f"reverse_equilibrate() called on a workspace in phase '{ws.phase}'")
    reverse_scaling(ws)
    ws.phase = "unscaled"
    logging.debug("Reverse equilibration done")
