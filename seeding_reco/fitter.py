from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from seeding_reco.config import SeedingConfig
from seeding_reco.fit_kernels import normal_equation_sums
from seeding_reco.hit_pool import Hit
from seeding_reco.seed_track import SeedTrack

logger = logging.getLogger(__name__)

# Below these determinants the closed-form solves are treated as singular.
_FIT_DET_EPS = 1e-9
_PARABOLA_DET_EPS = 1e-8


def solve_parabola(hit1: Hit, hit2: Hit, hit3: Hit, z_ref: float) -> Tuple[float, float, float]:
    r"""
    Parabola through three hits by Cramer's rule.

    Solves

    .. math::

        x_k = a\,\Delta z_k^2 + b\,\Delta z_k + c,\qquad
        \Delta z_k = z_k - z_\text{ref},\quad k=1,2,3,

    with

    .. math::

        a = \frac{D_1}{D},\quad b = \frac{D_2}{D},\quad c = \frac{D_3}{D},

    where :math:`D` is the determinant of the Vandermonde-like matrix
    :math:`[\Delta z_k^2,\ \Delta z_k,\ 1]`.

    Returns
    -------
    (a, b, c) : tuple of float
        ``(0, 0, 0)`` if :math:`|D| < 10^{-8}`; such a model simply matches
        nothing downstream.
    """
    z1 = hit1.z - z_ref
    z2 = hit2.z - z_ref
    z3 = hit3.z - z_ref
    x1, x2, x3 = hit1.x, hit2.x, hit3.x

    det = (z1 * z1) * z2 + z1 * (z3 * z3) + (z2 * z2) * z3 - z2 * (z3 * z3) - z1 * (z2 * z2) - z3 * (z1 * z1)
    if abs(det) < _PARABOLA_DET_EPS:
        return 0.0, 0.0, 0.0

    det1 = x1 * z2 + z1 * x3 + x2 * z3 - z2 * x3 - z1 * x2 - z3 * x1
    det2 = (z1 * z1) * x2 + x1 * (z3 * z3) + (z2 * z2) * x3 - x2 * (z3 * z3) - x1 * (z2 * z2) - x3 * (z1 * z1)
    det3 = ((z1 * z1) * z2 * x3 + z1 * (z3 * z3) * x2 + (z2 * z2) * z3 * x1
            - z2 * (z3 * z3) * x1 - z1 * (z2 * z2) * x3 - z3 * (z1 * z1) * x2)
    return det1 / det, det2 / det, det3 / det


def _solve_parabola_update(s: np.ndarray) -> Optional[Tuple[float, float, float]]:
    r"""
    Closed-form solution of the 3x3 normal equations of a parabola update.

    With the sums of :func:`~seeding_reco.fit_kernels.normal_equation_sums`
    the offset is eliminated first, leaving the 2x2 system

    .. math::

        \begin{pmatrix} b_1 & c_1 \\ b_2 & c_2 \end{pmatrix}
        \begin{pmatrix} \delta b \\ \delta c \end{pmatrix}
        = \begin{pmatrix} d_1 \\ d_2 \end{pmatrix},

    solved by Cramer's rule; :math:`\delta a` follows by back substitution.
    Returns ``None`` when the 2x2 determinant is below ``1e-9``.
    """
    s0, sz, sz2, sz3, sz4, sd, sdz, sdz2 = s
    b1 = sz * sz - s0 * sz2
    c1 = sz2 * sz - s0 * sz3
    d1 = sd * sz - s0 * sdz
    b2 = sz2 * sz2 - sz * sz3
    c2 = sz3 * sz2 - sz * sz4
    d2 = sdz * sz2 - sz * sdz2

    den = b1 * c2 - b2 * c1
    if abs(den) < _FIT_DET_EPS:
        return None
    db = (d1 * c2 - d2 * c1) / den
    dc = (d2 * b1 - d1 * b2) / den
    da = (sd - db * sz - dc * sz2) / s0
    return float(da), float(db), float(dc)


def _solve_line_update(t: np.ndarray) -> Tuple[float, float]:
    r"""
    Straight-line update of :math:`(a_y, b_y)` from stereo y-residuals.

    The residual :math:`\delta y = d / (dx/dy)` is the shift that would move
    the track *onto* the hit's line with the opposite sign, hence the
    negated least-squares solution.
    """
    t0, tz, tz2, td, tdz = t
    if t0 <= 0.0:
        return 0.0, 0.0
    deny = tz * tz - t0 * tz2
    if abs(deny) < _FIT_DET_EPS:
        return 0.0, 0.0
    day = -(tdz * tz - td * tz2) / deny
    dby = -(td * tz - t0 * tdz) / deny
    return float(day), float(dby)


class TrackFitter:
    r"""
    Iterative weighted least-squares fit of a :class:`SeedTrack`.

    Each iteration linearizes around the current parameters and solves for
    additive corrections: a parabola in :math:`x` from all hits (stereo hits
    from the second iteration on) and a straight line in :math:`y` from the
    stereo hits only. The fit converges as soon as every hit satisfies
    :math:`w\,d^2 <` ``max_chi2_in_track``.

    Parameters
    ----------
    config : SeedingConfig
    n_iterations : int, optional
        Iterations per :meth:`fit` call (default 3).
    """

    def __init__(self, config: SeedingConfig, n_iterations: int = 3) -> None:
        self.max_chi2_in_track = float(config.max_chi2_in_track)
        self.n_iterations = int(n_iterations)

    def fit(self, track: SeedTrack) -> bool:
        """Update ``track`` in place; ``True`` if it converged."""
        z, _, w, dxdy, _ = track.hit_arrays()
        if z.size == 0:
            return False
        dz = z - track.z_ref
        stereo = dxdy != 0.0
        for loop in range(self.n_iterations):
            d = track.residuals()
            dy = np.divide(d, dxdy, out=np.zeros_like(d), where=stereo)
            s, t = normal_equation_sums(dz, d, dy, w, stereo, loop > 0)
            update = _solve_parabola_update(s)
            if update is None:
                return False
            da, db, dc = update
            day, dby = _solve_line_update(t)
            track.update_parameters(da, db, dc, day, dby)

            max_chi2 = float(track.chi2_contributions().max())
            if max_chi2 < self.max_chi2_in_track:
                return True
        return False

    def remove_worst_and_refit(self, track: SeedTrack) -> bool:
        """Drop the hit with the largest chi2 (first one on ties) and refit."""
        if not track.hits:
            return False
        chi2 = track.chi2_contributions()
        worst = int(np.argmax(chi2)) if chi2.max() > 0.0 else 0
        track.remove_hit(worst)
        return self.fit(track)

    def fit_with_outlier_removal(self, track: SeedTrack, min_hits: int = 3, ok: Optional[bool] = None) -> bool:
        r"""
        Fit, then remove the worst hit and refit until converged.

        Removal stops once the track is down to ``min_hits`` hits, so it is
        called at most :math:`n - \text{min\_hits}` times.

        Parameters
        ----------
        track : SeedTrack
        min_hits : int, optional
            Viable hit count below which no further hit is removed.
        ok : bool, optional
            Result of a fit already performed by the caller; skips the
            initial fit when given.
        """
        if ok is None:
            ok = self.fit(track)
        while not ok and len(track.hits) > min_hits:
            ok = self.remove_worst_and_refit(track)
        return ok

    def set_chi2(self, track: SeedTrack) -> None:
        r"""
        Store :math:`\chi^2=\sum w d^2` and the degrees of freedom.

        :math:`n_\text{dof} = n_\text{hits} - 3`, minus 2 more when any
        stereo hit is present.
        """
        ndof = len(track.hits) - 3
        if track.has_stereo:
            ndof -= 2
        chi2 = float(track.chi2_contributions().sum()) if track.hits else 0.0
        track.chi2 = chi2
        track.ndof = ndof
