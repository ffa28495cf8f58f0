from __future__ import annotations

import numpy as np
from numba import njit

__all__ = [
    "normal_equation_sums",
    "count_common_sorted",
]


@njit(cache=True)
def normal_equation_sums(dz: np.ndarray, d: np.ndarray, dy: np.ndarray, w: np.ndarray,
                         stereo: np.ndarray, use_stereo: bool):
    r"""
    Weighted moment sums for the parabola and straight-line updates.

    For every hit :math:`i` with weight :math:`w_i`, depth offset
    :math:`\Delta z_i` and residual :math:`d_i`, the parabola sums are

    .. math::

        s = \Big(\sum w,\ \sum w\Delta z,\ \sum w\Delta z^2,\ \sum w\Delta z^3,
        \ \sum w\Delta z^4,\ \sum w d,\ \sum w d\Delta z,\ \sum w d\Delta z^2\Big),

    and, for stereo hits with :math:`y`-residual :math:`\delta y_i`,

    .. math::

        t = \Big(\sum w,\ \sum w\Delta z,\ \sum w\Delta z^2,
        \ \sum w\,\delta y,\ \sum w\,\delta y\,\Delta z\Big).

    Parameters
    ----------
    dz, d, dy, w : ndarray, shape (n,)
        ``float64`` per-hit depth offsets, x-residuals, y-residuals, weights.
    stereo : ndarray of bool, shape (n,)
        Stereo flag per hit.
    use_stereo : bool
        If ``False`` stereo hits are ignored entirely (first fit iteration).

    Returns
    -------
    s : ndarray, shape (8,)
    t : ndarray, shape (5,)
    """
    s = np.zeros(8, dtype=np.float64)
    t = np.zeros(5, dtype=np.float64)
    for i in range(dz.shape[0]):
        wi = w[i]
        z = dz[i]
        if stereo[i]:
            if not use_stereo:
                continue
            t[0] += wi
            t[1] += wi * z
            t[2] += wi * z * z
            t[3] += wi * dy[i]
            t[4] += wi * dy[i] * z
        di = d[i]
        z2 = z * z
        s[0] += wi
        s[1] += wi * z
        s[2] += wi * z2
        s[3] += wi * z2 * z
        s[4] += wi * z2 * z2
        s[5] += wi * di
        s[6] += wi * di * z
        s[7] += wi * di * z2
    return s, t


@njit(cache=True)
def count_common_sorted(a: np.ndarray, b: np.ndarray) -> int:
    r"""
    Number of values shared by two ascending ``int64`` arrays.

    Single merge walk, :math:`\mathcal{O}(|a|+|b|)`.
    """
    i = 0
    j = 0
    n_common = 0
    na = a.shape[0]
    nb = b.shape[0]
    while i < na and j < nb:
        if a[i] == b[j]:
            n_common += 1
            i += 1
            j += 1
        elif a[i] < b[j]:
            i += 1
        else:
            j += 1
    return n_common
