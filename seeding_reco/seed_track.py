from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Iterable, List, Optional, Tuple

import numpy as np

from seeding_reco.hit_pool import Hit

_BY_ID = attrgetter("id")


@dataclass(slots=True)
class TrackState:
    """Position and slopes of a seed track at one depth."""
    x: float
    y: float
    z: float
    tx: float
    ty: float


@dataclass(slots=True, eq=False)
class SeedTrack:
    r"""
    Candidate trajectory: a parabola in the bending plane and a line in the
    non-bending plane, both expanded around ``z_ref``.

    With :math:`\Delta z = z - z_\text{ref}`

    .. math::

        x(z) &= a_x + b_x\,\Delta z + c_x\,\Delta z^2, \\
        y(z) &= a_y + b_y\,\Delta z .

    The residual of a hit is measured along ``x`` at the track's ``y``,

    .. math::

        d = x_\text{hit} + \frac{dx}{dy}\,y(z_\text{hit}) - x(z_\text{hit}),

    and its :math:`\chi^2` contribution is :math:`w\,d^2`.

    Hits are held by reference, sorted by ``id`` and unique by ``id``. The
    ``chi2``/``ndof`` pair is only meaningful after
    :meth:`seeding_reco.fitter.TrackFitter.set_chi2`.

    Attributes
    ----------
    half : int
        Spatial half the track was found in.
    z_ref : float
        Expansion depth of the polynomials.
    hits : list of Hit
        Assigned hits, sorted by id.
    ax, bx, cx, ay, by : float
        Polynomial coefficients.
    valid : bool
        Cleared when the track is superseded by a better duplicate.
    chi2 : float
    ndof : int
    """
    half: int
    z_ref: float
    hits: List[Hit] = field(default_factory=list)
    ax: float = 0.0
    bx: float = 0.0
    cx: float = 0.0
    ay: float = 0.0
    by: float = 0.0
    valid: bool = True
    chi2: float = 0.0
    ndof: int = 0
    _arrays: Optional[Tuple[np.ndarray, ...]] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        unique = {}
        for hit in self.hits:
            unique.setdefault(hit.id, hit)
        self.hits = sorted(unique.values(), key=_BY_ID)

    def __len__(self) -> int:
        return len(self.hits)

    # ------------------------------------------------------------------ model
    def x(self, z: float) -> float:
        dz = z - self.z_ref
        return self.ax + dz * (self.bx + dz * self.cx)

    def x_slope(self, z: float) -> float:
        return self.bx + 2.0 * self.cx * (z - self.z_ref)

    def y(self, z: float) -> float:
        return self.ay + self.by * (z - self.z_ref)

    def y_slope(self) -> float:
        return self.by

    def state(self, z: float) -> TrackState:
        return TrackState(x=self.x(z), y=self.y(z), z=z, tx=self.x_slope(z), ty=self.y_slope())

    def update_parameters(self, da: float, db: float, dc: float, day: float, dby: float) -> None:
        self.ax += da
        self.bx += db
        self.cx += dc
        self.ay += day
        self.by += dby

    # ------------------------------------------------------------- residuals
    def distance(self, hit: Hit) -> float:
        return hit.x_at_y(self.y(hit.z)) - self.x(hit.z)

    def delta_y(self, hit: Hit) -> float:
        return self.distance(hit) / hit.dxdy

    def hit_chi2(self, hit: Hit) -> float:
        d = self.distance(hit)
        return d * d * hit.w

    def hit_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        r"""
        Contiguous ``(z, x, w, dxdy, id)`` arrays of the assigned hits.

        Cached until the hit list changes through :meth:`add_hit` /
        :meth:`remove_hit`.
        """
        if self._arrays is None:
            n = len(self.hits)
            self._arrays = (
                np.fromiter((h.z for h in self.hits), dtype=np.float64, count=n),
                np.fromiter((h.x for h in self.hits), dtype=np.float64, count=n),
                np.fromiter((h.w for h in self.hits), dtype=np.float64, count=n),
                np.fromiter((h.dxdy for h in self.hits), dtype=np.float64, count=n),
                np.fromiter((h.id for h in self.hits), dtype=np.int64, count=n),
            )
        return self._arrays

    def residuals(self) -> np.ndarray:
        """Vectorized :meth:`distance` for all hits, in hit order."""
        z, x, _, dxdy, _ = self.hit_arrays()
        dz = z - self.z_ref
        return x + dxdy * (self.ay + self.by * dz) - (self.ax + dz * (self.bx + dz * self.cx))

    def chi2_contributions(self) -> np.ndarray:
        _, _, w, _, _ = self.hit_arrays()
        d = self.residuals()
        return w * d * d

    # ------------------------------------------------------------------ hits
    @property
    def hit_ids(self) -> List[int]:
        return [h.id for h in self.hits]

    @property
    def has_stereo(self) -> bool:
        return any(h.dxdy != 0.0 for h in self.hits)

    @property
    def chi2_per_dof(self) -> float:
        return self.chi2 / self.ndof if self.ndof > 0 else float("inf")

    def add_hit(self, hit: Hit) -> bool:
        """Insert ``hit`` keeping id order; returns ``False`` for a duplicate id."""
        i = bisect_left(self.hits, hit.id, key=_BY_ID)
        if i < len(self.hits) and self.hits[i].id == hit.id:
            return False
        self.hits.insert(i, hit)
        self._arrays = None
        return True

    def add_hits(self, hits: Iterable[Hit]) -> int:
        return sum(1 for h in hits if self.add_hit(h))

    def remove_hit(self, index: int) -> Hit:
        self._arrays = None
        return self.hits.pop(index)

    def copy(self) -> "SeedTrack":
        """Shallow clone: new hit list, same hit objects, same parameters."""
        clone = SeedTrack(half=self.half, z_ref=self.z_ref, hits=[],
                          ax=self.ax, bx=self.bx, cx=self.cx, ay=self.ay, by=self.by,
                          valid=self.valid, chi2=self.chi2, ndof=self.ndof)
        clone.hits = list(self.hits)
        clone._arrays = self._arrays
        return clone
