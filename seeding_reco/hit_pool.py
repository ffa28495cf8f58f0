from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from operator import attrgetter
from typing import Dict, Iterable, Iterator, List, Optional

import numpy as np
import pandas as pd

from seeding_reco.geometry import DetectorGeometry

_BY_X = attrgetter("x", "id")
_BY_ID = attrgetter("id")


@dataclass(slots=True, eq=False)
class Hit:
    r"""
    Single measurement on one plane.

    ``x`` is the measured position at :math:`y=0`; for a stereo plane with
    slope ``dxdy`` the hit is compatible with every point satisfying

    .. math::

        x(y) = x + \frac{dx}{dy}\,y .

    ``used`` and ``coord`` are per-run scratch fields written by the seeding.
    Hits compare by identity; ``id`` is the ordering key.
    """
    id: int
    x: float
    z: float
    w: float
    dxdy: float = 0.0
    plane: int = 0
    zone: int = 0
    used: bool = False
    coord: float = 0.0

    @property
    def is_stereo(self) -> bool:
        return self.dxdy != 0.0

    def x_at_y(self, y: float) -> float:
        return self.x + self.dxdy * y


class Zone:
    r"""
    Hits of one (plane, half) pair with their current sort order.

    The zone owns the *ordering* of its hits, not the hits. Two orders are
    supported: by ``x`` (required by the windowed searches) and by ``id``.
    While sorted by ``x`` a contiguous ``float64`` copy of the positions is
    kept so that lower bounds are a single :func:`numpy.searchsorted`.
    """

    __slots__ = ("index", "plane", "half", "z", "dxdy", "hits", "_xs", "_order")

    def __init__(self, index: int, plane: int, half: int, z: float, dxdy: float = 0.0,
                 hits: Optional[List[Hit]] = None) -> None:
        self.index = index
        self.plane = plane
        self.half = half
        self.z = float(z)
        self.dxdy = float(dxdy)
        self.hits: List[Hit] = list(hits) if hits is not None else []
        self._xs: Optional[np.ndarray] = None
        self._order: Optional[str] = None

    def __len__(self) -> int:
        return len(self.hits)

    def __iter__(self) -> Iterator[Hit]:
        return iter(self.hits)

    def __repr__(self) -> str:
        return (f"Zone(index={self.index}, plane={self.plane}, half={self.half}, "
                f"z={self.z:.1f}, dxdy={self.dxdy:.4f}, n_hits={len(self.hits)})")

    @property
    def is_x(self) -> bool:
        return self.dxdy == 0.0

    @property
    def order(self) -> Optional[str]:
        """``"x"``, ``"id"`` or ``None`` if the zone was never sorted."""
        return self._order

    def sort_by_x(self) -> None:
        self.hits.sort(key=_BY_X)
        self._xs = np.fromiter((h.x for h in self.hits), dtype=np.float64, count=len(self.hits))
        self._order = "x"

    def sort_by_id(self) -> None:
        self.hits.sort(key=_BY_ID)
        self._xs = None
        self._order = "id"

    def _require_x_order(self) -> np.ndarray:
        if self._order != "x" or self._xs is None:
            raise ValueError(f"Zone {self.index} is not sorted by x (order={self._order!r}).")
        return self._xs

    def lower_bound(self, x_min: float) -> int:
        """Index of the first hit with ``x >= x_min``."""
        return int(np.searchsorted(self._require_x_order(), x_min, side="left"))

    def hits_in_window(self, x_min: float, x_max: float) -> List[Hit]:
        r"""
        Hits with :math:`x_\min \le x \le x_\max`.

        Binary search to the lower bound, then a linear scan that stops at
        the first hit beyond ``x_max``.
        """
        xs = self._require_x_order()
        hits = self.hits
        out: List[Hit] = []
        for i in range(int(np.searchsorted(xs, x_min, side="left")), len(hits)):
            if xs[i] > x_max:
                break
            out.append(hits[i])
        return out

    def lower_bound_id(self, hit_id: int) -> int:
        """Index of the first hit with ``id >= hit_id`` (zone must be id-sorted)."""
        if self._order != "id":
            raise ValueError(f"Zone {self.index} is not sorted by id (order={self._order!r}).")
        return bisect_left(self.hits, hit_id, key=_BY_ID)


class HitPool:
    r"""
    Run-scoped owner of all hits and zones of one event.

    Zones are built from a hits table with a single **stable sort** on the
    zone index; contiguous segments become zones (no ``groupby``). The pool
    is the only place where ``used``/``coord`` are reset, which happens at
    the start of every seeding run.

    Parameters
    ----------
    geometry : DetectorGeometry
        Plane layout; one :class:`Zone` is created per ``(layer, half)``.
    hits : iterable of Hit, optional
        Hits to distribute to their zones (``hit.zone`` must be valid).
    frame : pandas.DataFrame, optional
        Source table kept for downstream consumers (metrics, plotting).

    Attributes
    ----------
    zones : list of Zone
        Indexed by zone number; empty zones are kept.
    hits : list of Hit
        Every hit of the event, in input order.
    """

    __slots__ = ("geometry", "zones", "hits", "frame", "_by_id")

    def __init__(self, geometry: DetectorGeometry, hits: Iterable[Hit] = (),
                 frame: Optional[pd.DataFrame] = None) -> None:
        self.geometry = geometry
        self.frame = frame
        self.zones: List[Zone] = [
            Zone(index=i, plane=geometry.layer_of(i), half=geometry.half_of(i),
                 z=geometry.zone_z(i), dxdy=geometry.zone_dxdy(i))
            for i in range(geometry.n_zones)
        ]
        self.hits: List[Hit] = []
        self._by_id: Dict[int, Hit] = {}
        for hit in hits:
            self.add_hit(hit)
        self.sort_by_x()

    @classmethod
    def from_frame(cls, hits: pd.DataFrame, geometry: DetectorGeometry) -> "HitPool":
        r"""
        Build a pool from a hits table.

        Parameters
        ----------
        hits : pandas.DataFrame
            Columns ``hit_id, zone, x, w`` are required; ``z`` is optional
            and defaults to the zone depth. Stereo slope and plane number
            come from the geometry.
        geometry : DetectorGeometry

        Raises
        ------
        KeyError
            If a required column is missing.
        ValueError
            If a zone index is out of range or ids are not unique.
        """
        try:
            hid = hits["hit_id"].to_numpy(dtype=np.int64, copy=False)
            zone = hits["zone"].to_numpy(dtype=np.int64, copy=False)
            x = hits["x"].to_numpy(dtype=np.float64, copy=False)
            w = hits["w"].to_numpy(dtype=np.float64, copy=False)
        except KeyError as e:
            raise KeyError(f"Missing required column: {e.args[0]}") from e
        n = hid.size
        if n and (zone.min() < 0 or zone.max() >= geometry.n_zones):
            raise ValueError(f"Zone index outside [0, {geometry.n_zones}).")
        if np.unique(hid).size != n:
            raise ValueError("hit_id values must be unique.")

        zone_z = np.array([geometry.zone_z(i) for i in range(geometry.n_zones)], dtype=np.float64)
        if "z" in hits.columns:
            z = hits["z"].to_numpy(dtype=np.float64, copy=False)
        else:
            z = zone_z[zone] if n else np.empty(0, dtype=np.float64)

        # Stable sort once by zone; contiguous segments are zones.
        order = np.argsort(zone, kind="mergesort")
        pool = cls(geometry, frame=hits)
        for i in order:
            zi = int(zone[i])
            pool.add_hit(Hit(
                id=int(hid[i]), x=float(x[i]), z=float(z[i]), w=float(w[i]),
                dxdy=geometry.zone_dxdy(zi), plane=geometry.layer_of(zi), zone=zi,
            ))
        pool.sort_by_x()
        return pool

    def add_hit(self, hit: Hit) -> None:
        if hit.id in self._by_id:
            raise ValueError(f"Duplicate hit id {hit.id}")
        self._by_id[hit.id] = hit
        self.hits.append(hit)
        self.zones[hit.zone].hits.append(hit)

    def __len__(self) -> int:
        return len(self.hits)

    def zone(self, index: int) -> Zone:
        return self.zones[index]

    def zones_of_half(self, half: int) -> List[Zone]:
        return [self.zones[i] for i in self.geometry.zones_of_half(half)]

    def hit(self, hit_id: int) -> Hit:
        return self._by_id[hit_id]

    def reset(self) -> None:
        """Clear ``used`` and ``coord`` on every hit."""
        for hit in self.hits:
            hit.used = False
            hit.coord = 0.0

    def sort_by_x(self) -> None:
        for zone in self.zones:
            zone.sort_by_x()

    def sort_by_id(self) -> None:
        for zone in self.zones:
            zone.sort_by_id()

    def mark_used(self, hit_ids: Iterable[int]) -> int:
        r"""
        Flag hits as consumed, locating them by id.

        Only the zones holding the requested hits are touched: each is
        switched to id order for the lookup (binary search per id) and
        restored to x order afterwards, so the windowed searches remain
        valid and zones of the other half are never reordered. Unknown ids
        are ignored.

        Returns
        -------
        int
            Number of hits newly flagged.
        """
        per_zone: Dict[int, List[int]] = {}
        for hid in hit_ids:
            known = self._by_id.get(int(hid))
            if known is not None:
                per_zone.setdefault(known.zone, []).append(known.id)

        n_new = 0
        for zone_index, ids in per_zone.items():
            zone = self.zones[zone_index]
            zone.sort_by_id()
            try:
                for hid in ids:
                    i = zone.lower_bound_id(hid)
                    if i < len(zone.hits) and zone.hits[i].id == hid and not zone.hits[i].used:
                        zone.hits[i].used = True
                        n_new += 1
            finally:
                zone.sort_by_x()
        return n_new

    def n_used(self) -> int:
        return sum(1 for h in self.hits if h.used)
