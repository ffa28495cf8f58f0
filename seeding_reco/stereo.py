from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from seeding_reco.config import SeedingConfig
from seeding_reco.fitter import TrackFitter
from seeding_reco.geometry import DetectorGeometry
from seeding_reco.hit_pool import Hit, HitPool
from seeding_reco.seed_track import SeedTrack
from seeding_reco.selection import keep_best

logger = logging.getLogger(__name__)

# Smallest number of consecutive stereo hits forming a window.
_MIN_WINDOW = 5
# A window must cover more distinct planes than this.
_MIN_PLANES_EXCLUSIVE = 4
# Outlier removal on extended tracks stops at this size.
_MIN_STEREO_FIT_HITS = 10
# Extended tracks with more hits than this skip the chi2/ndof cut.
_ACCEPT_HITS_EXCLUSIVE = 9
# Extra start positions skipped after a converged window.
_SKIP_AFTER_FIT = 4


def count_planes(hits: Sequence[Hit]) -> int:
    """Number of distinct planes among ``hits``."""
    return len({h.plane for h in hits})


class StereoExtender:
    r"""
    Attach stereo hits to x projections.

    For a stereo zone at depth :math:`z` with slope :math:`dx/dy` a hit at
    measured position :math:`x` lies on the track when its :math:`y` matches,
    so relative to the x prediction :math:`x_P = x(z)`

    .. math::

        c = \frac{x - x_P}{(dx/dy)\,z} \approx -\frac{y}{z}

    is a per-hit estimate of the track's :math:`y/z` slope (up to sign).
    Hits of all stereo zones inside :math:`|y| <` ``stereo_road_y`` are
    collected, cut one-sided on :math:`c` per half, and stably sorted by
    :math:`c`. Clusters of at least five consecutive hits whose spread is
    below

    .. math::

        \text{tol} = \text{tol}_\text{off} + \text{tol}_\text{slope}\,|c_\text{first}|

    and that cover more than four planes are fitted together with the
    projection. Of all accepted extensions of one projection only the best
    survives (:func:`~seeding_reco.selection.keep_best`).

    Each processed hit has its ``coord`` overwritten; only zones of the
    requested half are touched.

    Parameters
    ----------
    geometry : DetectorGeometry
    config : SeedingConfig
    fitter : TrackFitter, optional
    """

    def __init__(self, geometry: DetectorGeometry, config: SeedingConfig,
                 fitter: Optional[TrackFitter] = None) -> None:
        self.geometry = geometry
        self.config = config
        self.fitter = fitter if fitter is not None else TrackFitter(config)

    def extend(self, pool: HitPool, half: int, x_tracks: Sequence[SeedTrack]) -> List[SeedTrack]:
        """Best stereo extension of every valid projection in ``x_tracks``."""
        out: List[SeedTrack] = []
        for track in x_tracks:
            if not track.valid:
                continue
            stereo = self.collect(pool, half, track)
            best = keep_best(self._extensions(track, stereo))
            if best is not None:
                out.append(best)
        logger.debug("half %d: %d of %d x projections extended with stereo hits",
                     half, len(out), len(x_tracks))
        return out

    def collect(self, pool: HitPool, half: int, track: SeedTrack) -> List[Hit]:
        """Stereo hits compatible with ``track``, sorted by ``coord``."""
        cfg = self.config
        cut = cfg.stereo_coord_cut
        out: List[Hit] = []
        for zone in pool.zones_of_half(half):
            if zone.is_x:
                continue
            x_pred = track.x(zone.z)
            x_min = x_pred + cfg.stereo_road_y * zone.dxdy
            x_max = x_pred - cfg.stereo_road_y * zone.dxdy
            if x_min > x_max:
                x_min, x_max = x_max, x_min
            for h in zone.hits_in_window(x_min, x_max):
                h.coord = (h.x - x_pred) / zone.dxdy / zone.z
                if half == 0 and h.coord > cut:
                    continue
                if half == 1 and h.coord < -cut:
                    continue
                out.append(h)
        out.sort(key=lambda h: h.coord)
        return out

    def _extensions(self, base: SeedTrack, stereo: List[Hit]) -> List[SeedTrack]:
        r"""
        Sliding-window clustering of ``stereo`` (sorted by ``coord``).

        A window starts at index :math:`b` with end :math:`e = b + 5`
        (exclusive); it is grown while the spread stays below the tolerance.
        A converged fit moves the next start :math:`5` positions on,
        otherwise the start advances by one.
        """
        cfg = self.config
        n = len(stereo)
        found: List[SeedTrack] = []
        b = 0
        while b + _MIN_WINDOW < n:
            e = b + _MIN_WINDOW
            c_first = stereo[b].coord
            tol = cfg.tol_ty_offset + cfg.tol_ty_slope * abs(c_first)
            if stereo[e - 1].coord - c_first < tol:
                while e + 1 < n and stereo[e].coord - c_first < tol:
                    e += 1
                window = stereo[b:e]
                if count_planes(window) > _MIN_PLANES_EXCLUSIVE:
                    track = self._fit_window(base, window)
                    if track is not None:
                        if self._accept(track):
                            found.append(track)
                        b += _SKIP_AFTER_FIT
            b += 1
        return found

    def _fit_window(self, base: SeedTrack, window: Sequence[Hit]) -> Optional[SeedTrack]:
        """Converged extension of ``base`` by ``window``, or ``None``."""
        track = base.copy()
        track.valid = True
        track.add_hits(window)
        ok = self.fitter.fit(track)
        ok = self.fitter.fit(track)
        ok = self.fitter.fit(track)
        ok = self.fitter.fit_with_outlier_removal(track, min_hits=_MIN_STEREO_FIT_HITS, ok=ok)
        if not ok:
            return None
        self.fitter.set_chi2(track)
        return track

    def _accept(self, track: SeedTrack) -> bool:
        cfg = self.config
        slope = track.x_slope(cfg.z_slope_reference)
        max_chi2 = cfg.max_chi2_per_dof + 6.0 * slope * slope
        return len(track.hits) > _ACCEPT_HITS_EXCLUSIVE or track.chi2_per_dof < max_chi2
