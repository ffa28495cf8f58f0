from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from seeding_reco.config import SeedingConfig, XSearchCase
from seeding_reco.fitter import TrackFitter, solve_parabola
from seeding_reco.geometry import DetectorGeometry
from seeding_reco.hit_pool import Hit, HitPool, Zone
from seeding_reco.seed_track import SeedTrack
from seeding_reco.selection import remove_clones

logger = logging.getLogger(__name__)

# Number of intermediate x zones that provide the third parabola hit.
_N_SEED_ZONES = 2
# Minimum hit count of a matched parabola candidate (first + last + 3).
_MIN_CANDIDATE_HITS = 5
# Track size below which outlier removal stops (a parabola needs 3 hits).
_MIN_FIT_HITS = 3
# Largest |x - parabola| at which an intermediate hit is still attached.
_MAX_PARABOLA_DIST = 10.0


class XProjectionFinder:
    r"""
    Combinatorial search for x-only track projections in one half.

    Every configured :class:`~seeding_reco.config.XSearchCase` defines a
    first zone :math:`F`, a last zone :math:`L` and the x zones strictly
    between them. For a first hit :math:`f` the last-zone road follows from a
    straight line through :math:`(0, x_0)` with :math:`|x_0| <` ``max_ip_at_zero``:

    .. math::

        r = \frac{z_L}{z_F},\qquad
        x_L \in \big[\,x_f\,r - \text{ip}\,(r-1),\; x_f\,r + \text{ip}\,(r-1)\big).

    Each :math:`(f, l)` pair defines a line :math:`t_x,\,x_0`; hits near it in
    the first seed zones become the third point of a parabola
    (:func:`~seeding_reco.fitter.solve_parabola`), and every intermediate
    zone contributes its single hit nearest to that parabola. Unique hit sets
    are fitted with outlier removal and kept under the quality cuts.

    The first case runs on all hits; later cases skip first and last hits
    already consumed by a full (one hit per x layer) projection. After all
    cases the candidates go through
    :func:`~seeding_reco.selection.remove_clones`.

    Parameters
    ----------
    geometry : DetectorGeometry
    config : SeedingConfig
    fitter : TrackFitter, optional
        Shared fitter; a new one is built from ``config`` if omitted.

    Raises
    ------
    ValueError
        If a search case does not name two x layers in increasing ``z``
        order, or its first layer is not at positive ``z``.
    """

    def __init__(self, geometry: DetectorGeometry, config: SeedingConfig,
                 fitter: Optional[TrackFitter] = None) -> None:
        self.geometry = geometry
        self.config = config
        self.fitter = fitter if fitter is not None else TrackFitter(config)
        x_layers = set(geometry.x_layers)
        for case in config.x_search_cases:
            if case.first_layer not in x_layers or case.last_layer not in x_layers:
                raise ValueError(f"Search case {case} must use x layers {sorted(x_layers)}.")
            if case.first_layer >= case.last_layer:
                raise ValueError(f"Search case {case}: first_layer must precede last_layer.")
            if geometry.layers[case.first_layer].z <= 0.0:
                raise ValueError(f"Search case {case}: first layer must be at positive z.")
        self.full_size = len(x_layers)

    # ------------------------------------------------------------------ API
    def find(self, pool: HitPool, half: int) -> List[SeedTrack]:
        """All clone-free x projections of ``half``; zones must be x-sorted."""
        candidates: List[SeedTrack] = []
        for i_case, case in enumerate(self.config.x_search_cases):
            n_before = len(candidates)
            self._run_case(pool, half, i_case, case, candidates)
            logger.debug("half %d case %d: %d x candidates", half, i_case, len(candidates) - n_before)

        kept = remove_clones(candidates, self.full_size,
                             max_used_hits=self.config.max_used_hits,
                             max_common=self.config.max_common_hits)
        logger.debug("half %d: %d x projections after clone removal", half, len(kept))
        return kept

    # ------------------------------------------------------------- internals
    def _case_zones(self, pool: HitPool, half: int, case: XSearchCase) -> Tuple[Zone, Zone, List[Zone]]:
        geo = self.geometry
        first = pool.zone(geo.zone_index(case.first_layer, half))
        last = pool.zone(geo.zone_index(case.last_layer, half))
        between = [pool.zone(geo.zone_index(lay, half))
                   for lay in range(case.first_layer + 1, case.last_layer)
                   if geo.layers[lay].is_x]
        return first, last, between

    def _run_case(self, pool: HitPool, half: int, i_case: int, case: XSearchCase,
                  out: List[SeedTrack]) -> None:
        first, last, between = self._case_zones(pool, half, case)
        seed_zones = between[case.seed_zone_skip:case.seed_zone_skip + _N_SEED_ZONES]
        skip_used = i_case != 0
        ip = self.config.max_ip_at_zero
        z_ratio = last.z / first.z
        last_hits = last.hits

        for f in list(first.hits):
            if skip_used and f.used:
                continue
            x_lo = f.x * z_ratio - ip * (z_ratio - 1.0)
            x_hi = f.x * z_ratio + ip * (z_ratio - 1.0)
            for k in range(last.lower_bound(x_lo), len(last_hits)):
                l = last_hits[k]
                if l.x >= x_hi:
                    break
                if skip_used and l.used:
                    continue
                tx = (l.x - f.x) / (last.z - first.z)
                x0 = f.x - f.z * tx
                for hits in self._hit_sets(f, l, tx, x0, seed_zones, between):
                    track = self._fit_candidate(half, hits, tx)
                    if track is None:
                        continue
                    if len(track.hits) == self.full_size:
                        pool.mark_used(track.hit_ids)
                    out.append(track)

    def _seed_hits(self, tx: float, x0: float, seed_zones: Sequence[Zone]) -> List[Hit]:
        r"""
        Third-hit candidates near the straight line, nearest first.

        The road is asymmetric, wider on the side a curved track bends to:
        :math:`[x_P - \text{tol}_\text{inf},\ x_P + 2|t_x|\,\text{tol}_\text{sup} + 1.5]`,
        mirrored when :math:`x_0 < 0`.
        """
        cfg = self.config
        wide = 2.0 * abs(tx) * cfg.tol_x_sup + 1.5
        seeds: List[Hit] = []
        for zone in seed_zones:
            xp = x0 + zone.z * tx
            if x0 < 0.0:
                x_min, x_max = xp - wide, xp + cfg.tol_x_inf
            else:
                x_min, x_max = xp - cfg.tol_x_inf, xp + wide
            seeds.extend(zone.hits_in_window(x_min, x_max))
        seeds.sort(key=lambda h: abs(h.x - (x0 + h.z * tx)))
        return seeds[:cfg.max_parabola_seed_hits]

    def _hit_sets(self, f: Hit, l: Hit, tx: float, x0: float,
                  seed_zones: Sequence[Zone], between: Sequence[Zone]) -> List[List[Hit]]:
        """Unique hit sets, one per parabola seed, in seed order."""
        z_ref = self.geometry.z_reference
        tol = abs(tx) * 2.0 + 0.5
        unique: Dict[Tuple[int, ...], List[Hit]] = {}
        for s in self._seed_hits(tx, x0, seed_zones):
            a, b, c = solve_parabola(f, s, l, z_ref)
            hits: List[Hit] = []
            for zone in between:
                dz = zone.z - z_ref
                x_at_z = a * dz * dz + b * dz + c
                best: Optional[Hit] = None
                best_dist = _MAX_PARABOLA_DIST
                for h in zone.hits_in_window(x_at_z - tol, x_at_z + tol):
                    dist = abs(h.x - x_at_z)
                    if dist < best_dist:
                        best_dist = dist
                        best = h
                if best is not None:
                    hits.append(best)
            hits.append(f)
            hits.append(l)
            if len(hits) < _MIN_CANDIDATE_HITS:
                continue
            key = tuple(sorted(h.id for h in hits))
            unique.setdefault(key, hits)
        return list(unique.values())

    def _fit_candidate(self, half: int, hits: List[Hit], tx: float) -> Optional[SeedTrack]:
        cfg = self.config
        track = SeedTrack(half=half, z_ref=self.geometry.z_reference, hits=hits)
        ok = self.fitter.fit_with_outlier_removal(track, min_hits=_MIN_FIT_HITS)
        self.fitter.set_chi2(track)
        max_chi2 = cfg.max_chi2_per_dof + 6.0 * tx * tx
        if ok and len(track.hits) >= cfg.min_x_planes and track.chi2_per_dof < max_chi2:
            return track
        return None
