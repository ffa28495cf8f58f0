from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence

from seeding_reco.config import SeedingConfig
from seeding_reco.fitter import TrackFitter
from seeding_reco.geometry import DetectorGeometry
from seeding_reco.hit_pool import HitPool
from seeding_reco.seed_track import SeedTrack, TrackState
from seeding_reco.stereo import StereoExtender
from seeding_reco.x_projections import XProjectionFinder

logger = logging.getLogger(__name__)


class HybridSeeding:
    r"""
    Stand-alone seeding of one event.

    Per spatial half the pipeline is

    1. :class:`~seeding_reco.x_projections.XProjectionFinder` builds clone-free
       x projections (parabolas in the bending plane);
    2. unless ``config.x_only``, :class:`~seeding_reco.stereo.StereoExtender`
       attaches stereo hits and keeps the best extension per projection.

    Every :meth:`run` starts by resetting ``used``/``coord`` on all hits and
    sorting all zones by ``x``. Within a half the phases are strictly
    sequential (later search cases read the ``used`` flags set by earlier
    ones). The halves work on disjoint zones, so with
    ``config.parallel_halves`` they are processed on a thread pool.

    Parameters
    ----------
    geometry : DetectorGeometry
    config : SeedingConfig, optional
        Defaults to ``SeedingConfig()``.

    Attributes
    ----------
    timing : dict[str, float]
        Wall-clock seconds of the last run, per phase (summed over halves).
    stats : dict[str, int]
        Candidate counts of the last run.
    """

    def __init__(self, geometry: DetectorGeometry, config: Optional[SeedingConfig] = None) -> None:
        self.geometry = geometry
        self.config = config if config is not None else SeedingConfig()
        self.fitter = TrackFitter(self.config)
        self.x_finder = XProjectionFinder(geometry, self.config, self.fitter)
        self.stereo = StereoExtender(geometry, self.config, self.fitter)
        self.timing: Dict[str, float] = {}
        self.stats: Dict[str, int] = {}
        self._lock = threading.Lock()

    def run(self, pool: HitPool) -> List[SeedTrack]:
        """Seed tracks of both halves, half 0 first."""
        if pool.geometry is not self.geometry and pool.geometry != self.geometry:
            raise ValueError("Hit pool was built for a different geometry.")
        pool.reset()
        pool.sort_by_x()
        self.timing = {"x projections": 0.0, "stereo": 0.0}
        self.stats = {"x_projections": 0, "tracks": 0}

        halves = range(self.geometry.n_halves)
        if self.config.parallel_halves and len(halves) > 1:
            results = self._run_parallel(pool, halves)
        else:
            results = [self.run_half(pool, half) for half in halves]

        tracks = [t for half_tracks in results for t in half_tracks if t.valid]
        self.stats["tracks"] = len(tracks)
        logger.info("Seeding: %d x projections -> %d tracks (x %.3fs, stereo %.3fs)",
                    self.stats["x_projections"], len(tracks),
                    self.timing["x projections"], self.timing["stereo"])
        return tracks

    def run_half(self, pool: HitPool, half: int) -> List[SeedTrack]:
        """Projection search then stereo extension of one half."""
        t0 = time.perf_counter()
        x_tracks = self.x_finder.find(pool, half)
        t1 = time.perf_counter()
        if self.config.x_only:
            tracks = x_tracks
        else:
            tracks = self.stereo.extend(pool, half, x_tracks)
        t2 = time.perf_counter()

        with self._lock:
            self.timing["x projections"] += t1 - t0
            self.timing["stereo"] += t2 - t1
            self.stats["x_projections"] += len(x_tracks)
        logger.debug("half %d: %d x projections, %d tracks", half, len(x_tracks), len(tracks))
        return tracks

    def _run_parallel(self, pool: HitPool, halves: Sequence[int]) -> List[List[SeedTrack]]:
        results: Dict[int, List[SeedTrack]] = {}
        with ThreadPoolExecutor(max_workers=len(halves)) as exe:
            futures = {exe.submit(self.run_half, pool, half): half for half in halves}
            for f in as_completed(futures):
                half = futures[f]
                try:
                    results[half] = f.result()
                except Exception:
                    logger.exception("Seeding of half %d failed", half)
                    raise
        return [results[h] for h in halves]

    def states(self, tracks: Sequence[SeedTrack], z: Optional[float] = None) -> List[TrackState]:
        """Track states at ``z`` (default ``config.state_z``)."""
        z = self.config.state_z if z is None else float(z)
        return [t.state(z) for t in tracks]
