import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from seeding_reco.config import SeedingConfig
from seeding_reco.fitter import TrackFitter, solve_parabola
from seeding_reco.geometry import DetectorGeometry
from seeding_reco.hit_pool import Hit
from seeding_reco.seed_track import SeedTrack


def _line_hits():
    # x = 0 at z = 0 and x = 10 at z = 1000, three hits in between
    zs = [0.0, 250.0, 500.0, 750.0, 1000.0]
    return [Hit(id=i + 1, x=z / 100.0, z=z, w=1.0) for i, z in enumerate(zs)]


def _event_hits(geometry, ax, bx, cx, ay, by, w=100.0):
    """One hit per layer of the default geometry on the given trajectory."""
    hits = []
    for i, lay in enumerate(geometry.layers):
        dz = lay.z - geometry.z_reference
        x = ax + bx * dz + cx * dz * dz
        y = ay + by * dz
        hits.append(Hit(id=i + 1, x=x - lay.dxdy * y, z=lay.z, w=w, dxdy=lay.dxdy, plane=i, zone=2 * i))
    return hits


def test_solve_parabola_exact():
    z_ref = 8520.0
    a, b, c = 2e-6, 0.12, -35.0
    hits = []
    for i, z in enumerate((7826.1, 8508.1, 9402.9)):
        dz = z - z_ref
        hits.append(Hit(id=i, x=a * dz * dz + b * dz + c, z=z, w=1.0))
    pa, pb, pc = solve_parabola(hits[0], hits[1], hits[2], z_ref)
    assert pa == pytest.approx(a, rel=1e-6)
    assert pb == pytest.approx(b, rel=1e-6)
    assert pc == pytest.approx(c, rel=1e-6)


def test_solve_parabola_degenerate_is_zero():
    h1 = Hit(id=1, x=1.0, z=8000.0, w=1.0)
    h2 = Hit(id=2, x=2.0, z=8000.0, w=1.0)
    h3 = Hit(id=3, x=3.0, z=9000.0, w=1.0)
    assert solve_parabola(h1, h2, h3, 8520.0) == (0.0, 0.0, 0.0)


def test_fit_straight_line():
    fitter = TrackFitter(SeedingConfig())
    track = SeedTrack(half=0, z_ref=0.0, hits=_line_hits())

    assert fitter.fit_with_outlier_removal(track)
    fitter.set_chi2(track)

    assert len(track.hits) == 5
    assert track.chi2 < 1e-6
    assert track.ndof == 2
    assert track.x(500.0) == pytest.approx(5.0, abs=1e-6)
    assert track.x_slope(0.0) == pytest.approx(0.01, abs=1e-9)


def test_fit_is_idempotent_at_solution():
    fitter = TrackFitter(SeedingConfig())
    track = SeedTrack(half=0, z_ref=0.0, hits=_line_hits())
    assert fitter.fit(track)
    before = (track.ax, track.bx, track.cx)
    assert fitter.fit(track)
    after = (track.ax, track.bx, track.cx)
    assert np.allclose(before, after, atol=1e-9)


def test_fit_empty_track_fails():
    fitter = TrackFitter(SeedingConfig())
    assert not fitter.fit(SeedTrack(half=0, z_ref=8520.0))


def test_fit_recovers_both_views():
    geometry = DetectorGeometry.default()
    truth = dict(ax=120.0, bx=0.08, cx=3e-7, ay=420.0, by=0.05)
    hits = _event_hits(geometry, w=1e4, **truth)
    fitter = TrackFitter(SeedingConfig())
    track = SeedTrack(half=0, z_ref=geometry.z_reference, hits=hits)

    ok = False
    for _ in range(30):
        ok = fitter.fit(track)
        if ok:
            break
    assert ok
    assert track.ax == pytest.approx(truth["ax"], abs=0.05)
    assert track.bx == pytest.approx(truth["bx"], abs=1e-4)
    assert track.ay == pytest.approx(truth["ay"], abs=1.0)
    assert track.by == pytest.approx(truth["by"], abs=1e-3)

    fitter.set_chi2(track)
    assert track.ndof == 12 - 5


def test_outlier_is_removed():
    geometry = DetectorGeometry.default()
    hits = [Hit(id=i + 1, x=50.0 + 0.1 * lay.z, z=lay.z, w=100.0) for i, lay in enumerate(geometry.layers)]
    outlier = hits[5]
    outlier.x += 5.0
    fitter = TrackFitter(SeedingConfig())
    track = SeedTrack(half=0, z_ref=geometry.z_reference, hits=hits)

    assert not fitter.fit(track)
    assert fitter.fit_with_outlier_removal(track)
    assert len(track.hits) == 11
    assert outlier.id not in track.hit_ids


def test_outlier_removal_is_bounded():
    rng = np.random.default_rng(7)
    zs = [7826.1, 8035.9, 8508.1, 8717.9, 9193.1, 9402.9, 9500.0, 9600.0]
    hits = [Hit(id=i, x=float(x), z=z, w=100.0) for i, (z, x) in enumerate(zip(zs, rng.uniform(-1000, 1000, len(zs))))]
    fitter = TrackFitter(SeedingConfig())
    track = SeedTrack(half=0, z_ref=8520.0, hits=hits)

    calls = []
    inner = fitter.remove_worst_and_refit

    def counting(t):
        calls.append(len(t.hits))
        return inner(t)

    fitter.remove_worst_and_refit = counting
    fitter.fit_with_outlier_removal(track, min_hits=3)

    assert len(calls) <= len(hits) - 3
    assert len(track.hits) >= 3


def test_set_chi2_ndof():
    geometry = DetectorGeometry.default()
    hits = _event_hits(geometry, 0.0, 0.1, 0.0, 100.0, 0.02)
    fitter = TrackFitter(SeedingConfig())

    x_only = SeedTrack(half=0, z_ref=geometry.z_reference, hits=[h for h in hits if h.dxdy == 0.0])
    fitter.set_chi2(x_only)
    assert x_only.ndof == 3

    full = SeedTrack(half=0, z_ref=geometry.z_reference, hits=hits[:11])
    fitter.set_chi2(full)
    assert full.ndof == 11 - 5

    tiny = SeedTrack(half=0, z_ref=geometry.z_reference, hits=hits[:1])
    fitter.set_chi2(tiny)
    assert tiny.chi2_per_dof == float("inf")
