import sys
from pathlib import Path

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from seeding_reco.config import SeedingConfig
from seeding_reco.data import build_pool
from seeding_reco.hit_pool import Hit
from seeding_reco.stereo import StereoExtender, count_planes
from seeding_reco.x_projections import XProjectionFinder


def _projection(geometry, pool, half):
    config = SeedingConfig()
    tracks = XProjectionFinder(geometry, config).find(pool, half)
    assert len(tracks) == 1
    return tracks[0]


def test_count_planes():
    hits = [Hit(id=i, x=0.0, z=0.0, w=1.0, plane=p) for i, p in enumerate([1, 2, 2, 5, 9])]
    assert count_planes(hits) == 4
    assert count_planes([]) == 0


def test_extension_adds_stereo_hits(geometry, make_event):
    hits = make_event([dict(half=0, x0=50.0, tx=0.1, ty=0.05)])
    pool = build_pool(hits, geometry)
    x_track = _projection(geometry, pool, 0)

    tracks = StereoExtender(geometry, SeedingConfig()).extend(pool, 0, [x_track])

    assert len(tracks) == 1
    t = tracks[0]
    assert t is not x_track
    assert len(x_track.hits) == 6
    assert 10 <= len(t.hits) <= 11
    assert t.has_stereo
    assert sum(1 for h in t.hits if h.dxdy == 0.0) == 6
    assert t.ndof == len(t.hits) - 5
    assert t.y_slope() == pytest.approx(0.05, abs=5e-3)
    assert t.y(geometry.z_reference) == pytest.approx(0.05 * geometry.z_reference, abs=5.0)


def test_collect_sets_coord(geometry, make_event):
    hits = make_event([dict(half=1, x0=-40.0, tx=-0.12, ty=-0.08)])
    pool = build_pool(hits, geometry)
    x_track = _projection(geometry, pool, 1)

    stereo = StereoExtender(geometry, SeedingConfig()).collect(pool, 1, x_track)

    assert len(stereo) == 6
    assert all(h.is_stereo for h in stereo)
    # coord estimates -y/z
    for h in stereo:
        assert h.coord == pytest.approx(0.08, abs=1e-6)
    assert [h.coord for h in stereo] == sorted(h.coord for h in stereo)


def test_wrong_side_hits_are_cut(geometry, make_event):
    # stereo hits of a y < 0 particle registered in the upper half
    x_hits = make_event([dict(half=0, x0=50.0, tx=0.1, ty=0.05, layers=geometry.x_layers)])
    wrong = make_event([dict(half=0, x0=50.0, tx=0.1, ty=-0.05, layers=geometry.stereo_layers)])
    wrong["hit_id"] += len(x_hits)
    pool = build_pool(pd.concat([x_hits, wrong], ignore_index=True), geometry)
    x_track = _projection(geometry, pool, 0)
    extender = StereoExtender(geometry, SeedingConfig())

    assert extender.collect(pool, 0, x_track) == []
    assert extender.extend(pool, 0, [x_track]) == []


def test_five_stereo_hits_do_not_extend(geometry, make_event):
    layers = geometry.x_layers + geometry.stereo_layers[:5]
    hits = make_event([dict(half=0, x0=50.0, tx=0.1, ty=0.05, layers=layers)])
    pool = build_pool(hits, geometry)
    x_track = _projection(geometry, pool, 0)
    extender = StereoExtender(geometry, SeedingConfig())

    assert len(extender.collect(pool, 0, x_track)) == 5
    assert extender.extend(pool, 0, [x_track]) == []


def test_invalid_projection_is_skipped(geometry, make_event):
    hits = make_event([dict(half=0, x0=50.0, tx=0.1, ty=0.05)])
    pool = build_pool(hits, geometry)
    x_track = _projection(geometry, pool, 0)
    x_track.valid = False
    assert StereoExtender(geometry, SeedingConfig()).extend(pool, 0, [x_track]) == []


def test_separated_clusters_are_fitted_in_turn(geometry, make_event):
    # particle 2 leaves stereo hits only: two coord clusters of six hits
    hits = make_event([
        dict(half=0, x0=50.0, tx=0.1, ty=0.05),
        dict(half=0, x0=50.0, tx=0.1, ty=0.02, layers=geometry.stereo_layers),
    ])
    pool = build_pool(hits, geometry)
    x_track = _projection(geometry, pool, 0)
    extender = StereoExtender(geometry, SeedingConfig())
    assert len(extender.collect(pool, 0, x_track)) == 12

    windows, fitted = [], []
    fit_window = extender._fit_window

    def counting(base, window):
        windows.append(len(window))
        track = fit_window(base, window)
        fitted.append(track)
        return track

    extender._fit_window = counting
    tracks = extender.extend(pool, 0, [x_track])

    # a converged window moves the start past its hits, so no refit at b=1
    assert windows == [6, 5]
    assert all(t is not None for t in fitted)
    assert [len(t.hits) for t in fitted] == [12, 11]

    assert len(tracks) == 1
    best = tracks[0]
    assert best is fitted[0]
    assert not fitted[1].valid
    pid = hits.set_index("hit_id")["particle_id"]
    assert {int(pid[h.id]) for h in best.hits} == {1}
    assert best.y_slope() == pytest.approx(0.05, abs=5e-3)
