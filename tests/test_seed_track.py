import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from seeding_reco.hit_pool import Hit
from seeding_reco.seed_track import SeedTrack


def _track():
    hits = [
        Hit(id=4, x=10.0, z=8000.0, w=100.0),
        Hit(id=2, x=55.0, z=8100.0, w=25.0, dxdy=0.0875),
        Hit(id=9, x=-20.0, z=8200.0, w=4.0, dxdy=-0.0875),
    ]
    return SeedTrack(half=0, z_ref=8520.0, hits=hits, ax=30.0, bx=0.1, cx=1e-6, ay=400.0, by=0.05)


def test_hit_x_at_y():
    h = Hit(id=1, x=5.0, z=8000.0, w=1.0, dxdy=0.0875)
    assert h.x_at_y(100.0) == pytest.approx(5.0 + 8.75)
    assert Hit(id=2, x=5.0, z=8000.0, w=1.0).x_at_y(100.0) == 5.0


def test_scalar_residuals_match_vectorized():
    t = _track()
    assert t.hit_ids == [2, 4, 9]
    d = np.array([t.distance(h) for h in t.hits])
    assert d == pytest.approx(t.residuals())
    assert np.array([t.hit_chi2(h) for h in t.hits]) == pytest.approx(t.chi2_contributions())

    stereo = t.hits[0]
    assert t.delta_y(stereo) == pytest.approx(t.distance(stereo) / stereo.dxdy)
    # moving the track by delta_y along y puts it on the hit's line
    t.ay -= t.delta_y(stereo)
    assert t.distance(stereo) == pytest.approx(0.0, abs=1e-9)


def test_add_and_remove_hits():
    t = _track()
    assert not t.add_hit(Hit(id=4, x=0.0, z=8000.0, w=1.0))
    assert t.add_hit(Hit(id=3, x=0.0, z=8050.0, w=1.0))
    assert t.hit_ids == [2, 3, 4, 9]
    assert t.hit_arrays()[4].tolist() == [2, 3, 4, 9]
    removed = t.remove_hit(0)
    assert removed.id == 2
    assert t.hit_arrays()[4].tolist() == [3, 4, 9]


def test_copy_is_independent():
    t = _track()
    c = t.copy()
    c.add_hit(Hit(id=1, x=0.0, z=7900.0, w=1.0))
    c.update_parameters(1.0, 0.0, 0.0, 0.0, 0.0)
    assert t.hit_ids == [2, 4, 9]
    assert c.ax == t.ax + 1.0
    assert c.hits[1] is t.hits[0]
