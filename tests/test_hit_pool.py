import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from seeding_reco.geometry import DetectorGeometry
from seeding_reco.hit_pool import Hit, HitPool, Zone


def _random_zone(n=200, seed=3):
    rng = np.random.default_rng(seed)
    xs = np.round(rng.uniform(-100.0, 100.0, n), 1)  # rounding forces equal x values
    zone = Zone(index=0, plane=0, half=0, z=7826.1)
    zone.hits = [Hit(id=int(i), x=float(x), z=7826.1, w=1.0) for i, x in zip(rng.permutation(n), xs)]
    zone.sort_by_x()
    return zone


def test_window_matches_linear_scan():
    zone = _random_zone()
    xs = [h.x for h in zone.hits]
    for lo, hi in [(-5.0, 5.0), (xs[10], xs[40]), (-1000.0, -200.0), (99.0, 500.0), (xs[7], xs[7])]:
        expected = [h.id for h in zone.hits if lo <= h.x <= hi]
        assert [h.id for h in zone.hits_in_window(lo, hi)] == expected


def test_sort_by_x_is_deterministic():
    zone = _random_zone()
    first = [h.id for h in zone.hits]
    zone.sort_by_id()
    zone.sort_by_x()
    assert [h.id for h in zone.hits] == first
    assert all(a.x <= b.x for a, b in zip(zone.hits, zone.hits[1:]))


def test_window_requires_x_order():
    zone = _random_zone()
    zone.sort_by_id()
    with pytest.raises(ValueError):
        zone.hits_in_window(0.0, 1.0)
    with pytest.raises(ValueError):
        zone.lower_bound(0.0)


def test_lower_bound_id_requires_id_order():
    zone = _random_zone(n=20)
    with pytest.raises(ValueError):
        zone.lower_bound_id(3)
    zone.sort_by_id()
    i = zone.lower_bound_id(3)
    assert zone.hits[i].id == 3
    # ids 0..19: past the end and before the start
    assert zone.lower_bound_id(99) == len(zone.hits)
    assert zone.lower_bound_id(-1) == 0


def _frame():
    return pd.DataFrame({
        "hit_id": [10, 11, 12, 13, 14],
        "zone": [2, 0, 2, 1, 0],
        "x": [5.0, -3.0, 1.0, 7.0, -8.0],
        "w": [1.0, 1.0, 4.0, 1.0, 1.0],
    })


def test_from_frame_builds_zones():
    geometry = DetectorGeometry.default()
    pool = HitPool.from_frame(_frame(), geometry)

    assert len(pool) == 5
    assert len(pool.zones) == geometry.n_zones
    assert [h.id for h in pool.zone(0)] == [14, 11]
    assert [h.id for h in pool.zone(2)] == [12, 10]
    assert pool.zone(2).dxdy == pytest.approx(0.0874886635)
    assert pool.hit(12).plane == 1
    # z falls back to the zone depth
    assert pool.hit(13).z == pytest.approx(geometry.layers[0].z)
    assert len(pool.zones_of_half(1)) == geometry.n_layers


def test_from_frame_errors():
    geometry = DetectorGeometry.default()
    with pytest.raises(KeyError):
        HitPool.from_frame(_frame().drop(columns=["w"]), geometry)

    dup = _frame()
    dup.loc[1, "hit_id"] = 10
    with pytest.raises(ValueError):
        HitPool.from_frame(dup, geometry)

    bad = _frame()
    bad.loc[0, "zone"] = geometry.n_zones
    with pytest.raises(ValueError):
        HitPool.from_frame(bad, geometry)


def test_mark_used_restores_x_order():
    geometry = DetectorGeometry.default()
    pool = HitPool.from_frame(_frame(), geometry)

    assert pool.mark_used([12, 14, 999]) == 2
    assert pool.hit(12).used and pool.hit(14).used
    assert not pool.hit(10).used
    for zone in pool.zones:
        assert zone.order == "x"
    assert [h.id for h in pool.zone(0)] == [14, 11]
    assert pool.zone(0).hits_in_window(-10.0, 0.0)[0].id == 14

    # already used
    assert pool.mark_used([12]) == 0
    assert pool.n_used() == 2


def test_reset_clears_scratch_fields():
    geometry = DetectorGeometry.default()
    pool = HitPool.from_frame(_frame(), geometry)
    pool.mark_used([10, 11])
    pool.hit(13).coord = 0.3

    pool.reset()

    assert pool.n_used() == 0
    assert all(h.coord == 0.0 for h in pool.hits)


def test_add_hit_rejects_duplicates():
    geometry = DetectorGeometry.default()
    pool = HitPool(geometry, [Hit(id=1, x=0.0, z=7826.1, w=1.0)])
    with pytest.raises(ValueError):
        pool.add_hit(Hit(id=1, x=2.0, z=7826.1, w=1.0))
