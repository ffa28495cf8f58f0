import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from seeding_reco.geometry import DetectorGeometry


def track_rows(geometry, pid, half, x0, tx, ty, curvature=0.0, layers=None, w=100.0):
    """Noiseless hits of one particle on the requested layers."""
    rows = []
    layers = range(geometry.n_layers) if layers is None else layers
    for layer in layers:
        lay = geometry.layers[layer]
        x_true = x0 + tx * lay.z + curvature * (lay.z - geometry.z_reference) ** 2
        y_true = ty * lay.z
        rows.append({
            "zone": geometry.zone_index(layer, half),
            "x": x_true - lay.dxdy * y_true,
            "z": lay.z,
            "w": w,
            "particle_id": pid,
        })
    return rows


@pytest.fixture
def geometry():
    return DetectorGeometry.default()


@pytest.fixture
def make_event(geometry):
    """Factory: list of particle dicts -> hits frame with ids 1..N."""

    def _make(particles, noise=()):
        rows = []
        for pid, p in enumerate(particles, start=1):
            rows.extend(track_rows(geometry, pid, **p))
        for zone, x in noise:
            rows.append({"zone": zone, "x": x, "z": geometry.zone_z(zone), "w": 100.0, "particle_id": 0})
        frame = pd.DataFrame(rows, columns=["zone", "x", "z", "w", "particle_id"])
        frame.insert(0, "hit_id", np.arange(1, len(frame) + 1, dtype=np.int64))
        return frame

    return _make


@pytest.fixture
def four_tracks():
    """Four well separated particles, two per half."""
    return [
        dict(half=0, x0=0.0, tx=0.05, ty=0.05),
        dict(half=0, x0=0.0, tx=0.2, ty=0.1),
        dict(half=1, x0=0.0, tx=-0.1, ty=-0.05),
        dict(half=1, x0=0.0, tx=-0.25, ty=-0.1),
    ]
