from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from seeding_reco.geometry import DetectorGeometry
from seeding_reco.hit_pool import HitPool

logger = logging.getLogger(__name__)

HIT_COLUMNS = ("hit_id", "zone", "x", "z", "w")


def load_hits(path: Union[str, Path], geometry: Optional[DetectorGeometry] = None) -> pd.DataFrame:
    r"""
    Read an event's hits table and normalize it to the pool schema.

    Accepted inputs are ``.csv`` and ``.parquet`` files with

    - ``hit_id`` and ``x`` (required),
    - the zone either directly (``zone``) or as ``layer`` + ``half``, with
      :math:`\text{zone} = n_\text{halves}\cdot\text{layer} + \text{half}`,
    - the weight either directly (``w``) or as a resolution ``sigma``, with
      :math:`w = 1/\sigma^2`,
    - optionally ``z`` (defaults to the zone depth) and ``particle_id``
      (truth, kept for the metrics).

    Parameters
    ----------
    path : str or pathlib.Path
    geometry : DetectorGeometry, optional
        Needed to map ``layer``/``half`` and to fill ``z``; defaults to
        :meth:`DetectorGeometry.default`.

    Returns
    -------
    pandas.DataFrame
        Columns ``hit_id, zone, x, z, w`` plus ``particle_id`` when present.

    Raises
    ------
    KeyError
        If a required column is missing.
    ValueError
        On an unsupported file type or non-positive ``sigma``/``w``.
    """
    geometry = DetectorGeometry.default() if geometry is None else geometry
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        raw = pd.read_csv(path)
    elif suffix in (".parquet", ".pq"):
        raw = pd.read_parquet(path)
    else:
        raise ValueError(f"Unsupported hits file type: {path.name} (expected .csv or .parquet)")

    for col in ("hit_id", "x"):
        if col not in raw.columns:
            raise KeyError(f"{path.name}: missing required column '{col}'")

    out = pd.DataFrame({
        "hit_id": raw["hit_id"].to_numpy(dtype=np.int64),
        "x": raw["x"].to_numpy(dtype=np.float64),
    })

    if "zone" in raw.columns:
        out["zone"] = raw["zone"].to_numpy(dtype=np.int64)
    elif {"layer", "half"} <= set(raw.columns):
        out["zone"] = (geometry.n_halves * raw["layer"].to_numpy(dtype=np.int64)
                       + raw["half"].to_numpy(dtype=np.int64))
    else:
        raise KeyError(f"{path.name}: need 'zone' or both 'layer' and 'half'")

    if "w" in raw.columns:
        w = raw["w"].to_numpy(dtype=np.float64)
    elif "sigma" in raw.columns:
        sigma = raw["sigma"].to_numpy(dtype=np.float64)
        if (sigma <= 0.0).any():
            raise ValueError(f"{path.name}: 'sigma' must be positive")
        w = 1.0 / (sigma * sigma)
    else:
        raise KeyError(f"{path.name}: need 'w' or 'sigma'")
    if (w <= 0.0).any():
        raise ValueError(f"{path.name}: weights must be positive")
    out["w"] = w

    zones = out["zone"].to_numpy()
    if zones.size and (zones.min() < 0 or zones.max() >= geometry.n_zones):
        raise ValueError(f"{path.name}: zone index outside [0, {geometry.n_zones})")
    if "z" in raw.columns:
        out["z"] = raw["z"].to_numpy(dtype=np.float64)
    else:
        zone_z = np.array([geometry.zone_z(i) for i in range(geometry.n_zones)], dtype=np.float64)
        out["z"] = zone_z[zones]

    if "particle_id" in raw.columns:
        out["particle_id"] = raw["particle_id"].to_numpy(dtype=np.int64)

    cols = list(HIT_COLUMNS) + (["particle_id"] if "particle_id" in out.columns else [])
    logger.info("Loaded %d hits from %s", len(out), path)
    return out[cols]


def build_pool(hits: pd.DataFrame, geometry: DetectorGeometry) -> HitPool:
    """Hit pool of one event (thin wrapper over :meth:`HitPool.from_frame`)."""
    pool = HitPool.from_frame(hits, geometry)
    logger.debug("Built pool: %d hits in %d zones", len(pool), len(pool.zones))
    return pool


def simulate_event(
    geometry: DetectorGeometry,
    n_tracks: int = 20,
    *,
    rng: Optional[np.random.Generator] = None,
    sigma: float = 0.1,
    smear: bool = True,
    inefficiency: float = 0.0,
    n_noise_hits: int = 0,
    tx_range: float = 0.3,
    ty_range: tuple = (0.01, 0.2),
    max_curvature: float = 5e-7,
    max_x0: float = 200.0,
    noise_x_range: float = 3000.0,
) -> pd.DataFrame:
    r"""
    Toy event of curved tracks from near the origin.

    Each particle lives in one half (``y > 0`` for half 0, ``y < 0`` for
    half 1) and follows

    .. math::

        x(z) &= x_0 + t_x\,z + c\,(z - z_\text{ref})^2, \\
        y(z) &= t_y\,z,

    with :math:`c` bending towards the beam axis. A plane with stereo slope
    :math:`dx/dy` measures :math:`x(z) - (dx/dy)\,y(z)`, optionally smeared
    by :math:`\mathcal{N}(0, \sigma^2)`. Every hit has weight
    :math:`1/\sigma^2`.

    Parameters
    ----------
    geometry : DetectorGeometry
    n_tracks : int
    rng : numpy.random.Generator, optional
    sigma : float
        Single-hit resolution (mm).
    smear : bool
        If ``False`` hits sit exactly on the trajectory.
    inefficiency : float
        Probability of losing each track hit, in ``[0, 1)``.
    n_noise_hits : int
        Uniform random hits added per zone (``particle_id = 0``).
    tx_range, ty_range, max_curvature, max_x0, noise_x_range : float
        Generation ranges.

    Returns
    -------
    pandas.DataFrame
        Columns ``hit_id, zone, x, z, w, particle_id``; hit ids are a random
        permutation so that id order carries no truth information.

    Raises
    ------
    ValueError
        If ``inefficiency`` is outside ``[0, 1)`` or ``sigma`` is not positive.
    """
    if not (0.0 <= inefficiency < 1.0):
        raise ValueError("inefficiency must be in [0, 1).")
    if sigma <= 0.0:
        raise ValueError("sigma must be positive.")
    rng = np.random.default_rng() if rng is None else rng

    n_layers = geometry.n_layers
    layer_z = np.array([lay.z for lay in geometry.layers], dtype=np.float64)
    layer_dxdy = np.array([lay.dxdy for lay in geometry.layers], dtype=np.float64)
    z_ref = geometry.z_reference
    w = 1.0 / (sigma * sigma)

    zones, xs, zs, pids = [], [], [], []
    for pid in range(1, n_tracks + 1):
        half = int(rng.integers(min(geometry.n_halves, 2)))
        x0 = rng.uniform(-max_x0, max_x0)
        tx = rng.uniform(-tx_range, tx_range)
        c = -np.sign(tx) * rng.uniform(0.0, max_curvature)
        ty = rng.uniform(*ty_range) * (1.0 if half == 0 else -1.0)

        x_true = x0 + tx * layer_z + c * (layer_z - z_ref) ** 2
        y_true = ty * layer_z
        x_meas = x_true - layer_dxdy * y_true
        if smear:
            x_meas = x_meas + rng.normal(0.0, sigma, size=n_layers)
        keep = rng.random(n_layers) >= inefficiency if inefficiency > 0.0 else np.ones(n_layers, dtype=bool)

        layers = np.flatnonzero(keep)
        zones.append(geometry.n_halves * layers + half)
        xs.append(x_meas[keep])
        zs.append(layer_z[keep])
        pids.append(np.full(layers.size, pid, dtype=np.int64))

    if n_noise_hits > 0:
        for zone in range(geometry.n_zones):
            zones.append(np.full(n_noise_hits, zone, dtype=np.int64))
            xs.append(rng.uniform(-noise_x_range, noise_x_range, size=n_noise_hits))
            zs.append(np.full(n_noise_hits, geometry.zone_z(zone)))
            pids.append(np.zeros(n_noise_hits, dtype=np.int64))

    if zones:
        zone_arr = np.concatenate(zones).astype(np.int64)
        x_arr = np.concatenate(xs).astype(np.float64)
        z_arr = np.concatenate(zs).astype(np.float64)
        pid_arr = np.concatenate(pids).astype(np.int64)
    else:
        zone_arr = np.empty(0, dtype=np.int64)
        x_arr = z_arr = np.empty(0, dtype=np.float64)
        pid_arr = np.empty(0, dtype=np.int64)

    hit_ids = rng.permutation(zone_arr.size).astype(np.int64) + 1
    hits = pd.DataFrame({
        "hit_id": hit_ids,
        "zone": zone_arr,
        "x": x_arr,
        "z": z_arr,
        "w": np.full(zone_arr.size, w),
        "particle_id": pid_arr,
    })
    logger.info("Simulated %d tracks, %d hits (%d noise)", n_tracks, len(hits),
                int((pid_arr == 0).sum()))
    return hits
