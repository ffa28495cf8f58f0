from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from seeding_reco.seed_track import SeedTrack


def match_tracks(tracks: Sequence[SeedTrack], hits: pd.DataFrame,
                 min_fraction: float = 0.7) -> pd.DataFrame:
    r"""
    Truth-match every track to its majority particle.

    A track is matched to particle :math:`p` when

    .. math::

        \frac{|\{h \in T : \text{pid}(h) = p\}|}{|T|} \;\ge\; f_\min,
        \qquad p \neq 0,

    with :math:`f_\min =` ``min_fraction``. Noise hits carry ``particle_id = 0``.

    Returns
    -------
    pandas.DataFrame
        One row per track: ``track_id`` (from 1), ``particle_id`` (majority,
        0 if none), ``n_hits``, ``n_majority``, ``purity``, ``matched``.

    Raises
    ------
    KeyError
        If ``hits`` lacks ``hit_id`` or ``particle_id``.
    """
    if not {"hit_id", "particle_id"} <= set(hits.columns):
        raise KeyError("hits must contain 'hit_id' and 'particle_id' columns.")
    pid_of = pd.Series(hits["particle_id"].to_numpy(dtype=np.int64),
                       index=hits["hit_id"].to_numpy(dtype=np.int64))

    rows = []
    for i, t in enumerate(tracks, start=1):
        ids = np.asarray(t.hit_ids, dtype=np.int64)
        pids = pid_of.reindex(ids).fillna(0).to_numpy(dtype=np.int64)
        real = pids[pids != 0]
        if real.size:
            values, counts = np.unique(real, return_counts=True)
            k = int(np.argmax(counts))
            pid, n_major = int(values[k]), int(counts[k])
        else:
            pid, n_major = 0, 0
        n = int(ids.size)
        purity = n_major / n if n else 0.0
        rows.append({
            "track_id": i,
            "particle_id": pid,
            "n_hits": n,
            "n_majority": n_major,
            "purity": purity,
            "matched": pid != 0 and purity >= min_fraction,
        })
    return pd.DataFrame(rows, columns=["track_id", "particle_id", "n_hits",
                                       "n_majority", "purity", "matched"])


def compute_metrics(
    tracks: Sequence[SeedTrack],
    hits: pd.DataFrame,
    *,
    min_fraction: float = 0.7,
    min_planes: int = 9,
    names: Optional[Iterable[str]] = None,
) -> Dict[str, float]:
    r"""
    Seeding performance against truth.

    A particle is *reconstructible* if its hits cover at least ``min_planes``
    distinct zones. With :math:`M` the matched tracks
    (:func:`match_tracks`):

    - **efficiency** (%): reconstructible particles with at least one
      matched track, over all reconstructible particles;
    - **ghost_rate** (%): unmatched tracks over all tracks;
    - **clone_rate** (%): matched tracks beyond the first per particle,
      over :math:`|M|`;
    - **purity** (%): mean majority fraction over :math:`M`;
    - **hit_efficiency** (%): mean fraction of a matched particle's hits
      found on its track;
    - **n_tracks**, **n_matched**, **n_reconstructible**: counts.

    Rates are ``0`` when their denominator is empty.

    Parameters
    ----------
    tracks : sequence of SeedTrack
    hits : pandas.DataFrame
        Needs ``hit_id``, ``particle_id`` and ``zone``.
    min_fraction : float, optional
        Matching threshold, default 70 %.
    min_planes : int, optional
    names : iterable of str, optional
        Subset of metric names to return.
    """
    if "zone" not in hits.columns:
        raise KeyError("hits must contain a 'zone' column.")
    matches = match_tracks(tracks, hits, min_fraction=min_fraction)

    truth = hits.loc[hits["particle_id"] != 0, ["particle_id", "zone"]]
    planes = truth.groupby("particle_id", sort=False)["zone"].nunique()
    n_hits_truth = truth.groupby("particle_id", sort=False).size()
    reconstructible = set(planes.index[planes >= min_planes].tolist())

    matched = matches.loc[matches["matched"].astype(bool)]
    found = set(matched["particle_id"].tolist())
    n_tracks = len(matches)
    n_matched = len(matched)

    eff = 100.0 * len(found & reconstructible) / len(reconstructible) if reconstructible else 0.0
    ghost = 100.0 * (n_tracks - n_matched) / n_tracks if n_tracks else 0.0
    clone = 100.0 * (n_matched - len(found)) / n_matched if n_matched else 0.0
    purity = 100.0 * float(matched["purity"].mean()) if n_matched else 0.0
    if n_matched:
        denom = n_hits_truth.reindex(matched["particle_id"]).to_numpy(dtype=np.float64)
        hit_eff = 100.0 * float(np.mean(matched["n_majority"].to_numpy(dtype=np.float64) / denom))
    else:
        hit_eff = 0.0

    out = {
        "efficiency": eff,
        "ghost_rate": ghost,
        "clone_rate": clone,
        "purity": purity,
        "hit_efficiency": hit_eff,
        "n_tracks": float(n_tracks),
        "n_matched": float(n_matched),
        "n_reconstructible": float(len(reconstructible)),
    }
    if names is not None:
        return {k: out[k] for k in names if k in out}
    return out


def unpack(metrics: Mapping[str, float], *keys: str) -> Tuple[float, ...]:
    """Values of ``keys`` in order; missing keys give ``nan``."""
    return tuple(float(metrics.get(k, float("nan"))) for k in keys)
