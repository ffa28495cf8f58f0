from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from seeding_reco.seed_track import SeedTrack

TRACK_COLUMNS = (
    "track_id", "half", "x", "y", "z", "tx", "ty",
    "chi2", "ndof", "chi2_per_dof", "n_hits", "hit_ids",
)


def tracks_to_frame(tracks: Sequence[SeedTrack], z: float) -> pd.DataFrame:
    r"""
    One row per track with its state at ``z`` and fit quality.

    ``hit_ids`` is a space-separated string so that the frame round-trips
    through CSV; ``track_id`` is the position in ``tracks`` (from 1).
    """
    rows: List[dict] = []
    for i, t in enumerate(tracks, start=1):
        s = t.state(z)
        rows.append({
            "track_id": i,
            "half": t.half,
            "x": s.x, "y": s.y, "z": s.z, "tx": s.tx, "ty": s.ty,
            "chi2": t.chi2,
            "ndof": t.ndof,
            "chi2_per_dof": t.chi2_per_dof,
            "n_hits": len(t.hits),
            "hit_ids": " ".join(str(h) for h in t.hit_ids),
        })
    return pd.DataFrame(rows, columns=list(TRACK_COLUMNS))


def make_submission(tracks: Sequence[SeedTrack]) -> pd.DataFrame:
    """
    Hit-to-track assignment of the seeding output.

    A hit on several tracks stays with the first one (tracks are numbered
    from 1 in output order).
    """
    hit_ids: List[int] = []
    track_ids: List[int] = []
    for i, t in enumerate(tracks, start=1):
        hit_ids.extend(t.hit_ids)
        track_ids.extend([i] * len(t.hits))
    sub = pd.DataFrame({
        "hit_id": np.asarray(hit_ids, dtype=np.int64),
        "track_id": np.asarray(track_ids, dtype=np.int64),
    })
    return sub.drop_duplicates("hit_id", keep="first").reset_index(drop=True)


def drop_hits(
    hits: pd.DataFrame,
    fraction: float,
    *,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    r"""
    Remove each hit independently with probability ``fraction``.

    Used to emulate detector inefficiency on an event; the expected number
    of removed rows is :math:`p\,N`.

    Raises
    ------
    ValueError
        If ``fraction`` is outside ``[0, 1]``.
    """
    if not (0.0 <= fraction <= 1.0):
        raise ValueError("fraction must be in [0,1].")
    if fraction == 0.0 or hits.empty:
        return hits.copy()
    rng = np.random.default_rng() if rng is None else rng
    keep = rng.random(len(hits)) >= fraction
    return hits.loc[keep].reset_index(drop=True)
