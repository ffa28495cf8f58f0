from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from seeding_reco.fit_kernels import count_common_sorted
from seeding_reco.seed_track import SeedTrack

logger = logging.getLogger(__name__)


def count_common_hits(t1: SeedTrack, t2: SeedTrack) -> int:
    """Number of hit ids shared by two tracks (merge walk over id-sorted hits)."""
    return int(count_common_sorted(t1.hit_arrays()[4], t2.hit_arrays()[4]))


def _better_clone(t1: SeedTrack, t2: SeedTrack) -> bool:
    """``True`` if ``t1`` survives against its clone ``t2``; ``t1`` was seen first."""
    if len(t1.hits) != len(t2.hits):
        return len(t1.hits) > len(t2.hits)
    return t1.chi2_per_dof <= t2.chi2_per_dof


def remove_clones(candidates: List[SeedTrack], full_size: int, max_used_hits: int = 1,
                  max_common: int = 2) -> List[SeedTrack]:
    r"""
    Invalidate duplicate x projections in place.

    Candidates are stably sorted by decreasing hit count, then walked in that
    order:

    1. A candidate that is not full (``len(hits) != full_size``) and already
       holds more than ``max_used_hits`` hits consumed by a full track is
       invalidated.
    2. Otherwise it is compared with every later valid candidate; two tracks
       sharing more than ``max_common`` hit ids are clones. The one with more
       hits survives; on equal size the lower :math:`\chi^2/\text{ndof}`
       survives; a remaining tie keeps the one seen first.

    The overlap count is a single merge walk over the id-sorted hit lists,
    so one comparison costs :math:`\mathcal{O}(n_1+n_2)`.

    Parameters
    ----------
    candidates : list of SeedTrack
        Re-ordered in place (stable, by size).
    full_size : int
        Hit count of a track with one hit on every x layer of the half.
    max_used_hits : int
    max_common : int

    Returns
    -------
    list of SeedTrack
        The surviving (valid) candidates, in ranking order.
    """
    candidates.sort(key=lambda t: len(t.hits), reverse=True)
    n = len(candidates)
    n_used_drop = 0
    n_clone_drop = 0
    for i in range(n):
        t1 = candidates[i]
        if not t1.valid:
            continue
        if len(t1.hits) != full_size:
            n_used = sum(1 for h in t1.hits if h.used)
            if n_used > max_used_hits:
                t1.valid = False
                n_used_drop += 1
                continue
        for j in range(i + 1, n):
            t2 = candidates[j]
            if not t2.valid:
                continue
            if count_common_hits(t1, t2) <= max_common:
                continue
            if _better_clone(t1, t2):
                t2.valid = False
            else:
                t1.valid = False
            n_clone_drop += 1

    kept = [t for t in candidates if t.valid]
    logger.debug("remove_clones: %d in, %d used-hit drops, %d clone drops, %d kept",
                 n, n_used_drop, n_clone_drop, len(kept))
    return kept


def keep_best(candidates: Sequence[SeedTrack]) -> Optional[SeedTrack]:
    """
    Best of several extensions of one x projection: more hits wins, then
    lower total chi2; on a full tie the earlier candidate is kept.
    """
    best: Optional[SeedTrack] = None
    for track in candidates:
        if not track.valid:
            continue
        if best is None:
            best = track
            continue
        if len(track.hits) > len(best.hits) or (
                len(track.hits) == len(best.hits) and track.chi2 < best.chi2):
            best.valid = False
            best = track
        else:
            track.valid = False
    return best
