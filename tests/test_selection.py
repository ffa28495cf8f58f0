import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from seeding_reco.hit_pool import Hit
from seeding_reco.seed_track import SeedTrack
from seeding_reco.selection import count_common_hits, keep_best, remove_clones

HITS = {i: Hit(id=i, x=float(i), z=8000.0 + i, w=1.0) for i in range(1, 20)}


def _track(ids, chi2=1.0, ndof=1):
    return SeedTrack(half=0, z_ref=8520.0, hits=[HITS[i] for i in ids], chi2=chi2, ndof=ndof)


def setup_function():
    for h in HITS.values():
        h.used = False


def test_count_common_hits():
    assert count_common_hits(_track([1, 2, 3, 4]), _track([3, 4, 5])) == 2
    assert count_common_hits(_track([1, 2]), _track([5, 6])) == 0
    assert count_common_hits(_track([4, 1, 3]), _track([3, 1, 4])) == 3


def test_smaller_clone_is_dropped():
    five = _track([1, 2, 3, 4, 7])
    six = _track([1, 2, 3, 4, 5, 6])

    kept = remove_clones([five, six], full_size=6)

    assert kept == [six]
    assert not five.valid


def test_two_shared_hits_are_not_clones():
    a = _track([1, 2, 3, 4, 5, 6])
    b = _track([1, 2, 9, 10, 11, 12])
    kept = remove_clones([a, b], full_size=6)
    assert len(kept) == 2


def test_equal_size_lower_chi2_wins():
    worse = _track([1, 2, 3, 4, 5], chi2=6.0, ndof=2)
    better = _track([1, 2, 3, 4, 8], chi2=2.0, ndof=2)
    kept = remove_clones([worse, better], full_size=6)
    assert kept == [better]


def test_full_tie_keeps_first_seen():
    first = _track([1, 2, 3, 4, 5], chi2=2.0, ndof=2)
    second = _track([1, 2, 3, 4, 9], chi2=2.0, ndof=2)
    kept = remove_clones([first, second], full_size=6)
    assert kept == [first]


def test_candidate_on_used_hits_is_dropped():
    for i in (1, 2):
        HITS[i].used = True
    partial = _track([1, 2, 10, 11, 12])
    full = _track([1, 2, 3, 4, 5, 6])
    one_used = _track([1, 13, 14, 15, 16])

    kept = remove_clones([partial, full, one_used], full_size=6)

    assert full in kept
    assert one_used in kept
    assert not partial.valid


def test_survivors_share_at_most_two_hits():
    cands = [
        _track([1, 2, 3, 4, 5, 6]),
        _track([1, 2, 3, 7, 8]),
        _track([7, 8, 9, 10, 11]),
        _track([9, 10, 11, 12, 13, 14]),
        _track([1, 12, 15, 16, 17]),
    ]
    kept = remove_clones(cands, full_size=6)
    for i, t1 in enumerate(kept):
        for t2 in kept[i + 1:]:
            assert count_common_hits(t1, t2) <= 2


def test_keep_best():
    short = _track([1, 2, 3, 4, 5, 6, 7, 8, 9, 10], chi2=1.0)
    long_bad = _track(range(1, 12), chi2=50.0)
    long_good = _track(range(2, 13), chi2=10.0)
    long_tie = _track(range(3, 14), chi2=10.0)

    best = keep_best([short, long_bad, long_good, long_tie])

    assert best is long_good
    assert not short.valid and not long_bad.valid and not long_tie.valid


def test_keep_best_empty():
    assert keep_best([]) is None
