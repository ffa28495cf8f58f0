__all__ = [
    "DetectorGeometry", "LayerGeometry",
    "SeedingConfig", "XSearchCase", "load_config", "deep_update",
    "Hit", "Zone", "HitPool",
    "SeedTrack", "TrackState",
    "TrackFitter", "solve_parabola",
    "XProjectionFinder", "StereoExtender", "HybridSeeding",
    "count_common_hits", "remove_clones", "keep_best",
    "load_hits", "build_pool", "simulate_event",
    "tracks_to_frame", "make_submission", "drop_hits",
    "compute_metrics", "match_tracks",
]

# Geometry & configuration
from .geometry import DetectorGeometry, LayerGeometry
from .config import SeedingConfig, XSearchCase, load_config, deep_update

# Data model
from .hit_pool import Hit, Zone, HitPool
from .seed_track import SeedTrack, TrackState

# Algorithm
from .fitter import TrackFitter, solve_parabola
from .selection import count_common_hits, remove_clones, keep_best
from .x_projections import XProjectionFinder
from .stereo import StereoExtender
from .seeding import HybridSeeding

# Data, output & metrics
from .data import load_hits, build_pool, simulate_event
from .utils import tracks_to_frame, make_submission, drop_hits
from .metrics import compute_metrics, match_tracks
