#!/usr/bin/env python3
r"""
Stand-alone seeding runner (headless-safe).

Loads an event from a hits table (or simulates one), builds the hit pool,
runs :class:`~seeding_reco.seeding.HybridSeeding` on both halves, writes the
tracks, and, when the event carries truth (``particle_id``), reports the
seeding efficiency, ghost and clone rates.

Conventions
-----------
Positions are in millimetres. The bending-plane trajectory is the parabola

.. math::

    x(z) = a_x + b_x\,(z - z_\text{ref}) + c_x\,(z - z_\text{ref})^2,

and the non-bending one the line :math:`y(z) = a_y + b_y\,(z - z_\text{ref})`.
Output states are evaluated at ``state_z`` of the seeding config.

CLI overview
------------
See :func:`build_parser`. Typical usage:

.. code-block:: bash

   seeding-reco --simulate 50 --seed 1 --plot
   seeding-reco -f event.csv --config config.json --out tracks.csv
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Sequence

import numpy as np

import seeding_reco.data as sr_data
import seeding_reco.metrics as sr_metrics
from seeding_reco.config import SeedingConfig, deep_update, load_config
from seeding_reco.geometry import DetectorGeometry
from seeding_reco.profiling import prof
from seeding_reco.seeding import HybridSeeding
from seeding_reco.utils import drop_hits, make_submission, tracks_to_frame


def build_parser() -> argparse.ArgumentParser:
    r"""
    Command-line interface of the seeding runner.

    Notes
    -----
    Exactly one input is used: ``--file`` if given, else a simulated event
    of ``--simulate`` tracks. ``--x-only`` and ``--parallel`` override the
    corresponding config entries.
    """
    p = argparse.ArgumentParser(description="Run stand-alone seeding on one event.")
    p.add_argument("-f", "--file", type=str, default=None,
                   help="Hits table (.csv or .parquet). If omitted, an event is simulated.")
    p.add_argument("--simulate", type=int, default=50,
                   help="Number of tracks to simulate when no --file is given (default: 50).")
    p.add_argument("--seed", type=int, default=None,
                   help="Random seed for simulation and hit dropping.")
    p.add_argument("--noise-hits", type=int, default=0,
                   help="Random noise hits per zone in the simulated event (default: 0).")
    p.add_argument("--drop", type=float, default=0.0,
                   help="Drop each input hit with this probability (default: 0).")
    p.add_argument("--config", type=str, default=None,
                   help="JSON config with 'seeding' and 'geometry' blocks.")
    p.add_argument("--x-only", action="store_true", default=None,
                   help="Skip the stereo extension.")
    p.add_argument("--parallel", action="store_true", default=None,
                   help="Process the two halves on a thread pool.")
    p.add_argument("--out", type=str, default=None,
                   help="Write the tracks table (CSV) to this path.")
    p.add_argument("--submission", type=str, default=None,
                   help="Write the hit_id -> track_id table (CSV) to this path.")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Show event displays and the timing summary (default: False).")
    p.add_argument("--no-plot", dest="plot", action="store_false",
                   help="Disable plotting.")
    p.add_argument("--profile", action="store_true", default=False,
                   help="Enable cProfile around the seeding phase.")
    p.add_argument("--profile-out", type=str, default=None,
                   help="If set, write pstats text to this file.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging: ``DEBUG`` if ``verbose`` else ``INFO``,
    format ``'%(asctime)s | %(levelname)-8s | %(message)s'``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )
    # numba's compiler logs are noise at DEBUG
    logging.getLogger("numba").setLevel(logging.WARNING)


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Force the non-interactive ``Agg`` backend when plotting is disabled.

    Must run before anything imports :mod:`matplotlib.pyplot`.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)
    import matplotlib.pyplot as _plt
    _plt.ioff()
    _plt.show = lambda *a, **k: None  # type: ignore[assignment]


def resolve_settings(args: argparse.Namespace,
                     file_config: Optional[MutableMapping[str, Any]] = None) -> Dict[str, Any]:
    """Merge the config file with CLI overrides into ``{"seeding": ..., "geometry": ...}``."""
    settings: Dict[str, Any] = {"seeding": {}, "geometry": {}}
    if file_config:
        unknown = sorted(set(file_config) - set(settings))
        if unknown:
            raise ValueError(f"Unknown config block(s): {', '.join(unknown)}")
        settings = deep_update(settings, file_config)
    overrides: Dict[str, Any] = {}
    if args.x_only is not None:
        overrides["x_only"] = bool(args.x_only)
    if args.parallel is not None:
        overrides["parallel_halves"] = bool(args.parallel)
    return deep_update(settings, {"seeding": overrides})


def main(argv: Optional[Sequence[str]] = None) -> None:
    r"""
    End-to-end run: **load/simulate → pool → seed → write → evaluate**.

    Pipeline
    --------
    1. Parse the CLI, set up logging and the plotting guard.
    2. Read the config (:func:`seeding_reco.config.load_config`) and apply
       CLI overrides.
    3. Load (:func:`seeding_reco.data.load_hits`) or simulate
       (:func:`seeding_reco.data.simulate_event`) the event; optionally drop
       hits to emulate inefficiency.
    4. Build the :class:`~seeding_reco.hit_pool.HitPool` and run the seeding,
       optionally under :func:`seeding_reco.profiling.prof`.
    5. Write tracks/submission, log metrics when truth is present, and plot
       on request.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    apply_plotting_guard(args.plot)

    file_config = None
    if args.config:
        cfg_path = Path(args.config)
        logging.info("Reading config from %s", cfg_path)
        file_config = load_config(cfg_path)
    settings = resolve_settings(args, file_config)
    geometry = DetectorGeometry.from_dict(settings["geometry"])
    config = SeedingConfig.from_dict(settings["seeding"])
    logging.info("Seeding settings:\n%s", config.describe())

    rng = np.random.default_rng(args.seed)

    t_load0 = time.time()
    if args.file:
        hits = sr_data.load_hits(args.file, geometry)
    else:
        hits = sr_data.simulate_event(geometry, args.simulate, rng=rng, n_noise_hits=args.noise_hits)
    if args.drop > 0.0:
        n_before = len(hits)
        hits = drop_hits(hits, args.drop, rng=rng)
        logging.info("Dropped %d of %d hits", n_before - len(hits), n_before)
    t_load1 = time.time()

    pool = sr_data.build_pool(hits, geometry)
    seeding = HybridSeeding(geometry, config)
    t_pool1 = time.time()

    with prof(args.profile, out_path=args.profile_out):
        tracks = seeding.run(pool)
    t_seed1 = time.time()

    for k, v in seeding.stats.items():
        logging.info("  %s: %s", k, v)

    frame = tracks_to_frame(tracks, config.state_z)
    if args.out:
        frame.to_csv(args.out, index=False)
        logging.info("Wrote %d tracks to %s", len(frame), args.out)
    if args.submission:
        make_submission(tracks).to_csv(args.submission, index=False)
        logging.info("Wrote submission to %s", args.submission)

    if "particle_id" in hits.columns:
        m = sr_metrics.compute_metrics(tracks, hits)
        eff, ghost, clone, purity = sr_metrics.unpack(m, "efficiency", "ghost_rate", "clone_rate", "purity")
        logging.info(
            "Tracks=%d | efficiency=%.1f%% | ghosts=%.1f%% | clones=%.1f%% | purity=%.1f%%",
            len(tracks), eff, ghost, clone, purity,
        )
    else:
        logging.info("No truth in input; %d tracks found.", len(tracks))
    t_eval1 = time.time()

    if args.plot:
        import seeding_reco.plotting as sr_plot  # noqa: WPS433
        for half in range(geometry.n_halves):
            sr_plot.plot_event_xz(hits, tracks, geometry, half=half)
        if not config.x_only:
            sr_plot.plot_event_zy(tracks, geometry)
        timing = {
            "load": t_load1 - t_load0,
            "hit pool": t_pool1 - t_load1,
            "x projections": seeding.timing.get("x projections", 0.0),
            "stereo": seeding.timing.get("stereo", 0.0),
            "output+evaluation": t_eval1 - t_seed1,
        }
        sr_plot.plot_timing_summary(timing, n_tracks=len(tracks))


if __name__ == "__main__":
    main()
