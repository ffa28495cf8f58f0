import logging
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from seeding_reco.geometry import DetectorGeometry
from seeding_reco.seed_track import SeedTrack


def _show_and_close(fig, *, do_show: bool = True, save_path: Optional[str] = None) -> None:
    r"""
    Optionally save and show a figure, then always close it.

    Safe in headless mode where ``plt.show()`` may be patched to a no-op.
    ``tight_layout`` failures are ignored.
    """
    try:
        fig.tight_layout()
    except Exception:
        pass
    if save_path:
        fig.savefig(save_path, dpi=120)
        logging.info("Saved figure to %s", save_path)
    if do_show:
        try:
            plt.show()
        except Exception:
            pass
    plt.close(fig)


def _track_colors(n: int):
    cmap = plt.get_cmap("tab20")
    return [cmap(i % 20) for i in range(n)]


def plot_event_xz(
    hits: pd.DataFrame,
    tracks: Sequence[SeedTrack],
    geometry: DetectorGeometry,
    *,
    half: Optional[int] = None,
    max_tracks: Optional[int] = None,
    show: bool = True,
    save_path: Optional[str] = None,
) -> None:
    r"""
    Bending-plane view: hits at :math:`(z, x)` with the fitted parabolas.

    x-plane hits are drawn as dots, stereo-plane hits as crosses (their
    ``x`` is the position at :math:`y = 0`). Hits on a track take its colour.

    Parameters
    ----------
    hits : pandas.DataFrame
        Columns ``hit_id, zone, x, z``.
    tracks : sequence of SeedTrack
    geometry : DetectorGeometry
    half : int, optional
        Restrict to one half.
    max_tracks : int, optional
    show : bool
    save_path : str, optional
    """
    if hits.empty:
        logging.info("No hits to plot.")
        return
    sel_tracks = [t for t in tracks if half is None or t.half == half]
    if max_tracks is not None:
        sel_tracks = sel_tracks[:max_tracks]
    zone = hits["zone"].to_numpy(dtype=np.int64)
    mask = np.ones(len(hits), dtype=bool) if half is None else (zone % geometry.n_halves == half)
    h = hits.loc[mask]
    is_stereo = np.array([geometry.zone_dxdy(int(zi)) != 0.0 for zi in h["zone"]], dtype=bool)

    fig, ax = plt.subplots(figsize=(9.0, 6.0))
    ax.scatter(h["z"].to_numpy()[~is_stereo], h["x"].to_numpy()[~is_stereo],
               s=6, c="0.6", label="x hits")
    ax.scatter(h["z"].to_numpy()[is_stereo], h["x"].to_numpy()[is_stereo],
               s=10, c="0.8", marker="x", label="stereo hits")

    z_lo = geometry.layers[0].z
    z_hi = geometry.layers[-1].z
    zz = np.linspace(z_lo, z_hi, 50)
    for t, color in zip(sel_tracks, _track_colors(len(sel_tracks))):
        ax.plot(zz, [t.x(z) for z in zz], color=color, lw=1.2)
        ax.scatter([hit.z for hit in t.hits], [hit.x for hit in t.hits], s=14, color=color)

    ax.set_xlabel("z [mm]")
    ax.set_ylabel("x [mm]")
    title = "Seed tracks, bending plane" + ("" if half is None else f" (half {half})")
    ax.set_title(f"{title}: {len(sel_tracks)} tracks")
    ax.grid(True, alpha=0.25)
    ax.legend(loc="best", fontsize=8)
    _show_and_close(fig, do_show=show, save_path=save_path)


def plot_event_zy(
    tracks: Sequence[SeedTrack],
    geometry: DetectorGeometry,
    *,
    max_tracks: Optional[int] = None,
    show: bool = True,
    save_path: Optional[str] = None,
) -> None:
    r"""
    Non-bending view: fitted :math:`y(z)` lines and the stereo hits placed
    at the track's :math:`y`.
    """
    sel = list(tracks)[:max_tracks] if max_tracks is not None else list(tracks)
    if not sel:
        logging.info("No tracks to plot.")
        return
    zz = np.array([geometry.layers[0].z, geometry.layers[-1].z])
    fig, ax = plt.subplots(figsize=(9.0, 5.0))
    for t, color in zip(sel, _track_colors(len(sel))):
        ax.plot(zz, [t.y(z) for z in zz], color=color, lw=1.2)
        stereo = [hit for hit in t.hits if hit.is_stereo]
        if stereo:
            ax.scatter([hit.z for hit in stereo],
                       [t.y(hit.z) - t.delta_y(hit) for hit in stereo],
                       s=12, color=color)
    ax.axhline(0.0, color="k", lw=0.6)
    ax.set_xlabel("z [mm]")
    ax.set_ylabel("y [mm]")
    ax.set_title(f"Seed tracks, non-bending plane: {len(sel)} tracks")
    ax.grid(True, alpha=0.25)
    _show_and_close(fig, do_show=show, save_path=save_path)


def plot_timing_summary(
    timing: Mapping[str, float],
    *,
    n_tracks: Optional[int] = None,
    title: str = "Seeding timing",
    show: bool = True,
    save_path: Optional[str] = None,
) -> None:
    r"""
    Share of each run phase in one stacked bar, in milliseconds.

    The phases (``load``, ``hit pool``, ``x projections``, ``stereo``, ...)
    are drawn left to right in input order; zero or non-finite entries are
    left out. With ``n_tracks`` the title also reports the cost per found
    track, :math:`t_\text{total} / n_\text{tracks}`.
    """
    phases = [(str(k), 1e3 * float(v)) for k, v in timing.items() if np.isfinite(v) and v > 0.0]
    if not phases:
        return
    total = sum(ms for _, ms in phases)

    fig, ax = plt.subplots(figsize=(9.0, 2.6))
    left = 0.0
    colors = _track_colors(len(phases))
    for (name, ms), color in zip(phases, colors):
        ax.barh([0], [ms], left=left, color=color, edgecolor="white",
                label=f"{name}: {ms:.1f} ms ({100.0 * ms / total:.0f}%)")
        left += ms

    ax.set_yticks([])
    ax.set_xlim(0.0, total)
    ax.set_xlabel("wall time [ms]")
    head = f"{title}: {total:.1f} ms"
    if n_tracks:
        head += f", {total / n_tracks:.2f} ms/track"
    ax.set_title(head)
    ax.legend(loc="upper center", bbox_to_anchor=(0.5, -0.45), ncol=min(len(phases), 3), fontsize=8)
    _show_and_close(fig, do_show=show, save_path=save_path)
