from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Tuple

import orjson


@dataclass(frozen=True, slots=True)
class XSearchCase:
    r"""
    One pass of the x-projection search.

    Parameters
    ----------
    first_layer, last_layer : int
        Layers bounding the search; the x layers strictly between them are
        the intermediate layers.
    seed_zone_skip : int
        Number of leading intermediate layers not used to pick the third
        parabola seed hit.
    """
    first_layer: int
    last_layer: int
    seed_zone_skip: int = 0


_DEFAULT_CASES: Tuple[XSearchCase, ...] = (
    XSearchCase(0, 11, 1),
    XSearchCase(3, 11, 0),
    XSearchCase(0, 8, 0),
)


@dataclass(frozen=True)
class SeedingConfig:
    r"""
    Tunable parameters of the seeding.

    Attributes
    ----------
    max_chi2_in_track : float
        Largest per-hit :math:`\chi^2` at which a fit counts as converged.
    tol_x_inf, tol_x_sup : float
        Inner/outer half-widths of the parabola seed-hit road (mm).
    min_x_planes : int
        Minimum number of hits of an x projection.
    max_chi2_per_dof : float
        Base bound on :math:`\chi^2/\text{ndof}`; widened by
        :math:`6\,t_x^2` for steep tracks.
    max_parabola_seed_hits : int
        How many third hits build a parabola per (first, last) pair.
    tol_ty_offset, tol_ty_slope : float
        Stereo cluster tolerance :math:`\text{off} + \text{slope}\,|c|`.
    max_ip_at_zero : float
        Largest straight-line impact parameter at :math:`z=0` (mm).
    x_only : bool
        Skip the stereo extension.
    stereo_road_y : float
        Half-width in :math:`y` of the stereo search road (mm).
    stereo_coord_cut : float
        One-sided cut on the stereo coordinate per half.
    z_slope_reference : float
        Depth where the x-slope entering the stereo :math:`\chi^2` bound is
        evaluated.
    state_z : float
        Depth of the output state.
    max_used_hits : int
        A non-full x projection with more used hits than this is dropped.
    max_common_hits : int
        Two candidates sharing more hits than this are clones.
    x_search_cases : tuple of XSearchCase
    parallel_halves : bool
        Process the two halves on a thread pool.
    """
    max_chi2_in_track: float = 5.5
    tol_x_inf: float = 0.5
    tol_x_sup: float = 8.0
    min_x_planes: int = 5
    max_chi2_per_dof: float = 4.0
    max_parabola_seed_hits: int = 4
    tol_ty_offset: float = 0.002
    tol_ty_slope: float = 0.015
    max_ip_at_zero: float = 5000.0
    x_only: bool = False
    stereo_road_y: float = 2500.0
    stereo_coord_cut: float = 0.005
    z_slope_reference: float = 9000.0
    state_z: float = 9410.0
    max_used_hits: int = 1
    max_common_hits: int = 2
    x_search_cases: Tuple[XSearchCase, ...] = field(default=_DEFAULT_CASES)
    parallel_halves: bool = False

    @classmethod
    def from_dict(cls, block: Mapping[str, Any]) -> "SeedingConfig":
        """
        Build from the ``"seeding"`` block of a config.

        Raises
        ------
        ValueError
            On unknown keys or malformed ``x_search_cases``.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(block) - known)
        if unknown:
            raise ValueError(f"Unknown seeding option(s): {', '.join(unknown)}")
        kwargs: Dict[str, Any] = dict(block)
        if "x_search_cases" in kwargs:
            try:
                kwargs["x_search_cases"] = tuple(
                    c if isinstance(c, XSearchCase) else XSearchCase(*c)
                    for c in kwargs["x_search_cases"]
                )
            except TypeError as e:
                raise ValueError(f"Malformed x_search_cases: {e}") from e
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["x_search_cases"] = [list(asdict(c).values()) for c in self.x_search_cases]
        return out

    def describe(self) -> str:
        """Aligned ``name = value`` listing for the log."""
        items = self.to_dict()
        width = max(len(k) for k in items)
        return "\n".join(f" {k:<{width}} = {v}" for k, v in items.items())


def load_config(config_path: Path) -> MutableMapping[str, Any]:
    r"""
    Parse a JSON configuration file with :mod:`orjson`.

    Raises
    ------
    ValueError
        If the file cannot be read or parsed.
    """
    try:
        return orjson.loads(Path(config_path).read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse {config_path}: {e}") from e


def deep_update(d: Mapping[str, Any], u: Mapping[str, Any]) -> Dict[str, Any]:
    r"""
    Recursively merge ``u`` into a copy of ``d``; nested dicts merge,
    everything else in ``u`` replaces.
    """
    out = dict(d)
    for k, v in u.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), Mapping):
            out[k] = deep_update(out[k], v)
        else:
            out[k] = v
    return out
