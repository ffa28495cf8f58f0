from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple


@dataclass(frozen=True, slots=True)
class LayerGeometry:
    """One detection plane: its depth and stereo slope (0 for x planes)."""
    z: float
    dxdy: float = 0.0

    @property
    def is_x(self) -> bool:
        return self.dxdy == 0.0


# Three stations of x-u-v-x layers with +-5 degree stereo planes (mm).
_DEFAULT_Z: Tuple[float, ...] = (
    7826.1, 7895.9, 7966.0, 8035.9,
    8508.1, 8577.9, 8648.0, 8717.9,
    9193.1, 9262.9, 9333.0, 9402.9,
)
_DEFAULT_DXDY: Tuple[float, ...] = (0.0, 0.0874886635, -0.0874886635, 0.0) * 3
_DEFAULT_Z_REFERENCE = 8520.0


@dataclass(frozen=True)
class DetectorGeometry:
    r"""
    Static plane layout consumed by the seeding.

    Zones are numbered so that every layer contributes one zone per spatial
    half:

    .. math::

        \text{zone} = n_\text{halves}\cdot\text{layer} + \text{half},

    i.e. with two halves the upper-half zones are even and the lower-half
    zones are odd.

    Parameters
    ----------
    layers : tuple of LayerGeometry
        Planes ordered by increasing ``z``.
    z_reference : float
        Depth at which the track polynomials are expanded.
    n_halves : int, optional
        Number of spatial halves (default 2).
    """
    layers: Tuple[LayerGeometry, ...]
    z_reference: float
    n_halves: int = 2

    def __post_init__(self) -> None:
        if not self.layers:
            raise ValueError("Geometry needs at least one layer.")
        zs = [lay.z for lay in self.layers]
        if any(b <= a for a, b in zip(zs, zs[1:])):
            raise ValueError("Layers must be ordered by strictly increasing z.")
        if self.n_halves < 1:
            raise ValueError("n_halves must be positive.")

    @classmethod
    def default(cls) -> "DetectorGeometry":
        """Twelve-layer, three-station x-u-v-x layout."""
        layers = tuple(LayerGeometry(z, d) for z, d in zip(_DEFAULT_Z, _DEFAULT_DXDY))
        return cls(layers=layers, z_reference=_DEFAULT_Z_REFERENCE)

    @classmethod
    def from_dict(cls, block: Mapping[str, Any]) -> "DetectorGeometry":
        r"""
        Build a geometry from the ``"geometry"`` block of a JSON config.

        Expected keys are ``z`` (list of plane depths), ``dxdy`` (list of
        stereo slopes, same length), ``z_reference`` and optionally
        ``n_halves``. Missing keys fall back to :meth:`default`.

        Raises
        ------
        ValueError
            If ``z`` and ``dxdy`` differ in length.
        """
        base = cls.default()
        z = block.get("z", [lay.z for lay in base.layers])
        dxdy = block.get("dxdy", [lay.dxdy for lay in base.layers])
        if len(z) != len(dxdy):
            raise ValueError(f"geometry: len(z)={len(z)} != len(dxdy)={len(dxdy)}")
        layers = tuple(LayerGeometry(float(zi), float(di)) for zi, di in zip(z, dxdy))
        return cls(
            layers=layers,
            z_reference=float(block.get("z_reference", base.z_reference)),
            n_halves=int(block.get("n_halves", base.n_halves)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "z": [lay.z for lay in self.layers],
            "dxdy": [lay.dxdy for lay in self.layers],
            "z_reference": self.z_reference,
            "n_halves": self.n_halves,
        }

    @property
    def n_layers(self) -> int:
        return len(self.layers)

    @property
    def n_zones(self) -> int:
        return self.n_halves * len(self.layers)

    @property
    def x_layers(self) -> List[int]:
        return [i for i, lay in enumerate(self.layers) if lay.is_x]

    @property
    def stereo_layers(self) -> List[int]:
        return [i for i, lay in enumerate(self.layers) if not lay.is_x]

    def zone_index(self, layer: int, half: int) -> int:
        if not (0 <= layer < len(self.layers)) or not (0 <= half < self.n_halves):
            raise ValueError(f"No zone for layer={layer}, half={half}")
        return self.n_halves * layer + half

    def layer_of(self, zone: int) -> int:
        return zone // self.n_halves

    def half_of(self, zone: int) -> int:
        return zone % self.n_halves

    def zone_z(self, zone: int) -> float:
        return self.layers[self.layer_of(zone)].z

    def zone_dxdy(self, zone: int) -> float:
        return self.layers[self.layer_of(zone)].dxdy

    def zones_of_half(self, half: int, layers: Sequence[int] | None = None) -> List[int]:
        """Zone indices of ``half`` for ``layers`` (all layers by default), in z order."""
        if layers is None:
            layers = range(len(self.layers))
        return [self.zone_index(lay, half) for lay in layers]
