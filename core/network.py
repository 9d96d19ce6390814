"""
Pore network data model.

Pores and throats are stored in micrometre units; the permeability solver
converts to SI at the point of use.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from core.errors import InvalidModelError


class FlowAxis(Enum):
    """Principal flow direction."""
    X = "X"
    Y = "Y"
    Z = "Z"

    @property
    def index(self) -> int:
        return "XYZ".index(self.value)

    @staticmethod
    def parse(value: Any) -> "FlowAxis":
        if isinstance(value, FlowAxis):
            return value
        try:
            return FlowAxis(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown flow axis {value!r}. Expected one of: X, Y, Z.") from None


@dataclass(frozen=True)
class Point3D:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def distance_to(self, other: "Point3D") -> float:
        return math.sqrt(
            (other.x - self.x) ** 2 + (other.y - self.y) ** 2 + (other.z - self.z) ** 2
        )

    def coord(self, axis: FlowAxis) -> float:
        return (self.x, self.y, self.z)[axis.index]

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass
class Pore:
    """
    Sphere-equivalent void region.

    Attributes:
        id: Particle label the pore was extracted from
        volume: Pore volume (um^3)
        area: Surface area (um^2)
        radius: Sphere-equivalent radius (um)
        center: Centroid (um)
        connection_count: Number of throats incident on this pore
    """
    id: int
    volume: float
    area: float
    radius: float
    center: Point3D
    connection_count: int = 0


@dataclass(frozen=True)
class Throat:
    """
    Cylindrical conduit between two pores (um units).

    ``pore_id1`` is always the smaller id so each unordered pair has one key.
    """
    id: int
    pore_id1: int
    pore_id2: int
    radius: float
    length: float
    volume: float
    synthetic: bool = False

    def __post_init__(self):
        if self.pore_id1 >= self.pore_id2:
            raise ValueError(
                f"Throat {self.id}: pore_id1 ({self.pore_id1}) must be smaller "
                f"than pore_id2 ({self.pore_id2})"
            )

    @property
    def key(self) -> Tuple[int, int]:
        return (self.pore_id1, self.pore_id2)


@dataclass
class PoreNetworkModel:
    """
    Pore network produced by the generator.

    Pores are ordered by ascending id. The model is mutable while the
    generator fills it and read-only once ``freeze()`` has been called.
    """
    pores: Sequence[Pore] = field(default_factory=list)
    throats: Sequence[Throat] = field(default_factory=list)
    pixel_size: float = 1e-6
    porosity: float = 0.0
    tortuosity: float = 1.0
    tortuosity_by_axis: Dict[str, float] = field(default_factory=dict)
    total_pore_volume: float = 0.0
    total_throat_volume: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    _index: Optional[Dict[int, int]] = field(default=None, init=False, repr=False, compare=False)
    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def pore_index(self) -> Dict[int, int]:
        """Map pore id -> position in ``pores``."""
        if self._index is None or len(self._index) != len(self.pores):
            self._index = {p.id: i for i, p in enumerate(self.pores)}
        return self._index

    def get_pore(self, pore_id: int) -> Pore:
        try:
            return self.pores[self.pore_index[pore_id]]
        except KeyError:
            raise KeyError(f"Pore {pore_id} not in model") from None

    @property
    def num_pores(self) -> int:
        return len(self.pores)

    @property
    def num_throats(self) -> int:
        return len(self.throats)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def centers_array(self) -> np.ndarray:
        """Pore centres as an (N, 3) array in um."""
        if not self.pores:
            return np.zeros((0, 3), dtype=np.float64)
        return np.array([p.center.as_tuple() for p in self.pores], dtype=np.float64)

    def radii_array(self) -> np.ndarray:
        return np.array([p.radius for p in self.pores], dtype=np.float64)

    def throat_index_pairs(self) -> np.ndarray:
        """Throat endpoints as (M, 2) pore positions."""
        idx = self.pore_index
        if not self.throats:
            return np.zeros((0, 2), dtype=np.int64)
        return np.array([(idx[t.pore_id1], idx[t.pore_id2]) for t in self.throats], dtype=np.int64)

    def average_radius(self) -> float:
        if not self.pores:
            return 0.0
        return float(np.mean(self.radii_array()))

    def average_connectivity(self) -> float:
        if not self.pores:
            return 0.0
        return float(np.mean([p.connection_count for p in self.pores]))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add_throat(self, throat: Throat) -> None:
        """Append a throat and update both endpoint connection counts."""
        if self._frozen:
            raise InvalidModelError("Cannot add throats to a frozen model")
        self.get_pore(throat.pore_id1).connection_count += 1
        self.get_pore(throat.pore_id2).connection_count += 1
        self.throats.append(throat)

    def freeze(self) -> "PoreNetworkModel":
        self.pores = tuple(self.pores)
        self.throats = tuple(self.throats)
        self._frozen = True
        return self

    def validate(self) -> None:
        """Check the structural invariants; raise InvalidModelError if broken."""
        ids = [p.id for p in self.pores]
        if ids != sorted(ids) or len(set(ids)) != len(ids):
            raise InvalidModelError("Pores must have unique ids in ascending order")

        index = self.pore_index
        degree = {pid: 0 for pid in ids}
        seen = set()
        for t in self.throats:
            if t.pore_id1 not in index or t.pore_id2 not in index:
                raise InvalidModelError(f"Throat {t.id} references a missing pore")
            if t.key in seen:
                raise InvalidModelError(f"Duplicate throat between pores {t.key}")
            seen.add(t.key)
            degree[t.pore_id1] += 1
            degree[t.pore_id2] += 1

        for p in self.pores:
            if p.connection_count != degree[p.id]:
                raise InvalidModelError(
                    f"Pore {p.id}: connection_count={p.connection_count}, "
                    f"but {degree[p.id]} throats reference it"
                )

        if math.isnan(self.porosity) or not 0.0 <= self.porosity <= 1.0:
            raise InvalidModelError(f"Porosity out of range: {self.porosity}")
        if math.isnan(self.tortuosity) or self.tortuosity < 1.0:
            raise InvalidModelError(f"Tortuosity out of range: {self.tortuosity}")

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def summary(self) -> Dict[str, Any]:
        """Scalar statistics and size distributions of the network."""
        n = self.num_pores
        pore_radii = self.radii_array()
        throat_radii = np.array([t.radius for t in self.throats], dtype=np.float64)

        connected = set()
        for t in self.throats:
            connected.add(t.pore_id1)
            connected.add(t.pore_id2)

        return {
            "PoreCount": n,
            "ThroatCount": self.num_throats,
            "SyntheticThroatCount": sum(1 for t in self.throats if t.synthetic),
            "Porosity": float(self.porosity),
            "Tortuosity": float(self.tortuosity),
            "TortuosityByAxis": dict(self.tortuosity_by_axis),
            "CoordinationNumber": (2.0 * self.num_throats / n) if n else 0.0,
            "ConnectedPoreFraction": (len(connected) / n) if n else 0.0,
            "TotalPoreVolume": float(self.total_pore_volume),
            "TotalThroatVolume": float(self.total_throat_volume),
            "PoreSizeDistribution": size_distribution(pore_radii),
            "ThroatSizeDistribution": size_distribution(throat_radii),
        }


def size_distribution(radii: Iterable[float], bins: int = 10) -> Dict[str, List[float]]:
    """Histogram of radii on ``bins`` equal-width bins from 0 to 1.1 * max."""
    radii = np.asarray(list(radii), dtype=np.float64)
    if radii.size == 0:
        return {"bins": [], "counts": []}

    edges = np.linspace(0, np.max(radii) * 1.1, bins)
    counts, bin_edges = np.histogram(radii, bins=edges)
    return {"bins": bin_edges.tolist(), "counts": counts.tolist()}


@dataclass(frozen=True)
class SolverReport:
    """Outcome of one linear solve."""
    solver: str
    backend: str
    iterations: int
    residual: float
    tolerance: float
    converged: bool
    fell_back_to_cpu: bool = False


@dataclass(frozen=True)
class PermeabilitySimulationResult:
    """
    Immutable outcome of one permeability simulation.

    Permeability fields are ``None`` when the geometry is degenerate (zero
    area, length or pressure drop); ``is_valid`` and ``invalid_reason`` say why.
    """
    model: PoreNetworkModel
    flow_axis: FlowAxis
    viscosity: float
    input_pressure: float
    output_pressure: float

    pressure_field: Dict[int, float]
    throat_flow_rates: Dict[int, float]
    total_flow_rate: float
    model_length: float                 # m
    model_area: float                   # m^2
    inlet_pores: Tuple[int, ...]
    outlet_pores: Tuple[int, ...]

    permeability_m2: Optional[float]
    permeability_darcy: Optional[float]
    permeability_millidarcy: Optional[float]

    tortuosity: float
    corrected_permeability_darcy: Optional[float]
    corrected_permeability_millidarcy: Optional[float]

    kozeny_carman_darcy: Optional[float] = None
    kozeny_carman_millidarcy: Optional[float] = None

    solver_report: Optional[SolverReport] = None
    is_valid: bool = True
    invalid_reason: Optional[str] = None

    @property
    def pressure_drop(self) -> float:
        return abs(self.input_pressure - self.output_pressure)

    def to_dict(self) -> Dict[str, Any]:
        """Scalar results (no per-pore / per-throat fields)."""
        report = self.solver_report
        return {
            "FlowAxis": self.flow_axis.value,
            "Viscosity": self.viscosity,
            "InputPressure": self.input_pressure,
            "OutputPressure": self.output_pressure,
            "TotalFlowRate": self.total_flow_rate,
            "ModelLength": self.model_length,
            "ModelArea": self.model_area,
            "InletPoreCount": len(self.inlet_pores),
            "OutletPoreCount": len(self.outlet_pores),
            "Permeability_m2": self.permeability_m2,
            "Permeability_D": self.permeability_darcy,
            "Permeability_mD": self.permeability_millidarcy,
            "Tortuosity": self.tortuosity,
            "CorrectedPermeability_mD": self.corrected_permeability_millidarcy,
            "KozenyCarman_mD": self.kozeny_carman_millidarcy,
            "Solver": report.solver if report else None,
            "SolverBackend": report.backend if report else None,
            "SolverIterations": report.iterations if report else None,
            "SolverConverged": report.converged if report else None,
            "IsValid": self.is_valid,
            "InvalidReason": self.invalid_reason,
        }
