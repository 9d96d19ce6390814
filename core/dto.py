"""
Data Transfer Objects (DTOs) for network generation and permeability runs.

Design rules
------------
* All DTOs are immutable (frozen=True). Hosts build a new DTO and *push* it
  to the generator / simulator.
* Defaults come from ``config.py``.
* ``from_dict`` / ``from_yaml`` / ``from_json`` keep serialisation in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Dict, Any

import config
from core.network import FlowAxis


def _load_mapping(path: str) -> Dict[str, Any]:
    if path.lower().endswith((".yaml", ".yml")):
        import yaml
        with open(path, encoding="utf-8") as fh:
            return yaml.safe_load(fh) or {}
    import json
    with open(path, encoding="utf-8") as fh:
        return json.load(fh) or {}


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


# ---------------------------------------------------------------------------
# Network generation DTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationParamsDTO:
    """
    Immutable configuration for pore network generation.
    """

    pixel_size:                 float       = config.DEFAULT_PIXEL_SIZE
    max_throat_length_factor:   float       = config.MAX_THROAT_LENGTH_FACTOR
    min_overlap_factor:         float       = config.MIN_OVERLAP_FACTOR
    enforce_flow_path:          bool        = config.ENFORCE_FLOW_PATH
    max_connections:            int         = config.MAX_CONNECTIONS
    throat_radius_factor:       float       = config.THROAT_RADIUS_FACTOR
    flow_axis:                  FlowAxis    = FlowAxis(config.DEFAULT_FLOW_AXIS)
    seed:                       int         = config.DEFAULT_SEED

    def __post_init__(self):
        object.__setattr__(self, "flow_axis", FlowAxis.parse(self.flow_axis))
        if not self.pixel_size > 0:
            raise ValueError(f"pixel_size must be positive, got {self.pixel_size}")
        if not self.max_throat_length_factor > 0:
            raise ValueError(f"max_throat_length_factor must be positive, got {self.max_throat_length_factor}")
        if self.min_overlap_factor < 0:
            raise ValueError(f"min_overlap_factor must be non-negative, got {self.min_overlap_factor}")
        if self.max_connections < 1:
            raise ValueError(f"max_connections must be >= 1, got {self.max_connections}")
        if not 0 < self.throat_radius_factor <= 1:
            raise ValueError(f"throat_radius_factor must be in (0, 1], got {self.throat_radius_factor}")

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "GenerationParamsDTO":
        return GenerationParamsDTO(
            pixel_size               = float(d.get("pixel_size",               config.DEFAULT_PIXEL_SIZE)),
            max_throat_length_factor = float(d.get("max_throat_length_factor", config.MAX_THROAT_LENGTH_FACTOR)),
            min_overlap_factor       = float(d.get("min_overlap_factor",       config.MIN_OVERLAP_FACTOR)),
            enforce_flow_path        = bool(d.get("enforce_flow_path",         config.ENFORCE_FLOW_PATH)),
            max_connections          = int(d.get("max_connections",            config.MAX_CONNECTIONS)),
            throat_radius_factor     = float(d.get("throat_radius_factor",     config.THROAT_RADIUS_FACTOR)),
            flow_axis                = FlowAxis.parse(d.get("flow_axis",       config.DEFAULT_FLOW_AXIS)),
            seed                     = int(d.get("seed",                       config.DEFAULT_SEED)),
        )

    @staticmethod
    def from_yaml(path: str) -> "GenerationParamsDTO":
        return GenerationParamsDTO.from_dict(_load_mapping(path).get("generation", {}))

    @staticmethod
    def from_json(path: str) -> "GenerationParamsDTO":
        return GenerationParamsDTO.from_dict(_load_mapping(path).get("generation", {}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pixel_size":               self.pixel_size,
            "max_throat_length_factor": self.max_throat_length_factor,
            "min_overlap_factor":       self.min_overlap_factor,
            "enforce_flow_path":        self.enforce_flow_path,
            "max_connections":          self.max_connections,
            "throat_radius_factor":     self.throat_radius_factor,
            "flow_axis":                self.flow_axis.value,
            "seed":                     self.seed,
        }


# ---------------------------------------------------------------------------
# Permeability simulation DTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SimulationParamsDTO:
    """
    Immutable configuration for one permeability simulation.

    ``tolerance`` / ``max_iterations`` override both solver defaults when set.
    ``tortuosity`` overrides the model value for the corrected permeability.
    """

    viscosity:              float               = config.DEFAULT_VISCOSITY
    input_pressure:         float               = config.DEFAULT_INPUT_PRESSURE
    output_pressure:        float               = config.DEFAULT_OUTPUT_PRESSURE
    flow_axis:              FlowAxis            = FlowAxis(config.DEFAULT_FLOW_AXIS)
    use_gpu:                bool                = config.GPU_ENABLED
    tolerance:              Optional[float]     = None
    max_iterations:         Optional[int]       = None
    tortuosity:             Optional[float]     = None
    compute_kozeny_carman:  bool                = True

    def __post_init__(self):
        object.__setattr__(self, "flow_axis", FlowAxis.parse(self.flow_axis))
        if not self.viscosity > 0:
            raise ValueError(f"viscosity must be positive, got {self.viscosity}")
        if self.tolerance is not None and not self.tolerance > 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")

    @property
    def pressure_drop(self) -> float:
        return abs(self.input_pressure - self.output_pressure)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SimulationParamsDTO":
        max_iter = d.get("max_iterations")
        return SimulationParamsDTO(
            viscosity             = float(d.get("viscosity",       config.DEFAULT_VISCOSITY)),
            input_pressure        = float(d.get("input_pressure",  config.DEFAULT_INPUT_PRESSURE)),
            output_pressure       = float(d.get("output_pressure", config.DEFAULT_OUTPUT_PRESSURE)),
            flow_axis             = FlowAxis.parse(d.get("flow_axis", config.DEFAULT_FLOW_AXIS)),
            use_gpu               = bool(d.get("use_gpu",          config.GPU_ENABLED)),
            tolerance             = _optional_float(d.get("tolerance")),
            max_iterations        = None if max_iter is None else int(max_iter),
            tortuosity            = _optional_float(d.get("tortuosity")),
            compute_kozeny_carman = bool(d.get("compute_kozeny_carman", True)),
        )

    @staticmethod
    def from_yaml(path: str) -> "SimulationParamsDTO":
        return SimulationParamsDTO.from_dict(_load_mapping(path).get("simulation", {}))

    @staticmethod
    def from_json(path: str) -> "SimulationParamsDTO":
        return SimulationParamsDTO.from_dict(_load_mapping(path).get("simulation", {}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "viscosity":             self.viscosity,
            "input_pressure":        self.input_pressure,
            "output_pressure":       self.output_pressure,
            "flow_axis":             self.flow_axis.value,
            "use_gpu":               self.use_gpu,
            "tolerance":             self.tolerance,
            "max_iterations":        self.max_iterations,
            "tortuosity":            self.tortuosity,
            "compute_kozeny_carman": self.compute_kozeny_carman,
        }
