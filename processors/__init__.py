"""
Pore network processors.

Modules:
- pore: Particle -> sphere-equivalent pore extraction
- pnm: Network generation (main processor)
- pnm_adjacency: Pair table and degree-capped throat selection
- pnm_throat: Throat geometry
- pnm_flow_path: Inlet/outlet connectivity repair
- pnm_properties: Porosity and tortuosity
- linear_solvers: Gauss-Seidel (CPU) and Jacobi (GPU) solvers
- permeability: Darcy permeability simulation
"""

from processors.pore import PoreExtractor
from processors.pnm import PoreNetworkGenerator, submit_generation
from processors.pnm_adjacency import PairTable, build_pair_table, select_throats
from processors.pnm_throat import create_throat, throat_geometry
from processors.pnm_flow_path import enforce_flow_path
from processors.pnm_properties import calculate_network_properties, calculate_tortuosity
from processors.linear_solvers import LinearSystem, LinearSystemSolver, GaussSeidelSolver, JacobiGpuSolver
from processors.permeability import PermeabilitySimulator, SimulationState, submit_simulation

__all__ = [
    'PoreExtractor',
    'PoreNetworkGenerator',
    'submit_generation',
    'PairTable',
    'build_pair_table',
    'select_throats',
    'create_throat',
    'throat_geometry',
    'enforce_flow_path',
    'calculate_network_properties',
    'calculate_tortuosity',
    'LinearSystem',
    'LinearSystemSolver',
    'GaussSeidelSolver',
    'JacobiGpuSolver',
    'PermeabilitySimulator',
    'SimulationState',
    'submit_simulation',
]
