"""
Configuration constants for the Pore Network Modeling Suite.
All thresholds and configurable parameters are centralized here.
"""

import os

# ==========================================
# Parallelism
# ==========================================

# Worker pool for graph construction (leave one core for the caller)
WORKER_COUNT = max(1, (os.cpu_count() or 1) - 1)

# Pores per task when partitioning the pairwise distance table
PAIR_TABLE_CHUNK_ROWS = 64

# Use joblib for pore extraction above this many particles
EXTRACTION_PARALLEL_MIN_PARTICLES = 100

# ==========================================
# Pore Extraction
# ==========================================

# Empirical correction applied to each exposed boundary voxel face
SURFACE_AREA_FACE_FACTOR = 1.5

# Unit conversions (SI -> micrometre based)
M_TO_UM = 1e6
M2_TO_UM2 = 1e12
M3_TO_UM3 = 1e18

# ==========================================
# Network Generation
# ==========================================
DEFAULT_PIXEL_SIZE = 1e-6             # m / voxel
MAX_THROAT_LENGTH_FACTOR = 3.0        # x average pore radius
MIN_OVERLAP_FACTOR = 0.1              # fraction of the smaller pore radius
MAX_CONNECTIONS = 6                   # per-pore degree cap
THROAT_RADIUS_FACTOR = 0.4            # x smaller pore radius
MIN_THROAT_LENGTH = 0.1               # um
ENFORCE_FLOW_PATH = True
DEFAULT_FLOW_AXIS = "Z"
DEFAULT_SEED = 42

# Boundary layer thickness for flow-path / tortuosity zones (x average radius)
BOUNDARY_LAYER_FACTOR = 2.0

# ==========================================
# Tortuosity
# ==========================================
TORTUOSITY_MAX_PATH_FACTOR = 15.0     # discard paths >= factor * straight length
TORTUOSITY_MIN_STRAIGHT_LENGTH = 1e-6 # um

# (min mean connectivity, tau ceiling), checked in order
TORTUOSITY_CEILINGS = (
    (4.0, 5.0),
    (3.0, 6.5),
    (2.0, 8.0),
)
TORTUOSITY_CEILING_FALLBACK = 11.0

# ==========================================
# Permeability Simulation
# ==========================================
DEFAULT_VISCOSITY = 0.001             # Pa*s (water, 20 C)
DEFAULT_INPUT_PRESSURE = 2000.0       # Pa
DEFAULT_OUTPUT_PRESSURE = 1000.0      # Pa

# Fraction of pores (sorted along the flow axis) held at fixed pressure
BOUNDARY_PORE_FRACTION = 0.1

DARCY_TO_M2 = 9.869233e-13

# Kozeny-Carman estimate
KOZENY_CONSTANT = 5.0
KOZENY_POROSITY_CLAMP = (0.001, 0.999)

# ==========================================
# Linear Solvers
# ==========================================
# Tolerances are relative: the L2 norm of the pressure update is divided by
# max(|p_in|, |p_out|, 1) before the comparison.
CPU_SOLVER_TOLERANCE = 1e-10         # relative to the boundary pressure scale
CPU_SOLVER_MAX_ITERATIONS = 10_000

GPU_SOLVER_TOLERANCE = 1e-6
GPU_SOLVER_MAX_ITERATIONS = 5_000
GPU_RESIDUAL_CHECK_INTERVAL = 10      # iterations between residual read-backs
GPU_THREADS_PER_BLOCK = 256

# Diagonal magnitude below which a row is left untouched
SOLVER_DIAGONAL_EPS = 1e-300

# ==========================================
# GPU Acceleration Settings
# ==========================================
GPU_ENABLED = True    # Set False to disable GPU acceleration
GPU_MEMORY_SAFETY_FACTOR = 0.8  # Fraction of free VRAM a solve may claim

# ==========================================
# Synthetic Data
# ==========================================
SYNTHETIC_VOLUME_SIZE = 64
SYNTHETIC_MAX_SPHERES = 120
SYNTHETIC_RADIUS_RANGE = (2, 5)       # voxels
SYNTHETIC_MIN_SEPARATION = 0.7        # x (r1 + r2) between sphere centres
