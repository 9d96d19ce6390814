"""
Single-phase absolute permeability of a pore network (Darcy's law).

Workflow:
1. Fix the lowest / highest 10% of pores along the flow axis at the inlet /
   outlet pressure
2. Hagen-Poiseuille conductance per throat
3. Assemble the pressure conservation system (CSR)
4. Solve on the GPU (Jacobi) or CPU (Gauss-Seidel)
5. Throat flow rates, boundary flow, Darcy permeability
6. Tortuosity-corrected and Kozeny-Carman estimates
"""

import logging
import math
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.sparse import coo_matrix

import config
from core.base import BaseProcessor
from core.dto import SimulationParamsDTO
from core.errors import (
    CancellationSignaled,
    DegenerateGeometry,
    GpuSolverFailure,
    GpuUnavailable,
    InvalidModelError,
)
from core.gpu_backend import ComputeContext, get_compute_context
from core.network import FlowAxis, PermeabilitySimulationResult, Pore, PoreNetworkModel, SolverReport
from core.progress import CancellationToken, MonotonicProgress, check_cancelled
from processors.linear_solvers import GaussSeidelSolver, JacobiGpuSolver, LinearSystem

logger = logging.getLogger(__name__)


class SimulationState(Enum):
    CONFIGURED = "Configured"
    ASSEMBLING = "Assembling"
    SOLVING_CPU = "Solving(CPU)"
    SOLVING_GPU = "Solving(GPU)"
    FLOW_COMPUTED = "FlowComputed"
    TERMINAL = "Terminal"


# ==========================================
# Physics helpers
# ==========================================

def select_boundary_pores(pores: Sequence[Pore], axis: FlowAxis,
                          fraction: float = config.BOUNDARY_PORE_FRACTION) -> Tuple[List[int], List[int]]:
    """Lowest / highest ``max(1, int(fraction * n))`` pores by (axis coordinate, id)."""
    ordered = sorted(pores, key=lambda p: (p.center.coord(axis), p.id))
    count = max(1, int(len(ordered) * fraction))
    inlets = [p.id for p in ordered[:count]]
    outlets = [p.id for p in ordered[len(ordered) - count:]]
    return inlets, outlets


def throat_conductances(model: PoreNetworkModel, viscosity: float) -> np.ndarray:
    """Hagen-Poiseuille conductance g = pi r^4 / (8 mu L) per throat (m^3 / (Pa s))."""
    r = np.array([t.radius for t in model.throats], dtype=np.float64) / config.M_TO_UM
    length = np.array([t.length for t in model.throats], dtype=np.float64) / config.M_TO_UM
    return math.pi * r ** 4 / (8.0 * viscosity * length)


def assemble_pressure_system(model: PoreNetworkModel, conductances: np.ndarray,
                             inlets: Sequence[int], outlets: Sequence[int],
                             input_pressure: float, output_pressure: float) -> LinearSystem:
    """
    Mass conservation at free pores, Dirichlet rows at boundary pores.

    A pore that is both inlet and outlet keeps the inlet pressure.
    """
    n = model.num_pores
    index = model.pore_index
    pairs = model.throat_index_pairs()

    fixed = np.zeros(n, dtype=bool)
    rhs = np.zeros(n, dtype=np.float64)
    for pid in outlets:
        fixed[index[pid]] = True
        rhs[index[pid]] = output_pressure
    for pid in inlets:
        fixed[index[pid]] = True
        rhs[index[pid]] = input_pressure

    a, b = pairs[:, 0], pairs[:, 1]
    diag = np.bincount(a, weights=conductances, minlength=n) + np.bincount(b, weights=conductances, minlength=n)
    diag[fixed] = 1.0

    # Off-diagonal -g entries only on free rows
    keep_ab = ~fixed[a]
    keep_ba = ~fixed[b]
    rows = np.concatenate([a[keep_ab], b[keep_ba], np.arange(n)])
    cols = np.concatenate([b[keep_ab], a[keep_ba], np.arange(n)])
    data = np.concatenate([-conductances[keep_ab], -conductances[keep_ba], diag])
    matrix = coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()

    x0 = np.full(n, 0.5 * (input_pressure + output_pressure), dtype=np.float64)
    x0[fixed] = rhs[fixed]
    scale = max(abs(input_pressure), abs(output_pressure), 1.0)
    return LinearSystem(matrix=matrix, rhs=rhs, fixed=fixed, x0=x0, scale=scale)


def sample_dimensions(pores: Sequence[Pore], axis: FlowAxis) -> Tuple[float, float]:
    """
    Returns:
        (length, area) in m / m^2. Length is the centre extent along the axis;
        area is the sphere bounding box face orthogonal to it.
    """
    centers = np.array([p.center.as_tuple() for p in pores], dtype=np.float64)
    radii = np.array([p.radius for p in pores], dtype=np.float64)[:, None]
    axis_coords = centers[:, axis.index]
    length = float(axis_coords.max() - axis_coords.min()) / config.M_TO_UM

    extent = (centers + radii).max(axis=0) - (centers - radii).min(axis=0)
    others = [i for i in range(3) if i != axis.index]
    area = float(extent[others[0]] * extent[others[1]]) / config.M2_TO_UM2
    return length, area


def boundary_flow_rate(model: PoreNetworkModel, flow_rates: np.ndarray,
                       inlets: Set[int], outlets: Set[int]) -> float:
    """
    Total flow leaving the inlet face.

    Counts |Q| over throats joining an inlet-only pore to an interior pore.
    When no throat qualifies (inlet pores wired straight to outlet pores),
    throats from an inlet-only pore to any non-inlet pore are counted instead.
    """
    strict = 0.0
    direct = 0.0
    found_strict = False
    for t, q in zip(model.throats, flow_rates):
        in1 = t.pore_id1 in inlets and t.pore_id1 not in outlets
        in2 = t.pore_id2 in inlets and t.pore_id2 not in outlets
        inner1 = t.pore_id1 not in inlets and t.pore_id1 not in outlets
        inner2 = t.pore_id2 not in inlets and t.pore_id2 not in outlets
        if (in1 and inner2) or (in2 and inner1):
            strict += abs(q)
            found_strict = True
        elif (in1 and t.pore_id2 not in inlets) or (in2 and t.pore_id1 not in inlets):
            direct += abs(q)
    return strict if found_strict else direct


def darcy_permeability(flow_rate: float, viscosity: float, length: float,
                       area: float, pressure_drop: float) -> float:
    """k = Q mu L / (A dP) in m^2."""
    if area <= 0:
        raise DegenerateGeometry("Sample cross-section area is zero")
    if length <= 0:
        raise DegenerateGeometry("Sample length along the flow axis is zero")
    if pressure_drop == 0:
        raise DegenerateGeometry("Pressure drop is zero")
    return flow_rate * viscosity * length / (area * pressure_drop)


def kozeny_carman_permeability(model: PoreNetworkModel, length: float, area: float) -> Optional[float]:
    """
    k = eps^3 / (K0 S^2 (1 - eps)^2) in m^2.

    Void volume and wetted surface come from sphere pores and cylindrical
    throats; the bulk volume is ``length * area``. Returns None when undefined.
    """
    bulk = length * area
    if bulk <= 0:
        return None

    pore_r = np.array([p.radius for p in model.pores], dtype=np.float64) / config.M_TO_UM
    throat_r = np.array([t.radius for t in model.throats], dtype=np.float64) / config.M_TO_UM
    throat_l = np.array([t.length for t in model.throats], dtype=np.float64) / config.M_TO_UM

    void = float(np.sum(4.0 / 3.0 * math.pi * pore_r ** 3) + np.sum(math.pi * throat_r ** 2 * throat_l))
    surface = float(np.sum(4.0 * math.pi * pore_r ** 2) + np.sum(2.0 * math.pi * throat_r * throat_l))
    if void <= 0:
        return None

    lo, hi = config.KOZENY_POROSITY_CLAMP
    porosity = min(hi, max(lo, void / bulk))
    specific_surface = surface / void
    k = porosity ** 3 / (config.KOZENY_CONSTANT * specific_surface ** 2 * (1.0 - porosity) ** 2)
    logger.debug("Kozeny-Carman: porosity %.4f, S %.4e 1/m", porosity, specific_surface)
    return k


# ==========================================
# Simulator
# ==========================================

class PermeabilitySimulator(BaseProcessor):
    """
    Absolute permeability simulation over a frozen PoreNetworkModel.

    The simulator is a small state machine (``state``); every transition is
    logged. GPU failures fall back to the CPU solver once.
    """

    def __init__(self, context: Optional[ComputeContext] = None):
        super().__init__()
        self._context = context
        self.state = SimulationState.CONFIGURED

    def _transition(self, state: SimulationState):
        logger.info("[Permeability] %s -> %s", self.state.value, state.value)
        self.state = state

    def _context_for(self, params: SimulationParamsDTO) -> Optional[ComputeContext]:
        if not params.use_gpu:
            return None
        if self._context is None:
            self._context = get_compute_context()
        return self._context

    def process(self, data: PoreNetworkModel, callback: Optional[Callable[[int, str], None]] = None,
                params: Optional[SimulationParamsDTO] = None,
                cancel_token: Optional[CancellationToken] = None) -> PermeabilitySimulationResult:
        """
        Run the simulation.

        Args:
            data: Pore network model
            callback: Progress callback (percent, message)
            params: Simulation parameters (defaults from config)
            cancel_token: Cooperative cancellation

        Returns:
            PermeabilitySimulationResult

        Raises:
            InvalidModelError: Model without pores or throats
            CancellationSignaled: Cancelled through ``cancel_token``
        """
        params = params or SimulationParamsDTO()
        model = data
        progress = MonotonicProgress(callback)
        self.state = SimulationState.CONFIGURED

        def report(p, msg):
            logger.info("[Permeability] %s", msg)
            progress(p, msg)

        if model.num_pores == 0:
            raise InvalidModelError("Pore network has no pores")
        if model.num_throats == 0:
            raise InvalidModelError("Pore network has no throats")

        start = time.time()
        try:
            axis = params.flow_axis
            report(10, f"Simulating flow along {axis.value} ({model.num_pores} pores, "
                       f"{model.num_throats} throats)...")

            inlets, outlets = select_boundary_pores(model.pores, axis)
            inlet_set, outlet_set = set(inlets), set(outlets)
            report(20, f"Boundary pores: {len(inlets)} inlet, {len(outlets)} outlet")

            self._transition(SimulationState.ASSEMBLING)
            g = throat_conductances(model, params.viscosity)
            if not np.all(np.isfinite(g)):
                raise InvalidModelError("Non-finite throat conductance (zero-length or invalid throat)")
            report(30, "Conductances computed.")

            check_cancelled(cancel_token)
            system = assemble_pressure_system(
                model, g, inlets, outlets, params.input_pressure, params.output_pressure
            )
            report(40, "Pressure system assembled.")

            report(50, "Solving pressure field...")
            pressures, solver_report = self._solve(system, params, cancel_token)
            report(70, f"Solver finished ({solver_report.solver}, {solver_report.iterations} iterations).")

            pairs = model.throat_index_pairs()
            flow_rates = g * (pressures[pairs[:, 0]] - pressures[pairs[:, 1]])
            total_flow = boundary_flow_rate(model, flow_rates, inlet_set, outlet_set)
            self._transition(SimulationState.FLOW_COMPUTED)
            report(80, f"Total boundary flow: {total_flow:.4e} m^3/s")

            length, area = sample_dimensions(model.pores, axis)
            result = self._build_result(
                model, params, pressures, flow_rates, total_flow, length, area,
                inlets, outlets, solver_report,
            )
            report(90, "Permeability computed.")

        except CancellationSignaled:
            logger.info("[Permeability] Simulation cancelled")
            raise
        finally:
            self._transition(SimulationState.TERMINAL)

        if result.is_valid:
            report(100, f"Permeability: {result.permeability_millidarcy:.4f} mD "
                        f"({time.time() - start:.2f}s)")
        else:
            report(100, f"Permeability undefined: {result.invalid_reason}")
        return result

    def simulate(self, model: PoreNetworkModel, params: Optional[SimulationParamsDTO] = None,
                 callback: Optional[Callable[[int, str], None]] = None,
                 cancel_token: Optional[CancellationToken] = None) -> PermeabilitySimulationResult:
        return self.process(model, callback=callback, params=params, cancel_token=cancel_token)

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def _solve(self, system: LinearSystem, params: SimulationParamsDTO,
               cancel_token: Optional[CancellationToken]) -> Tuple[np.ndarray, SolverReport]:
        context = self._context_for(params)
        fell_back = False

        if params.use_gpu:
            try:
                if context is None or not context.available:
                    raise GpuUnavailable("No CUDA device available")
                self._transition(SimulationState.SOLVING_GPU)
                solver = JacobiGpuSolver(
                    context,
                    tolerance=params.tolerance or config.GPU_SOLVER_TOLERANCE,
                    max_iterations=params.max_iterations or config.GPU_SOLVER_MAX_ITERATIONS,
                    cancel_token=cancel_token,
                )
                return solver.solve(system)
            except (GpuUnavailable, GpuSolverFailure) as e:
                logger.warning("[Permeability] GPU solve unavailable, falling back to CPU: %s", e)
                fell_back = True

        self._transition(SimulationState.SOLVING_CPU)
        solver = GaussSeidelSolver(
            tolerance=params.tolerance or config.CPU_SOLVER_TOLERANCE,
            max_iterations=params.max_iterations or config.CPU_SOLVER_MAX_ITERATIONS,
            cancel_token=cancel_token,
        )
        pressures, solver_report = solver.solve(system)
        if fell_back:
            solver_report = SolverReport(
                solver=solver_report.solver,
                backend=solver_report.backend,
                iterations=solver_report.iterations,
                residual=solver_report.residual,
                tolerance=solver_report.tolerance,
                converged=solver_report.converged,
                fell_back_to_cpu=True,
            )
        return pressures, solver_report

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def _build_result(self, model: PoreNetworkModel, params: SimulationParamsDTO,
                      pressures: np.ndarray, flow_rates: np.ndarray, total_flow: float,
                      length: float, area: float, inlets: List[int], outlets: List[int],
                      solver_report: SolverReport) -> PermeabilitySimulationResult:
        tortuosity = params.tortuosity if params.tortuosity is not None else model.tortuosity

        k_m2 = k_darcy = k_md = None
        corrected_darcy = corrected_md = None
        is_valid = True
        invalid_reason = None
        try:
            k_m2 = darcy_permeability(total_flow, params.viscosity, length, area, params.pressure_drop)
            k_darcy = k_m2 / config.DARCY_TO_M2
            k_md = k_darcy * 1000.0
        except DegenerateGeometry as e:
            is_valid = False
            invalid_reason = str(e)
            logger.warning("[Permeability] Permeability undefined: %s", e)

        if k_darcy is not None and math.isfinite(tortuosity) and tortuosity > 0:
            corrected_darcy = k_darcy / (tortuosity * tortuosity)
            corrected_md = corrected_darcy * 1000.0
            logger.info("[Permeability] Tortuosity correction: k=%.4f D, tau=%.2f, corrected k=%.4f D",
                        k_darcy, tortuosity, corrected_darcy)
        elif k_darcy is not None:
            logger.info("[Permeability] No finite tortuosity, corrected permeability not reported")

        kc_darcy = kc_md = None
        if params.compute_kozeny_carman:
            kc_m2 = kozeny_carman_permeability(model, length, area)
            if kc_m2 is not None:
                kc_darcy = kc_m2 / config.DARCY_TO_M2
                kc_md = kc_darcy * 1000.0

        return PermeabilitySimulationResult(
            model=model,
            flow_axis=params.flow_axis,
            viscosity=params.viscosity,
            input_pressure=params.input_pressure,
            output_pressure=params.output_pressure,
            pressure_field={p.id: float(pressures[i]) for i, p in enumerate(model.pores)},
            throat_flow_rates={t.id: float(q) for t, q in zip(model.throats, flow_rates)},
            total_flow_rate=float(total_flow),
            model_length=length,
            model_area=area,
            inlet_pores=tuple(inlets),
            outlet_pores=tuple(outlets),
            permeability_m2=k_m2,
            permeability_darcy=k_darcy,
            permeability_millidarcy=k_md,
            tortuosity=float(tortuosity),
            corrected_permeability_darcy=corrected_darcy,
            corrected_permeability_millidarcy=corrected_md,
            kozeny_carman_darcy=kc_darcy,
            kozeny_carman_millidarcy=kc_md,
            solver_report=solver_report,
            is_valid=is_valid,
            invalid_reason=invalid_reason,
        )


def submit_simulation(model: PoreNetworkModel, params: Optional[SimulationParamsDTO] = None,
                      callback: Optional[Callable[[int, str], None]] = None,
                      cancel_token: Optional[CancellationToken] = None,
                      context: Optional[ComputeContext] = None,
                      executor: Optional[Executor] = None) -> "Future[PermeabilitySimulationResult]":
    """Run a simulation off the calling thread; see ``submit_generation``."""
    simulator = PermeabilitySimulator(context)
    if executor is not None:
        return executor.submit(simulator.simulate, model, params, callback, cancel_token)

    own = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pnm-simulate")
    future = own.submit(simulator.simulate, model, params, callback, cancel_token)
    own.shutdown(wait=False)
    return future
