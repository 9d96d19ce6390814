"""
Iterative solvers for the pore pressure system.

Both solvers share one interface and one convergence metric: the L2 norm of
the diagonally scaled update (the Jacobi-scaled residual) divided by the
boundary pressure scale.
"""

import logging
import math
import time
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numba import jit
from scipy.sparse import csr_matrix

import config
from core.errors import GpuSolverFailure, GpuUnavailable, NumericalNonConvergence
from core.gpu_backend import CUPY_AVAILABLE, ComputeContext, cp
from core.network import SolverReport
from core.progress import CancellationToken, check_cancelled

logger = logging.getLogger(__name__)


@dataclass
class LinearSystem:
    """
    ``A x = b`` with Dirichlet rows.

    Attributes:
        matrix: (N, N) CSR matrix; fixed rows are identity rows
        rhs: (N,) right-hand side; fixed rows carry the fixed value
        fixed: (N,) bool mask of Dirichlet rows
        x0: (N,) initial guess
        scale: Normalisation for the convergence metric
    """
    matrix: csr_matrix
    rhs: np.ndarray
    fixed: np.ndarray
    x0: np.ndarray
    scale: float = 1.0

    @property
    def size(self) -> int:
        return self.matrix.shape[0]

    def active_rows(self) -> Tuple[np.ndarray, np.ndarray]:
        """Diagonal and the mask of rows the solvers update (free, non-singular)."""
        diag = self.matrix.diagonal().astype(np.float64)
        active = (~self.fixed) & (np.abs(diag) > config.SOLVER_DIAGONAL_EPS)
        return diag, active


class LinearSystemSolver(ABC):
    """Common interface for the CPU and GPU solvers."""

    name = "base"
    backend = "cpu"

    def __init__(self, tolerance: float, max_iterations: int,
                 cancel_token: Optional[CancellationToken] = None):
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.cancel_token = cancel_token

    @abstractmethod
    def solve(self, system: LinearSystem) -> Tuple[np.ndarray, SolverReport]:
        pass

    def _report(self, iterations: int, residual: float, converged: bool) -> SolverReport:
        if not converged:
            msg = (f"{self.name} did not converge in {iterations} iterations "
                   f"(residual {residual:.3e}, tolerance {self.tolerance:.1e})")
            logger.warning(msg)
            warnings.warn(msg, NumericalNonConvergence, stacklevel=3)
        return SolverReport(
            solver=self.name,
            backend=self.backend,
            iterations=iterations,
            residual=residual,
            tolerance=self.tolerance,
            converged=converged,
        )


# ==========================================
# CPU: Gauss-Seidel
# ==========================================

@jit(nopython=True, cache=True)
def _gauss_seidel_sweep(indptr, indices, data, diag, rhs, active, x):
    """One in-place forward sweep. Returns the L2 norm of the update."""
    acc = 0.0
    for i in range(x.shape[0]):
        if not active[i]:
            continue
        s = rhs[i]
        for k in range(indptr[i], indptr[i + 1]):
            j = indices[k]
            if j != i:
                s -= data[k] * x[j]
        new = s / diag[i]
        delta = new - x[i]
        acc += delta * delta
        x[i] = new
    return math.sqrt(acc)


class GaussSeidelSolver(LinearSystemSolver):
    """Sequential Gauss-Seidel over CSR rows (numba-compiled sweep)."""

    name = "GaussSeidel"
    backend = "cpu"

    def __init__(self, tolerance: float = config.CPU_SOLVER_TOLERANCE,
                 max_iterations: int = config.CPU_SOLVER_MAX_ITERATIONS,
                 cancel_token: Optional[CancellationToken] = None):
        super().__init__(tolerance, max_iterations, cancel_token)

    def solve(self, system: LinearSystem) -> Tuple[np.ndarray, SolverReport]:
        start = time.time()
        A = system.matrix
        diag, active = system.active_rows()
        x = system.x0.astype(np.float64).copy()
        x[system.fixed] = system.rhs[system.fixed]

        indptr = A.indptr.astype(np.int64)
        indices = A.indices.astype(np.int64)
        data = A.data.astype(np.float64)
        rhs = system.rhs.astype(np.float64)
        scale = max(system.scale, 1.0)

        residual = math.inf
        iterations = 0
        converged = False
        if not active.any():
            residual, converged = 0.0, True

        while not converged and iterations < self.max_iterations:
            check_cancelled(self.cancel_token)
            residual = _gauss_seidel_sweep(indptr, indices, data, diag, rhs, active, x) / scale
            iterations += 1
            if residual < self.tolerance:
                converged = True

        logger.info("[CPU] Gauss-Seidel: %d iterations, residual %.3e, %.2fs",
                    iterations, residual, time.time() - start)
        return x, self._report(iterations, residual, converged)


# ==========================================
# GPU: Jacobi
# ==========================================

_JACOBI_UPDATE_SRC = r'''
extern "C" __global__
void jacobi_update(
    const int* indptr,
    const int* indices,
    const double* data,
    const double* diag,
    const double* rhs,
    const bool* active,
    const double* x_in,
    double* x_out,
    const int n
) {
    int i = blockDim.x * blockIdx.x + threadIdx.x;
    if (i >= n) return;
    if (!active[i]) { x_out[i] = x_in[i]; return; }

    double s = rhs[i];
    for (int k = indptr[i]; k < indptr[i + 1]; k++) {
        int j = indices[k];
        if (j != i) s -= data[k] * x_in[j];
    }
    x_out[i] = s / diag[i];
}
'''

_JACOBI_RESIDUAL_SRC = r'''
extern "C" __global__
void jacobi_residual(
    const double* x_prev,
    const double* x_next,
    const bool* active,
    double* acc,
    const int n
) {
    int i = blockDim.x * blockIdx.x + threadIdx.x;
    if (i >= n || !active[i]) return;
    double d = x_next[i] - x_prev[i];
    atomicAdd(acc, d * d);
}
'''

_kernels = None


def _get_kernels():
    global _kernels
    if _kernels is None:
        _kernels = (
            cp.RawKernel(_JACOBI_UPDATE_SRC, "jacobi_update"),
            cp.RawKernel(_JACOBI_RESIDUAL_SRC, "jacobi_residual"),
        )
    return _kernels


class JacobiGpuSolver(LinearSystemSolver):
    """
    Jacobi iteration on the GPU.

    Two buffers alternate as previous / next iterate. The residual is
    reduced on the device and read back every ``check_interval`` iterations.
    """

    name = "Jacobi"
    backend = "gpu"

    def __init__(self, context: ComputeContext,
                 tolerance: float = config.GPU_SOLVER_TOLERANCE,
                 max_iterations: int = config.GPU_SOLVER_MAX_ITERATIONS,
                 cancel_token: Optional[CancellationToken] = None,
                 check_interval: int = config.GPU_RESIDUAL_CHECK_INTERVAL,
                 threads_per_block: int = config.GPU_THREADS_PER_BLOCK):
        super().__init__(tolerance, max_iterations, cancel_token)
        self.context = context
        self.check_interval = max(1, check_interval)
        self.threads_per_block = threads_per_block

    @staticmethod
    def device_bytes(system: LinearSystem) -> int:
        """Device memory for the CSR arrays, four float64 vectors and the active mask."""
        n = system.size
        nnz = system.matrix.nnz
        return 4 * (n + 1) + 12 * nnz + 8 * 4 * n + n + 8

    def solve(self, system: LinearSystem) -> Tuple[np.ndarray, SolverReport]:
        if not (CUPY_AVAILABLE and self.context.available):
            raise GpuUnavailable("No CUDA device available for the Jacobi solver")
        required = self.device_bytes(system)
        if not self.context.can_fit(required):
            raise GpuUnavailable(
                f"System of {system.size} pores needs {required / (1024 * 1024):.1f} MB, "
                f"{self.context.get_free_memory_mb():.1f} MB free on {self.context.device_name}"
            )

        with self.context.lock:
            try:
                x, iterations, residual, converged = self._run(system)
            except (GpuUnavailable, GpuSolverFailure, InterruptedError):
                raise
            except Exception as e:
                raise GpuSolverFailure(f"GPU Jacobi solver failed: {e}") from e
            finally:
                self.context.clear_memory()

        if not np.all(np.isfinite(x)):
            raise GpuSolverFailure("GPU Jacobi solver produced non-finite pressures")
        return x, self._report(iterations, residual, converged)

    def _run(self, system: LinearSystem):
        start = time.time()
        update_kernel, residual_kernel = _get_kernels()

        A = system.matrix
        n = system.size
        diag, active = system.active_rows()
        x0 = system.x0.astype(np.float64).copy()
        x0[system.fixed] = system.rhs[system.fixed]
        diag_safe = np.where(active, diag, 1.0)

        to_gpu = self.context.to_gpu
        indptr_g = to_gpu(A.indptr.astype(np.int32))
        indices_g = to_gpu(A.indices.astype(np.int32))
        data_g = to_gpu(A.data.astype(np.float64))
        diag_g = to_gpu(diag_safe)
        rhs_g = to_gpu(system.rhs.astype(np.float64))
        active_g = to_gpu(active)
        x_curr = to_gpu(x0)
        x_next = cp.empty_like(x_curr)
        acc = cp.zeros(1, dtype=cp.float64)

        threads = self.threads_per_block
        blocks = (n + threads - 1) // threads
        n_arg = np.int32(n)
        scale = max(system.scale, 1.0)

        residual = math.inf
        iterations = 0
        converged = not bool(active.any())
        if converged:
            residual = 0.0

        while not converged and iterations < self.max_iterations:
            check_cancelled(self.cancel_token)
            update_kernel(
                (blocks,), (threads,),
                (indptr_g, indices_g, data_g, diag_g, rhs_g, active_g, x_curr, x_next, n_arg)
            )
            iterations += 1

            if iterations % self.check_interval == 0 or iterations == self.max_iterations:
                acc.fill(0)
                residual_kernel((blocks,), (threads,), (x_curr, x_next, active_g, acc, n_arg))
                residual = math.sqrt(float(acc.item())) / scale
                if not math.isfinite(residual):
                    raise GpuSolverFailure("GPU Jacobi residual became non-finite")
                converged = residual < self.tolerance

            x_curr, x_next = x_next, x_curr

        x = self.context.to_cpu(x_curr)
        logger.info("[GPU] Jacobi on %s: %d iterations, residual %.3e, %.2fs",
                    self.context.device_name, iterations, residual, time.time() - start)
        return x, iterations, residual, converged
