"""
Exception taxonomy for network generation and permeability simulation.
"""


class PoreNetworkError(Exception):
    """Base class for all pore network failures."""


class InvalidModelError(PoreNetworkError, ValueError):
    """The network cannot be simulated (no pores, no throats, broken invariants)."""


class CancellationSignaled(InterruptedError):
    """Raised when the caller cancels a running generation or simulation."""

    def __init__(self, message: str = "Operation cancelled by user."):
        super().__init__(message)


class GpuUnavailable(PoreNetworkError, RuntimeError):
    """No usable CUDA device. Callers fall back to the CPU path."""


class GpuSolverFailure(PoreNetworkError, RuntimeError):
    """The GPU solver raised or produced non-finite output."""


class DegenerateGeometry(PoreNetworkError, ArithmeticError):
    """Zero sample area, length or pressure drop; permeability is undefined."""


class NumericalNonConvergence(RuntimeWarning):
    """Iterative solver hit its iteration cap before reaching tolerance."""
