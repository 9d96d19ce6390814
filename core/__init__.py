"""
Core module containing the data model, configuration objects and shared services.
"""

from core.errors import (
    PoreNetworkError,
    InvalidModelError,
    CancellationSignaled,
    GpuUnavailable,
    GpuSolverFailure,
    DegenerateGeometry,
    NumericalNonConvergence,
)
from core.network import (
    FlowAxis,
    Point3D,
    Pore,
    Throat,
    PoreNetworkModel,
    SolverReport,
    PermeabilitySimulationResult,
)
from core.separation import BoundingBox, Particle, SeparationResult
from core.base import BaseLoader, BaseProcessor
from core.gpu_backend import ComputeContext, get_compute_context
from core.dto import GenerationParamsDTO, SimulationParamsDTO
from core.progress import (
    CancellationToken,
    MonotonicProgress,
    ProgressEvent,
    ProgressObserver,
    ProgressBus,
    StageProgressMapper,
    CancelFlagObserver,
    TerminalProgressObserver,
)
from core.pipeline import (
    PipelineStage,
    PIPELINE_STAGE_ORDER,
    resolve_pipeline_stages,
    build_network_pipeline,
    run_network_pipeline,
)

__all__ = [
    'PoreNetworkError', 'InvalidModelError', 'CancellationSignaled',
    'GpuUnavailable', 'GpuSolverFailure', 'DegenerateGeometry', 'NumericalNonConvergence',
    'FlowAxis', 'Point3D', 'Pore', 'Throat', 'PoreNetworkModel',
    'SolverReport', 'PermeabilitySimulationResult',
    'BoundingBox', 'Particle', 'SeparationResult',
    'BaseLoader', 'BaseProcessor',
    'ComputeContext', 'get_compute_context',
    'GenerationParamsDTO', 'SimulationParamsDTO',
    'CancellationToken', 'MonotonicProgress',
    'ProgressEvent', 'ProgressObserver', 'ProgressBus', 'StageProgressMapper',
    'CancelFlagObserver', 'TerminalProgressObserver',
    'PipelineStage', 'PIPELINE_STAGE_ORDER', 'resolve_pipeline_stages',
    'build_network_pipeline', 'run_network_pipeline',
]
