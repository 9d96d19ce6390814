"""
Shared pipeline used by the CLI and by headless callers.

This module chains the processing stages:
load -> generate -> simulate
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional, Tuple

from core.dto import GenerationParamsDTO, SimulationParamsDTO
from core.gpu_backend import ComputeContext
from core.progress import CancellationToken, ProgressBus, StageProgressMapper, noop_progress
from core.separation import SeparationResult


PipelineStage = Literal["load", "generate", "simulate"]
PIPELINE_STAGE_ORDER: tuple[PipelineStage, ...] = ("load", "generate", "simulate")


def resolve_pipeline_stages(target_stage: PipelineStage = "simulate") -> tuple[PipelineStage, ...]:
    """
    Resolve the ordered list of stages required for a target stage.

    Example:
    - target_stage='generate' -> ('load', 'generate')
    """
    if target_stage not in PIPELINE_STAGE_ORDER:
        allowed = ", ".join(PIPELINE_STAGE_ORDER)
        raise ValueError(f"Unknown pipeline stage '{target_stage}'. Expected one of: {allowed}.")

    end_idx = PIPELINE_STAGE_ORDER.index(target_stage)
    return tuple(PIPELINE_STAGE_ORDER[: end_idx + 1])


# ---------------------------------------------------------------------------
# DAG executor
# ---------------------------------------------------------------------------

@dataclass
class DAGNode:
    """A single step in a processing pipeline."""
    name:        str
    fn:          Callable[[dict], Any]
    depends_on:  Tuple[str, ...] = field(default_factory=tuple)


class SimpleDAGExecutor:
    """
    Topologically-sorted pipeline runner.

    Each ``fn`` receives a dict of ``{node_name: result}`` for the nodes it
    depends on. Its return value is stored under its own name.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, DAGNode] = {}

    def add(self, node: DAGNode) -> "SimpleDAGExecutor":
        self._nodes[node.name] = node
        return self

    @property
    def node_names(self) -> tuple[str, ...]:
        return tuple(self._nodes)

    def _topo_sort(self) -> list[str]:
        order: list[str] = []
        done: set[str] = set()
        for root in self._nodes:
            stack = [(root, False)]
            while stack:
                name, expanded = stack.pop()
                if name in done:
                    continue
                if expanded:
                    done.add(name)
                    order.append(name)
                    continue
                stack.append((name, True))
                for dep in reversed(self._nodes[name].depends_on):
                    if dep not in self._nodes:
                        raise KeyError(f"DAG node '{name}' depends on unknown node '{dep}'")
                    if dep not in done:
                        stack.append((dep, False))
        return order

    def run(self, progress: Optional[Callable[[int, str], None]] = None) -> dict:
        order = self._topo_sort()
        results: dict[str, Any] = {}
        total = len(order)
        for i, name in enumerate(order):
            node = self._nodes[name]
            inputs = {dep: results[dep] for dep in node.depends_on}
            if progress:
                progress(int(100 * i / total), f"Running: {name}")
            results[name] = node.fn(inputs)
        if progress:
            progress(100, "Pipeline complete")
        return results


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def _resolve_dummy_size(input_path: str) -> Optional[int]:
    """Accepts an integer string (e.g. "96"); anything else uses the loader default."""
    if not input_path:
        return None
    try:
        size = int(input_path)
    except (TypeError, ValueError):
        return None
    return size if size > 0 else None


def _stage_load(loader_type: str, input_path: str, seed: int,
                progress: Callable[[int, str], None]) -> SeparationResult:
    """Load or synthesise the labeled particle volume."""
    progress(0, f"Loading input via {loader_type}...")

    loader_type = (loader_type or "dummy").lower()
    if loader_type == "dummy":
        from loaders import DummyLoader

        return DummyLoader(seed=seed).load(_resolve_dummy_size(input_path), callback=progress)

    if loader_type == "labels":
        from loaders import LabelVolumeLoader

        if not input_path:
            raise ValueError("input_path is required when loader_type='labels'.")
        return LabelVolumeLoader().load(input_path, callback=progress)

    raise ValueError(f"Unknown loader_type: {loader_type!r}. Supported: 'dummy', 'labels'.")


def build_network_pipeline(
    generation: GenerationParamsDTO,
    simulation: Optional[SimulationParamsDTO] = None,
    *,
    input_data: Optional[SeparationResult] = None,
    loader_type: str = "dummy",
    input_path: str = "",
    target_stage: PipelineStage = "simulate",
    progress_bus: Optional[ProgressBus] = None,
    cancel_token: Optional[CancellationToken] = None,
    context: Optional[ComputeContext] = None,
) -> SimpleDAGExecutor:
    """
    Build a DAG executor for load -> generate -> simulate.

    Args:
        generation: Network generation parameters.
        simulation: Simulation parameters (defaults when omitted).
        input_data: Optional preloaded separation result; skips loading.
        loader_type: "dummy" (synthetic) or "labels" (.npy / .tif file).
        input_path: Loader source (file path, or volume size for "dummy").
        target_stage: Last stage to execute.
        progress_bus: Optional progress event bus; stages report on one 0-100 scale.
        cancel_token: Cooperative cancellation for every stage.
        context: Compute context for the simulation stage.
    """
    stages = resolve_pipeline_stages(target_stage)
    simulation = simulation or SimulationParamsDTO()
    mapper = StageProgressMapper(stages)
    dag = SimpleDAGExecutor()

    def stage_progress(stage: PipelineStage) -> Callable[[int, str], None]:
        if progress_bus is None:
            return noop_progress
        return progress_bus.stage_callback(stage, mapper)

    def run_load(_deps):
        if input_data is not None:
            stage_progress("load")(100, f"Using preloaded volume ({input_data.particle_count} particles)")
            return input_data
        return _stage_load(loader_type, input_path, generation.seed, stage_progress("load"))

    def run_generate(deps):
        from processors import PoreNetworkGenerator

        return PoreNetworkGenerator().process(
            deps["load"], callback=stage_progress("generate"),
            params=generation, cancel_token=cancel_token,
        )

    def run_simulate(deps):
        from processors import PermeabilitySimulator

        return PermeabilitySimulator(context).process(
            deps["generate"], callback=stage_progress("simulate"),
            params=simulation, cancel_token=cancel_token,
        )

    if "load" in stages:
        dag.add(DAGNode(name="load", fn=run_load, depends_on=()))
    if "generate" in stages:
        dag.add(DAGNode(name="generate", fn=run_generate, depends_on=("load",)))
    if "simulate" in stages:
        dag.add(DAGNode(name="simulate", fn=run_simulate, depends_on=("generate",)))

    return dag


def run_network_pipeline(
    generation: GenerationParamsDTO,
    simulation: Optional[SimulationParamsDTO] = None,
    *,
    input_data: Optional[SeparationResult] = None,
    loader_type: str = "dummy",
    input_path: str = "",
    target_stage: PipelineStage = "simulate",
    progress_bus: Optional[ProgressBus] = None,
    pipeline_progress: Optional[Callable[[int, str], None]] = None,
    cancel_token: Optional[CancellationToken] = None,
    context: Optional[ComputeContext] = None,
) -> dict[str, Any]:
    """
    Execute the pipeline and return stage outputs keyed by stage name.
    """
    dag = build_network_pipeline(
        generation,
        simulation,
        input_data=input_data,
        loader_type=loader_type,
        input_path=input_path,
        target_stage=target_stage,
        progress_bus=progress_bus,
        cancel_token=cancel_token,
        context=context,
    )
    return dag.run(progress=pipeline_progress)


__all__ = [
    "PipelineStage",
    "PIPELINE_STAGE_ORDER",
    "resolve_pipeline_stages",
    "DAGNode",
    "SimpleDAGExecutor",
    "build_network_pipeline",
    "run_network_pipeline",
]
