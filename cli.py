"""
Headless CLI entry point for the Pore Network Modeling Suite.

Runs load -> generate -> simulate and prints the network statistics and the
permeability result.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Optional

from core import (
    CancellationSignaled,
    CancellationToken,
    GenerationParamsDTO,
    InvalidModelError,
    SimulationParamsDTO,
    run_network_pipeline,
)
from core.progress import CancelFlagObserver, ProgressBus, TerminalProgressObserver


def run_batch(generation: GenerationParamsDTO, simulation: SimulationParamsDTO,
              loader_type: str, input_path: str, target_stage: str = "simulate",
              cancel_token: Optional[CancellationToken] = None) -> dict:
    """
    Execute the pipeline using the shared DAG engine.

    Cancelling ``cancel_token`` stops the run at the next progress event.

    Returns:
        Dict keyed by stage name containing each stage output.
    """
    progress_bus = ProgressBus().subscribe(TerminalProgressObserver())
    if cancel_token is not None:
        progress_bus.subscribe(CancelFlagObserver(cancel_token))

    t_start = time.perf_counter()
    results = run_network_pipeline(
        generation,
        simulation,
        loader_type=loader_type,
        input_path=input_path,
        target_stage=target_stage,  # type: ignore[arg-type]
        progress_bus=progress_bus,
        pipeline_progress=progress_bus.pipeline_callback(),
        cancel_token=cancel_token,
    )
    elapsed = time.perf_counter() - t_start

    print(f"\nPipeline complete in {elapsed:.2f}s")

    model = results.get("generate")
    if model is not None:
        stats = model.summary()
        print("\nNetwork:")
        for key in ("PoreCount", "ThroatCount", "SyntheticThroatCount", "Porosity",
                    "Tortuosity", "CoordinationNumber", "ConnectedPoreFraction"):
            print(f"  {key:<24} {stats[key]}")
        for axis, tau in stats["TortuosityByAxis"].items():
            print(f"  Tortuosity {axis:<13} {tau:.3f}")

    result = results.get("simulate")
    if result is not None:
        print("\nPermeability:")
        for key, value in result.to_dict().items():
            print(f"  {key:<24} {value}")

    return results


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python cli.py",
        description="Headless pore network generation and permeability simulation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        metavar="FILE",
        help="YAML or JSON file with 'generation' / 'simulation' sections. Overrides other flags.",
    )
    parser.add_argument("--input", metavar="PATH", default="",
                        help="Label volume (.npy / .tif), or volume size for the dummy loader.")
    parser.add_argument("--loader", metavar="TYPE", default="dummy", help="Loader type: dummy | labels.")
    parser.add_argument("--stage", metavar="STAGE", default="simulate", help="Last stage: load | generate | simulate.")

    gen = parser.add_argument_group("generation")
    gen.add_argument("--pixel-size", metavar="M", type=float, default=1e-6, help="Voxel pitch in metres.")
    gen.add_argument("--max-throat-length-factor", metavar="F", type=float, default=3.0)
    gen.add_argument("--min-overlap-factor", metavar="F", type=float, default=0.1)
    gen.add_argument("--max-connections", metavar="N", type=int, default=6)
    gen.add_argument("--no-flow-path", action="store_true", help="Skip inlet/outlet connectivity repair.")
    gen.add_argument("--seed", metavar="N", type=int, default=42, help="Seed for the dummy loader.")

    sim = parser.add_argument_group("simulation")
    sim.add_argument("--axis", metavar="AXIS", default="Z", help="Flow axis: X | Y | Z.")
    sim.add_argument("--viscosity", metavar="PA_S", type=float, default=0.001)
    sim.add_argument("--p-in", metavar="PA", type=float, default=2000.0, help="Inlet pressure.")
    sim.add_argument("--p-out", metavar="PA", type=float, default=1000.0, help="Outlet pressure.")
    sim.add_argument("--cpu", action="store_true", help="Force the CPU solver.")
    sim.add_argument("--tolerance", metavar="TOL", type=float, default=None)

    parser.add_argument("--dry-run", action="store_true", help="Print resolved parameters without running.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level.")
    return parser


def _resolve_params(args: argparse.Namespace) -> tuple[GenerationParamsDTO, SimulationParamsDTO]:
    """Resolve DTOs from a config file or inline CLI flags."""
    if args.config:
        return GenerationParamsDTO.from_yaml(args.config), SimulationParamsDTO.from_yaml(args.config)

    generation = GenerationParamsDTO(
        pixel_size=args.pixel_size,
        max_throat_length_factor=args.max_throat_length_factor,
        min_overlap_factor=args.min_overlap_factor,
        max_connections=args.max_connections,
        enforce_flow_path=not args.no_flow_path,
        flow_axis=args.axis,
        seed=args.seed,
    )
    simulation = SimulationParamsDTO(
        viscosity=args.viscosity,
        input_pressure=args.p_in,
        output_pressure=args.p_out,
        flow_axis=args.axis,
        use_gpu=not args.cpu,
        tolerance=args.tolerance,
    )
    return generation, simulation


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        generation, simulation = _resolve_params(args)
    except ValueError as exc:
        parser.error(str(exc))

    if args.dry_run:
        print("Resolved parameters:")
        print(json.dumps({"generation": generation.to_dict(), "simulation": simulation.to_dict()}, indent=2))
        return 0

    print("=" * 60)
    print("Pore Network Modeling - Headless Batch Processor")
    print("=" * 60)

    try:
        run_batch(generation, simulation, args.loader, args.input, args.stage)
    except (KeyboardInterrupt, CancellationSignaled):
        print("\nAborted by user.")
        return 1
    except InvalidModelError as exc:
        print(f"\nNetwork cannot be simulated: {exc}")
        return 2
    except Exception as exc:
        import traceback

        print(f"\nPipeline failed: {type(exc).__name__}: {exc}")
        traceback.print_exc()
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
