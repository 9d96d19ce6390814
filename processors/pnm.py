"""
Pore Network Model generation.

This module orchestrates the PNM workflow:
1. Pore extraction (delegated to pore.py)
2. Pair table and throat selection (delegated to pnm_adjacency.py)
3. Flow-path enforcement (delegated to pnm_flow_path.py)
4. Porosity and tortuosity (delegated to pnm_properties.py)
"""

import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional

from core.base import BaseProcessor
from core.dto import GenerationParamsDTO
from core.errors import CancellationSignaled
from core.network import PoreNetworkModel
from core.progress import CancellationToken, MonotonicProgress, check_cancelled
from core.separation import SeparationResult
from processors.pnm_adjacency import build_pair_table, select_throats
from processors.pnm_flow_path import enforce_flow_path
from processors.pnm_properties import calculate_network_properties
from processors.pore import PoreExtractor

logger = logging.getLogger(__name__)


class PoreNetworkGenerator(BaseProcessor):
    """
    Builds a PoreNetworkModel from a particle separation result.

    Workflow:
    1. Particles -> sphere-equivalent pores
    2. Pairwise distances and connectivity criterion
    3. Degree-capped throat selection
    4. Optional inlet/outlet connectivity repair
    5. Network properties

    The returned model is frozen and validated.
    """

    def __init__(self, extractor: Optional[PoreExtractor] = None):
        super().__init__()
        self.extractor = extractor or PoreExtractor()

    def process(self, data: SeparationResult, callback: Optional[Callable[[int, str], None]] = None,
                params: Optional[GenerationParamsDTO] = None,
                cancel_token: Optional[CancellationToken] = None) -> PoreNetworkModel:
        """
        Generate the pore network.

        Args:
            data: Labeled volume and particle list
            callback: Progress callback (percent, message)
            params: Generation parameters (defaults from config)
            cancel_token: Cooperative cancellation

        Returns:
            Frozen PoreNetworkModel
        """
        params = params or GenerationParamsDTO()
        progress = MonotonicProgress(callback)

        def report(p, msg):
            logger.info("[PNM] %s", msg)
            progress(p, msg)

        start = time.time()
        try:
            report(0, f"Generating network from {data.particle_count} particles...")
            check_cancelled(cancel_token)

            report(5, "Extracting pores...")
            pores = self.extractor.extract(data, params.pixel_size, cancel_token)
            model = PoreNetworkModel(pores=pores, pixel_size=params.pixel_size,
                                     metadata={"GenerationParams": params.to_dict()})
            report(30, f"Extracted {len(pores)} pores. Computing pair distances...")

            table = build_pair_table(
                pores,
                max_throat_length_factor=params.max_throat_length_factor,
                min_overlap_factor=params.min_overlap_factor,
                cancel_token=cancel_token,
            )
            report(50, "Selecting throats...")

            model.throats = select_throats(
                pores, table,
                max_connections=params.max_connections,
                radius_factor=params.throat_radius_factor,
                cancel_token=cancel_token,
            )
            report(70, f"Created {model.num_throats} throats.")

            bridged = 0
            if params.enforce_flow_path and model.num_pores > 0:
                bridged = enforce_flow_path(
                    model, table, axis=params.flow_axis,
                    radius_factor=params.throat_radius_factor,
                    cancel_token=cancel_token,
                )
            model.metadata["BridgingThroats"] = bridged
            report(85, "Calculating network properties...")

            calculate_network_properties(model, cancel_token)
            model.freeze()
            model.validate()

        except CancellationSignaled:
            logger.info("[PNM] Generation cancelled")
            raise

        model.metadata["ElapsedSeconds"] = time.time() - start
        report(100, f"Network complete: {model.num_pores} pores, {model.num_throats} throats, "
                    f"porosity {model.porosity:.4f}, tortuosity {model.tortuosity:.3f}")
        return model

    def generate(self, separation: SeparationResult, params: Optional[GenerationParamsDTO] = None,
                 callback: Optional[Callable[[int, str], None]] = None,
                 cancel_token: Optional[CancellationToken] = None) -> PoreNetworkModel:
        return self.process(separation, callback=callback, params=params, cancel_token=cancel_token)


def submit_generation(separation: SeparationResult, params: Optional[GenerationParamsDTO] = None,
                      callback: Optional[Callable[[int, str], None]] = None,
                      cancel_token: Optional[CancellationToken] = None,
                      executor: Optional[Executor] = None) -> "Future[PoreNetworkModel]":
    """
    Run generation off the calling thread.

    Without an explicit executor a single-use worker thread is created and
    released once the job finishes.
    """
    generator = PoreNetworkGenerator()
    if executor is not None:
        return executor.submit(generator.generate, separation, params, callback, cancel_token)

    own = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pnm-generate")
    future = own.submit(generator.generate, separation, params, callback, cancel_token)
    own.shutdown(wait=False)
    return future
