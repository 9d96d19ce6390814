"""
Bulk network properties: porosity and directional tortuosity.
"""

import logging
import math
from typing import Dict, Optional

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import dijkstra

import config
from core.network import FlowAxis, PoreNetworkModel
from core.progress import CancellationToken, check_cancelled
from processors.pnm_flow_path import boundary_zones, throat_graph

logger = logging.getLogger(__name__)


def calculate_volumes(model: PoreNetworkModel) -> None:
    model.total_pore_volume = float(sum(p.volume for p in model.pores))
    model.total_throat_volume = float(sum(t.volume for t in model.throats))


def calculate_porosity(model: PoreNetworkModel) -> float:
    """
    Void fraction of the box spanned by every pore sphere.

    When the box has no volume (one pore, coplanar pores) a cube of side
    ``4 * avg_radius * n^(1/3)`` stands in for it.
    """
    n = model.num_pores
    if n == 0:
        return 0.0

    centers = model.centers_array()
    radii = model.radii_array()[:, None]
    extent = (centers + radii).max(axis=0) - (centers - radii).min(axis=0)
    box_volume = float(np.prod(extent))

    if not (box_volume > 0 and math.isfinite(box_volume)):
        side = model.average_radius() * 4.0 * n ** (1.0 / 3.0)
        box_volume = side ** 3

    if not (box_volume > 0 and math.isfinite(box_volume)):
        return 0.0

    void = model.total_pore_volume + model.total_throat_volume
    return float(min(1.0, max(0.0, void / box_volume)))


def max_tortuosity(mean_connectivity: float) -> float:
    """Upper bound on tau, looser for sparsely connected networks."""
    for threshold, ceiling in config.TORTUOSITY_CEILINGS:
        if mean_connectivity >= threshold:
            return ceiling
    return config.TORTUOSITY_CEILING_FALLBACK


def calculate_axis_tortuosity(model: PoreNetworkModel, axis: FlowAxis,
                              graph: Optional[csr_matrix] = None,
                              cancel_token: Optional[CancellationToken] = None) -> float:
    """
    Geometric tortuosity along one axis.

    Shortest throat paths from every inlet pore to every outlet pore, the
    upper median over paths at least as long as the sample (and shorter than
    15x it), divided by the sample length. Returns +inf if no path survives.
    """
    if model.num_pores < 2 or model.num_throats == 0:
        return 1.0

    inlets, outlets = boundary_zones(model, axis)
    if not inlets or not outlets:
        return math.inf

    coords = model.centers_array()[:, axis.index]
    straight = float(coords.max() - coords.min())
    if straight < config.TORTUOSITY_MIN_STRAIGHT_LENGTH:
        return 1.0

    if graph is None:
        graph = throat_graph(model)

    index = model.pore_index
    outlet_pos = np.array([index[pid] for pid in outlets], dtype=np.int64)
    upper = straight * config.TORTUOSITY_MAX_PATH_FACTOR

    cache: Dict[int, np.ndarray] = {}
    paths = []
    for pid in inlets:
        check_cancelled(cancel_token)
        source = index[pid]
        dist_map = cache.get(source)
        if dist_map is None:
            dist_map = dijkstra(graph, directed=False, indices=source)
            cache[source] = dist_map

        d = dist_map[outlet_pos]
        paths.extend(d[(d >= straight) & (d < upper)].tolist())

    if not paths:
        return math.inf

    paths.sort()
    tau = paths[len(paths) // 2] / straight
    return float(min(max(tau, 1.0), max_tortuosity(model.average_connectivity())))


def calculate_tortuosity(model: PoreNetworkModel,
                         cancel_token: Optional[CancellationToken] = None) -> Dict[str, float]:
    """
    Per-axis tortuosity plus the overall value (mean of the finite axes).

    Returns:
        {"X": tau_x, "Y": tau_y, "Z": tau_z, "Mean": tau}
    """
    graph = throat_graph(model) if model.num_pores >= 2 and model.num_throats else None
    result = {
        axis.value: calculate_axis_tortuosity(model, axis, graph, cancel_token)
        for axis in FlowAxis
    }
    finite = [v for v in result.values() if math.isfinite(v)]
    result["Mean"] = float(np.mean(finite)) if finite else math.inf

    logger.info("Tortuosity: X=%.3f, Y=%.3f, Z=%.3f, Mean=%.3f",
                result["X"], result["Y"], result["Z"], result["Mean"])
    return result


def calculate_network_properties(model: PoreNetworkModel,
                                 cancel_token: Optional[CancellationToken] = None) -> PoreNetworkModel:
    """Fill volumes, porosity and tortuosity on ``model`` in place."""
    calculate_volumes(model)
    model.porosity = calculate_porosity(model)
    tortuosity = calculate_tortuosity(model, cancel_token)
    model.tortuosity = tortuosity.pop("Mean")
    model.tortuosity_by_axis = tortuosity
    return model
