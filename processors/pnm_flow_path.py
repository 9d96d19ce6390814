"""
Flow-path enforcement for Pore Network Modeling.

Checks that the inlet face of the network reaches the outlet face through
throats. When it does not, disconnected clusters are bridged, largest first,
with synthetic throats across their closest pore pair.
"""

import logging
from collections import deque
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

import config
from core.network import FlowAxis, PoreNetworkModel
from core.progress import CancellationToken, check_cancelled
from processors.pnm_adjacency import PairTable
from processors.pnm_throat import create_throat

logger = logging.getLogger(__name__)


def boundary_zones(model: PoreNetworkModel, axis: FlowAxis,
                   layer_factor: float = config.BOUNDARY_LAYER_FACTOR) -> Tuple[List[int], List[int]]:
    """
    Inlet / outlet pore ids: pores within ``layer_factor`` average radii of the
    minimum / maximum centre coordinate along ``axis``.
    """
    pores = model.pores
    if not pores:
        return [], []
    coords = np.array([p.center.coord(axis) for p in pores], dtype=np.float64)
    layer = layer_factor * model.average_radius()
    lo, hi = coords.min(), coords.max()
    inlets = [p.id for p, c in zip(pores, coords) if c - lo <= layer]
    outlets = [p.id for p, c in zip(pores, coords) if hi - c <= layer]
    return inlets, outlets


def throat_graph(model: PoreNetworkModel) -> csr_matrix:
    """Symmetric sparse graph over pore positions weighted by centre distance (um)."""
    n = model.num_pores
    pairs = model.throat_index_pairs()
    centers = model.centers_array()
    weights = np.linalg.norm(centers[pairs[:, 0]] - centers[pairs[:, 1]], axis=1)
    # csgraph treats stored zeros as missing edges
    weights = np.maximum(weights, np.finfo(np.float64).tiny)

    rows = np.concatenate([pairs[:, 0], pairs[:, 1]])
    cols = np.concatenate([pairs[:, 1], pairs[:, 0]])
    data = np.concatenate([weights, weights])
    return csr_matrix((data, (rows, cols)), shape=(n, n))


def component_labels(model: PoreNetworkModel) -> np.ndarray:
    """Connected-component label per pore position."""
    _, labels = connected_components(throat_graph(model), directed=False)
    return labels


def zones_connected(model: PoreNetworkModel, labels: np.ndarray,
                    inlets: Sequence[int], outlets: Sequence[int]) -> bool:
    """True if some inlet pore shares a component with some outlet pore."""
    index = model.pore_index
    inlet_labels = {int(labels[index[pid]]) for pid in inlets}
    return any(int(labels[index[pid]]) in inlet_labels for pid in outlets)


def find_clusters(model: PoreNetworkModel, labels: Optional[np.ndarray] = None) -> List[List[int]]:
    """Connected components as pore id lists, largest first (ties: smallest member id first)."""
    if labels is None:
        labels = component_labels(model)
    groups: Dict[int, List[int]] = {}
    for pore, label in zip(model.pores, labels.tolist()):
        groups.setdefault(label, []).append(pore.id)

    clusters = list(groups.values())
    clusters.sort(key=lambda c: (-len(c), min(c)))
    return clusters


def _closest_pair(table: PairTable, group_a: Sequence[int], group_b: Sequence[int]) -> Optional[Tuple[int, int, float]]:
    """Minimum-distance (id_a, id_b, distance) across two pore groups; ties by pair ids."""
    rows = np.array([table.index[i] for i in group_a], dtype=np.int64)
    cols = np.array([table.index[i] for i in group_b], dtype=np.int64)
    sub = table.distance[np.ix_(rows, cols)]
    sub = np.where(np.isfinite(sub), sub, np.inf)

    best = sub.min()
    if not np.isfinite(best):
        return None

    ra, cb = np.nonzero(sub == best)
    pairs = sorted(
        (min(group_a[r], group_b[c]), max(group_a[r], group_b[c]), group_a[r], group_b[c])
        for r, c in zip(ra.tolist(), cb.tolist())
    )
    _, _, id_a, id_b = pairs[0]
    return id_a, id_b, float(best)


def bridge_clusters(model: PoreNetworkModel, clusters: List[List[int]], table: PairTable,
                    radius_factor: float = config.THROAT_RADIUS_FACTOR,
                    cancel_token: Optional[CancellationToken] = None) -> int:
    """
    Merge clusters into the largest one, one bridging throat per cluster.

    Returns the number of synthetic throats added (at most ``len(clusters) - 1``).
    """
    if len(clusters) < 2:
        return 0

    main = list(clusters[0])
    added = 0
    pending = deque(clusters[1:])
    while pending:
        check_cancelled(cancel_token)
        cluster = pending.popleft()

        pair = _closest_pair(table, main, cluster)
        if pair is None:
            logger.warning("No finite distance to cluster of %d pores; left disconnected", len(cluster))
            continue

        id_a, id_b, distance = pair
        throat = create_throat(
            model.num_throats + 1, model.get_pore(id_a), model.get_pore(id_b),
            distance, radius_factor, synthetic=True,
        )
        model.add_throat(throat)
        main.extend(cluster)
        added += 1
        logger.debug("Bridged pores %d-%d (%.3f um)", throat.pore_id1, throat.pore_id2, distance)

    return added


def enforce_flow_path(model: PoreNetworkModel, table: PairTable,
                      axis: FlowAxis = FlowAxis(config.DEFAULT_FLOW_AXIS),
                      radius_factor: float = config.THROAT_RADIUS_FACTOR,
                      cancel_token: Optional[CancellationToken] = None) -> int:
    """
    Ensure inlet and outlet zones along ``axis`` are connected.

    Returns the number of synthetic throats inserted.
    """
    if model.num_pores < 2:
        return 0

    labels = component_labels(model)
    inlets, outlets = boundary_zones(model, axis)
    if zones_connected(model, labels, inlets, outlets):
        logger.debug("Flow path along %s already connected", axis.value)
        return 0

    clusters = find_clusters(model, labels)
    added = bridge_clusters(model, clusters, table, radius_factor, cancel_token)
    logger.info("Flow path along %s: bridged %d of %d clusters", axis.value, added, len(clusters))
    return added
