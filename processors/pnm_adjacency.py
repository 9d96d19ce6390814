"""
Connectivity graph construction for Pore Network Modeling.

Pairwise centroid distances and the petrophysical connect / no-connect
decision are precomputed into dense, symmetric tables addressed by pore
position. Throats are then drawn from the table under a per-pore degree cap.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

import config
from core.network import Pore, Throat
from core.progress import CancellationToken, check_cancelled
from processors.pnm_throat import create_throat

logger = logging.getLogger(__name__)


@dataclass
class PairTable:
    """
    Symmetric pair tables over pores in ascending-id order.

    Attributes:
        ids: Pore ids, position i <-> ids[i]
        index: Pore id -> position
        distance: (N, N) centre distances in um (inf on the diagonal)
        connectible: (N, N) petrophysical connect flag (False on the diagonal)
        max_throat_length: Distance threshold used (um)
    """
    ids: np.ndarray
    index: Dict[int, int]
    distance: np.ndarray
    connectible: np.ndarray
    max_throat_length: float

    @property
    def size(self) -> int:
        return len(self.ids)

    def get_distance(self, id1: int, id2: int) -> float:
        return float(self.distance[self.index[id1], self.index[id2]])

    def can_connect(self, id1: int, id2: int) -> bool:
        return bool(self.connectible[self.index[id1], self.index[id2]])


def can_pores_connect(r1: float, r2: float, distance: float,
                      max_throat_length: float, min_overlap_factor: float) -> bool:
    """Scalar form of the connect criterion (distance cap and relative overlap)."""
    if distance > max_throat_length:
        return False
    overlap = max(0.0, r1 + r2 - distance)
    return overlap / min(r1, r2) >= min_overlap_factor


def build_pair_table(
    pores: Sequence[Pore],
    max_throat_length_factor: float = config.MAX_THROAT_LENGTH_FACTOR,
    min_overlap_factor: float = config.MIN_OVERLAP_FACTOR,
    workers: int = config.WORKER_COUNT,
    chunk_rows: int = config.PAIR_TABLE_CHUNK_ROWS,
    cancel_token: Optional[CancellationToken] = None,
) -> PairTable:
    """
    Compute the distance and connectible tables.

    Rows are range-partitioned across a thread pool; every task owns a
    disjoint block of rows, so no locking is needed.
    """
    start = time.time()
    n = len(pores)
    ids = np.array([p.id for p in pores], dtype=np.int64)
    index = {int(pid): i for i, pid in enumerate(ids)}
    centers = np.array([p.center.as_tuple() for p in pores], dtype=np.float64).reshape(n, 3)
    radii = np.array([p.radius for p in pores], dtype=np.float64)

    avg_radius = float(radii.mean()) if n else 0.0
    max_throat_length = avg_radius * max_throat_length_factor

    distance = np.full((n, n), np.inf, dtype=np.float64)
    connectible = np.zeros((n, n), dtype=bool)

    def process_rows(row_start: int, row_end: int) -> int:
        rejected = 0
        for i in range(row_start, row_end):
            check_cancelled(cancel_token)
            d = np.sqrt(np.sum((centers - centers[i]) ** 2, axis=1))
            with np.errstate(divide="ignore", invalid="ignore"):
                overlap = np.maximum(0.0, radii[i] + radii - d) / np.minimum(radii[i], radii)
                ok = (d <= max_throat_length) & (overlap >= min_overlap_factor)

            bad = ~(np.isfinite(d) & np.isfinite(overlap))
            bad[i] = False
            if bad.any():
                ok &= ~bad
                rejected += int(bad.sum())

            d[i] = np.inf
            ok[i] = False
            distance[i] = d
            connectible[i] = ok
        return rejected

    ranges = [(s, min(s + chunk_rows, n)) for s in range(0, n, max(1, chunk_rows))]
    if workers > 1 and len(ranges) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(process_rows, s, e) for s, e in ranges]
            rejected = sum(f.result() for f in futures)
    else:
        rejected = sum(process_rows(s, e) for s, e in ranges)

    if rejected:
        # Each bad pair is seen once from each end.
        logger.warning("Marked %d pore pairs non-connectible (non-finite geometry)", rejected // 2)

    logger.debug("Pair table: %d pores, %d connectible pairs, %.2fs",
                 n, int(connectible.sum()) // 2, time.time() - start)

    return PairTable(
        ids=ids,
        index=index,
        distance=distance,
        connectible=connectible,
        max_throat_length=max_throat_length,
    )


def select_throats(
    pores: Sequence[Pore],
    table: PairTable,
    max_connections: int = config.MAX_CONNECTIONS,
    radius_factor: float = config.THROAT_RADIUS_FACTOR,
    cancel_token: Optional[CancellationToken] = None,
) -> List[Throat]:
    """
    Draw throats from the pair table under a per-pore degree cap.

    Pores are visited in ascending id. Each takes its nearest connectible
    neighbours (distance, then id) up to the cap; a pair is emitted once, from
    its smaller id, and only while both endpoints are under the cap. Pore
    ``connection_count`` values are updated as throats are accepted.
    """
    n = len(pores)
    cap = min(max_connections, n - 1)
    if cap <= 0:
        return []

    degree = np.zeros(n, dtype=np.int64)
    throats: List[Throat] = []

    for i, pore in enumerate(pores):
        check_cancelled(cancel_token)

        candidates = np.flatnonzero(table.connectible[i])
        if candidates.size == 0:
            continue
        order = np.lexsort((table.ids[candidates], table.distance[i, candidates]))
        nearest = candidates[order[:cap]]

        for j in nearest:
            other = pores[j]
            if pore.id >= other.id:
                continue
            if degree[i] >= cap or degree[j] >= cap:
                continue
            try:
                throat = create_throat(
                    len(throats) + 1, pore, other, float(table.distance[i, j]), radius_factor
                )
            except ArithmeticError as e:
                table.connectible[i, j] = table.connectible[j, i] = False
                logger.warning("Pair (%d, %d) dropped: %s", pore.id, other.id, e)
                continue
            throats.append(throat)
            degree[i] += 1
            degree[j] += 1

    for i, pore in enumerate(pores):
        pore.connection_count = int(degree[i])

    return throats
