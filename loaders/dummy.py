"""
Synthetic particle volumes for testing and headless demos.
"""

import logging
from typing import Optional, Callable, Tuple

import numpy as np

import config
from core import BaseLoader, SeparationResult

logger = logging.getLogger(__name__)


class DummyLoader(BaseLoader):
    """
    Randomly placed labeled spheres.

    Centres are at least ``min_separation * (r1 + r2)`` apart, so neighbours
    can overlap; later spheres overwrite the shared voxels. All randomness
    comes from one ``numpy.random.Generator`` seeded at construction, so
    equal seeds give identical volumes.
    """

    def __init__(self, seed: Optional[int] = config.DEFAULT_SEED,
                 max_spheres: int = config.SYNTHETIC_MAX_SPHERES,
                 radius_range: Tuple[int, int] = config.SYNTHETIC_RADIUS_RANGE,
                 min_separation: float = config.SYNTHETIC_MIN_SEPARATION,
                 rng: Optional[np.random.Generator] = None):
        self.seed = seed
        self.max_spheres = max_spheres
        self.radius_range = radius_range
        self.min_separation = min_separation
        self._rng = rng

    def load(self, size: Optional[int] = None,
             callback: Optional[Callable[[int, str], None]] = None) -> SeparationResult:
        size = int(size or config.SYNTHETIC_VOLUME_SIZE)
        if size < 4:
            raise ValueError(f"Synthetic volume size must be >= 4, got {size}")

        rng = self._rng if self._rng is not None else np.random.default_rng(self.seed)
        logger.info("[Loader] Generating %d^3 synthetic particle volume (seed=%s)", size, self.seed)
        if callback:
            callback(0, "Initializing empty label volume...")

        labels = np.zeros((size, size, size), dtype=np.int32)
        min_r, max_r = self.radius_range
        max_r = max(min_r, min(max_r, (size - 2) // 2))
        min_r = max(1, min(min_r, max_r))

        placed = []   # (cx, cy, cz, r)
        attempts = self.max_spheres * 4
        for attempt in range(attempts):
            if len(placed) >= self.max_spheres:
                break

            radius = int(rng.integers(min_r, max_r + 1))
            low, high = radius, size - radius - 1
            if low > high:
                continue
            cx, cy, cz = (int(v) for v in rng.integers(low, high + 1, size=3))

            # Neighbours may overlap (split pores touch) but never swallow each other.
            if any((cx - px) ** 2 + (cy - py) ** 2 + (cz - pz) ** 2 < (self.min_separation * (radius + pr)) ** 2
                   for px, py, pz, pr in placed):
                continue

            z0, z1 = cz - radius, cz + radius + 1
            y0, y1 = cy - radius, cy + radius + 1
            x0, x1 = cx - radius, cx + radius + 1
            zz, yy, xx = np.ogrid[z0:z1, y0:y1, x0:x1]
            sphere = (zz - cz) ** 2 + (yy - cy) ** 2 + (xx - cx) ** 2 <= radius ** 2
            labels[z0:z1, y0:y1, x0:x1][sphere] = len(placed) + 1
            placed.append((cx, cy, cz, radius))

            if callback and attempt % 16 == 0:
                callback(10 + int(70 * len(placed) / self.max_spheres),
                         f"Placing spheres ({len(placed)}/{self.max_spheres})...")

        if callback:
            callback(85, "Measuring particles...")

        result = SeparationResult.from_label_volume(labels, metadata={
            "Type": "Synthetic",
            "Description": "Randomly placed overlapping labeled spheres",
            "Seed": self.seed,
            "SphereCount": len(placed),
            "VolumeSize": size,
        })

        if callback:
            callback(100, f"Generated {result.particle_count} particles.")
        return result
