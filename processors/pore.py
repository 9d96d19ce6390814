"""
Pore extraction: one sphere-equivalent pore per separated particle.
"""

import logging
import math
from typing import List, Optional

import numpy as np
import scipy.ndimage as ndimage
from joblib import Parallel, delayed

import config
from core.network import Point3D, Pore
from core.progress import CancellationToken, check_cancelled
from core.separation import Particle, SeparationResult

logger = logging.getLogger(__name__)

# 6-connected neighbourhood
_FACE_STRUCTURE = ndimage.generate_binary_structure(3, 1)


def count_boundary_voxels(label_volume: np.ndarray, particle: Particle) -> int:
    """
    Count particle voxels that touch a differently labeled voxel across a face.

    Only the particle's bounding box (grown by one voxel) is examined.
    Neighbours outside the volume are not counted as different.
    """
    slc = particle.bounds.padded_slices(label_volume.shape, pad=1)
    mask = label_volume[slc] == particle.id
    if not mask.any():
        return 0

    # border_value=1 treats the space beyond a clipped crop as "same label",
    # so particle voxels on the volume faces are not counted for that face.
    interior = ndimage.binary_erosion(mask, structure=_FACE_STRUCTURE, border_value=1)
    return int(np.count_nonzero(mask & ~interior))


def measure_particle(label_volume: np.ndarray, particle: Particle, pixel_size: float) -> Pore:
    """Sphere-equivalent pore for one particle, in micrometre units."""
    volume = particle.voxel_count * pixel_size ** 3                       # m^3
    radius = (3.0 * volume / (4.0 * math.pi)) ** (1.0 / 3.0)            # m
    surface_area = (count_boundary_voxels(label_volume, particle)
                    * config.SURFACE_AREA_FACE_FACTOR * pixel_size ** 2)  # m^2

    cx, cy, cz = particle.center
    scale = pixel_size * config.M_TO_UM
    return Pore(
        id=int(particle.id),
        volume=volume * config.M3_TO_UM3,
        area=surface_area * config.M2_TO_UM2,
        radius=radius * config.M_TO_UM,
        center=Point3D(cx * scale, cy * scale, cz * scale),
    )


class PoreExtractor:
    """
    Converts every particle of a separation result into a Pore.

    Particles are independent, so measurement runs on joblib worker threads
    for larger inputs. The output is sorted by ascending id.
    """

    def __init__(self, n_jobs: int = config.WORKER_COUNT,
                 parallel_threshold: int = config.EXTRACTION_PARALLEL_MIN_PARTICLES):
        self.n_jobs = n_jobs
        self.parallel_threshold = parallel_threshold

    def extract(self, separation: SeparationResult, pixel_size: float,
                cancel_token: Optional[CancellationToken] = None) -> List[Pore]:
        if pixel_size <= 0:
            raise ValueError(f"pixel_size must be positive, got {pixel_size}")

        labels = separation.label_volume

        def process_single_particle(particle: Particle) -> Optional[Pore]:
            check_cancelled(cancel_token)
            if particle.voxel_count <= 0:
                logger.warning("Skipping particle %s: voxel count %s", particle.id, particle.voxel_count)
                return None
            try:
                return measure_particle(labels, particle, pixel_size)
            except (ValueError, IndexError, ArithmeticError) as e:
                logger.warning("Skipping particle %s: %s", particle.id, e)
                return None

        particles = separation.particles
        if len(particles) > self.parallel_threshold and self.n_jobs > 1:
            results = Parallel(n_jobs=self.n_jobs, prefer="threads")(
                delayed(process_single_particle)(p) for p in particles
            )
        else:
            results = [process_single_particle(p) for p in particles]

        pores = [p for p in results if p is not None]
        pores.sort(key=lambda p: p.id)

        skipped = len(particles) - len(pores)
        if skipped:
            logger.info("Extracted %d pores (%d particles skipped)", len(pores), skipped)
        else:
            logger.debug("Extracted %d pores", len(pores))
        return pores
