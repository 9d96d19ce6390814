"""
Particle separation result: the labeled volume consumed by the network generator.

Axis conventions
----------------
* ``label_volume`` is indexed ``[z, y, x]``.
* Particle ``center`` and ``bounds`` are given in ``(x, y, z)`` voxel order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from scipy import ndimage


@dataclass(frozen=True)
class BoundingBox:
    """Inclusive voxel bounds in (x, y, z) order."""
    min_x: int
    min_y: int
    min_z: int
    max_x: int
    max_y: int
    max_z: int

    def padded_slices(self, shape_zyx: Tuple[int, int, int], pad: int = 1) -> Tuple[slice, slice, slice]:
        """``[z, y, x]`` slices of the box grown by ``pad`` voxels, clipped to the volume."""
        nz, ny, nx = shape_zyx
        return (
            slice(max(0, self.min_z - pad), min(nz, self.max_z + pad + 1)),
            slice(max(0, self.min_y - pad), min(ny, self.max_y + pad + 1)),
            slice(max(0, self.min_x - pad), min(nx, self.max_x + pad + 1)),
        )


@dataclass(frozen=True)
class Particle:
    """
    One separated particle.

    Attributes:
        id: Label value in the label volume (> 0)
        voxel_count: Number of voxels carrying the label
        center: Integer centroid (x, y, z) in voxels
        bounds: Inclusive bounding box
    """
    id: int
    voxel_count: int
    center: Tuple[int, int, int]
    bounds: BoundingBox


@dataclass
class SeparationResult:
    """Labeled volume plus its ordered particle list."""
    label_volume: np.ndarray
    particles: List[Particle] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return tuple(self.label_volume.shape)

    @property
    def particle_count(self) -> int:
        return len(self.particles)

    @staticmethod
    def from_label_volume(label_volume: np.ndarray, metadata: Optional[Dict[str, Any]] = None) -> "SeparationResult":
        """
        Build a separation result from any integer label volume (0 = background).

        Centres are rounded centres of mass; particles are ordered by label.
        """
        labels = np.asarray(label_volume)
        if labels.ndim != 3:
            raise ValueError(f"label volume must be 3-D, got shape {labels.shape}")
        if not np.issubdtype(labels.dtype, np.integer):
            labels = labels.astype(np.int32)

        ids = np.unique(labels)
        ids = ids[ids > 0]
        if ids.size == 0:
            return SeparationResult(label_volume=labels, particles=[], metadata=dict(metadata or {}))

        max_label = int(ids.max())
        objects = ndimage.find_objects(labels, max_label=max_label)
        counts = np.bincount(labels.ravel()[labels.ravel() > 0], minlength=max_label + 1)
        centers = ndimage.center_of_mass(np.ones_like(labels, dtype=np.uint8), labels, ids)

        particles = []
        for label_id, com in zip(ids.tolist(), centers):
            slc = objects[label_id - 1]
            if slc is None:
                continue
            zs, ys, xs = slc
            cz, cy, cx = com
            particles.append(Particle(
                id=int(label_id),
                voxel_count=int(counts[label_id]),
                center=(int(round(cx)), int(round(cy)), int(round(cz))),
                bounds=BoundingBox(
                    min_x=xs.start, min_y=ys.start, min_z=zs.start,
                    max_x=xs.stop - 1, max_y=ys.stop - 1, max_z=zs.stop - 1,
                ),
            ))

        return SeparationResult(label_volume=labels, particles=particles, metadata=dict(metadata or {}))
