"""
Label volume loader (.npy / .tif stacks produced by a particle separation step).
"""

import logging
import os
from typing import Optional, Callable

import numpy as np
import tifffile

from core import BaseLoader, SeparationResult

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".npy", ".tif", ".tiff")


class LabelVolumeLoader(BaseLoader):
    """
    Loads an integer label volume indexed ``[z, y, x]`` (0 = background).
    """

    def load(self, source: str, callback: Optional[Callable[[int, str], None]] = None) -> SeparationResult:
        if not os.path.isfile(source):
            raise FileNotFoundError(f"Label volume not found: {source}")

        ext = os.path.splitext(source)[1].lower()
        if ext not in SUPPORTED_EXTENSIONS:
            raise ValueError(f"Unsupported label volume format {ext!r}. Supported: {', '.join(SUPPORTED_EXTENSIONS)}")

        if callback:
            callback(0, f"Reading {os.path.basename(source)}...")

        if ext == ".npy":
            labels = np.load(source, allow_pickle=False)
        else:
            labels = tifffile.imread(source)

        if labels.ndim != 3:
            raise ValueError(f"Expected a 3-D label volume, got shape {labels.shape}")
        if not np.issubdtype(labels.dtype, np.integer):
            raise ValueError(f"Label volume must hold integers, got dtype {labels.dtype}")

        logger.info("[Loader] Loaded label volume %s, shape %s", source, labels.shape)
        if callback:
            callback(50, "Measuring particles...")

        result = SeparationResult.from_label_volume(labels, metadata={
            "Type": "Labels",
            "Source": os.path.abspath(source),
        })

        if callback:
            callback(100, f"Loaded {result.particle_count} particles.")
        return result
