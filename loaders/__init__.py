"""
Label volume loaders package.
"""

from loaders.dummy import DummyLoader
from loaders.labels import LabelVolumeLoader

__all__ = [
    'DummyLoader',
    'LabelVolumeLoader',
]
