"""
Abstract base classes for loaders and processors.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Callable

from core.separation import SeparationResult


class BaseLoader(ABC):
    """Abstract base class for label-volume acquisition strategies."""

    @abstractmethod
    def load(self, source: Any, callback: Optional[Callable[[int, str], None]] = None) -> SeparationResult:
        """
        Load a labeled particle volume.

        Args:
            source: Path to a file, or loader-specific parameters.
            callback: Optional progress callback (percent, message).

        Returns:
            SeparationResult: Label volume and particle list.
        """
        pass


class BaseProcessor(ABC):
    """Abstract base class for network processing steps."""

    @abstractmethod
    def process(self, data: Any, callback: Optional[Callable[[int, str], None]] = None, **kwargs) -> Any:
        """
        Run the processing step.

        Args:
            data: Input (separation result or network model).
            callback (Optional[Callable]): Progress callback (percent, message).
            **kwargs: Step specific parameters.
        """
        pass
