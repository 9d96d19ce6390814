"""
Progress reporting and cooperative cancellation.

Generation and simulation report through plain ``callback(percent, message)``
functions. Hosts (CLI, tests) subscribe to a ``ProgressBus`` with their own
renderers and cancel a run through a ``CancellationToken``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence, Union
import logging
import sys
import threading
import time

from core.errors import CancellationSignaled

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


def noop_progress(_percent: int, _message: str) -> None:
    """Default no-op progress callback."""
    return


class CancellationToken:
    """
    Thread-safe cancellation flag shared between the caller and a worker.

    Workers call ``raise_if_cancelled()`` once per loop iteration.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, message: str = "Operation cancelled by user.") -> None:
        if self._event.is_set():
            raise CancellationSignaled(message)


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """``raise_if_cancelled`` that tolerates a missing token."""
    if token is not None:
        token.raise_if_cancelled()


class MonotonicProgress:
    """
    Wrap a progress callback so reported values never decrease.

    ``finish()`` guarantees a final 100 even if the wrapped stage never
    reported it.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback or noop_progress
        self._last = -1
        self._lock = threading.Lock()

    @property
    def last(self) -> int:
        return self._last

    def __call__(self, percent: int, message: str) -> None:
        p = max(0, min(100, int(percent)))
        with self._lock:
            if p < self._last:
                p = self._last
            self._last = p
        self._callback(p, message)

    def finish(self, message: str = "Done") -> None:
        if self._last < 100:
            self(100, message)


@dataclass(frozen=True)
class ProgressEvent:
    """Immutable progress payload."""

    percent: int
    message: str
    stage: Optional[str] = None
    channel: str = "stage"  # "stage" | "pipeline"
    timestamp: float = field(default_factory=time.time)


class ProgressObserver(Protocol):
    """Observer protocol for progress events."""

    def on_progress(self, event: ProgressEvent) -> None:
        ...


class ProgressBus:
    """
    Observer-style event bus for progress propagation.
    """

    def __init__(self) -> None:
        self._observers: list[Callable[[ProgressEvent], None] | ProgressObserver] = []

    def subscribe(self, observer: Callable[[ProgressEvent], None] | ProgressObserver) -> "ProgressBus":
        self._observers.append(observer)
        return self

    def unsubscribe(self, observer: Callable[[ProgressEvent], None] | ProgressObserver) -> "ProgressBus":
        if observer in self._observers:
            self._observers.remove(observer)
        return self

    def emit(self, event: ProgressEvent) -> None:
        for observer in tuple(self._observers):
            if hasattr(observer, "on_progress"):
                observer.on_progress(event)  # type: ignore[attr-defined]
            else:
                observer(event)  # type: ignore[misc]

    def stage_callback(self, stage: str, mapper: Optional["StageProgressMapper"] = None) -> ProgressCallback:
        """
        Callback for one pipeline stage.

        With a mapper, the stage-local percentage is rescaled to the
        pipeline-global range before it is emitted.
        """
        def callback(percent: int, message: str) -> None:
            p = max(0, min(100, int(percent)))
            if mapper is not None:
                p = mapper.map(stage, p)
            self.emit(ProgressEvent(percent=p, message=message, stage=stage, channel="stage"))

        return callback

    def pipeline_callback(self) -> ProgressCallback:
        def callback(percent: int, message: str) -> None:
            p = max(0, min(100, int(percent)))
            self.emit(ProgressEvent(percent=p, message=message, stage=None, channel="pipeline"))

        return callback


class StageProgressMapper:
    """
    Map per-stage local percentage [0..100] into pipeline-global [0..100].
    """

    def __init__(self, stages: Sequence[str]) -> None:
        stage_list = list(stages)
        self._count = max(len(stage_list), 1)
        self._index = {name: idx for idx, name in enumerate(stage_list)}

    def map(self, stage: Optional[str], local_percent: int) -> int:
        if not stage or stage not in self._index:
            return max(0, min(100, int(local_percent)))

        idx = self._index[stage]
        base = int(100 * idx / self._count)
        span = max(int(100 / self._count), 1)
        local = max(0, min(100, int(local_percent)))
        if idx == self._count - 1 and local >= 100:
            return 100
        return min(100, base + int(local * span / 100))


class CancelFlagObserver:
    """
    Raises CancellationSignaled on the next progress event once cancelled.

    Accepts either a ``CancellationToken`` or a zero-argument predicate.
    """

    def __init__(
        self,
        is_cancelled: Union[CancellationToken, Callable[[], bool]],
        message: str = "Operation cancelled by user.",
    ) -> None:
        if isinstance(is_cancelled, CancellationToken):
            token = is_cancelled
            self._is_cancelled = lambda: token.is_cancelled
        else:
            self._is_cancelled = is_cancelled
        self._message = message

    def on_progress(self, _event: ProgressEvent) -> None:
        if self._is_cancelled():
            logger.info("Cancellation requested: %s", self._message)
            raise CancellationSignaled(self._message)


class TerminalProgressObserver:
    """
    Text renderer for CLI usage.
    """

    def __init__(self, bar_width: int = 30, stream=None) -> None:
        self.bar_width = bar_width
        self.stream = stream or sys.stdout

    def on_progress(self, event: ProgressEvent) -> None:
        if event.channel == "pipeline":
            self.stream.write(f"  [Pipeline {event.percent:3d}%] {event.message}\n")
            self.stream.flush()
            return

        stage = event.stage or "task"
        filled = int(self.bar_width * event.percent / 100)
        bar = "#" * filled + "." * (self.bar_width - filled)
        self.stream.write(f"\r  [{stage}] [{bar}] {event.percent:3d}%  {event.message:<48}")
        if event.percent >= 100:
            self.stream.write("\n")
        self.stream.flush()


__all__ = [
    "ProgressCallback",
    "noop_progress",
    "CancellationToken",
    "check_cancelled",
    "MonotonicProgress",
    "ProgressEvent",
    "ProgressObserver",
    "ProgressBus",
    "StageProgressMapper",
    "CancelFlagObserver",
    "TerminalProgressObserver",
]
