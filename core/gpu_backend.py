"""
Compute context for CuPy acceleration.

Selects a CUDA device when one is usable and otherwise leaves the solver on
the CPU path. A single context is shared by the process; components receive
it as a parameter.
"""

from typing import Optional, Any
import logging
import threading

import numpy as np

import config

# CuPy is an optional extra; without it every solve runs on the CPU.
try:
    import cupy as cp
    CUPY_AVAILABLE = True
except ImportError:
    cp = None
    CUPY_AVAILABLE = False

logger = logging.getLogger(__name__)


class ComputeContext:
    """
    Owner of the accelerator device.

    Lifecycle: ``init()`` probes the device, ``shutdown()`` frees its memory
    pools. ``start_background_init()`` runs ``init()`` on a daemon thread so
    start-up is not blocked; ``wait_ready()`` joins it. ``lock`` serializes
    device use across concurrent simulations.
    """

    def __init__(self, enabled: bool = config.GPU_ENABLED):
        self._enabled = enabled
        self._gpu_ready = False
        self._initialized = False
        self._device_name = "cpu"
        self._init_lock = threading.Lock()
        self._init_thread: Optional[threading.Thread] = None
        self.lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> "ComputeContext":
        with self._init_lock:
            if self._initialized:
                return self
            self._initialized = True

            if not self._enabled:
                logger.info("GPU disabled by configuration, using CPU backend")
                return self
            if not CUPY_AVAILABLE:
                logger.info("CuPy not available, using CPU backend")
                return self

            try:
                device = cp.cuda.Device()
                device.use()
                total_mem = device.mem_info[1] / (1024 ** 3)
                self._warmup()
                self._device_name = f"cuda:{device.id}"
                self._gpu_ready = True
                logger.info("GPU initialized: device %d, %.1f GB VRAM", device.id, total_mem)
            except Exception as e:
                # No driver / no device / broken runtime all land here
                logger.warning("GPU initialization failed, using CPU backend: %s", e)
                self._gpu_ready = False
        return self

    def _warmup(self):
        """Touch the allocator and a trivial kernel so the first solve is not slowed."""
        probe = cp.arange(16, dtype=cp.float64)
        float(cp.sum(probe * probe))
        del probe
        cp.get_default_memory_pool().free_all_blocks()

    def start_background_init(self) -> threading.Thread:
        with self._init_lock:
            if self._init_thread is None:
                self._init_thread = threading.Thread(
                    target=self.init, name="compute-context-init", daemon=True
                )
                self._init_thread.start()
            return self._init_thread

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until initialization finished. Returns True if it has."""
        thread = self._init_thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                return False
        if not self._initialized:
            self.init()
        return True

    def shutdown(self):
        """Release device memory pools. The context may be re-initialized afterwards."""
        with self.lock:
            if self._gpu_ready:
                self.clear_memory()
                logger.info("GPU memory pools released")
            with self._init_lock:
                self._gpu_ready = False
                self._initialized = False
                self._init_thread = None
                self._device_name = "cpu"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def available(self) -> bool:
        """True if a device was initialized and GPU use is enabled."""
        return CUPY_AVAILABLE and self._enabled and self._gpu_ready

    @property
    def device_name(self) -> str:
        return self._device_name

    def get_free_memory_mb(self) -> float:
        if not self.available:
            return 0.0
        try:
            free = cp.cuda.Device().mem_info[0]
            return free / (1024 * 1024)
        except Exception as e:
            logger.debug("Could not query free GPU memory: %s", e)
            return 0.0

    def can_fit(self, size_bytes: int, safety_factor: float = config.GPU_MEMORY_SAFETY_FACTOR) -> bool:
        if not self.available:
            return False
        required_mb = size_bytes / (1024 * 1024)
        return required_mb < (self.get_free_memory_mb() * safety_factor)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def to_gpu(self, array: np.ndarray) -> Any:
        if self.available and isinstance(array, np.ndarray):
            return cp.asarray(array)
        return array

    def to_cpu(self, array: Any) -> np.ndarray:
        if CUPY_AVAILABLE and isinstance(array, cp.ndarray):
            return cp.asnumpy(array)
        return array

    def clear_memory(self):
        if CUPY_AVAILABLE:
            cp.get_default_memory_pool().free_all_blocks()
            cp.get_default_pinned_memory_pool().free_all_blocks()


_context: Optional[ComputeContext] = None
_context_lock = threading.Lock()


def get_compute_context() -> ComputeContext:
    """Process-wide compute context, created and initialized on first use."""
    global _context
    with _context_lock:
        if _context is None:
            _context = ComputeContext()
            _context.start_background_init()
        context = _context
    context.wait_ready()
    return context
