"""
Tests for the compute context.

The CUDA path is exercised only where CuPy and a device are present.
"""

import numpy as np
import pytest

from core import ComputeContext, get_compute_context
from core.gpu_backend import CUPY_AVAILABLE


def test_disabled_context_stays_on_cpu():
    context = ComputeContext(enabled=False).init()

    assert not context.available
    assert context.device_name == "cpu"
    assert context.get_free_memory_mb() == 0.0
    assert not context.can_fit(1024)

    data = np.arange(4.0)
    assert context.to_gpu(data) is data
    assert context.to_cpu(data) is data


def test_background_init_and_shutdown():
    context = ComputeContext(enabled=False)
    thread = context.start_background_init()
    assert context.start_background_init() is thread
    assert context.wait_ready(timeout=10)

    context.shutdown()
    assert not context.available
    assert context.wait_ready()


def test_process_context_is_shared():
    assert get_compute_context() is get_compute_context()


@pytest.mark.skipif(not CUPY_AVAILABLE, reason="CuPy not installed")
def test_round_trip_through_device():
    context = ComputeContext().init()
    if not context.available:
        pytest.skip("No CUDA device")

    data = np.linspace(0.0, 1.0, 32)
    np.testing.assert_array_equal(context.to_cpu(context.to_gpu(data)), data)
    assert context.device_name.startswith("cuda:")
    context.shutdown()
    assert not context.available
