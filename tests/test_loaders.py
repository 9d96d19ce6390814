"""
Unit tests for the label volume loaders.
"""

import numpy as np
import pytest
import tifffile

from core import BaseLoader
from loaders import DummyLoader, LabelVolumeLoader


def _labels():
    labels = np.zeros((6, 6, 6), dtype=np.int32)
    labels[0:3, 0:3, 0:3] = 1
    labels[3:6, 3:6, 3:6] = 2
    return labels


def test_import_loaders():
    assert issubclass(DummyLoader, BaseLoader)
    assert issubclass(LabelVolumeLoader, BaseLoader)


def test_dummy_loader_generates_labeled_spheres():
    result = DummyLoader(seed=1).load(32)
    labels = result.label_volume

    assert labels.shape == (32, 32, 32)
    assert labels.dtype == np.int32
    assert result.particle_count > 1
    assert result.metadata["Type"] == "Synthetic"
    assert [p.id for p in result.particles] == sorted(p.id for p in result.particles)
    for particle in result.particles:
        assert particle.voxel_count == np.count_nonzero(labels == particle.id)
        assert all(0 <= c < 32 for c in particle.center)


def test_dummy_loader_is_seeded():
    a = DummyLoader(seed=21).load(24)
    b = DummyLoader(seed=21).load(24)
    c = DummyLoader(seed=22).load(24)

    np.testing.assert_array_equal(a.label_volume, b.label_volume)
    assert not np.array_equal(a.label_volume, c.label_volume)


def test_dummy_loader_accepts_explicit_generator():
    a = DummyLoader(rng=np.random.default_rng(5)).load(16)
    b = DummyLoader(rng=np.random.default_rng(5)).load(16)
    np.testing.assert_array_equal(a.label_volume, b.label_volume)


def test_dummy_loader_reports_progress():
    seen = []
    DummyLoader(seed=2, max_spheres=10).load(16, callback=lambda p, m: seen.append(p))
    assert seen[0] == 0
    assert seen[-1] == 100


def test_dummy_loader_rejects_tiny_volume():
    with pytest.raises(ValueError):
        DummyLoader().load(3)


def test_label_loader_reads_npy(tmp_path):
    path = tmp_path / "labels.npy"
    np.save(path, _labels())

    result = LabelVolumeLoader().load(str(path))
    assert result.particle_count == 2
    assert result.particles[0].voxel_count == 27
    assert result.metadata["Type"] == "Labels"


def test_label_loader_reads_tiff(tmp_path):
    path = tmp_path / "labels.tif"
    tifffile.imwrite(str(path), _labels().astype(np.uint16))

    result = LabelVolumeLoader().load(str(path))
    assert result.shape == (6, 6, 6)
    assert [p.id for p in result.particles] == [1, 2]


def test_label_loader_rejects_bad_input(tmp_path):
    with pytest.raises(FileNotFoundError):
        LabelVolumeLoader().load(str(tmp_path / "missing.npy"))

    raw = tmp_path / "labels.raw"
    raw.write_bytes(b"\x00" * 8)
    with pytest.raises(ValueError):
        LabelVolumeLoader().load(str(raw))

    flat = tmp_path / "flat.npy"
    np.save(flat, np.zeros((4, 4), dtype=np.int32))
    with pytest.raises(ValueError):
        LabelVolumeLoader().load(str(flat))

    floats = tmp_path / "floats.npy"
    np.save(floats, np.zeros((4, 4, 4), dtype=np.float32))
    with pytest.raises(ValueError):
        LabelVolumeLoader().load(str(floats))
