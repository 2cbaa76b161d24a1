"""Tests for batched trace executors and ray sources.

Note: Imports are done inside test methods so that Taichi is initialized by
the conftest.py session fixture before any field is declared.
"""

import numpy as np
import pytest


def _mixed_batch():
    """Photons that hit, escape, or miss the aperture of axis_camera."""
    from foxel.core.photon import make_photon_batch

    positions = [
        [0.0, 0.0, -3.0],  # straight hit
        [0.0, 0.0, -3.0],  # moving away
        [0.5, 0.0, -3.0],  # passes beside the aperture
        [-0.6, 0.0, -3.0],  # oblique hit
    ]
    directions = [
        [0.0, 0.0, 1.0],
        [0.0, 0.0, -1.0],
        [0.0, 0.0, 1.0],
        [0.2, 0.0, 1.0],
    ]
    return make_photon_batch(positions, directions, [450.0, 500.0, 550.0, 600.0])


class TestIntersectionRecords:
    """Tests for the intersection record layout."""

    def test_layout(self):
        """Test field offsets and total size of intersection_dtype."""
        from foxel.core.executor import intersection_dtype

        assert intersection_dtype.fields["hit"][1] == 0
        assert intersection_dtype.fields["pos"][1] == 8
        assert intersection_dtype.fields["photon"][1] == 16
        assert intersection_dtype.itemsize == 48


class TestTaichiExecutor:
    """Tests for the kernel executor."""

    def test_trace_mixed_batch(self, axis_camera, distant_mass):
        """Test hit flags, sensor coordinates and carried wavelengths."""
        from foxel.core.executor import create_executor

        records = create_executor("taichi").trace(_mixed_batch())

        assert len(records) == 4
        np.testing.assert_array_equal(records["hit"], [1, 0, 0, 1])
        np.testing.assert_allclose(records["pos"][0], [0.5, 0.5], atol=1e-3)
        np.testing.assert_allclose(records["photon"]["wavelength"], [450.0, 500.0, 550.0, 600.0])
        # Directions stay unit length
        norms = np.linalg.norm(records["photon"]["direction"], axis=1)
        np.testing.assert_allclose(norms, 1.0, atol=1e-5)

    def test_order_preserved_across_pieces(self, axis_camera, distant_mass):
        """Test that splitting a batch does not change the result."""
        from foxel.core.executor import TaichiTraceExecutor

        photons = np.concatenate([_mixed_batch()] * 3)
        whole = TaichiTraceExecutor().trace(photons)
        pieces = TaichiTraceExecutor(batch_size=5).trace(photons)

        np.testing.assert_array_equal(whole["hit"], pieces["hit"])
        np.testing.assert_allclose(whole["pos"], pieces["pos"])
        np.testing.assert_array_equal(whole["hit"], [1, 0, 0, 1] * 3)

    def test_rejects_wrong_dtype(self, axis_camera, distant_mass):
        """Test that plain float arrays are rejected."""
        from foxel.core.executor import create_executor

        with pytest.raises(ValueError, match="photon_dtype"):
            create_executor("taichi").trace(np.zeros((4, 7), dtype=np.float32))

    def test_rejects_bad_batch_size(self):
        """Test that the batch size must be positive."""
        from foxel.core.executor import TaichiTraceExecutor

        with pytest.raises(ValueError, match="Batch size"):
            TaichiTraceExecutor(batch_size=0)


class TestNumpyExecutor:
    """Tests for the host executor."""

    def test_matches_taichi_executor(self, axis_camera, distant_mass):
        """Test that both executors agree on a mixed batch."""
        from foxel.core.executor import create_executor

        photons = _mixed_batch()
        expected = create_executor("taichi").trace(photons)
        actual = create_executor("numpy").trace(photons)

        np.testing.assert_array_equal(actual["hit"], expected["hit"])
        np.testing.assert_allclose(actual["pos"], expected["pos"], atol=1e-4)
        np.testing.assert_allclose(
            actual["photon"]["position"], expected["photon"]["position"], atol=1e-3
        )

    def test_matches_taichi_under_lensing(self, default_scene):
        """Test that both executors bend photons the same way."""
        from foxel.core.executor import create_executor
        from foxel.core.photon import make_photon_batch

        photons = make_photon_batch(
            [[-3.0, 1.0, 0.0], [-3.0, -1.2, 0.5], [0.1, 0.0, 0.0]],
            [[1.0, 0.0, 0.0], [1.0, 0.1, 0.0], [1.0, 0.0, 0.0]],
        )
        expected = create_executor("taichi").trace(photons)
        actual = create_executor("numpy").trace(photons)

        np.testing.assert_allclose(
            actual["photon"]["direction"], expected["photon"]["direction"], atol=1e-3
        )

    def test_unknown_executor(self):
        """Test that an unknown name is rejected."""
        from foxel.core.executor import create_executor

        with pytest.raises(ValueError, match="Unknown executor"):
            create_executor("cuda")


class TestVolumeSource:
    """Tests for the box photon source."""

    def test_emit_shape_and_bounds(self):
        """Test record count, positions inside the box and unit directions."""
        from foxel.core.photon import photon_dtype
        from foxel.core.sources import VolumeSource

        source = VolumeSource(center=(1.0, 2.0, 3.0), extent=(2.0, 0.5, 4.0), wavelength=620.0)
        photons = source.emit(1000, np.random.default_rng(0))

        assert photons.dtype == photon_dtype
        assert len(photons) == 1000
        low = np.array([0.0, 1.75, 1.0])
        high = np.array([2.0, 2.25, 5.0])
        assert np.all(photons["position"] >= low - 1e-6)
        assert np.all(photons["position"] <= high + 1e-6)
        norms = np.linalg.norm(photons["direction"], axis=1)
        np.testing.assert_allclose(norms, 1.0, atol=1e-5)
        assert np.all(photons["wavelength"] == 620.0)

    def test_directions_cover_sphere(self):
        """Test that directions are spread in every octant."""
        from foxel.core.sources import VolumeSource

        photons = VolumeSource().emit(4000, np.random.default_rng(1))
        mean = photons["direction"].mean(axis=0)
        assert np.all(np.abs(mean) < 0.05)

    def test_reproducible_with_seed(self):
        """Test that equal seeds give equal batches."""
        from foxel.core.sources import VolumeSource

        source = VolumeSource()
        a = source.emit(64, np.random.default_rng(9))
        b = source.emit(64, np.random.default_rng(9))
        np.testing.assert_array_equal(a, b)

    def test_zero_count(self):
        """Test that an empty batch is allowed."""
        from foxel.core.sources import VolumeSource

        assert len(VolumeSource().emit(0, np.random.default_rng(0))) == 0

    def test_invalid_arguments(self):
        """Test count and extent validation."""
        from foxel.core.sources import VolumeSource

        with pytest.raises(ValueError, match="count"):
            VolumeSource().emit(-1, np.random.default_rng(0))
        with pytest.raises(ValueError, match="extent"):
            VolumeSource(extent=(1.0, -1.0, 1.0))
