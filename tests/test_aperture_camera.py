"""Tests for the finite-aperture camera.

Covers configuration validation, the camera basis, the sensor collision test
and camera photon generation.

Note: Imports are done inside test methods so that Taichi is initialized by
the conftest.py session fixture before any field is declared.
"""

import math

import numpy as np
import pytest
import taichi as ti


def _camera(**overrides):
    from foxel.camera.aperture import ApertureCamera

    kwargs = dict(
        position=(0.0, 0.0, 0.0),
        forward=(0.0, 0.0, -1.0),
        up=(0.0, 1.0, 0.0),
        aspect_ratio=1.0,
        aperture_radius=0.02,
        focal_length=1.0,
    )
    kwargs.update(overrides)
    return ApertureCamera(**kwargs)


class TestCameraValidation:
    """Tests for ApertureCamera construction."""

    def test_normalizes_vectors(self):
        """Test that forward and up are stored as unit vectors."""
        camera = _camera(forward=(0.0, 0.0, -4.0), up=(0.0, 2.0, 0.0))
        assert camera.forward == (0.0, 0.0, -1.0)
        assert camera.up == (0.0, 1.0, 0.0)

    def test_sensor_height_from_aspect(self):
        """Test that the sensor height is width / aspect."""
        assert _camera(aspect_ratio=2.0).sensor_height == 2.5

    def test_parallel_up_rejected(self):
        """Test that forward parallel to up is rejected."""
        with pytest.raises(ValueError, match="parallel"):
            _camera(up=(0.0, 0.0, 1.0))

    def test_zero_forward_rejected(self):
        """Test that a zero forward vector is rejected."""
        with pytest.raises(ValueError, match="zero length"):
            _camera(forward=(0.0, 0.0, 0.0))

    @pytest.mark.parametrize("name", ["aspect_ratio", "aperture_radius", "focal_length"])
    @pytest.mark.parametrize("value", [0.0, -1.0, math.inf])
    def test_non_positive_scalars_rejected(self, name, value):
        """Test that scalar parameters must be positive and finite."""
        with pytest.raises(ValueError, match=name):
            _camera(**{name: value})

    def test_non_finite_position_rejected(self):
        """Test that the position must be finite."""
        with pytest.raises(ValueError, match="position"):
            _camera(position=(0.0, math.nan, 0.0))

    def test_fields_are_immutable(self):
        """Test that a built camera cannot be reconfigured in place."""
        import dataclasses

        camera = _camera()
        with pytest.raises(dataclasses.FrozenInstanceError):
            camera.up = camera.forward
        assert camera.up == (0.0, 1.0, 0.0)


class TestCameraBasis:
    """Tests for the world-to-camera basis."""

    def test_axis_aligned_basis(self):
        """Test the basis of a camera looking down -z."""
        from foxel.camera.aperture import camera_basis

        basis = camera_basis(_camera())
        np.testing.assert_allclose(basis[0], [1.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(basis[1], [0.0, 1.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(basis[2], [0.0, 0.0, -1.0], atol=1e-12)

    def test_basis_is_orthonormal(self):
        """Test orthonormality for a tilted camera with a non-orthogonal up."""
        from foxel.camera.aperture import camera_basis

        camera = _camera(forward=(0.0, -1.5, -2.5), up=(0.2, 1.0, 0.1))
        basis = camera_basis(camera)
        np.testing.assert_allclose(basis @ basis.T, np.eye(3), atol=1e-10)
        np.testing.assert_allclose(basis[2], camera.forward, atol=1e-12)

    def test_basis_handedness(self):
        """Test that the basis is a reflection mapping forward onto local +z."""
        from foxel.camera.aperture import camera_basis

        camera = _camera(forward=(0.0, -1.5, -2.5), up=(0.2, 1.0, 0.1))
        assert abs(np.linalg.det(camera_basis(camera)) + 1.0) < 1e-10

    def test_image_is_not_mirrored(self, axis_camera):
        """Test that light from world-right and world-up lands right and up."""
        from foxel.camera.aperture import collision

        # Sources at (1, 0, -3) and (0, 1, -3), seen from the origin
        right = collision((0.0, 0.0, 0.0), tuple(np.array([-1.0, 0.0, 3.0]) / math.sqrt(10.0)))
        up = collision((0.0, 0.0, 0.0), tuple(np.array([0.0, -1.0, 3.0]) / math.sqrt(10.0)))

        assert right is not None and up is not None
        assert right[0] > 0.5
        assert abs(right[1] - 0.5) < 1e-5
        assert up[1] > 0.5
        assert abs(up[0] - 0.5) < 1e-5

    def test_get_camera_info(self, axis_camera):
        """Test the debug readback of the installed camera."""
        from foxel.camera.aperture import get_camera_info

        info = get_camera_info()
        assert info["origin"] == (0.0, 0.0, 0.0)
        assert info["forward"] == (0.0, 0.0, -1.0)
        assert info["right"] == (1.0, 0.0, 0.0)
        assert abs(info["aperture_radius"] - 0.02) < 1e-7
        assert info["focal_length"] == 1.0
        assert info["sensor_height"] == 5.0


class TestSensorCollision:
    """Tests for the single-step collision test."""

    def test_centre_hit(self, axis_camera):
        """Test that a photon through the centre lands mid-sensor."""
        from foxel.camera.aperture import collision

        uv = collision((0.0, 0.0, 0.0), (0.0, 0.0, 1.0))
        assert uv is not None
        assert abs(uv[0] - 0.5) < 1e-6
        assert abs(uv[1] - 0.5) < 1e-6

    def test_oblique_hit(self, axis_camera):
        """Test the pinhole projection of an oblique photon."""
        from foxel.camera.aperture import collision

        # local direction (0.5, 0, -1) lands 1.0 to the right on the sensor
        uv = collision((0.0, 0.0, 0.0), (0.5, 0.0, 1.0))
        assert uv is not None
        assert abs(uv[0] - 0.3) < 1e-5
        assert abs(uv[1] - 0.5) < 1e-5

    def test_vertical_uses_sensor_height(self):
        """Test that v is normalized by the sensor height."""
        from foxel.camera.aperture import collision, setup_camera

        setup_camera(_camera(aspect_ratio=2.0))
        uv = collision((0.0, 0.0, 0.0), (0.0, 0.5, 1.0))
        assert uv is not None
        assert abs(uv[1] - 0.1) < 1e-5

    def test_hit_inside_plane_tolerance(self, axis_camera):
        """Test that a photon slightly in front of the aperture still hits."""
        from foxel.camera.aperture import collision

        assert collision((0.0, 0.0, 0.05), (0.0, 0.0, 1.0)) is not None

    def test_miss_beyond_plane_tolerance(self, axis_camera):
        """Test that a photon too far from the aperture plane misses."""
        from foxel.camera.aperture import collision

        assert collision((0.0, 0.0, 0.1), (0.0, 0.0, 1.0)) is None

    def test_miss_outside_aperture(self, axis_camera):
        """Test that a photon outside the aperture disk misses."""
        from foxel.camera.aperture import collision

        assert collision((0.03, 0.0, 0.0), (0.0, 0.0, 1.0)) is None

    def test_miss_when_moving_away(self, axis_camera):
        """Test that photons travelling along forward are ignored."""
        from foxel.camera.aperture import collision

        assert collision((0.0, 0.0, 0.0), (0.0, 0.0, -1.0)) is None

    def test_miss_when_parallel(self, axis_camera):
        """Test that photons parallel to the aperture plane are ignored."""
        from foxel.camera.aperture import collision

        assert collision((0.0, 0.0, 0.0), (1.0, 0.0, 0.0)) is None

    def test_miss_beyond_sensor(self, axis_camera):
        """Test that a projection off the sensor edge misses."""
        from foxel.camera.aperture import collision

        assert collision((0.0, 0.0, 0.0), (3.0, 0.0, 1.0)) is None

    def test_uv_in_unit_square(self, axis_camera):
        """Test that every reported hit lies in [0, 1]²."""
        from foxel.camera.aperture import collision

        rng = np.random.default_rng(7)
        for _ in range(50):
            direction = rng.uniform(-1.0, 1.0, size=3)
            direction[2] = abs(direction[2]) + 0.1
            uv = collision((0.0, 0.0, 0.0), tuple(direction))
            if uv is not None:
                assert 0.0 <= uv[0] <= 1.0
                assert 0.0 <= uv[1] <= 1.0

    def test_requires_setup(self):
        """Test that the collision wrapper needs an installed camera."""
        from foxel.camera import aperture

        previous = aperture._camera_initialized[None]
        aperture._camera_initialized[None] = 0
        try:
            with pytest.raises(RuntimeError, match="setup_camera"):
                aperture.collision((0.0, 0.0, 0.0), (0.0, 0.0, 1.0))
        finally:
            aperture._camera_initialized[None] = previous


class TestCameraPhotonGeneration:
    """Tests for generate_camera_photon."""

    def test_photon_lands_near_target_pixel(self, axis_camera, distant_mass):
        """Test that generated photons land on or next to their pixel."""
        from foxel.camera.aperture import generate_camera_photon
        from foxel.core.accumulator import uv_to_pixel
        from foxel.core.raymarch import TIME_SCALE, raymarch

        n = 32
        width, height = 64, 64
        target = ti.field(dtype=ti.i32, shape=(n, 2))
        landed = ti.field(dtype=ti.i32, shape=(n, 3))
        norms = ti.field(dtype=ti.f32, shape=n)

        @ti.kernel
        def shoot():
            for i in range(n):
                px = 24 + i % 16
                py = 24 + i // 2
                target[i, 0] = px
                target[i, 1] = py
                photon = generate_camera_photon(px, py, width, height, 4.0, 8.0, TIME_SCALE)
                norms[i] = photon.direction.norm()
                result = raymarch(photon)
                valid, x, y = uv_to_pixel(result.sensor_uv, width, height)
                landed[i, 0] = result.hit * valid
                landed[i, 1] = x
                landed[i, 2] = y

        shoot()
        targets = target.to_numpy()
        hits = landed.to_numpy()

        np.testing.assert_allclose(norms.to_numpy(), 1.0, atol=1e-5)
        assert np.all(hits[:, 0] == 1)
        assert np.all(np.abs(hits[:, 1] - targets[:, 0]) <= 1)
        assert np.all(np.abs(hits[:, 2] - targets[:, 1]) <= 1)

    def test_lensed_photon_lands_on_target_pixel(self, default_scene):
        """Test that photons bent by the default mass still reach their pixel."""
        from foxel.camera.aperture import generate_camera_photon
        from foxel.core.accumulator import uv_to_pixel
        from foxel.core.raymarch import TIME_SCALE, raymarch

        n = 32
        width, height = 64, 64
        target = ti.field(dtype=ti.i32, shape=(n, 2))
        landed = ti.field(dtype=ti.i32, shape=(n, 3))

        @ti.kernel
        def shoot():
            for i in range(n):
                # Corner pixels keep the path well clear of the horizon
                px = 2 + i % 8
                py = 2 + i // 8
                target[i, 0] = px
                target[i, 1] = py
                result = raymarch(
                    generate_camera_photon(px, py, width, height, 4.0, 8.0, TIME_SCALE)
                )
                valid, x, y = uv_to_pixel(result.sensor_uv, width, height)
                landed[i, 0] = result.hit * valid
                landed[i, 1] = x
                landed[i, 2] = y

        shoot()
        targets = target.to_numpy()
        hits = landed.to_numpy()

        assert np.all(hits[:, 0] == 1)
        assert np.all(np.abs(hits[:, 1] - targets[:, 0]) <= 1)
        assert np.all(np.abs(hits[:, 2] - targets[:, 1]) <= 1)

    def test_shadow_pixel_is_captured(self, default_scene):
        """Test that the pixel looking straight at the mass sees its shadow."""
        from foxel.camera.aperture import generate_camera_photon
        from foxel.core.raymarch import OUTCOME_CAPTURED, TIME_SCALE, raymarch

        n = 16
        outcomes = ti.field(dtype=ti.i32, shape=n)

        @ti.kernel
        def shoot():
            for i in range(n):
                result = raymarch(generate_camera_photon(32, 32, 64, 64, 4.0, 8.0, TIME_SCALE))
                outcomes[i] = result.outcome

        shoot()
        assert np.all(outcomes.to_numpy() == OUTCOME_CAPTURED)
