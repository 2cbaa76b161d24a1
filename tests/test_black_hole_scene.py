"""Tests for the black hole scene configuration."""

import numpy as np
import pytest


class TestSceneParams:
    """Tests for BlackHoleSceneParams."""

    def test_defaults(self):
        """Test the default scene parameters."""
        from foxel.scene.black_hole import BlackHoleSceneParams

        params = BlackHoleSceneParams()
        assert params.mass == 2.0e26
        assert params.mass_position == (0.0, 0.0, 0.0)
        assert params.camera_position == (0.0, 1.5, 2.5)
        assert params.aperture_radius == 0.02

    def test_dict_round_trip(self):
        """Test that to_dict output rebuilds equal parameters."""
        from foxel.scene.black_hole import BlackHoleSceneParams

        params = BlackHoleSceneParams(mass=4.0e26, camera_position=(1.0, 2.0, 3.0))
        data = params.to_dict()

        assert data["camera_position"] == [1.0, 2.0, 3.0]
        assert BlackHoleSceneParams.from_dict(data) == params

    def test_from_partial_dict(self):
        """Test that missing keys take their defaults."""
        from foxel.scene.black_hole import BlackHoleSceneParams

        params = BlackHoleSceneParams.from_dict({"focal_length": 2.0})
        assert params.focal_length == 2.0
        assert params.mass == 2.0e26

    def test_unknown_key_rejected(self):
        """Test that unknown keys raise."""
        from foxel.scene.black_hole import BlackHoleSceneParams

        with pytest.raises(ValueError, match="spin"):
            BlackHoleSceneParams.from_dict({"spin": 0.9})


class TestCreateScene:
    """Tests for create_black_hole_scene."""

    def test_camera_looks_at_target(self):
        """Test camera position, forward and aspect ratio."""
        from foxel.scene.black_hole import create_black_hole_scene

        camera, gravity = create_black_hole_scene(800, 400)

        assert camera.position == (0.0, 1.5, 2.5)
        expected = -np.array([0.0, 1.5, 2.5]) / np.linalg.norm([0.0, 1.5, 2.5])
        np.testing.assert_allclose(camera.forward, expected, atol=1e-12)
        assert camera.aspect_ratio == 2.0
        assert camera.sensor_height == 2.5
        assert abs(gravity.schwarzschild_radius - 0.29644) < 1e-4

    def test_invalid_dimensions(self):
        """Test that bad image sizes are rejected."""
        from foxel.scene.black_hole import create_black_hole_scene

        with pytest.raises(ValueError, match="dimensions"):
            create_black_hole_scene(0, 10)

    def test_invalid_params_rejected(self):
        """Test that a camera target at the camera is rejected."""
        from foxel.scene.black_hole import BlackHoleSceneParams, create_black_hole_scene

        params = BlackHoleSceneParams(camera_target=(0.0, 1.5, 2.5))
        with pytest.raises(ValueError):
            create_black_hole_scene(64, 64, params)

    def test_apply_scene(self, default_scene):
        """Test that apply_scene installs both camera and gravity."""
        from foxel.camera.aperture import get_camera_info
        from foxel.core.gravity import get_gravity_info

        camera, gravity = default_scene
        assert get_camera_info()["origin"] == camera.position
        assert abs(get_gravity_info()["schwarzschild_radius"] - gravity.schwarzschild_radius) < 1e-6
