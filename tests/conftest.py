"""Pytest configuration for lensing tests.

This module provides shared fixtures for all test modules, including
Taichi initialization which must happen once per session.
"""

import pytest
import taichi as ti


@pytest.fixture(scope="session", autouse=True)
def init_taichi_session():
    """Initialize Taichi once for the entire test session.

    Using session scope prevents multiple ti.init() calls which can cause
    segmentation faults due to Taichi runtime conflicts.
    """
    ti.init(arch=ti.cpu, random_seed=42)
    yield


@pytest.fixture
def axis_camera():
    """Camera at the origin looking down -z, installed for kernels."""
    from foxel.camera.aperture import ApertureCamera, setup_camera

    camera = ApertureCamera(
        position=(0.0, 0.0, 0.0),
        forward=(0.0, 0.0, -1.0),
        up=(0.0, 1.0, 0.0),
        aspect_ratio=1.0,
        aperture_radius=0.02,
        focal_length=1.0,
    )
    setup_camera(camera)
    return camera


@pytest.fixture
def distant_mass():
    """Small mass far off to the side, so photons near the camera fly straight."""
    from foxel.core.gravity import GravityField, setup_gravity

    field = GravityField(mass=1.0, position=(100.0, 100.0, 100.0))
    setup_gravity(field)
    return field


@pytest.fixture
def default_scene():
    """The default black hole scene at 64x64, installed for kernels."""
    from foxel.scene.black_hole import apply_scene, create_black_hole_scene

    camera, gravity = create_black_hole_scene(64, 64)
    apply_scene(camera, gravity)
    return camera, gravity
