"""Camera module.

Components:
    aperture: Finite-aperture camera, sensor collision test and camera photon
        generation

Sensor coordinates are normalized:
    u in [0, 1]: left to right across the image
    v in [0, 1]: bottom to top across the image
"""

from .aperture import (
    ApertureCamera,
    camera_basis,
    collision,
    generate_camera_photon,
    get_camera_info,
    sensor_collision,
    setup_camera,
)

__all__ = [
    "ApertureCamera",
    "camera_basis",
    "setup_camera",
    "get_camera_info",
    "sensor_collision",
    "collision",
    "generate_camera_photon",
]
