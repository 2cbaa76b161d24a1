"""Black hole lensing scene configuration.

The default scene places a single point mass at the origin and a small
finite-aperture camera above and behind it, looking down at the mass so that
the lensed sky fills the view around a dark shadow.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.gpu)
    >>> from foxel.scene.black_hole import apply_scene, create_black_hole_scene
    >>>
    >>> camera, gravity = create_black_hole_scene(800, 600)
    >>> apply_scene(camera, gravity)
"""

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any

from foxel.camera.aperture import ApertureCamera, setup_camera
from foxel.core.gravity import GravityField, setup_gravity

logger = logging.getLogger(__name__)


@dataclass
class BlackHoleSceneParams:
    """Parameters for configuring the black hole scene.

    Attributes:
        mass: Mass of the lens. Default 2e26 gives a Schwarzschild radius of
            roughly 0.3 scene units.
        mass_position: Position of the lens.
        camera_position: Centre of the aperture.
        camera_target: Point the camera looks at.
        camera_up: Up direction of the camera.
        aperture_radius: Radius of the aperture disk.
        focal_length: Focal length of the camera.

    Example:
        >>> params = BlackHoleSceneParams(mass=4.0e26)
        >>> BlackHoleSceneParams.from_dict(params.to_dict()) == params
        True
    """

    mass: float = 2.0e26
    mass_position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    camera_position: tuple[float, float, float] = (0.0, 1.5, 2.5)
    camera_target: tuple[float, float, float] = (0.0, 0.0, 0.0)
    camera_up: tuple[float, float, float] = (0.0, 1.0, 0.0)
    aperture_radius: float = 0.02
    focal_length: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary with lists for vectors."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BlackHoleSceneParams":
        """Build parameters from a dictionary such as one from to_dict().

        Missing keys take their defaults.

        Raises:
            ValueError: If the dictionary has unknown keys.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown scene parameters: {sorted(unknown)}")

        kwargs = {}
        for key, value in data.items():
            kwargs[key] = tuple(float(v) for v in value) if isinstance(value, list | tuple) else value
        return cls(**kwargs)


def create_black_hole_scene(
    width: int,
    height: int,
    params: BlackHoleSceneParams | None = None,
) -> tuple[ApertureCamera, GravityField]:
    """Create the camera and gravity field of the black hole scene.

    Args:
        width: Image width in pixels, used for the aspect ratio.
        height: Image height in pixels.
        params: Scene parameters. Defaults to BlackHoleSceneParams().

    Returns:
        Tuple of (camera, gravity).

    Raises:
        ValueError: If the parameters describe an invalid camera or mass.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    if params is None:
        params = BlackHoleSceneParams()

    forward = tuple(t - p for t, p in zip(params.camera_target, params.camera_position))
    camera = ApertureCamera(
        position=params.camera_position,
        forward=forward,
        up=params.camera_up,
        aspect_ratio=width / height,
        aperture_radius=params.aperture_radius,
        focal_length=params.focal_length,
    )
    gravity = GravityField(mass=params.mass, position=params.mass_position)
    return camera, gravity


def apply_scene(camera: ApertureCamera, gravity: GravityField) -> None:
    """Install a camera and gravity field for kernels."""
    setup_camera(camera)
    setup_gravity(gravity)
    logger.info(
        "Scene: camera at %s, mass %.3g at %s (rs=%.4f)",
        camera.position,
        gravity.mass,
        gravity.position,
        gravity.schwarzschild_radius,
    )
