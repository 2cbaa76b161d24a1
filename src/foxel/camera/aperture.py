"""Finite-aperture camera: sensor collision test and camera photon generation.

The camera is a small disk (the aperture) centred on the camera position and
facing along the forward vector. A photon registers on the sensor when, during
one integration step, it is:

1. within EPSILON_PLANE of the aperture plane,
2. inside the aperture disk,
3. travelling toward the sensor (against the forward vector), and
4. projected by the pinhole model onto the virtual sensor, which sits
   2·focal_length behind the aperture and is SENSOR_WIDTH units wide.

Camera-local space is built from an orthonormal basis (right, up, forward),
so the forward vector maps onto local +z and incoming light has local z < 0.

The camera also provides the photon generator used by the chunked sampler: a
jittered sensor position and a random aperture point define the direction the
photon must arrive with. The path is then integrated backwards out of the
aperture through the gravity field, and the photon is launched from where that
path ends, so the forward trace bends it back onto the chosen pixel.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from foxel.camera.aperture import ApertureCamera, setup_camera, collision
    >>> camera = ApertureCamera(
    ...     position=(0.0, 0.0, 0.0),
    ...     forward=(0.0, 0.0, -1.0),
    ...     up=(0.0, 1.0, 0.0),
    ...     aspect_ratio=1.0,
    ...     aperture_radius=0.02,
    ...     focal_length=1.0,
    ... )
    >>> setup_camera(camera)
    >>> collision((0.0, 0.0, 0.0), (0.0, 0.0, 1.0))
    (0.5, 0.5)
"""

import math
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from foxel.core.gravity import C_SQUARED, get_gravity_position, get_horizon_radius, gravity_acceleration
from foxel.core.photon import Photon, make_photon, vec2, vec3
from foxel.core.spectrum import celestial_wavelength

# =============================================================================
# Sensor Constants
# =============================================================================

# Half-thickness of the aperture plane; tuned together with TIME_SCALE
EPSILON_PLANE = 0.08

# Photons must approach the sensor at least this steeply (local z direction)
EPSILON_DIR = 1e-4

# Width of the virtual sensor; height follows from the aspect ratio
SENSOR_WIDTH = 5.0


# =============================================================================
# Camera Data Structures
# =============================================================================


def _as_vector(name: str, value: tuple[float, float, float]) -> npt.NDArray[np.float64]:
    vector = np.asarray(value, dtype=np.float64)
    if vector.shape != (3,) or not np.all(np.isfinite(vector)):
        raise ValueError(f"Camera {name} must be a finite 3-vector, got {value}")
    return vector


def _unit(name: str, value: tuple[float, float, float]) -> tuple[float, float, float]:
    vector = _as_vector(name, value)
    norm = np.linalg.norm(vector)
    if norm < 1e-8:
        raise ValueError(f"Camera {name} vector has zero length")
    unit = vector / norm
    return (float(unit[0]), float(unit[1]), float(unit[2]))


@dataclass(frozen=True)
class ApertureCamera:
    """Configuration of the finite-aperture camera.

    forward and up are normalized on construction. The configuration is
    rejected eagerly if it cannot produce a valid basis, and is immutable
    afterwards.

    Attributes:
        position: Centre of the aperture in world space.
        forward: Viewing direction.
        up: Up direction; must not be parallel to forward.
        aspect_ratio: Sensor width divided by sensor height.
        aperture_radius: Radius of the light-gathering disk.
        focal_length: Focal length; the sensor sits at twice this distance.
    """

    position: tuple[float, float, float]
    forward: tuple[float, float, float]
    up: tuple[float, float, float]
    aspect_ratio: float
    aperture_radius: float
    focal_length: float

    def __post_init__(self) -> None:
        _as_vector("position", self.position)
        object.__setattr__(self, "position", tuple(float(c) for c in self.position))
        object.__setattr__(self, "forward", _unit("forward", self.forward))
        object.__setattr__(self, "up", _unit("up", self.up))

        if np.linalg.norm(np.cross(self.forward, self.up)) < 1e-6:
            raise ValueError("Camera forward and up vectors must not be parallel")

        for name in ("aspect_ratio", "aperture_radius", "focal_length"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0.0:
                raise ValueError(f"Camera {name} must be positive and finite, got {value}")

    @property
    def sensor_height(self) -> float:
        """Height of the virtual sensor."""
        return SENSOR_WIDTH / self.aspect_ratio


def camera_basis(camera: ApertureCamera) -> npt.NDArray[np.float64]:
    """Compute the world-to-camera matrix.

    Rows are the camera's right, up and forward axes, so multiplying a world
    vector by the matrix gives its (x, y, z) in camera-local space.

    Args:
        camera: Camera configuration.

    Returns:
        A 3x3 orthonormal matrix.
    """
    forward = np.asarray(camera.forward, dtype=np.float64)
    up = np.asarray(camera.up, dtype=np.float64)

    right = np.cross(forward, up)
    right = right / np.linalg.norm(right)
    true_up = np.cross(right, forward)

    return np.stack([right, true_up, forward])


# =============================================================================
# Taichi Fields for Camera State
# =============================================================================

_camera_position = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_basis = ti.Matrix.field(3, 3, dtype=ti.f32, shape=())
_aperture_radius = ti.field(dtype=ti.f32, shape=())
_focal_length = ti.field(dtype=ti.f32, shape=())
_sensor_height = ti.field(dtype=ti.f32, shape=())
_camera_initialized = ti.field(dtype=ti.i32, shape=())


def setup_camera(camera: ApertureCamera) -> None:
    """Install a camera configuration for kernels.

    Must be called before tracing, and only between passes.

    Args:
        camera: Camera configuration.
    """
    _camera_position[None] = list(camera.position)
    _camera_basis[None] = camera_basis(camera).tolist()
    _aperture_radius[None] = camera.aperture_radius
    _focal_length[None] = camera.focal_length
    _sensor_height[None] = camera.sensor_height
    _camera_initialized[None] = 1


def is_camera_initialized() -> bool:
    """Check whether setup_camera() has been called."""
    return bool(_camera_initialized[None])


def get_camera_info() -> dict[str, float | tuple[float, ...]]:
    """Get the active camera state for debugging.

    Returns:
        Dictionary with origin, right, up, forward, aperture_radius,
        focal_length and sensor_height.

    Raises:
        RuntimeError: If no camera has been set up.
    """
    if not is_camera_initialized():
        raise RuntimeError("Camera not set up. Call setup_camera() first.")

    origin = _camera_position[None]
    basis = _camera_basis[None]

    def row(i: int) -> tuple[float, float, float]:
        return (float(basis[i, 0]), float(basis[i, 1]), float(basis[i, 2]))

    return {
        "origin": (float(origin[0]), float(origin[1]), float(origin[2])),
        "right": row(0),
        "up": row(1),
        "forward": row(2),
        "aperture_radius": float(_aperture_radius[None]),
        "focal_length": float(_focal_length[None]),
        "sensor_height": float(_sensor_height[None]),
    }


# =============================================================================
# Taichi Functions
# =============================================================================


@ti.func
def get_camera_position() -> vec3:
    """Centre of the aperture in world space."""
    return _camera_position[None]


@ti.func
def world_to_camera(v: vec3) -> vec3:
    """Rotate a world-space vector into camera-local space."""
    return _camera_basis[None] @ v


@ti.func
def camera_to_world(v: vec3) -> vec3:
    """Rotate a camera-local vector back into world space."""
    return _camera_basis[None].transpose() @ v


@ti.func
def sensor_collision(photon: Photon):
    """Test whether a photon registers on the sensor during this step.

    Args:
        photon: The photon at its current position and direction.

    Returns:
        A tuple (hit, uv) where hit is 1 on a sensor hit and uv holds the
        normalized sensor coordinates in [0, 1] x [0, 1]. uv is zero on a miss.
    """
    hit = 0
    uv = vec2(0.0, 0.0)

    local_pos = world_to_camera(photon.position - _camera_position[None])
    radius = _aperture_radius[None]

    if ti.abs(local_pos.z) <= EPSILON_PLANE:
        if local_pos.x * local_pos.x + local_pos.y * local_pos.y <= radius * radius:
            local_dir = world_to_camera(photon.direction)

            if local_dir.z <= -EPSILON_DIR:
                # Pinhole projection onto the sensor at 2·focal_length
                scale = _focal_length[None] * 2.0 / -local_dir.z
                x = local_pos.x + local_dir.x * scale
                y = local_pos.y + local_dir.y * scale

                sensor_height = _sensor_height[None]
                if ti.abs(x) <= SENSOR_WIDTH * 0.5 and ti.abs(y) <= sensor_height * 0.5:
                    hit = 1
                    uv = vec2(0.5 - x / SENSOR_WIDTH, 0.5 - y / sensor_height)

    return hit, uv


@ti.func
def random_in_aperture() -> vec3:
    """Uniform random point on the aperture disk, in camera-local space."""
    r = _aperture_radius[None] * ti.sqrt(ti.random(ti.f32))
    theta = 2.0 * tm.pi * ti.random(ti.f32)
    return vec3(r * ti.cos(theta), r * ti.sin(theta), 0.0)


@ti.func
def generate_camera_photon(
    pixel_x: ti.i32,
    pixel_y: ti.i32,
    width: ti.i32,
    height: ti.i32,
    emit_near: ti.f32,
    emit_far: ti.f32,
    step: ti.f32,
) -> Photon:
    """Generate a photon that lands on a jittered pixel after lensing.

    The sensor point is jittered within half a pixel of the pixel centre and
    the aperture point is drawn uniformly from the disk; together they fix the
    direction the photon must arrive with. The path is integrated backwards
    from the aperture for a random whole number of steps, between emit_near
    and emit_far, undoing the bend of each forward step in reverse order.
    The photon starts at the far end of that path, heading back along it.
    Its wavelength comes from the celestial pattern in the direction the
    path leaves toward, so the sky appears lensed. Paths that fall inside
    the Schwarzschild radius stop there, and the photon is aimed at the
    mass so it is captured on its first forward step, leaving the pixel in
    shadow.

    Args:
        pixel_x: Pixel column (0 = left).
        pixel_y: Pixel row (0 = bottom).
        width: Image width in pixels.
        height: Image height in pixels.
        emit_near: Minimum path length back from the aperture.
        emit_far: Maximum path length back from the aperture.
        step: Integration step length.

    Returns:
        A photon with a unit direction heading toward the aperture.
    """
    span_x = ti.max(width - 1, 1)
    span_y = ti.max(height - 1, 1)
    u = (ti.cast(pixel_x, ti.f32) + ti.random(ti.f32) - 0.5) / ti.cast(span_x, ti.f32)
    v = (ti.cast(pixel_y, ti.f32) + ti.random(ti.f32) - 0.5) / ti.cast(span_y, ti.f32)

    sensor_x = (0.5 - u) * SENSOR_WIDTH
    sensor_y = (0.5 - v) * _sensor_height[None]

    aperture_point = random_in_aperture()
    lens = 2.0 * _focal_length[None]
    local_dir = tm.normalize(
        vec3(
            (sensor_x - aperture_point.x) / lens,
            (sensor_y - aperture_point.y) / lens,
            -1.0,
        )
    )

    distance = emit_near + (emit_far - emit_near) * ti.random(ti.f32)
    num_steps = ti.cast(ti.floor(distance / step + 0.5), ti.i32)

    mass_position = get_gravity_position()
    horizon = get_horizon_radius()

    # Outward direction; each forward step moves then bends, so undo the bend first
    position = _camera_position[None] + camera_to_world(aperture_point)
    outward = -camera_to_world(local_dir)
    active = 1
    for _ in range(num_steps):
        if active == 1:
            if tm.length(position - mass_position) < horizon:
                active = 0
            else:
                bend = gravity_acceleration(position) / C_SQUARED * step
                outward = tm.normalize(outward + bend)
                position += outward * step

    direction = -outward
    if active == 0:
        # Head for the centre so the first forward step stays inside
        direction = mass_position - position

    return make_photon(position, direction, celestial_wavelength(outward))


# =============================================================================
# Host-side Wrappers
# =============================================================================


@ti.kernel
def _collision_kernel(position: vec3, direction: vec3) -> vec3:
    photon = Photon(position=position, direction=direction, wavelength=0.0)
    hit, uv = sensor_collision(photon)
    return vec3(ti.cast(hit, ti.f32), uv.x, uv.y)


def collision(
    position: tuple[float, float, float],
    direction: tuple[float, float, float],
) -> tuple[float, float] | None:
    """Run the sensor collision test against the active camera.

    Args:
        position: Photon position in world space.
        direction: Photon direction (unit length).

    Returns:
        Normalized sensor coordinates (u, v), or None if the photon does not
        register this step.

    Raises:
        RuntimeError: If no camera has been set up.
    """
    if not is_camera_initialized():
        raise RuntimeError("Camera not set up. Call setup_camera() first.")
    result = _collision_kernel(tm.vec3(*position), tm.vec3(*direction))
    if result[0] < 0.5:
        return None
    return (float(result[1]), float(result[2]))
