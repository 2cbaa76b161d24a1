"""Point-mass gravity field for first-order light bending.

The lens is a single point mass. Photons are deflected by the Newtonian
acceleration of that mass scaled by 1/c², and are captured once they come
within the Schwarzschild radius. The constants below are scene-scale tuning
values chosen for visible deflection, not SI quantities.

The active field lives in Taichi fields so that kernels can read it. It is set
from Python with setup_gravity() between passes and is read-only while a pass
runs.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from foxel.core.gravity import GravityField, setup_gravity, schwarzschild_radius
    >>> field = GravityField(mass=2.0e26, position=(0.0, 0.0, 0.0))
    >>> setup_gravity(field)
    >>> round(schwarzschild_radius(field.mass), 4)
    0.2964
"""

import math
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from foxel.core.photon import vec3

# =============================================================================
# Constants
# =============================================================================

# Gravitational constant (scene units)
G = 6.67e-11

# Speed of light (scene units)
C = 3e8
C_SQUARED = C * C

# Largest mass that still fits the single-precision kernel fields
MAX_MASS = float(np.finfo(np.float32).max)


@dataclass(frozen=True)
class GravityField:
    """Configuration of the lensing mass.

    Attributes:
        mass: Mass of the point source. Must be positive and finite.
        position: World-space position of the mass.
    """

    mass: float
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        if not math.isfinite(self.mass) or not 0.0 < self.mass <= MAX_MASS:
            raise ValueError(f"Mass must be positive and finite, got {self.mass}")
        if len(self.position) != 3 or not all(math.isfinite(c) for c in self.position):
            raise ValueError(f"Mass position must be a finite 3-vector, got {self.position}")

    @property
    def schwarzschild_radius(self) -> float:
        """Capture radius of this field."""
        return schwarzschild_radius(self.mass)


def schwarzschild_radius(mass: float) -> float:
    """Compute the Schwarzschild radius 2·G·m / c².

    Args:
        mass: Mass of the point source.

    Returns:
        The capture radius in scene units.
    """
    return 2.0 * G * mass / (C * C)


def acceleration(
    position: npt.ArrayLike,
    field: GravityField,
) -> npt.NDArray[np.float64]:
    """Compute the gravitational acceleration at one or more points.

    Points that coincide with the mass get a zero vector.

    Args:
        position: Array-like of shape (3,) or (N, 3).
        field: The gravity field.

    Returns:
        Array with the same shape as position.
    """
    points = np.asarray(position, dtype=np.float64)
    offset = np.asarray(field.position, dtype=np.float64) - points
    distance = np.linalg.norm(offset, axis=-1, keepdims=True)

    result = np.zeros_like(offset)
    mask = distance[..., 0] > 0.0
    safe = distance[mask]
    result[mask] = G * field.mass / (safe * safe) * (offset[mask] / safe)
    return result


# =============================================================================
# Taichi Fields for Gravity State
# =============================================================================

_gravity_position = ti.Vector.field(3, dtype=ti.f32, shape=())
_gravity_mass = ti.field(dtype=ti.f32, shape=())
_horizon_radius = ti.field(dtype=ti.f32, shape=())
_gravity_initialized = ti.field(dtype=ti.i32, shape=())


def setup_gravity(field: GravityField) -> None:
    """Make a gravity field the active one for kernels.

    Args:
        field: The gravity field to install.
    """
    _gravity_position[None] = list(field.position)
    _gravity_mass[None] = field.mass
    _horizon_radius[None] = field.schwarzschild_radius
    _gravity_initialized[None] = 1


def is_gravity_initialized() -> bool:
    """Check whether setup_gravity() has been called."""
    return bool(_gravity_initialized[None])


def get_gravity_info() -> dict[str, float | tuple[float, float, float]]:
    """Return the active gravity state for debugging.

    Raises:
        RuntimeError: If no gravity field has been set up.
    """
    if not is_gravity_initialized():
        raise RuntimeError("Gravity field not set up. Call setup_gravity() first.")
    pos = _gravity_position[None]
    return {
        "position": (float(pos[0]), float(pos[1]), float(pos[2])),
        "mass": float(_gravity_mass[None]),
        "schwarzschild_radius": float(_horizon_radius[None]),
    }


# =============================================================================
# Taichi Functions
# =============================================================================


@ti.func
def get_gravity_position() -> vec3:
    """Position of the active mass."""
    return _gravity_position[None]


@ti.func
def get_horizon_radius() -> ti.f32:
    """Schwarzschild radius of the active mass."""
    return _horizon_radius[None]


@ti.func
def gravity_acceleration(position: vec3) -> vec3:
    """Acceleration toward the active mass at a point.

    Args:
        position: World-space sample point.

    Returns:
        G·m / d² along the unit vector toward the mass, or zero at d == 0.
    """
    offset = _gravity_position[None] - position
    distance = tm.length(offset)
    result = vec3(0.0, 0.0, 0.0)
    if distance > 0.0:
        result = G * _gravity_mass[None] / (distance * distance) * (offset / distance)
    return result
