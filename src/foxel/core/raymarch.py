"""Raymarcher: integrates a photon past the lensing mass toward the camera.

Each trace advances one photon through at most ITERATIONS fixed steps of
length TIME_SCALE. Every step:

1. Test the sensor (the photon may cross the aperture plane between steps, so
   this runs every step, not only at the end). A hit ends the trace.
2. Advance the position along the current direction.
3. Give up early if the camera is now farther away than the remaining budget
   could carry the photon (escaped).
4. End the trace if the photon is inside the Schwarzschild radius (captured).
5. Bend the direction by the gravitational acceleration over c² and
   renormalize, so gravity turns the photon without changing its speed.

Running out of steps also counts as escaped. None of these outcomes are
errors; each is a terminal state recorded in the Intersection.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from foxel.core.raymarch import trace_photon
    >>> # After setup_camera() and setup_gravity():
    >>> result = trace_photon((0.0, 0.0, -1.0), (0.0, 0.0, 1.0), 550.0)
    >>> result.outcome
    <TraceOutcome.HIT: 1>
"""

from dataclasses import dataclass
from enum import IntEnum

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from foxel.camera.aperture import (
    get_camera_position,
    is_camera_initialized,
    sensor_collision,
)
from foxel.core.gravity import (
    C_SQUARED,
    get_gravity_position,
    get_horizon_radius,
    gravity_acceleration,
    is_gravity_initialized,
)
from foxel.core.photon import Photon, copy_photon, make_photon, vec2, vec3

# =============================================================================
# Integration Constants
# =============================================================================

# Maximum number of integration steps per trace
ITERATIONS = 600

# Step length in world units
TIME_SCALE = 0.015


class TraceOutcome(IntEnum):
    """Terminal state of a trace."""

    ESCAPED = 0
    HIT = 1
    CAPTURED = 2


OUTCOME_ESCAPED = int(TraceOutcome.ESCAPED)
OUTCOME_HIT = int(TraceOutcome.HIT)
OUTCOME_CAPTURED = int(TraceOutcome.CAPTURED)


@ti.dataclass
class Intersection:
    """Result of one raymarch.

    Attributes:
        hit: 1 if the photon registered on the sensor, 0 otherwise.
        outcome: A TraceOutcome value.
        steps: Number of integration steps taken before the trace ended.
        sensor_uv: Normalized sensor coordinates. Only valid if hit == 1.
        photon: Final photon state.
    """

    hit: ti.i32
    outcome: ti.i32
    steps: ti.i32
    sensor_uv: vec2
    photon: Photon


# Per-step trajectory storage for trace_trajectory()
_trajectory_positions = ti.Vector.field(3, dtype=ti.f32, shape=ITERATIONS + 1)
_trajectory_directions = ti.Vector.field(3, dtype=ti.f32, shape=ITERATIONS + 1)
_trajectory_length = ti.field(dtype=ti.i32, shape=())


@ti.func
def _march(photon: Photon, record: ti.template()) -> Intersection:
    p = copy_photon(photon)

    camera_position = get_camera_position()
    mass_position = get_gravity_position()
    horizon = get_horizon_radius()

    hit = 0
    outcome = OUTCOME_ESCAPED
    steps = ITERATIONS
    uv = vec2(0.0, 0.0)

    if ti.static(record):
        _trajectory_positions[0] = p.position
        _trajectory_directions[0] = p.direction

    # Active flag replaces break so the loop stays a plain ti.func loop
    active = 1
    for i in range(ITERATIONS):
        if active == 1:
            sensor_hit, sensor_uv = sensor_collision(p)
            if sensor_hit == 1:
                hit = 1
                outcome = OUTCOME_HIT
                steps = i
                uv = sensor_uv
                active = 0
            else:
                p.position += p.direction * TIME_SCALE

                # The camera is out of reach with the steps left
                remaining = ti.cast(ITERATIONS - i, ti.f32) * TIME_SCALE
                if tm.length(p.position - camera_position) > remaining:
                    steps = i + 1
                    active = 0
                elif tm.length(p.position - mass_position) < horizon:
                    outcome = OUTCOME_CAPTURED
                    steps = i + 1
                    active = 0
                else:
                    bend = gravity_acceleration(p.position) / C_SQUARED * TIME_SCALE
                    p.direction = tm.normalize(p.direction + bend)

                if ti.static(record):
                    _trajectory_positions[i + 1] = p.position
                    _trajectory_directions[i + 1] = p.direction

    if ti.static(record):
        _trajectory_length[None] = steps + 1

    return Intersection(hit=hit, outcome=outcome, steps=steps, sensor_uv=uv, photon=p)


@ti.func
def raymarch(photon: Photon) -> Intersection:
    """Integrate a photon until it hits the sensor, escapes or is captured.

    Args:
        photon: Initial photon state. The caller's copy is not modified.

    Returns:
        The Intersection describing the terminal state.
    """
    return _march(photon, False)


# =============================================================================
# Host-side Tracing
# =============================================================================


@dataclass(frozen=True)
class TraceResult:
    """Host-side copy of an Intersection.

    Attributes:
        outcome: How the trace ended.
        steps: Integration steps taken.
        sensor_uv: Sensor coordinates for hits, None otherwise.
        position: Final photon position.
        direction: Final photon direction.
        wavelength: Photon wavelength.
    """

    outcome: TraceOutcome
    steps: int
    sensor_uv: tuple[float, float] | None
    position: tuple[float, float, float]
    direction: tuple[float, float, float]
    wavelength: float

    @property
    def hit(self) -> bool:
        """True if the photon registered on the sensor."""
        return self.outcome == TraceOutcome.HIT


# Single-trace result storage (outcome, steps)
_result_state = ti.field(dtype=ti.i32, shape=2)
_result_uv = ti.Vector.field(2, dtype=ti.f32, shape=())
_result_position = ti.Vector.field(3, dtype=ti.f32, shape=())
_result_direction = ti.Vector.field(3, dtype=ti.f32, shape=())
_result_wavelength = ti.field(dtype=ti.f32, shape=())


def check_scene_initialized() -> None:
    """Raise RuntimeError unless both the camera and gravity field are set up."""
    if not is_camera_initialized():
        raise RuntimeError("Camera not set up. Call setup_camera() first.")
    if not is_gravity_initialized():
        raise RuntimeError("Gravity field not set up. Call setup_gravity() first.")


@ti.kernel
def _trace_single(position: vec3, direction: vec3, wavelength: ti.f32):
    result = raymarch(make_photon(position, direction, wavelength))
    _result_state[0] = result.outcome
    _result_state[1] = result.steps
    _result_uv[None] = result.sensor_uv
    _result_position[None] = result.photon.position
    _result_direction[None] = result.photon.direction
    _result_wavelength[None] = result.photon.wavelength


def _tuple3(vector) -> tuple[float, float, float]:
    return (float(vector[0]), float(vector[1]), float(vector[2]))


def trace_photon(
    position: tuple[float, float, float],
    direction: tuple[float, float, float],
    wavelength: float,
) -> TraceResult:
    """Trace a single photon against the active camera and gravity field.

    Intended for tests and debugging; batches go through a TraceExecutor.

    Args:
        position: Starting position.
        direction: Starting direction (normalized before tracing).
        wavelength: Wavelength in nanometres.

    Returns:
        The TraceResult for this photon.

    Raises:
        RuntimeError: If the camera or gravity field has not been set up.
    """
    check_scene_initialized()
    _trace_single(tm.vec3(*position), tm.vec3(*direction), wavelength)

    outcome = TraceOutcome(int(_result_state[0]))
    uv = None
    if outcome == TraceOutcome.HIT:
        sensor_uv = _result_uv[None]
        uv = (float(sensor_uv[0]), float(sensor_uv[1]))

    return TraceResult(
        outcome=outcome,
        steps=int(_result_state[1]),
        sensor_uv=uv,
        position=_tuple3(_result_position[None]),
        direction=_tuple3(_result_direction[None]),
        wavelength=float(_result_wavelength[None]),
    )


# =============================================================================
# Trajectory Diagnostics
# =============================================================================


@ti.kernel
def _record_trajectory(position: vec3, direction: vec3, wavelength: ti.f32):
    _march(make_photon(position, direction, wavelength), True)


def trace_trajectory(
    position: tuple[float, float, float],
    direction: tuple[float, float, float],
    wavelength: float = 580.0,
) -> tuple[npt.NDArray[np.float32], npt.NDArray[np.float32]]:
    """Record the full path of a single trace.

    Useful for plotting how a photon bends around the mass and for checking
    that the direction stays normalized.

    Args:
        position: Starting position.
        direction: Starting direction (normalized before tracing).
        wavelength: Wavelength in nanometres.

    Returns:
        Tuple (positions, directions), each of shape (steps + 1, 3). Row 0 is
        the initial state; row k is the state after step k.

    Raises:
        RuntimeError: If the camera or gravity field has not been set up.
    """
    check_scene_initialized()
    _record_trajectory(tm.vec3(*position), tm.vec3(*direction), wavelength)
    count = int(_trajectory_length[None])
    positions = _trajectory_positions.to_numpy()[:count]
    directions = _trajectory_directions.to_numpy()[:count]
    return positions, directions
