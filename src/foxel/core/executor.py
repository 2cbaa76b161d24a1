"""Batched trace executors.

An executor takes a batch of photon records and returns one intersection
record per photon, in the same order. Two executors are available:

- TaichiTraceExecutor runs the raymarch kernel over the batch.
- NumpyTraceExecutor runs the same integration vectorized on the host. It is
  slower and exists for cross-checking the kernel and for machines where the
  kernel backend is unavailable.

Both read the camera and gravity field installed with setup_camera() and
setup_gravity(). The executor is chosen once at startup with create_executor().

Example:
    >>> executor = create_executor("taichi")
    >>> records = executor.trace(photons)
    >>> hits = records[records["hit"] != 0]
"""

import logging
from typing import Protocol

import numpy as np
import numpy.typing as npt
import taichi as ti

from foxel.camera.aperture import (
    EPSILON_DIR,
    EPSILON_PLANE,
    SENSOR_WIDTH,
    get_camera_info,
)
from foxel.core.gravity import C_SQUARED, G, get_gravity_info
from foxel.core.photon import make_photon, photon_dtype, vec3
from foxel.core.raymarch import (
    ITERATIONS,
    OUTCOME_HIT,
    TIME_SCALE,
    check_scene_initialized,
    raymarch,
)

logger = logging.getLogger(__name__)

# Largest batch handed to a device in one dispatch
DEVICE_BATCH_SIZE = 1024 * 1024 * 4

# Intersection record: hit flag, padding, sensor uv, final photon
intersection_dtype = np.dtype(
    [
        ("hit", np.uint32),
        ("_pad", np.uint32),
        ("pos", np.float32, (2,)),
        ("photon", photon_dtype),
    ],
    align=True,
)


class TraceExecutor(Protocol):
    """Anything that can trace a batch of photon records."""

    name: str

    def trace(self, photons: npt.NDArray[np.void]) -> npt.NDArray[np.void]:
        """Trace photons and return intersections with intersection_dtype."""
        ...


def _check_photon_batch(photons: npt.NDArray[np.void]) -> None:
    if not isinstance(photons, np.ndarray) or photons.dtype != photon_dtype:
        raise ValueError("Photon batch must be a structured array with photon_dtype")
    if photons.ndim != 1:
        raise ValueError(f"Photon batch must be one-dimensional, got shape {photons.shape}")


# =============================================================================
# Taichi Executor
# =============================================================================


@ti.kernel
def _trace_batch(
    positions: ti.types.ndarray(),
    directions: ti.types.ndarray(),
    wavelengths: ti.types.ndarray(),
    hits: ti.types.ndarray(),
    uvs: ti.types.ndarray(),
    out_positions: ti.types.ndarray(),
    out_directions: ti.types.ndarray(),
    count: ti.i32,
):
    for i in range(count):
        photon = make_photon(
            vec3(positions[i, 0], positions[i, 1], positions[i, 2]),
            vec3(directions[i, 0], directions[i, 1], directions[i, 2]),
            wavelengths[i],
        )
        result = raymarch(photon)

        hits[i] = 0
        if result.outcome == OUTCOME_HIT:
            hits[i] = 1
        uvs[i, 0] = result.sensor_uv.x
        uvs[i, 1] = result.sensor_uv.y
        for k in ti.static(range(3)):
            out_positions[i, k] = result.photon.position[k]
            out_directions[i, k] = result.photon.direction[k]


class TaichiTraceExecutor:
    """Trace batches with the raymarch kernel.

    Batches larger than batch_size are dispatched in pieces.
    """

    name = "taichi"

    def __init__(self, batch_size: int = DEVICE_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        self.batch_size = batch_size

    def trace(self, photons: npt.NDArray[np.void]) -> npt.NDArray[np.void]:
        _check_photon_batch(photons)
        check_scene_initialized()

        records = np.zeros(len(photons), dtype=intersection_dtype)
        for start in range(0, len(photons), self.batch_size):
            piece = photons[start : start + self.batch_size]
            count = len(piece)

            hits = np.zeros(count, dtype=np.int32)
            uvs = np.zeros((count, 2), dtype=np.float32)
            out_positions = np.zeros((count, 3), dtype=np.float32)
            out_directions = np.zeros((count, 3), dtype=np.float32)

            _trace_batch(
                np.ascontiguousarray(piece["position"]),
                np.ascontiguousarray(piece["direction"]),
                np.ascontiguousarray(piece["wavelength"]),
                hits,
                uvs,
                out_positions,
                out_directions,
                count,
            )

            out = records[start : start + count]
            out["hit"] = hits
            out["pos"] = uvs
            out["photon"]["position"] = out_positions
            out["photon"]["direction"] = out_directions
            out["photon"]["wavelength"] = piece["wavelength"]

        logger.debug(
            "Traced %d photons on %s, %d hits",
            len(photons),
            self.name,
            int(np.count_nonzero(records["hit"])),
        )
        return records


# =============================================================================
# NumPy Executor
# =============================================================================


class NumpyTraceExecutor:
    """Trace batches on the host with vectorized NumPy.

    Follows the kernel step for step: sensor test, advance, escape check,
    capture check, deflection.
    """

    name = "numpy"

    def trace(self, photons: npt.NDArray[np.void]) -> npt.NDArray[np.void]:
        _check_photon_batch(photons)
        check_scene_initialized()

        camera = get_camera_info()
        gravity = get_gravity_info()
        basis = np.array([camera["right"], camera["up"], camera["forward"]], dtype=np.float32)
        origin = np.array(camera["origin"], dtype=np.float32)
        mass_position = np.array(gravity["position"], dtype=np.float32)
        horizon = gravity["schwarzschild_radius"]
        strength = G * gravity["mass"]

        count = len(photons)
        positions = photons["position"].astype(np.float32)
        directions = photons["direction"].astype(np.float32)
        directions /= np.linalg.norm(directions, axis=1, keepdims=True)

        hits = np.zeros(count, dtype=np.uint32)
        uvs = np.zeros((count, 2), dtype=np.float32)
        active = np.ones(count, dtype=bool)

        for i in range(ITERATIONS):
            idx = np.flatnonzero(active)
            if idx.size == 0:
                break

            hit, uv = self._collision(positions[idx], directions[idx], basis, origin, camera)
            hit_idx = idx[hit]
            hits[hit_idx] = 1
            uvs[hit_idx] = uv[hit]
            active[hit_idx] = False

            moving = idx[~hit]
            positions[moving] += directions[moving] * TIME_SCALE

            remaining = (ITERATIONS - i) * TIME_SCALE
            escaped = np.linalg.norm(positions[moving] - origin, axis=1) > remaining
            offset = mass_position - positions[moving]
            distance = np.linalg.norm(offset, axis=1)
            captured = ~escaped & (distance < horizon)
            active[moving[escaped | captured]] = False

            bend = ~(escaped | captured)
            bending = moving[bend]
            d = distance[bend][:, None]
            safe = np.where(d > 0.0, d, 1.0)
            accel = np.where(d > 0.0, strength / (safe * safe) * (offset[bend] / safe), 0.0)
            updated = directions[bending] + (accel / C_SQUARED * TIME_SCALE).astype(np.float32)
            directions[bending] = updated / np.linalg.norm(updated, axis=1, keepdims=True)

        records = np.zeros(count, dtype=intersection_dtype)
        records["hit"] = hits
        records["pos"] = uvs
        records["photon"]["position"] = positions
        records["photon"]["direction"] = directions
        records["photon"]["wavelength"] = photons["wavelength"]

        logger.debug("Traced %d photons on %s, %d hits", count, self.name, int(hits.sum()))
        return records

    @staticmethod
    def _collision(positions, directions, basis, origin, camera):
        local_pos = (positions - origin) @ basis.T
        local_dir = directions @ basis.T
        radius = camera["aperture_radius"]
        sensor_height = camera["sensor_height"]

        candidate = (np.abs(local_pos[:, 2]) <= EPSILON_PLANE) & (
            local_pos[:, 0] ** 2 + local_pos[:, 1] ** 2 <= radius * radius
        )
        candidate &= local_dir[:, 2] <= -EPSILON_DIR

        scale = np.zeros(len(positions), dtype=np.float32)
        scale[candidate] = camera["focal_length"] * 2.0 / -local_dir[candidate, 2]
        x = local_pos[:, 0] + local_dir[:, 0] * scale
        y = local_pos[:, 1] + local_dir[:, 1] * scale

        hit = candidate & (np.abs(x) <= SENSOR_WIDTH * 0.5) & (np.abs(y) <= sensor_height * 0.5)
        uv = np.stack([0.5 - x / SENSOR_WIDTH, 0.5 - y / sensor_height], axis=1)
        return hit, uv.astype(np.float32)


_EXECUTORS = {
    TaichiTraceExecutor.name: TaichiTraceExecutor,
    NumpyTraceExecutor.name: NumpyTraceExecutor,
}


def create_executor(name: str = "taichi") -> TraceExecutor:
    """Create a trace executor by name.

    Args:
        name: "taichi" or "numpy".

    Returns:
        A new executor.

    Raises:
        ValueError: If the name is unknown.
    """
    try:
        executor_class = _EXECUTORS[name]
    except KeyError:
        raise ValueError(
            f"Unknown executor '{name}', expected one of {sorted(_EXECUTORS)}"
        ) from None
    logger.info("Using %s trace executor", name)
    return executor_class()
