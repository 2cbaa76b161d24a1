"""Photon data structure and record layout for lensing traces.

A photon is a point light sample with a position, a unit direction and a
wavelength in nanometres. Photons are created by a ray source or by the camera
generator, mutated step by step inside a single raymarch, and never shared
between traces while they are being integrated.

The module also defines the flat record layout used to move photon batches in
and out of batched executors. The layout mirrors the padded struct that a
device-side buffer expects: position, one float of padding, direction,
wavelength.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from foxel.core.photon import Photon, make_photon, vec3
    >>> @ti.kernel
    ... def demo() -> ti.f32:
    ...     p = make_photon(vec3(0.0, 0.0, 1.0), vec3(0.0, 0.0, -1.0), 580.0)
    ...     return p.wavelength
"""

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

# Type aliases using Taichi's math module
vec2 = tm.vec2
vec3 = tm.vec3

# Visible range covered by the colour mapping (nanometres)
WAVELENGTH_MIN = 380.0
WAVELENGTH_MAX = 780.0

# Wavelength used when a source has no colour of its own
DEFAULT_WAVELENGTH = 580.0


@ti.dataclass
class Photon:
    """A traced light sample.

    Attributes:
        position: World-space position (vec3).
        direction: Travel direction (vec3). Kept at unit length by the
            integrator after every update.
        wavelength: Wavelength in nanometres, nominally in [380, 780].
    """

    position: vec3
    direction: vec3
    wavelength: ti.f32


@ti.func
def make_photon(position: vec3, direction: vec3, wavelength: ti.f32) -> Photon:
    """Create a photon, normalizing its direction.

    Args:
        position: Starting point.
        direction: Travel direction (any non-zero length).
        wavelength: Wavelength in nanometres.

    Returns:
        A new Photon with a unit direction.
    """
    return Photon(position=position, direction=tm.normalize(direction), wavelength=wavelength)


@ti.func
def copy_photon(photon: Photon) -> Photon:
    """Return an independent copy of a photon."""
    return Photon(
        position=photon.position,
        direction=photon.direction,
        wavelength=photon.wavelength,
    )


# =============================================================================
# Record Layout (host side)
# =============================================================================

# Padded photon record: 32 bytes, matches a std430 vec3 + float pair layout
photon_dtype = np.dtype(
    [
        ("position", np.float32, (3,)),
        ("_pad", np.float32),
        ("direction", np.float32, (3,)),
        ("wavelength", np.float32),
    ],
    align=True,
)


def make_photon_batch(
    positions: npt.ArrayLike,
    directions: npt.ArrayLike,
    wavelengths: npt.ArrayLike | float = DEFAULT_WAVELENGTH,
    *,
    normalize: bool = True,
) -> npt.NDArray[np.void]:
    """Pack positions, directions and wavelengths into photon records.

    Args:
        positions: Array-like of shape (N, 3).
        directions: Array-like of shape (N, 3).
        wavelengths: Scalar or array-like of shape (N,).
        normalize: If True, directions are normalized before packing.

    Returns:
        Structured array of length N with dtype photon_dtype.

    Raises:
        ValueError: If the shapes are inconsistent or a direction has zero length.
    """
    pos = np.asarray(positions, dtype=np.float32).reshape(-1, 3)
    dirs = np.asarray(directions, dtype=np.float32).reshape(-1, 3)
    if pos.shape != dirs.shape:
        raise ValueError(f"Position and direction counts differ: {pos.shape} vs {dirs.shape}")

    if normalize:
        norms = np.linalg.norm(dirs, axis=1, keepdims=True)
        if np.any(norms == 0.0):
            raise ValueError("Photon directions must be non-zero")
        dirs = dirs / norms

    batch = np.zeros(pos.shape[0], dtype=photon_dtype)
    batch["position"] = pos
    batch["direction"] = dirs
    batch["wavelength"] = np.broadcast_to(
        np.asarray(wavelengths, dtype=np.float32), (pos.shape[0],)
    )
    return batch
