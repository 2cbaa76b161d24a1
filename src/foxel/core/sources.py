"""External ray sources.

A ray source produces batches of photon records for the batched executors.
Sources take an explicit numpy Generator so that runs are reproducible and
no global random state is shared.
"""

from dataclasses import dataclass
from typing import Protocol

import numpy as np
import numpy.typing as npt

from foxel.core.photon import DEFAULT_WAVELENGTH, make_photon_batch


class RaySource(Protocol):
    """Anything that emits photon batches."""

    def emit(self, count: int, rng: np.random.Generator) -> npt.NDArray[np.void]:
        """Emit count photon records (photon_dtype) with unit directions."""
        ...


@dataclass(frozen=True)
class VolumeSource:
    """Photons emitted uniformly from an axis-aligned box in random directions.

    The default box is the 9.6 x 0.8 x 9.6 slab of the terrain volume.

    Attributes:
        center: Centre of the box.
        extent: Full side lengths of the box along x, y and z.
        wavelength: Wavelength given to every photon.
    """

    center: tuple[float, float, float] = (0.0, 0.0, 0.0)
    extent: tuple[float, float, float] = (9.6, 0.8, 9.6)
    wavelength: float = DEFAULT_WAVELENGTH

    def __post_init__(self) -> None:
        if len(self.extent) != 3 or any(e < 0.0 for e in self.extent):
            raise ValueError(f"Box extent must be three non-negative lengths, got {self.extent}")

    def emit(self, count: int, rng: np.random.Generator) -> npt.NDArray[np.void]:
        """Emit photons from the box.

        Args:
            count: Number of photons.
            rng: Random generator to draw from.

        Returns:
            Structured array of length count with dtype photon_dtype.

        Raises:
            ValueError: If count is negative.
        """
        if count < 0:
            raise ValueError(f"Photon count must be non-negative, got {count}")

        center = np.asarray(self.center, dtype=np.float64)
        extent = np.asarray(self.extent, dtype=np.float64)
        positions = center + (rng.random((count, 3)) - 0.5) * extent

        # Gaussian samples give directions uniform on the sphere
        directions = rng.standard_normal((count, 3))
        norms = np.linalg.norm(directions, axis=1, keepdims=True)
        directions = np.where(norms > 0.0, directions, [[0.0, 0.0, 1.0]])

        return make_photon_batch(positions, directions, self.wavelength)
