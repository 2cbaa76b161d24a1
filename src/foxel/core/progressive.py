"""Progressive renderer for iterative pass accumulation.

This module wraps a Screen and a ChunkedSampler in a convenient interface
that supports:
- Progressive rendering that refines over time
- Batches of passes with progress callbacks for UI updates
- External photon batches traced through an executor
- Swapping camera and gravity between passes

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.gpu)
    >>> from foxel.core.progressive import ProgressiveRenderer
    >>> from foxel.scene.black_hole import apply_scene, create_black_hole_scene
    >>>
    >>> camera, gravity = create_black_hole_scene(512, 512)
    >>> apply_scene(camera, gravity)
    >>>
    >>> renderer = ProgressiveRenderer(512, 512)
    >>> renderer.render(100)  # Run 100 passes
    >>> image = renderer.get_image_numpy()
"""

import logging
from collections.abc import Callable, Generator

import numpy as np
import numpy.typing as npt

from foxel.camera.aperture import ApertureCamera, setup_camera
from foxel.core.accumulator import Screen
from foxel.core.executor import TraceExecutor
from foxel.core.gravity import GravityField, setup_gravity
from foxel.core.sampler import CHUNK_SIZE, ChunkedSampler, PassStats

logger = logging.getLogger(__name__)

# Callback receives (current_passes, target_passes)
ProgressCallback = Callable[[int, int], None]


class ProgressiveRenderer:
    """A progressive renderer that accumulates passes over time.

    The renderer owns the Screen and the sampler; the camera and gravity
    field are the active ones installed with setup_camera() and
    setup_gravity(), or via reconfigure().

    Attributes:
        width: Image width in pixels.
        height: Image height in pixels.
    """

    def __init__(
        self,
        width: int,
        height: int,
        chunk_size: int = CHUNK_SIZE,
        samples_per_chunk: int | None = None,
    ) -> None:
        """Initialize the progressive renderer.

        Args:
            width: Image width in pixels.
            height: Image height in pixels.
            chunk_size: Tile edge length in pixels.
            samples_per_chunk: Photons per tile and pass.

        Raises:
            ValueError: If a dimension or sampling parameter is out of range.
        """
        self._screen = Screen(width, height)
        self._sampler = ChunkedSampler(
            self._screen, chunk_size=chunk_size, samples_per_chunk=samples_per_chunk
        )
        self._passes = 0
        self._last_stats: PassStats | None = None

    @property
    def width(self) -> int:
        """Get the image width."""
        return self._screen.width

    @property
    def height(self) -> int:
        """Get the image height."""
        return self._screen.height

    @property
    def screen(self) -> Screen:
        """The accumulator being refined."""
        return self._screen

    @property
    def sampler(self) -> ChunkedSampler:
        """The sampler running the passes."""
        return self._sampler

    @property
    def pass_count(self) -> int:
        """Number of passes accumulated since the last reset."""
        return self._passes

    @property
    def last_stats(self) -> PassStats | None:
        """Counters of the most recent pass."""
        return self._last_stats

    def reset(self) -> None:
        """Clear the accumulator and the pass count."""
        self._screen.reset()
        self._passes = 0
        self._last_stats = None

    def reconfigure(
        self,
        camera: ApertureCamera | None = None,
        gravity: GravityField | None = None,
    ) -> None:
        """Swap the camera and/or gravity field and restart accumulation.

        Must be called between passes. The old image is discarded because it
        was accumulated under a different configuration.

        Args:
            camera: New camera, or None to keep the current one.
            gravity: New gravity field, or None to keep the current one.
        """
        if camera is not None:
            setup_camera(camera)
        if gravity is not None:
            setup_gravity(gravity)
        logger.info("Scene reconfigured, resetting accumulation")
        self.reset()

    def _run_one(self) -> None:
        self._last_stats = self._sampler.run_pass()
        self._passes += 1

    def render(
        self,
        num_passes: int = 1,
        batch_size: int = 1,
        callback: ProgressCallback | None = None,
    ) -> None:
        """Run passes progressively with an optional progress callback.

        Args:
            num_passes: Total number of passes to add.
            batch_size: Number of passes to run before each callback.
            callback: Optional callback called after each batch.
                Receives (current_total_passes, target_total_passes).

        Example:
            >>> def progress(current, target):
            ...     print(f"Progress: {current}/{target} passes")
            >>> renderer.render(100, batch_size=10, callback=progress)
        """
        for current, target in self.render_progressive(num_passes, batch_size):
            if callback is not None:
                callback(current, target)

    def render_progressive(
        self,
        num_passes: int = 1,
        batch_size: int = 1,
    ) -> Generator[tuple[int, int], None, None]:
        """Run passes progressively, yielding progress after each batch.

        Args:
            num_passes: Total number of passes to add.
            batch_size: Number of passes to run before each yield.

        Yields:
            Tuple of (current_total_passes, target_total_passes).
        """
        if num_passes <= 0:
            return
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}")

        target = self._passes + num_passes
        remaining = num_passes
        while remaining > 0:
            batch = min(batch_size, remaining)
            for _ in range(batch):
                self._run_one()
            remaining -= batch
            logger.debug("Accumulated %d/%d passes", self._passes, target)
            yield (self._passes, target)

    def render_external(
        self,
        photons: npt.NDArray[np.void],
        executor: TraceExecutor,
    ) -> PassStats:
        """Trace an external photon batch and blend it as one pass.

        Args:
            photons: Photon records, e.g. from a RaySource.
            executor: Executor used to trace the batch.

        Returns:
            Counters for the pass.
        """
        self._last_stats = self._sampler.run_external_pass(photons, executor)
        self._passes += 1
        return self._last_stats

    def get_image_numpy(self, gamma: float = 1.0) -> npt.NDArray[np.float32]:
        """Get the rendered image as a NumPy array.

        Args:
            gamma: Gamma correction value. Default 1.0 (linear).

        Returns:
            NumPy array of shape (height, width, 3) with dtype float32.
        """
        image = self._screen.get_image_numpy()

        if gamma != 1.0:
            image = np.power(image, 1.0 / gamma)

        return image

    def get_image_uint8(self, gamma: float = 2.2) -> npt.NDArray[np.uint8]:
        """Get the rendered image as an 8-bit NumPy array.

        Args:
            gamma: Gamma correction value. Default 2.2 for sRGB.

        Returns:
            NumPy array of shape (height, width, 3) with dtype uint8.
        """
        image = self.get_image_numpy(gamma=gamma)
        return (image * 255).astype(np.uint8)

    def save_image(self, filepath: str, gamma: float = 2.2) -> None:
        """Save the rendered image to a file.

        Args:
            filepath: Path to save the image (e.g., "output.png").
            gamma: Gamma correction value. Default 2.2 for sRGB.
        """
        from PIL import Image as PILImage

        image_uint8 = self.get_image_uint8(gamma=gamma)
        PILImage.fromarray(image_uint8).save(filepath)
        logger.info("Saved %dx%d image to %s", self.width, self.height, filepath)

    def __repr__(self) -> str:
        return (
            f"ProgressiveRenderer(width={self.width}, height={self.height}, "
            f"passes={self.pass_count})"
        )
