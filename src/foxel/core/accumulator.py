"""Per-pixel running-mean accumulator.

The Screen holds a colour and a sample count for every pixel. Sample counts
start at 1: the baseline acts as one black prior sample, so the first accepted
hit contributes half its colour and k identical hits of colour C give
C * k / (k + 1):

    samples += 1
    mix = 1 / samples
    color = mix * rgb + (1 - mix) * color

The count is incremented before mix is taken on purpose; taking mix first
would give the first hit full weight instead of half.

Hits whose sensor coordinates fall outside [0, 1]² (or are not finite) are
discarded and counted; they are never fatal.

Pixel indices follow the rest of the renderer: color[x, y] with x = 0 on the
left and y = 0 at the bottom. get_image_numpy() converts to the usual top-row
first (height, width, 3) layout.
"""

import logging

import numpy as np
import numpy.typing as npt
import taichi as ti

from foxel.core.photon import vec2, vec3
from foxel.core.spectrum import spectral_rgb

logger = logging.getLogger(__name__)

# Maximum supported image dimensions
MAX_IMAGE_WIDTH = 4096
MAX_IMAGE_HEIGHT = 4096


# =============================================================================
# Taichi Functions
# =============================================================================


@ti.func
def uv_to_pixel(uv: vec2, width: ti.i32, height: ti.i32):
    """Map sensor coordinates to the nearest pixel.

    Args:
        uv: Normalized sensor coordinates.
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        A tuple (valid, x, y). valid is 0 if uv lies outside [0, 1]² or is
        not finite, in which case x and y are 0.
    """
    valid = 0
    x = 0
    y = 0
    # Written so that NaN fails every comparison
    if 0.0 <= uv.x <= 1.0 and 0.0 <= uv.y <= 1.0:
        valid = 1
        x = ti.cast(ti.floor(uv.x * ti.cast(width - 1, ti.f32) + 0.5), ti.i32)
        y = ti.cast(ti.floor(uv.y * ti.cast(height - 1, ti.f32) + 0.5), ti.i32)
    return valid, x, y


@ti.func
def blend_pixel(color: ti.template(), samples: ti.template(), x: ti.i32, y: ti.i32, rgb: vec3):
    """Fold one colour sample into the running mean of a pixel."""
    samples[x, y] += 1.0
    mix = 1.0 / samples[x, y]
    color[x, y] = mix * rgb + (1.0 - mix) * color[x, y]


# =============================================================================
# Screen
# =============================================================================


@ti.data_oriented
class Screen:
    """Accumulation grid of colours and sample counts.

    Attributes:
        color: Taichi vec3 field of shape (width, height).
        samples: Taichi f32 field of shape (width, height).
    """

    def __init__(self, width: int, height: int) -> None:
        """Allocate the accumulation buffers.

        Args:
            width: Image width in pixels (max MAX_IMAGE_WIDTH).
            height: Image height in pixels (max MAX_IMAGE_HEIGHT).

        Raises:
            ValueError: If a dimension is not positive or exceeds the maximum.
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
        if width > MAX_IMAGE_WIDTH or height > MAX_IMAGE_HEIGHT:
            raise ValueError(
                f"Image dimensions ({width}x{height}) exceed maximum supported "
                f"({MAX_IMAGE_WIDTH}x{MAX_IMAGE_HEIGHT})"
            )

        self._width = width
        self._height = height
        self.color = ti.Vector.field(3, dtype=ti.f32, shape=(width, height))
        self.samples = ti.field(dtype=ti.f32, shape=(width, height))
        self._discarded = ti.field(dtype=ti.i32, shape=())

        self.reset()

    @property
    def width(self) -> int:
        """Image width in pixels."""
        return self._width

    @property
    def height(self) -> int:
        """Image height in pixels."""
        return self._height

    @property
    def discarded_count(self) -> int:
        """Number of hits dropped for landing outside the image."""
        return int(self._discarded[None])

    def record_discarded(self, count: int) -> None:
        """Add hits discarded elsewhere (e.g. during routing) to the counter."""
        self._discarded[None] += count

    def reset(self) -> None:
        """Clear colours to black and sample counts to 1."""
        self.color.fill(0.0)
        self.samples.fill(1.0)
        self._discarded[None] = 0

    # -------------------------------------------------------------------------
    # Blending
    # -------------------------------------------------------------------------

    @ti.func
    def blend_hit(self, uv: vec2, wavelength: ti.f32) -> ti.i32:
        """Blend a hit into its pixel, or count it as discarded.

        Returns:
            1 if the hit was blended, 0 if it was discarded.
        """
        valid, x, y = uv_to_pixel(uv, self._width, self._height)
        if valid == 1:
            blend_pixel(self.color, self.samples, x, y, spectral_rgb(wavelength))
        else:
            ti.atomic_add(self._discarded[None], 1)
        return valid

    @ti.kernel
    def _blend_one(self, uv: vec2, wavelength: ti.f32) -> ti.i32:
        return self.blend_hit(uv, wavelength)

    @ti.kernel
    def _blend_batch(self, uv: ti.types.ndarray(), wavelength: ti.types.ndarray(), count: ti.i32) -> ti.i32:
        blended = 0
        # Hits may share pixels, so they are folded in order
        ti.loop_config(serialize=True)
        for i in range(count):
            blended += self.blend_hit(vec2(uv[i, 0], uv[i, 1]), wavelength[i])
        return blended

    def blend(self, uv: tuple[float, float], wavelength: float) -> bool:
        """Blend a single sensor hit.

        Args:
            uv: Normalized sensor coordinates.
            wavelength: Photon wavelength in nanometres.

        Returns:
            True if the hit landed on a pixel, False if it was discarded.
        """
        blended = bool(self._blend_one(ti.math.vec2(*uv), wavelength))
        if not blended:
            logger.debug("Discarded hit outside the image at uv=%s", uv)
        return blended

    def blend_intersections(self, records: npt.NDArray[np.void]) -> int:
        """Blend a batch of intersection records, ignoring misses.

        Args:
            records: Structured array with the executor intersection layout
                (fields hit, pos and photon).

        Returns:
            Number of hits blended into the image.
        """
        hits = records[records["hit"] != 0]
        count = len(hits)
        if count == 0:
            logger.debug("No hits in a batch of %d intersections", len(records))
            return 0

        uv = np.ascontiguousarray(hits["pos"], dtype=np.float32)
        wavelength = np.ascontiguousarray(hits["photon"]["wavelength"], dtype=np.float32)

        discarded_before = self.discarded_count
        blended = int(self._blend_batch(uv, wavelength, count))
        discarded = self.discarded_count - discarded_before
        if discarded:
            logger.warning("Discarded %d of %d hits outside the image", discarded, count)
        logger.info("Blended %d hits from %d intersections", blended, len(records))
        return blended

    # -------------------------------------------------------------------------
    # Readback
    # -------------------------------------------------------------------------

    def get_image_numpy(self) -> npt.NDArray[np.float32]:
        """Get the accumulated image.

        Returns:
            Array of shape (height, width, 3), top row first, clamped to [0, 1].
        """
        image = self.color.to_numpy()
        # (width, height, 3) -> (height, width, 3), bottom-left origin -> top-left
        image = np.flipud(np.transpose(image, (1, 0, 2)))
        return np.clip(image, 0.0, 1.0).astype(np.float32)

    def get_sample_counts(self) -> npt.NDArray[np.float32]:
        """Get the per-pixel sample counts, laid out like get_image_numpy()."""
        return np.flipud(self.samples.to_numpy().T).astype(np.float32)

    def __repr__(self) -> str:
        return f"Screen(width={self.width}, height={self.height})"
