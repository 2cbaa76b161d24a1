"""Image export utilities for lensing renders.

Supported formats:
    - PNG (8-bit sRGB via Pillow)

Example:
    >>> from foxel.preview.export import save_png
    >>> from foxel.core.progressive import ProgressiveRenderer
    >>>
    >>> renderer = ProgressiveRenderer(512, 512)
    >>> renderer.render(100)
    >>> save_png(renderer, "output.png", tone_map="normalize")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

from foxel.preview.display import ToneMapMethod, process_image_for_display

if TYPE_CHECKING:
    from foxel.core.progressive import ProgressiveRenderer

logger = logging.getLogger(__name__)


def image_to_uint8(
    image: npt.NDArray[np.float32],
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.uint8]:
    """Convert a linear float32 image to uint8 for display or export.

    Args:
        image: Linear image array of shape (H, W, 3).
        tone_map: Tone mapping method.
        gamma: Gamma correction value (default 2.2 for sRGB).
        exposure: Exposure value for exposure tone mapping.

    Returns:
        8-bit image array of shape (H, W, 3).
    """
    processed = process_image_for_display(
        image,
        tone_map=tone_map,
        gamma=gamma,
        exposure=exposure,
    )
    return (processed * 255).astype(np.uint8)


def save_png_from_array(
    image: npt.NDArray[np.float32],
    filepath: str,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> None:
    """Save a linear image array as an 8-bit PNG."""
    image_uint8 = image_to_uint8(image, tone_map=tone_map, gamma=gamma, exposure=exposure)
    PILImage.fromarray(image_uint8).save(filepath)
    logger.info("Wrote %s", filepath)


def save_png(
    renderer: ProgressiveRenderer,
    filepath: str,
    *,
    tone_map: ToneMapMethod = "normalize",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> None:
    """Save the current render as a PNG file.

    Args:
        renderer: The ProgressiveRenderer instance to save.
        filepath: Output file path (should end in .png).
        tone_map: Tone mapping method.
        gamma: Gamma correction value (default 2.2 for sRGB).
        exposure: Exposure value for exposure tone mapping.
    """
    save_png_from_array(
        renderer.get_image_numpy(gamma=1.0),
        filepath,
        tone_map=tone_map,
        gamma=gamma,
        exposure=exposure,
    )


def compute_rmse(
    image_a: npt.NDArray[np.floating],
    image_b: npt.NDArray[np.floating],
) -> float:
    """Compute root mean squared error between two images.

    Raises:
        ValueError: If image shapes don't match.
    """
    if image_a.shape != image_b.shape:
        raise ValueError(f"Image shapes must match: {image_a.shape} vs {image_b.shape}")

    diff = image_a.astype(np.float64) - image_b.astype(np.float64)
    return float(np.sqrt(np.mean(diff**2)))
