"""Matplotlib-based preview display for lensing renders.

Accumulated colours are already in [0, 1], but the running mean starts from
black, so sparsely sampled regions look dim. The display pipeline can stretch
the image by a high percentile before gamma correction.

Features:
    - Static preview window
    - Exposure normalization and gamma correction
    - Sample count heat map
    - Side view of traced photon paths

Example:
    >>> from foxel.preview.display import show_preview
    >>> from foxel.core.progressive import ProgressiveRenderer
    >>>
    >>> renderer = ProgressiveRenderer(512, 512)
    >>> renderer.render(100)
    >>> show_preview(renderer, tone_map="normalize")
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Literal

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    from foxel.camera.aperture import ApertureCamera
    from foxel.core.gravity import GravityField
    from foxel.core.progressive import ProgressiveRenderer


# Type alias for tone mapping options
ToneMapMethod = Literal["none", "normalize", "exposure"]


def normalize_exposure(
    image: npt.NDArray[np.float32],
    percentile: float = 99.5,
) -> npt.NDArray[np.float32]:
    """Scale an image so that the given brightness percentile maps to 1.

    Args:
        image: Linear image array of shape (H, W, 3).
        percentile: Percentile of the per-pixel maximum channel to map to 1.

    Returns:
        Scaled image, clamped to [0, 1]. Black images are returned unchanged.
    """
    image = np.maximum(image, 0.0)
    peak = float(np.percentile(image.max(axis=-1), percentile))
    if peak <= 0.0:
        return image.astype(np.float32)
    return np.clip(image / peak, 0.0, 1.0).astype(np.float32)


def tone_map_exposure(
    image: npt.NDArray[np.float32],
    exposure: float = 1.0,
) -> npt.NDArray[np.float32]:
    """Apply exposure-based tone mapping: 1 - exp(-c * exposure).

    Args:
        image: Linear image array of shape (H, W, 3).
        exposure: Exposure value. Higher values brighten the image.

    Returns:
        Tone mapped image in [0, 1] range.
    """
    image = np.maximum(image, 0.0)
    return (1.0 - np.exp(-image * exposure)).astype(np.float32)


def apply_gamma(
    image: npt.NDArray[np.float32],
    gamma: float = 2.2,
) -> npt.NDArray[np.float32]:
    """Apply gamma correction for display.

    Args:
        image: Linear image array of shape (H, W, 3) in [0, 1] range.
        gamma: Gamma value (default 2.2 for sRGB).

    Returns:
        Gamma corrected image.
    """
    if gamma == 1.0:
        return image

    # Clamp to [0, 1] before gamma to avoid NaN from negative values
    image = np.clip(image, 0.0, 1.0)
    return np.power(image, 1.0 / gamma).astype(np.float32)


def process_image_for_display(
    image: npt.NDArray[np.float32],
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.float32]:
    """Process an image for display.

    Applies the full display pipeline:
    1. Tone mapping (optional)
    2. Gamma correction
    3. Clamping to [0, 1]

    Args:
        image: Linear image array of shape (H, W, 3).
        tone_map: "none", "normalize" or "exposure".
        gamma: Gamma correction value (default 2.2 for sRGB).
        exposure: Exposure value for exposure tone mapping.

    Returns:
        Processed image ready for display, in [0, 1] range.

    Raises:
        ValueError: If tone_map is unknown.
    """
    result = image.copy()

    if tone_map == "normalize":
        result = normalize_exposure(result)
    elif tone_map == "exposure":
        result = tone_map_exposure(result, exposure)
    elif tone_map != "none":
        raise ValueError(f"Unknown tone mapping method: {tone_map}")

    result = apply_gamma(result, gamma)
    return np.clip(result, 0.0, 1.0).astype(np.float32)


def show_preview(
    renderer: ProgressiveRenderer,
    *,
    tone_map: ToneMapMethod = "normalize",
    gamma: float = 2.2,
    exposure: float = 1.0,
    title: str | None = None,
    figsize: tuple[float, float] = (8, 8),
    block: bool = True,
) -> None:
    """Display the current render as a Matplotlib figure.

    Args:
        renderer: The ProgressiveRenderer instance to display.
        tone_map: Tone mapping method.
        gamma: Gamma correction value.
        exposure: Exposure value for exposure tone mapping.
        title: Custom title (default shows the pass count).
        figsize: Figure size in inches (width, height).
        block: Whether to block execution until the figure is closed.
    """
    import matplotlib.pyplot as plt

    display_image = process_image_for_display(
        renderer.get_image_numpy(gamma=1.0),
        tone_map=tone_map,
        gamma=gamma,
        exposure=exposure,
    )

    fig, ax = plt.subplots(1, 1, figsize=figsize)
    ax.imshow(display_image)
    ax.axis("off")
    ax.set_title(title if title is not None else f"Lensing Preview - {renderer.pass_count} passes")

    plt.tight_layout()
    plt.show(block=block)


def show_sample_counts(
    renderer: ProgressiveRenderer,
    *,
    figsize: tuple[float, float] = (8, 8),
    block: bool = True,
) -> None:
    """Display how many hits each pixel has received, on a log scale.

    Lensing concentrates light near the Einstein ring and leaves the shadow
    empty, which shows up clearly here.
    """
    import matplotlib.pyplot as plt
    from matplotlib.colors import LogNorm

    counts = renderer.screen.get_sample_counts()

    fig, ax = plt.subplots(1, 1, figsize=figsize)
    mappable = ax.imshow(counts, cmap="magma", norm=LogNorm(vmin=1.0, vmax=max(counts.max(), 2.0)))
    ax.axis("off")
    ax.set_title("Samples per pixel")
    fig.colorbar(mappable, ax=ax, fraction=0.046)

    plt.tight_layout()
    plt.show(block=block)


def plot_trajectories(
    paths: Sequence[npt.NDArray[np.float32]],
    gravity: GravityField,
    camera: ApertureCamera,
    out_path: str | None = None,
    *,
    figsize: tuple[float, float] = (8, 8),
) -> None:
    """Plot photon paths projected onto the y-z plane.

    Args:
        paths: Position arrays of shape (N, 3), e.g. from trace_trajectory().
        gravity: Gravity field, drawn as its capture disk.
        camera: Camera, drawn as a point with its viewing direction.
        out_path: Save the figure here instead of showing it.
        figsize: Figure size in inches.
    """
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=figsize)

    horizon = plt.Circle(
        (gravity.position[2], gravity.position[1]),
        gravity.schwarzschild_radius,
        color="black",
        label="Horizon",
    )
    ax.add_patch(horizon)

    for path in paths:
        ax.plot(path[:, 2], path[:, 1], color="orange", lw=0.8, alpha=0.7)

    ax.plot(camera.position[2], camera.position[1], "ro", label="Camera")
    ax.arrow(
        camera.position[2],
        camera.position[1],
        0.3 * camera.forward[2],
        0.3 * camera.forward[1],
        color="red",
        width=0.01,
    )

    ax.set_aspect("equal")
    ax.set_xlabel("z")
    ax.set_ylabel("y")
    ax.set_title("Photon paths")
    ax.legend()

    if out_path is None:
        plt.show()
    else:
        plt.savefig(out_path, bbox_inches="tight")
        plt.close(fig)
