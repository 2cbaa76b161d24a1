"""Preview module for output and visualization.

Components:
    display: Matplotlib-based preview, sample count and path plots
    export: PNG export utilities
    interactive: Taichi GGUI-based interactive preview window

Example:
    >>> from foxel.preview import show_preview, save_png
    >>> from foxel.core.progressive import ProgressiveRenderer
    >>>
    >>> renderer = ProgressiveRenderer(512, 512)
    >>> renderer.render(100)
    >>> show_preview(renderer)
    >>> save_png(renderer, "output.png")
"""

from foxel.preview.display import (
    ToneMapMethod,
    apply_gamma,
    normalize_exposure,
    plot_trajectories,
    process_image_for_display,
    show_preview,
    show_sample_counts,
    tone_map_exposure,
)
from foxel.preview.export import (
    compute_rmse,
    image_to_uint8,
    save_png,
    save_png_from_array,
)
from foxel.preview.interactive import InteractivePreview

__all__ = [
    "InteractivePreview",
    "show_preview",
    "show_sample_counts",
    "plot_trajectories",
    "normalize_exposure",
    "tone_map_exposure",
    "apply_gamma",
    "process_image_for_display",
    "ToneMapMethod",
    "save_png",
    "save_png_from_array",
    "image_to_uint8",
    "compute_rmse",
]
