"""Interactive preview window using Taichi GGUI.

The window runs one sampling pass per frame and shows the running image.
Sliders change the lensing mass and the aperture; any change rebuilds the
scene between passes and restarts accumulation.

Example:
    >>> from foxel.preview.interactive import InteractivePreview
    >>> from foxel.scene.black_hole import BlackHoleSceneParams
    >>>
    >>> preview = InteractivePreview(512, 512)
    >>> preview.set_params(BlackHoleSceneParams(mass=3.0e26))
    >>> preview.run_reactive()  # Renders continuously until window closed
"""

from __future__ import annotations

import dataclasses
import logging
import os
from datetime import datetime
from typing import TYPE_CHECKING

import numpy as np
import taichi as ti

if TYPE_CHECKING:
    import numpy.typing as npt

    from foxel.core.progressive import ProgressiveRenderer
    from foxel.scene.black_hole import BlackHoleSceneParams

logger = logging.getLogger(__name__)

# Slider ranges
MASS_RANGE = (0.1e26, 8.0e26)
APERTURE_RANGE = (0.005, 0.1)


class InteractivePreview:
    """Interactive preview window using Taichi GGUI.

    Attributes:
        width: Window width in pixels.
        height: Window height in pixels.
        display_image: Taichi field storing the display image (RGB float).
    """

    def __init__(
        self,
        width: int,
        height: int,
        *,
        title: str = "Foxel - Gravitational Lensing",
    ) -> None:
        """Set up the preview; the window itself is created on first use.

        Args:
            width: Window width in pixels.
            height: Window height in pixels.
            title: Window title.
        """
        from foxel.scene.black_hole import BlackHoleSceneParams

        self.width = width
        self.height = height
        self._title = title

        self._window: ti.ui.Window | None = None
        self._canvas: ti.ui.Canvas | None = None
        self._renderer: ProgressiveRenderer | None = None
        self._pending_params = BlackHoleSceneParams()
        self._current_params: BlackHoleSceneParams | None = None

        self.display_image = ti.Vector.field(3, dtype=ti.f32, shape=(width, height))

    def _initialize_window(self) -> None:
        if self._window is not None:
            return
        self._window = ti.ui.Window(name=self._title, res=(self.width, self.height), vsync=True)
        self._canvas = self._window.get_canvas()

    @property
    def window(self) -> ti.ui.Window:
        """Get the Taichi GGUI window, initializing if needed."""
        self._initialize_window()
        assert self._window is not None
        return self._window

    @property
    def canvas(self) -> ti.ui.Canvas:
        """Get the canvas for rendering."""
        self._initialize_window()
        assert self._canvas is not None
        return self._canvas

    @property
    def renderer(self) -> ProgressiveRenderer | None:
        """The progressive renderer, once the loop has started."""
        return self._renderer

    def update_image(self, image: npt.NDArray[np.float32]) -> None:
        """Update the display image from a numpy array.

        Args:
            image: Array of shape (height, width, 3), top row first, in [0, 1].

        Raises:
            ValueError: If the image shape doesn't match the window.
        """
        expected_shape = (self.height, self.width, 3)
        if image.shape != expected_shape:
            raise ValueError(f"Image shape {image.shape} doesn't match expected {expected_shape}")

        # (H, W, 3) top-left origin -> (W, H, 3) bottom-left origin
        self.display_image.from_numpy(
            np.ascontiguousarray(np.transpose(np.flipud(image), (1, 0, 2)))
        )

    def is_running(self) -> bool:
        """Check if the window is still open."""
        return self.window.running

    def show_frame(self) -> None:
        """Present the current display image."""
        self.canvas.set_image(self.display_image)
        self.window.show()

    def close(self) -> None:
        """Close the preview window."""
        if self._window is not None:
            self._window.running = False

    @staticmethod
    def is_display_available() -> bool:
        """Check if a display is available for GUI rendering."""
        if os.name == "nt":
            return True
        if os.uname().sysname == "Darwin":
            return not (os.environ.get("SSH_CONNECTION") and not os.environ.get("DISPLAY"))
        return bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))

    # =========================================================================
    # Reactive Rendering
    # =========================================================================

    def set_params(self, params: BlackHoleSceneParams) -> None:
        """Set the scene parameters; the scene is rebuilt before the next pass."""
        self._pending_params = dataclasses.replace(params)

    def _params_changed(self) -> bool:
        return self._current_params != self._pending_params

    def _rebuild_scene(self) -> None:
        from foxel.scene.black_hole import create_black_hole_scene

        camera, gravity = create_black_hole_scene(self.width, self.height, self._pending_params)
        self._ensure_renderer().reconfigure(camera=camera, gravity=gravity)
        self._current_params = dataclasses.replace(self._pending_params)
        logger.info("Rebuilt scene with mass %.3g", self._current_params.mass)

    def _ensure_renderer(self) -> ProgressiveRenderer:
        from foxel.core.progressive import ProgressiveRenderer

        if self._renderer is None:
            self._renderer = ProgressiveRenderer(self.width, self.height)
        return self._renderer

    def run_reactive(self) -> None:
        """Run passes until the window is closed.

        Each frame reads the sliders, rebuilds the scene if they moved, runs
        one pass and shows the normalized image.
        """
        from foxel.preview.display import process_image_for_display

        self._initialize_window()
        renderer = self._ensure_renderer()

        while self.is_running():
            if self._params_changed():
                self._rebuild_scene()

            renderer.render(num_passes=1)
            image = process_image_for_display(
                renderer.get_image_numpy(gamma=1.0), tone_map="normalize"
            )
            self.update_image(image)

            self._draw_gui_panel()
            self.show_frame()

    def _draw_gui_panel(self) -> None:
        params = self._pending_params
        with self.window.GUI.sub_window("Lens", 0.02, 0.02, 0.3, 0.18) as gui:
            mass = gui.slider_float("Mass", params.mass, minimum=MASS_RANGE[0], maximum=MASS_RANGE[1])
            aperture = gui.slider_float(
                "Aperture", params.aperture_radius, minimum=APERTURE_RANGE[0], maximum=APERTURE_RANGE[1]
            )
            if self._renderer is not None:
                gui.text(f"Passes: {self._renderer.pass_count}")
            if gui.button("Export PNG"):
                self._export_png()

        if mass != params.mass or aperture != params.aperture_radius:
            self._pending_params = dataclasses.replace(params, mass=mass, aperture_radius=aperture)

    def _export_png(self) -> None:
        from foxel.preview.export import save_png

        if self._renderer is None:
            logger.error("No renderer available for export")
            return

        filename = f"black_hole_{datetime.now().strftime('%Y%m%d_%H%M%S')}.png"
        save_png(self._renderer, filename)
        print(f"Exported: {filename} ({self._renderer.pass_count} passes)")
