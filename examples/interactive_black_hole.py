#!/usr/bin/env python3
"""Interactive black hole renderer with live lens controls.

Usage:
    python examples/interactive_black_hole.py [--width W] [--height H] [--mass M]

Controls:
    - Mass: Lens mass; larger masses bend light more and grow the shadow
    - Aperture: Aperture radius of the camera
    - Export PNG: Save the current render with a timestamp

One sampling pass runs per frame. Accumulation restarts whenever a slider
moves.
"""

from __future__ import annotations

import argparse
import logging
import sys

import taichi as ti


def main() -> int:
    """Main entry point for the interactive renderer."""
    parser = argparse.ArgumentParser(description="Interactive black hole renderer.")
    parser.add_argument("--width", type=int, default=512)
    parser.add_argument("--height", type=int, default=512)
    parser.add_argument("--mass", type=float, default=2.0e26)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    ti.init(arch=ti.gpu)

    # Import after Taichi initialization
    from foxel.preview.interactive import InteractivePreview
    from foxel.scene.black_hole import BlackHoleSceneParams

    if not InteractivePreview.is_display_available():
        print("Error: No display available. Cannot run interactive preview.")
        return 1

    preview = InteractivePreview(args.width, args.height)
    preview.set_params(BlackHoleSceneParams(mass=args.mass))

    print("Starting interactive rendering...")
    print("  - Adjust sliders to change the lens")
    print("  - Click 'Export PNG' to save current render")
    print("  - Close window to exit")

    try:
        preview.run_reactive()
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    finally:
        preview.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
