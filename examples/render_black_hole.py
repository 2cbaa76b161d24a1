#!/usr/bin/env python3
"""Render the black hole lensing scene.

Runs progressive sampling passes against the default scene (camera above a
single point mass) and saves the result as a PNG.

Usage:
    python examples/render_black_hole.py [options]

Options:
    --width WIDTH        Image width in pixels (default: 512)
    --height HEIGHT      Image height in pixels (default: 512)
    --passes PASSES      Number of sampling passes (default: 200)
    --mass MASS          Lens mass (default: 2e26)
    --params FILE        Load scene parameters from a JSON file
    --source SOURCE      "camera" or "volume" photons (default: camera)
    --executor NAME      Executor for volume photons (default: taichi)
    --output OUTPUT      Output file path (default: black_hole.png)
    --paths FILE         Also save a plot of sample photon paths
    --tolerance TOL      Stop once an update changes the image by less than
                         TOL (RMSE between successive updates)
    --quiet              Suppress progress output

Example:
    python examples/render_black_hole.py --width 256 --height 256 --passes 50
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

import numpy as np
import taichi as ti

logger = logging.getLogger("render_black_hole")


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Render the black hole lensing scene.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--width", type=int, default=512, help="Image width in pixels (default: 512)")
    parser.add_argument("--height", type=int, default=512, help="Image height in pixels (default: 512)")
    parser.add_argument("--passes", type=int, default=200, help="Number of sampling passes (default: 200)")
    parser.add_argument("--mass", type=float, default=None, help="Lens mass (default: 2e26)")
    parser.add_argument("--params", type=str, default=None, help="JSON file with scene parameters")
    parser.add_argument(
        "--source",
        choices=("camera", "volume"),
        default="camera",
        help="Photon source (default: camera)",
    )
    parser.add_argument(
        "--executor",
        choices=("taichi", "numpy"),
        default="taichi",
        help="Executor for volume photons (default: taichi)",
    )
    parser.add_argument(
        "--volume-photons",
        type=int,
        default=1 << 20,
        help="Photons per volume pass (default: 1048576)",
    )
    parser.add_argument("--seed", type=int, default=0, help="Seed for volume photons (default: 0)")
    parser.add_argument("--output", type=str, default="black_hole.png", help="Output file path")
    parser.add_argument("--paths", type=str, default=None, help="Save a photon path plot here")
    parser.add_argument("--batch-size", type=int, default=10, help="Passes per progress update")
    parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Stop early once the RMSE change per update drops below this",
    )
    parser.add_argument("--quiet", action="store_true", help="Suppress progress output")
    return parser.parse_args()


def load_params(args: argparse.Namespace):
    """Build scene parameters from the command line."""
    from foxel.scene.black_hole import BlackHoleSceneParams

    if args.params is not None:
        params = BlackHoleSceneParams.from_dict(json.loads(Path(args.params).read_text()))
    else:
        params = BlackHoleSceneParams()
    if args.mass is not None:
        params.mass = args.mass
    return params


def save_paths(camera, gravity, output_path: str, count: int = 24) -> None:
    """Trace a fan of photons through the image centre column and plot them."""
    from foxel.core.raymarch import trace_trajectory
    from foxel.preview.display import plot_trajectories

    forward = np.asarray(camera.forward)
    origin = np.asarray(camera.position)
    paths = []
    for offset in np.linspace(-1.5, 1.5, count):
        start = origin + forward * 6.0 + np.array([0.0, offset, 0.0])
        positions, _ = trace_trajectory(tuple(start), tuple(-forward))
        paths.append(positions)
    plot_trajectories(paths, gravity, camera, out_path=output_path)


def render_black_hole(args: argparse.Namespace) -> Path:
    """Render the scene described by the command line and save it."""
    # Lazy imports to allow Taichi initialization first
    from foxel.core.executor import create_executor
    from foxel.core.progressive import ProgressiveRenderer
    from foxel.core.sources import VolumeSource
    from foxel.preview.export import compute_rmse, save_png
    from foxel.scene.black_hole import apply_scene, create_black_hole_scene

    params = load_params(args)
    camera, gravity = create_black_hole_scene(args.width, args.height, params)
    apply_scene(camera, gravity)

    if not args.quiet:
        print(f"Scene: mass {gravity.mass:.3g}, horizon radius {gravity.schwarzschild_radius:.4f}")

    renderer = ProgressiveRenderer(args.width, args.height)
    start_time = time.time()

    previous = renderer.get_image_numpy()

    def report(current: int, target: int) -> bool:
        """Print progress and return True once the image has settled."""
        nonlocal previous
        image = renderer.get_image_numpy()
        change = compute_rmse(image, previous)
        previous = image
        if not args.quiet:
            elapsed = time.time() - start_time
            rate = current / elapsed if elapsed > 0 else 0
            print(
                f"\r  Progress: {current}/{target} passes ({100 * current / target:.1f}%) "
                f"- {rate:.1f} passes/s - change {change:.2e}",
                end="",
                flush=True,
            )
        if args.tolerance is not None and change < args.tolerance:
            logger.info("Converged after %d passes (change %.2e)", current, change)
            return True
        return False

    if args.source == "camera":
        for current, target in renderer.render_progressive(args.passes, batch_size=args.batch_size):
            if report(current, target):
                break
    else:
        executor = create_executor(args.executor)
        source = VolumeSource()
        rng = np.random.default_rng(args.seed)
        for i in range(args.passes):
            renderer.render_external(source.emit(args.volume_photons, rng), executor)
            if report(i + 1, args.passes):
                break

    if not args.quiet:
        print()

    output_file = Path(args.output)
    save_png(renderer, str(output_file))

    if args.paths is not None:
        save_paths(camera, gravity, args.paths)

    if not args.quiet:
        print(f"Saved to: {output_file.absolute()}")
        print(f"Discarded hits: {renderer.screen.discarded_count}")
        print(f"Total time: {time.time() - start_time:.2f}s")

    return output_file


def main() -> int:
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Use GPU if available, fall back to CPU
    try:
        ti.init(arch=ti.gpu)
    except RuntimeError:
        logger.warning("GPU backend unavailable, using CPU")
        ti.init(arch=ti.cpu)

    try:
        render_black_hole(args)
        return 0
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
