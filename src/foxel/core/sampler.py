"""Chunk-parallel sampling passes.

A pass refines the whole image once:

1. Trace. Every tile generates samples_per_chunk camera photons aimed at
   jittered pixels inside the tile and raymarches them. Each sample writes
   only its own slot of the pass buffer, so tracing is fully parallel.
2. Route. Lensing moves light across the image, so a photon aimed at one
   tile can land in another. Every hit is assigned to the tile that owns its
   pixel: hits are counted per owner tile, an exclusive prefix sum turns the
   counts into offsets, and atomic slot reservation fills a routing table.
3. Blend. Tiles blend in parallel. Within a tile the routed hits are folded
   in one after another, and every pixel they touch lies inside that tile, so
   no two tasks ever write the same pixel.

Hits that land outside the image are discarded and counted. A pass returns
only once all kernels have finished.

Example:
    >>> screen = Screen(256, 256)
    >>> sampler = ChunkedSampler(screen, chunk_size=16)
    >>> stats = sampler.run_pass()
    >>> image = screen.get_image_numpy()
"""

import logging
import math
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
import taichi as ti

from foxel.camera.aperture import generate_camera_photon
from foxel.core.accumulator import Screen, blend_pixel, uv_to_pixel
from foxel.core.executor import TraceExecutor
from foxel.core.raymarch import (
    ITERATIONS,
    OUTCOME_HIT,
    TIME_SCALE,
    check_scene_initialized,
    raymarch,
)
from foxel.core.spectrum import spectral_rgb

logger = logging.getLogger(__name__)

# Default tile edge length in pixels
CHUNK_SIZE = 16

# Default emission distances for camera photons; must stay inside the step budget
DEFAULT_EMIT_NEAR = 4.0
DEFAULT_EMIT_FAR = 8.0


# =============================================================================
# Tiles
# =============================================================================


@dataclass(frozen=True)
class Tile:
    """A rectangular block of pixels.

    Attributes:
        x: Column of the tile's left edge.
        y: Row of the tile's bottom edge.
        width: Tile width in pixels.
        height: Tile height in pixels.
    """

    x: int
    y: int
    width: int
    height: int

    @property
    def pixel_count(self) -> int:
        """Number of pixels covered by the tile."""
        return self.width * self.height

    def contains(self, px: int, py: int) -> bool:
        """Check whether a pixel lies inside the tile."""
        return self.x <= px < self.x + self.width and self.y <= py < self.y + self.height


def partition_tiles(width: int, height: int, chunk_size: int) -> list[Tile]:
    """Split an image into square tiles, clipping the last row and column.

    Tiles are listed row by row from the bottom left, which is also the tile
    index used for routing: index = (y // chunk_size) * tiles_x + x // chunk_size.

    Args:
        width: Image width in pixels.
        height: Image height in pixels.
        chunk_size: Tile edge length in pixels.

    Returns:
        Disjoint tiles that together cover every pixel exactly once.

    Raises:
        ValueError: If any argument is not positive.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    if chunk_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}")

    tiles = []
    for y in range(0, height, chunk_size):
        for x in range(0, width, chunk_size):
            tiles.append(
                Tile(x=x, y=y, width=min(chunk_size, width - x), height=min(chunk_size, height - y))
            )
    return tiles


@dataclass(frozen=True)
class PassStats:
    """Counters for one sampling pass.

    Attributes:
        traced: Photons traced.
        hits: Photons that registered on the sensor.
        blended: Hits folded into the image.
        discarded: Hits that landed outside the image.
    """

    traced: int
    hits: int
    blended: int
    discarded: int


# =============================================================================
# Sampler
# =============================================================================


@ti.data_oriented
class ChunkedSampler:
    """Runs sampling passes over a Screen.

    Attributes:
        screen: The accumulator being refined.
        tiles: The tile partition of the screen.
    """

    def __init__(
        self,
        screen: Screen,
        chunk_size: int = CHUNK_SIZE,
        samples_per_chunk: int | None = None,
        emit_near: float = DEFAULT_EMIT_NEAR,
        emit_far: float = DEFAULT_EMIT_FAR,
    ) -> None:
        """Create a sampler and allocate its pass buffers.

        Args:
            screen: Accumulator to blend into.
            chunk_size: Tile edge length in pixels.
            samples_per_chunk: Photons generated per tile and pass. Defaults
                to one per pixel of a full tile.
            emit_near: Minimum distance from the aperture at which camera
                photons start.
            emit_far: Maximum emission distance. Must be shorter than the
                distance a photon can travel within ITERATIONS steps.

        Raises:
            ValueError: If a parameter is out of range.
        """
        if samples_per_chunk is None:
            samples_per_chunk = chunk_size * chunk_size
        if samples_per_chunk <= 0:
            raise ValueError(f"Samples per chunk must be positive, got {samples_per_chunk}")
        if not 0.0 < emit_near <= emit_far:
            raise ValueError(f"Need 0 < emit_near <= emit_far, got {emit_near} and {emit_far}")
        if emit_far >= ITERATIONS * TIME_SCALE:
            raise ValueError(
                f"emit_far ({emit_far}) must be below the march range ({ITERATIONS * TIME_SCALE})"
            )

        self.screen = screen
        self.tiles = partition_tiles(screen.width, screen.height, chunk_size)
        self.chunk_size = chunk_size
        self.samples_per_chunk = samples_per_chunk
        self.emit_near = emit_near
        self.emit_far = emit_far

        self._width = screen.width
        self._height = screen.height
        self._tiles_x = math.ceil(screen.width / chunk_size)
        self._num_tiles = len(self.tiles)
        self._capacity = self._num_tiles * samples_per_chunk
        self._passes = 0

        # Pass buffer, one slot per sample, grouped by generating tile
        self._hit_flag = ti.field(dtype=ti.i32, shape=self._capacity)
        self._hit_uv = ti.Vector.field(2, dtype=ti.f32, shape=self._capacity)
        self._hit_wavelength = ti.field(dtype=ti.f32, shape=self._capacity)
        self._hit_owner = ti.field(dtype=ti.i32, shape=self._capacity)

        # Routing tables
        self._tile_count = ti.field(dtype=ti.i32, shape=self._num_tiles)
        self._tile_offset = ti.field(dtype=ti.i32, shape=self._num_tiles)
        self._tile_cursor = ti.field(dtype=ti.i32, shape=self._num_tiles)
        self._routed = ti.field(dtype=ti.i32, shape=self._capacity)

        # Per-pass counters (hits, discarded)
        self._pass_counts = ti.field(dtype=ti.i32, shape=2)

        logger.debug(
            "Sampler with %d tiles of %d px, %d samples per tile",
            self._num_tiles,
            chunk_size,
            samples_per_chunk,
        )

    @property
    def pass_count(self) -> int:
        """Number of passes run so far."""
        return self._passes

    @property
    def samples_per_pass(self) -> int:
        """Photons traced by one camera pass."""
        return self._capacity

    # -------------------------------------------------------------------------
    # Kernels
    # -------------------------------------------------------------------------

    @ti.func
    def _tile_origin(self, tile: ti.i32):
        x0 = (tile % self._tiles_x) * self.chunk_size
        y0 = (tile // self._tiles_x) * self.chunk_size
        return x0, y0

    @ti.kernel
    def _trace_camera_photons(self):
        width = self._width
        height = self._height
        for tile, s in ti.ndrange(self._num_tiles, self.samples_per_chunk):
            x0, y0 = self._tile_origin(tile)
            tile_w = ti.min(self.chunk_size, width - x0)
            tile_h = ti.min(self.chunk_size, height - y0)
            px = x0 + ti.min(ti.cast(ti.random(ti.f32) * tile_w, ti.i32), tile_w - 1)
            py = y0 + ti.min(ti.cast(ti.random(ti.f32) * tile_h, ti.i32), tile_h - 1)

            photon = generate_camera_photon(
                px, py, width, height, self.emit_near, self.emit_far, TIME_SCALE
            )
            result = raymarch(photon)

            slot = tile * self.samples_per_chunk + s
            self._hit_flag[slot] = 0
            if result.outcome == OUTCOME_HIT:
                self._hit_flag[slot] = 1
            self._hit_uv[slot] = result.sensor_uv
            self._hit_wavelength[slot] = result.photon.wavelength

    @ti.kernel
    def _route_hits(self, count: ti.i32):
        for t in range(self._num_tiles):
            self._tile_count[t] = 0
        self._pass_counts[0] = 0
        self._pass_counts[1] = 0

        for i in range(count):
            owner = -1
            if self._hit_flag[i] == 1:
                ti.atomic_add(self._pass_counts[0], 1)
                valid, x, y = uv_to_pixel(self._hit_uv[i], self._width, self._height)
                if valid == 1:
                    owner = (y // self.chunk_size) * self._tiles_x + x // self.chunk_size
                    ti.atomic_add(self._tile_count[owner], 1)
                else:
                    ti.atomic_add(self._pass_counts[1], 1)
            self._hit_owner[i] = owner

        # Exclusive prefix sum of the per-tile counts
        self._tile_offset[0] = 0
        ti.loop_config(serialize=True)
        for t in range(1, self._num_tiles):
            self._tile_offset[t] = self._tile_offset[t - 1] + self._tile_count[t - 1]

        for t in range(self._num_tiles):
            self._tile_cursor[t] = self._tile_offset[t]

        for i in range(count):
            owner = self._hit_owner[i]
            if owner >= 0:
                slot = ti.atomic_add(self._tile_cursor[owner], 1)
                self._routed[slot] = i

    @ti.kernel
    def _blend_tiles(self, color: ti.template(), samples: ti.template()):
        for t in range(self._num_tiles):
            start = self._tile_offset[t]
            for k in range(self._tile_count[t]):
                i = self._routed[start + k]
                _, x, y = uv_to_pixel(self._hit_uv[i], self._width, self._height)
                blend_pixel(color, samples, x, y, spectral_rgb(self._hit_wavelength[i]))

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------

    def _route_and_blend(self, count: int) -> tuple[int, int]:
        self._route_hits(count)
        self._blend_tiles(self.screen.color, self.screen.samples)
        hits = int(self._pass_counts[0])
        discarded = int(self._pass_counts[1])
        if discarded:
            self.screen.record_discarded(discarded)
        return hits, discarded

    def _finish_pass(self, traced: int, hits: int, discarded: int) -> PassStats:
        ti.sync()
        self._passes += 1
        stats = PassStats(traced=traced, hits=hits, blended=hits - discarded, discarded=discarded)
        if discarded:
            logger.warning("Pass %d discarded %d hits outside the image", self._passes, discarded)
        logger.debug("Pass %d: %s", self._passes, stats)
        return stats

    def run_pass(self) -> PassStats:
        """Run one camera-photon pass over every tile.

        Returns:
            Counters for the pass.

        Raises:
            RuntimeError: If the camera or gravity field has not been set up.
        """
        check_scene_initialized()
        self._trace_camera_photons()
        hits, discarded = self._route_and_blend(self._capacity)
        return self._finish_pass(self._capacity, hits, discarded)

    def run_external_pass(
        self,
        photons: npt.NDArray[np.void],
        executor: TraceExecutor,
    ) -> PassStats:
        """Trace an external photon batch and blend its hits.

        Args:
            photons: Photon records (photon_dtype), e.g. from a RaySource.
            executor: Executor used to trace the batch.

        Returns:
            Counters for the pass.
        """
        records = executor.trace(photons)

        total_hits = 0
        total_discarded = 0
        for start in range(0, len(records), self._capacity):
            piece = records[start : start + self._capacity]
            count = len(piece)
            self._load_records(piece)
            hits, discarded = self._route_and_blend(count)
            total_hits += hits
            total_discarded += discarded

        return self._finish_pass(len(records), total_hits, total_discarded)

    def _load_records(self, records: npt.NDArray[np.void]) -> None:
        count = len(records)
        flags = np.zeros(self._capacity, dtype=np.int32)
        uvs = np.zeros((self._capacity, 2), dtype=np.float32)
        wavelengths = np.zeros(self._capacity, dtype=np.float32)
        flags[:count] = records["hit"] != 0
        uvs[:count] = records["pos"]
        wavelengths[:count] = records["photon"]["wavelength"]
        self._hit_flag.from_numpy(flags)
        self._hit_uv.from_numpy(uvs)
        self._hit_wavelength.from_numpy(wavelengths)

    def __repr__(self) -> str:
        return (
            f"ChunkedSampler(tiles={self._num_tiles}, chunk_size={self.chunk_size}, "
            f"samples_per_chunk={self.samples_per_chunk})"
        )
