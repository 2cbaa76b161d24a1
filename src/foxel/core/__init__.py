"""Core lensing module.

Components:
    photon: Photon data structure and batch record layout
    spectrum: Wavelength to RGB conversion and the procedural sky
    gravity: Point-mass gravity field
    raymarch: Photon integrator with hit, escape and capture outcomes
    accumulator: Per-pixel running-mean Screen
    executor: Batched trace executors (Taichi and NumPy)
    sources: External ray sources
    sampler: Chunk-parallel sampling passes
    progressive: Progressive rendering loop
"""

from .photon import (
    DEFAULT_WAVELENGTH,
    Photon,
    make_photon,
    make_photon_batch,
    photon_dtype,
    vec2,
    vec3,
)

# Note: modules that declare Taichi fields are NOT imported here so that
# importing foxel.core does not allocate fields before ti.init(). Import them
# directly, e.g.:
#   from foxel.core.progressive import ProgressiveRenderer

__all__ = [
    "Photon",
    "make_photon",
    "make_photon_batch",
    "photon_dtype",
    "vec2",
    "vec3",
    "DEFAULT_WAVELENGTH",
]
