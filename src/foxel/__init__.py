"""Gravitational lensing photon accumulator built on Taichi.

Photons are marched past a single point mass, bent by a first-order force
approximation, and collected by a finite-aperture camera into a progressively
refined image.

Subpackages:
    core: Photons, gravity, raymarching, accumulation and sampling passes
    camera: Finite-aperture camera model and sensor collision test
    scene: Default black hole scene configuration
    preview: Display, export and interactive preview utilities

Taichi must be initialized (ti.init) before importing modules that declare
Taichi fields, i.e. anything below foxel.core, foxel.camera and foxel.scene.
"""

__version__ = "0.1.0"
