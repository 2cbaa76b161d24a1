"""Scene module.

Components:
    black_hole: Default lensing scene (camera above a single point mass)
"""

from .black_hole import BlackHoleSceneParams, apply_scene, create_black_hole_scene

__all__ = [
    "BlackHoleSceneParams",
    "create_black_hole_scene",
    "apply_scene",
]
