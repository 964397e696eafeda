"""Projective geometry helpers for cross-view resampling."""

from .projection import projection_matrix, stage_projections, to_homogeneous
from .warping import differentiable_warp, make_pixel_grid, normalize_coords

__all__ = [
    "differentiable_warp",
    "make_pixel_grid",
    "normalize_coords",
    "projection_matrix",
    "stage_projections",
    "to_homogeneous",
]
