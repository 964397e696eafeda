"""Learned patchmatch multi-view stereo depth estimation."""

from .checkpoint import load_checkpoint, save_checkpoint
from .config import (
    ModelConfig,
    PatchMatchConfig,
    RuntimeConfig,
    StageConfig,
)
from .features import FeaturePyramid
from .geometry import differentiable_warp, stage_projections
from .io import load_depth_map, save_depth_map
from .model import DepthEstimate, PatchMatchNet
from .pipeline import build_model, estimate_depth, save_estimate
from .refinement import Refinement, compute_confidence

__version__ = "0.1.0"

__all__ = [
    "PatchMatchConfig",
    "ModelConfig",
    "StageConfig",
    "RuntimeConfig",
    "FeaturePyramid",
    "differentiable_warp",
    "stage_projections",
    "Refinement",
    "compute_confidence",
    "PatchMatchNet",
    "DepthEstimate",
    "load_checkpoint",
    "save_checkpoint",
    "save_depth_map",
    "load_depth_map",
    "build_model",
    "estimate_depth",
    "save_estimate",
]
