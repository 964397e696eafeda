"""Learned patchmatch: hypothesis generation, propagation and evaluation."""

from .evaluation import (
    Evaluation,
    PixelwiseNet,
    SimilarityNet,
    group_correlation,
    inverse_depth_regression,
    regress_depth,
)
from .grid import build_sampling_grid, evaluation_offsets, propagation_offsets
from .hypotheses import generate_depth_hypotheses, inverse_depth_bounds
from .propagation import propagate_hypotheses
from .stage import PatchMatchStage
from .weights import FeatureWeightNet, combine_neighbor_weights, depth_proximity_weight

__all__ = [
    "generate_depth_hypotheses",
    "inverse_depth_bounds",
    "propagation_offsets",
    "evaluation_offsets",
    "build_sampling_grid",
    "propagate_hypotheses",
    "group_correlation",
    "regress_depth",
    "inverse_depth_regression",
    "PixelwiseNet",
    "SimilarityNet",
    "Evaluation",
    "FeatureWeightNet",
    "depth_proximity_weight",
    "combine_neighbor_weights",
    "PatchMatchStage",
]
