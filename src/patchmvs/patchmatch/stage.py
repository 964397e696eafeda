"""One coarse-to-fine patchmatch stage: hypotheses, propagation, evaluation."""

import logging

import torch
import torch.nn as nn
from torch.profiler import record_function

from ..config import StageConfig
from .evaluation import Evaluation
from .grid import build_sampling_grid, evaluation_offsets, propagation_offsets
from .hypotheses import generate_depth_hypotheses
from .propagation import propagate_hypotheses
from .weights import FeatureWeightNet, combine_neighbor_weights, depth_proximity_weight

logger = logging.getLogger(__name__)


class PatchMatchStage(nn.Module):
    """Iterative depth search at one pyramid resolution.

    Each iteration generates hypotheses around the current estimate, borrows
    hypotheses from learned neighbors, weights the evaluation neighbors and
    regresses a new depth by cross-view matching.

    Args:
        config: Stage configuration.
        predict_view_weights: Predict per-view weights (the first stage run);
            later stages reuse the weights carried over from it.
        num_random_samples: Hypothesis count for the random cold start.
        min_view_weight: Floor of the view-weight sum.
        degenerate_depth_eps: Degenerate-projection threshold for warping.

    Raises:
        ValueError: If a neighbor count has no offset pattern.
    """

    def __init__(
        self,
        config: StageConfig,
        predict_view_weights: bool = False,
        num_random_samples: int = 48,
        min_view_weight: float = 1e-5,
        degenerate_depth_eps: float = 1e-3,
    ):
        super().__init__()
        self.config = config
        self.num_random_samples = num_random_samples

        dilation = config.propagation_range
        self.propagation_offsets = propagation_offsets(
            config.propagation_neighbors, dilation
        )
        self.evaluation_offsets = evaluation_offsets(
            config.evaluation_neighbors, dilation - 1
        )

        # A single inverse-regression iteration never propagates
        self.propagation_conv = None
        if config.propagation_neighbors > 0 and not (
            config.inverse_regression and config.iterations == 1
        ):
            self.propagation_conv = nn.Conv2d(
                config.num_features,
                2 * config.propagation_neighbors,
                kernel_size=3,
                stride=1,
                padding=dilation,
                dilation=dilation,
                bias=True,
            )
            nn.init.constant_(self.propagation_conv.weight, 0.0)
            nn.init.constant_(self.propagation_conv.bias, 0.0)

        self.evaluation_conv = nn.Conv2d(
            config.num_features,
            2 * config.evaluation_neighbors,
            kernel_size=3,
            stride=1,
            padding=dilation,
            dilation=dilation,
            bias=True,
        )
        nn.init.constant_(self.evaluation_conv.weight, 0.0)
        nn.init.constant_(self.evaluation_conv.bias, 0.0)

        self.feature_weight_net = FeatureWeightNet(
            config.evaluation_neighbors, config.group_correlations
        )
        self.evaluation = Evaluation(
            config.group_correlations,
            predict_view_weights=predict_view_weights,
            min_view_weight=min_view_weight,
            degenerate_depth_eps=degenerate_depth_eps,
        )

    def _propagates(self, iteration: int) -> bool:
        """Whether propagation runs on this (0-based) iteration."""
        if self.propagation_conv is None:
            return False
        is_last = iteration == self.config.iterations - 1
        return not (self.config.inverse_regression and is_last)

    def forward(
        self,
        ref_feature: torch.Tensor,
        src_features: list[torch.Tensor],
        ref_proj: torch.Tensor,
        src_projs: list[torch.Tensor],
        depth_min: torch.Tensor,
        depth_max: torch.Tensor,
        depth: torch.Tensor | None = None,
        view_weights: torch.Tensor | None = None,
    ) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """Run all iterations of this stage.

        Args:
            ref_feature: Reference features, shape (B, C, H, W).
            src_features: Source features, (V-1) tensors of shape (B, C, H, W).
            ref_proj: Reference projection matrix, shape (B, 4, 4).
            src_projs: Source projection matrices, (V-1) tensors of shape (B, 4, 4).
            depth_min: Minimum depth, shape (B,).
            depth_max: Maximum depth, shape (B,).
            depth: Depth from the previous stage, shape (B, 1, H, W), or None.
            view_weights: View weights from the previous stage,
                shape (B, V-1, H, W), or None.

        Returns:
            depth: Final depth, shape (B, 1, H, W), detached.
            score: Probability volume of the last iteration, shape (B, D, H, W).
            view_weights: View weights, shape (B, V-1, H, W), detached.
        """
        config = self.config
        batch, _, height, width = ref_feature.shape
        device = ref_feature.device

        propagation_grid = None
        if self.propagation_conv is not None:
            offset = self.propagation_conv(ref_feature).view(
                batch, 2 * config.propagation_neighbors, height * width
            )
            propagation_grid = build_sampling_grid(
                offset, self.propagation_offsets, height, width
            )

        offset = self.evaluation_conv(ref_feature).view(
            batch, 2 * config.evaluation_neighbors, height * width
        )
        evaluation_grid = build_sampling_grid(
            offset, self.evaluation_offsets, height, width
        )

        feature_weight = self.feature_weight_net(ref_feature, evaluation_grid)

        score = None
        for iteration in range(config.iterations):
            with record_function(f"patchmatch_iteration_{iteration}"):
                hypotheses = generate_depth_hypotheses(
                    depth,
                    depth_min,
                    depth_max,
                    num_samples=config.num_samples,
                    interval_scale=config.interval_scale,
                    batch=batch,
                    height=height,
                    width=width,
                    device=device,
                    num_random_samples=self.num_random_samples,
                )

                if self._propagates(iteration):
                    hypotheses = propagate_hypotheses(hypotheses, propagation_grid)

                proximity = depth_proximity_weight(
                    hypotheses.detach(),
                    evaluation_grid.detach(),
                    depth_min,
                    depth_max,
                    config.interval_scale,
                    config.evaluation_neighbors,
                )
                weight = combine_neighbor_weights(proximity, feature_weight)

                is_last = iteration == config.iterations - 1
                regressed, score, view_weights = self.evaluation(
                    ref_feature,
                    src_features,
                    ref_proj,
                    src_projs,
                    hypotheses,
                    evaluation_grid,
                    weight,
                    view_weights=view_weights,
                    inverse=config.inverse_regression and is_last,
                )
                depth = regressed.unsqueeze(1)

            logger.debug(
                "Iteration %d: %d hypotheses at %dx%d",
                iteration,
                hypotheses.shape[1],
                height,
                width,
            )

        return depth.detach(), score, view_weights
