"""Adaptive evaluation: multi-view matching cost, aggregation and depth regression."""

import torch
import torch.nn as nn
import torch.nn.functional as F
from torch.profiler import record_function

from ..geometry.warping import differentiable_warp
from ..nn.layers import ConvBnReLU3D


def group_correlation(
    ref_feature: torch.Tensor,
    warped_feature: torch.Tensor,
    num_groups: int,
) -> torch.Tensor:
    """Group-wise correlation between reference and warped source features.

    Channels are split into ``num_groups`` equal groups and the element-wise
    product is averaged inside each group.

    Args:
        ref_feature: Reference features, shape (B, C, H, W).
        warped_feature: Warped source features, shape (B, C, D, H, W).
        num_groups: Number of channel groups G (must divide C).

    Returns:
        Similarity volume, shape (B, G, D, H, W).
    """
    batch, channels, num_depth, height, width = warped_feature.shape
    ref = ref_feature.view(batch, num_groups, channels // num_groups, 1, height, width)
    warped = warped_feature.view(
        batch, num_groups, channels // num_groups, num_depth, height, width
    )
    return (warped * ref).mean(2)


def regress_depth(depth: torch.Tensor, score: torch.Tensor) -> torch.Tensor:
    """Probability-weighted mean of the hypotheses.

    Args:
        depth: Depth hypotheses, shape (B, D, H, W).
        score: Probability volume, shape (B, D, H, W).

    Returns:
        Depth map, shape (B, H, W).
    """
    return torch.sum(depth * score, dim=1)


def inverse_depth_regression(depth: torch.Tensor, score: torch.Tensor) -> torch.Tensor:
    """Sub-hypothesis depth regression in inverse-depth space.

    A continuous hypothesis index is computed as the probability-weighted sum
    of integer indices, then used to interpolate linearly between the inverse
    depths of the first and last hypotheses.

    Args:
        depth: Depth hypotheses, shape (B, D, H, W), monotonic along dim 1.
        score: Probability volume, shape (B, D, H, W).

    Returns:
        Depth map, shape (B, H, W).
    """
    num_depth = depth.shape[1]
    index = torch.arange(num_depth, device=depth.device, dtype=depth.dtype).view(
        1, num_depth, 1, 1
    )
    index = torch.sum(index * score, dim=1)  # (B, H, W)

    inv_depth_first = 1.0 / depth[:, 0]
    inv_depth_last = 1.0 / depth[:, -1]
    inv_depth = inv_depth_first + (inv_depth_last - inv_depth_first) * index / max(
        num_depth - 1, 1
    )
    return 1.0 / inv_depth


class PixelwiseNet(nn.Module):
    """Predicts a per-pixel reliability weight in [0, 1] for one source view.

    The similarity volume is reduced to one channel by 1x1x1 convolutions,
    squashed by a sigmoid and max-pooled over the hypothesis axis.
    """

    def __init__(self, num_groups: int):
        super().__init__()
        self.conv0 = ConvBnReLU3D(num_groups, 16, kernel_size=1, stride=1, padding=0)
        self.conv1 = ConvBnReLU3D(16, 8, kernel_size=1, stride=1, padding=0)
        self.conv2 = nn.Conv3d(8, 1, kernel_size=1, stride=1, padding=0)
        self.output = nn.Sigmoid()

    def forward(self, similarity: torch.Tensor) -> torch.Tensor:
        """Compute the view weight.

        Args:
            similarity: Group correlation volume, shape (B, G, D, H, W).

        Returns:
            View weight, shape (B, 1, H, W).
        """
        x = self.output(self.conv2(self.conv1(self.conv0(similarity)))).squeeze(1)
        return torch.max(x, dim=1, keepdim=True).values


class SimilarityNet(nn.Module):
    """Reduces the aggregated group similarity to one score per hypothesis and
    aggregates it spatially over the adaptive evaluation neighbors.
    """

    def __init__(self, num_groups: int):
        super().__init__()
        self.conv0 = ConvBnReLU3D(num_groups, 16, kernel_size=1, stride=1, padding=0)
        self.conv1 = ConvBnReLU3D(16, 8, kernel_size=1, stride=1, padding=0)
        self.similarity = nn.Conv3d(8, 1, kernel_size=1, stride=1, padding=0)

    def forward(
        self,
        similarity: torch.Tensor,
        grid: torch.Tensor,
        weight: torch.Tensor,
    ) -> torch.Tensor:
        """Compute the raw matching score.

        Args:
            similarity: View-aggregated similarity, shape (B, G, D, H, W).
            grid: Evaluation sampling grid, shape (B, N*H, W, 2).
            weight: Neighbor weights, shape (B, D, N, H, W), summing to 1 over N.

        Returns:
            Raw score, shape (B, D, H, W).
        """
        batch, _, num_depth, height, width = similarity.shape
        num_neighbors = grid.shape[1] // height

        score = self.similarity(self.conv1(self.conv0(similarity))).squeeze(1)
        score = F.grid_sample(
            score,
            grid,
            mode="bilinear",
            padding_mode="border",
            align_corners=False,
        ).view(batch, num_depth, num_neighbors, height, width)

        return torch.sum(score * weight, dim=2)


class Evaluation(nn.Module):
    """Scores depth hypotheses by cross-view matching and regresses depth.

    Args:
        num_groups: Number of channel groups for group-wise correlation.
        predict_view_weights: Build the per-view weight network. Only the stage
            that runs without carried-over view weights needs it.
        min_view_weight: Initial value of the view-weight sum.
        degenerate_depth_eps: Degenerate-projection threshold for warping.
    """

    def __init__(
        self,
        num_groups: int,
        predict_view_weights: bool = True,
        min_view_weight: float = 1e-5,
        degenerate_depth_eps: float = 1e-3,
    ):
        super().__init__()
        self.num_groups = num_groups
        self.min_view_weight = min_view_weight
        self.degenerate_depth_eps = degenerate_depth_eps
        self.pixelwise_net = PixelwiseNet(num_groups) if predict_view_weights else None
        self.similarity_net = SimilarityNet(num_groups)

    def forward(
        self,
        ref_feature: torch.Tensor,
        src_features: list[torch.Tensor],
        ref_proj: torch.Tensor,
        src_projs: list[torch.Tensor],
        depth: torch.Tensor,
        grid: torch.Tensor,
        weight: torch.Tensor,
        view_weights: torch.Tensor | None = None,
        inverse: bool = False,
    ) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """Evaluate the hypotheses.

        Args:
            ref_feature: Reference features, shape (B, C, H, W).
            src_features: Source features, (V-1) tensors of shape (B, C, H, W).
            ref_proj: Reference projection matrix, shape (B, 4, 4).
            src_projs: Source projection matrices, (V-1) tensors of shape (B, 4, 4).
            depth: Depth hypotheses, shape (B, D, H, W).
            grid: Evaluation sampling grid, shape (B, N*H, W, 2).
            weight: Neighbor weights, shape (B, D, N, H, W).
            view_weights: Carried-over view weights, shape (B, V-1, H, W), or None
                to predict them from the similarity volumes.
            inverse: Use inverse-depth regression instead of the weighted mean.

        Returns:
            depth: Regressed depth, shape (B, H, W).
            score: Probability volume, shape (B, D, H, W).
            view_weights: View weights, shape (B, V-1, H, W), detached.

        Raises:
            ValueError: If the number of source features and projections differ,
                or view weights are needed but this module cannot predict them.
        """
        if len(src_features) != len(src_projs):
            raise ValueError(
                f"Got {len(src_features)} source features but "
                f"{len(src_projs)} source projection matrices"
            )
        if view_weights is None and self.pixelwise_net is None:
            raise ValueError(
                "view_weights must be provided to an Evaluation built "
                "without predict_view_weights"
            )

        batch, _, height, width = ref_feature.shape
        num_depth = depth.shape[1]

        similarity_sum = torch.zeros(
            (batch, self.num_groups, num_depth, height, width),
            dtype=ref_feature.dtype,
            device=ref_feature.device,
        )
        weight_sum = torch.full(
            (batch, 1, 1, height, width),
            self.min_view_weight,
            dtype=ref_feature.dtype,
            device=ref_feature.device,
        )

        predicted = []
        for i, (src_feature, src_proj) in enumerate(zip(src_features, src_projs)):
            warped = differentiable_warp(
                src_feature, src_proj, ref_proj, depth, eps=self.degenerate_depth_eps
            )
            similarity = group_correlation(ref_feature, warped, self.num_groups)

            if view_weights is None:
                view_weight = self.pixelwise_net(similarity)  # (B, 1, H, W)
                predicted.append(view_weight)
            else:
                view_weight = view_weights[:, i : i + 1]

            similarity_sum = similarity_sum + similarity * view_weight.unsqueeze(1)
            weight_sum = weight_sum + view_weight.unsqueeze(1)

        with record_function("similarity_aggregation"):
            score = self.similarity_net(similarity_sum / weight_sum, grid, weight)
            score = torch.exp(torch.log_softmax(score, dim=1))

        if inverse:
            depth = inverse_depth_regression(depth, score)
        else:
            depth = regress_depth(depth, score)

        if view_weights is None:
            view_weights = torch.cat(predicted, dim=1)

        return depth, score, view_weights.detach()
