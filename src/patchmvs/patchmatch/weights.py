"""Neighbor weights for adaptive spatial cost aggregation."""

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..nn.layers import ConvBnReLU3D
from .hypotheses import inverse_depth_bounds


class FeatureWeightNet(nn.Module):
    """Weights each evaluation neighbor by its feature similarity to the center.

    Depends only on the reference features, so it runs once per stage.

    Args:
        num_neighbors: Number of evaluation neighbors N.
        num_groups: Number of channel groups G.
    """

    def __init__(self, num_neighbors: int = 9, num_groups: int = 8):
        super().__init__()
        self.num_neighbors = num_neighbors
        self.num_groups = num_groups

        self.conv0 = ConvBnReLU3D(num_groups, 16, kernel_size=1, stride=1, padding=0)
        self.conv1 = ConvBnReLU3D(16, 8, kernel_size=1, stride=1, padding=0)
        self.similarity = nn.Conv3d(8, 1, kernel_size=1, stride=1, padding=0)
        self.output = nn.Sigmoid()

    def forward(self, ref_feature: torch.Tensor, grid: torch.Tensor) -> torch.Tensor:
        """Compute the feature weight.

        Args:
            ref_feature: Reference features, shape (B, C, H, W).
            grid: Evaluation sampling grid, shape (B, N*H, W, 2).

        Returns:
            Neighbor weights in (0, 1), shape (B, N, H, W).
        """
        batch, channels, height, width = ref_feature.shape
        group_channels = channels // self.num_groups

        neighbors = F.grid_sample(
            ref_feature,
            grid,
            mode="bilinear",
            padding_mode="border",
            align_corners=False,
        ).view(batch, self.num_groups, group_channels, self.num_neighbors, height, width)

        center = ref_feature.view(
            batch, self.num_groups, group_channels, height, width
        ).unsqueeze(3)
        weight = (neighbors * center).mean(2)  # (B, G, N, H, W)

        return self.output(self.similarity(self.conv1(self.conv0(weight)))).squeeze(1)


def depth_proximity_weight(
    depth: torch.Tensor,
    grid: torch.Tensor,
    depth_min: torch.Tensor | float,
    depth_max: torch.Tensor | float,
    interval_scale: float,
    num_neighbors: int,
) -> torch.Tensor:
    """Weight each evaluation neighbor by how close its depth is to the center's.

    Depths are mapped to normalized inverse depth in [0, 1]. The absolute
    difference to each neighbor, in units of ``interval_scale``, is clamped to
    [0, 4] and mapped through ``sigmoid(2 * (2 - diff))``.

    Args:
        depth: Depth hypotheses, shape (B, D, H, W).
        grid: Evaluation sampling grid, shape (B, N*H, W, 2).
        depth_min: Minimum depth, scalar or shape (B,).
        depth_max: Maximum depth, scalar or shape (B,).
        interval_scale: Hypothesis spacing as a fraction of the inverse range.
        num_neighbors: Number of evaluation neighbors N.

    Returns:
        Detached weights in (0, 1), shape (B, D, N, H, W).
    """
    with torch.no_grad():
        batch, num_depth, height, width = depth.shape
        inv_depth_min, inv_depth_max = inverse_depth_bounds(
            depth_min, depth_max, depth.device
        )

        inv_depth = (1.0 / depth - inv_depth_max) / (inv_depth_min - inv_depth_max)
        neighbors = F.grid_sample(
            inv_depth,
            grid,
            mode="bilinear",
            padding_mode="border",
            align_corners=False,
        ).view(batch, num_depth, num_neighbors, height, width)

        diff = torch.abs(neighbors - inv_depth.unsqueeze(2)) / interval_scale
        return torch.sigmoid(2.0 * (2.0 - diff.clamp(0.0, 4.0)))


def combine_neighbor_weights(
    proximity: torch.Tensor,
    feature_weight: torch.Tensor,
) -> torch.Tensor:
    """Multiply depth-proximity and feature weights and renormalize over neighbors.

    Args:
        proximity: Depth-proximity weights, shape (B, D, N, H, W).
        feature_weight: Feature weights, shape (B, N, H, W).

    Returns:
        Combined weights summing to 1 over N, shape (B, D, N, H, W).
    """
    weight = proximity * feature_weight.unsqueeze(1)
    return weight / torch.sum(weight, dim=2, keepdim=True)
