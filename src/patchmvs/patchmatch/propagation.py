"""Adaptive propagation of depth hypotheses from learned spatial neighbors."""

import torch
import torch.nn.functional as F


def propagate_hypotheses(depth: torch.Tensor, grid: torch.Tensor) -> torch.Tensor:
    """Augment each pixel's hypotheses with the center hypothesis of its neighbors.

    Args:
        depth: Depth hypotheses, shape (B, D, H, W).
        grid: Propagation sampling grid, shape (B, N*H, W, 2).

    Returns:
        Hypotheses sorted ascending along dim 1, shape (B, D+N, H, W).
    """
    batch, num_depth, height, width = depth.shape
    num_neighbors = grid.shape[1] // height

    neighbor_depth = F.grid_sample(
        depth[:, num_depth // 2].unsqueeze(1),
        grid,
        mode="bilinear",
        padding_mode="border",
        align_corners=False,
    ).view(batch, num_neighbors, height, width)

    return torch.sort(torch.cat([depth, neighbor_depth], dim=1), dim=1).values
