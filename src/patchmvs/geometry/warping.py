"""Homography-based cross-view feature warping at per-pixel depth hypotheses."""

import torch
import torch.nn.functional as F
from torch.profiler import record_function


def make_pixel_grid(
    height: int,
    width: int,
    device: str | torch.device = "cpu",
) -> torch.Tensor:
    """Create a grid of all pixel coordinates.

    Args:
        height: Image height.
        width: Image width.
        device: Device for the output tensor.

    Returns:
        Pixel coordinates (u, v), shape (H*W, 2), float32.
        u is column (0..W-1), v is row (0..H-1).
    """
    v, u = torch.meshgrid(
        torch.arange(height, device=device, dtype=torch.float32),
        torch.arange(width, device=device, dtype=torch.float32),
        indexing="ij",
    )
    return torch.stack([u.reshape(-1), v.reshape(-1)], dim=-1)  # (H*W, 2)


def normalize_coords(
    u: torch.Tensor,
    v: torch.Tensor,
    height: int,
    width: int,
) -> torch.Tensor:
    """Map pixel coordinates to the [-1, 1] range expected by grid_sample.

    Uses ``coord / ((dim - 1) / 2) - 1`` on each axis, so pixel 0 maps to -1
    and pixel dim-1 maps to 1.

    Args:
        u: Column coordinates, any shape.
        v: Row coordinates, same shape as u.
        height: Image height.
        width: Image width.

    Returns:
        Normalized coordinates, shape (*u.shape, 2), last axis (x, y).
    """
    x = u / ((width - 1) / 2) - 1
    y = v / ((height - 1) / 2) - 1
    return torch.stack([x, y], dim=-1)


def differentiable_warp(
    src_feature: torch.Tensor,
    src_proj: torch.Tensor,
    ref_proj: torch.Tensor,
    depth: torch.Tensor,
    eps: float = 1e-3,
) -> torch.Tensor:
    """Warp source features onto the reference pixel grid at every depth hypothesis.

    For each reference pixel (x, y):
    1. Rotate the homogeneous coordinate (x, y, 1) by the relative rotation.
    2. Scale by each hypothesis depth and add the relative translation.
    3. Replace points with z <= eps by the off-frame triple (W, H, 1).
    4. Perspective-divide, normalize to [-1, 1] and bilinearly sample the
       source feature map with zero padding.

    Steps 1-4 up to the sampling grid run without gradient tracking; only the
    sampled feature values participate in autograd.

    Args:
        src_feature: Source view features, shape (B, C, H, W).
        src_proj: Source projection matrix at this scale, shape (B, 4, 4).
        ref_proj: Reference projection matrix at this scale, shape (B, 4, 4).
        depth: Depth hypotheses, shape (B, D, H, W).
        eps: Depth threshold below which a projection is degenerate.

    Returns:
        Warped source features, shape (B, C, D, H, W).
    """
    with record_function("differentiable_warp"):
        batch, channels, height, width = src_feature.shape
        num_depth = depth.shape[1]

        with torch.no_grad():
            relative = torch.matmul(src_proj, torch.inverse(ref_proj))
            rot = relative[:, :3, :3]  # (B, 3, 3)
            trans = relative[:, :3, 3:4]  # (B, 3, 1)

            pixels = make_pixel_grid(height, width, device=src_feature.device)
            xyz = torch.cat([pixels, torch.ones_like(pixels[:, :1])], dim=1)
            xyz = xyz.t().unsqueeze(0).expand(batch, 3, height * width)  # (B, 3, H*W)

            rot_xyz = torch.matmul(rot, xyz)  # (B, 3, H*W)
            proj_xyz = rot_xyz.unsqueeze(2) * depth.reshape(
                batch, 1, num_depth, height * width
            ) + trans.reshape(batch, 3, 1, 1)  # (B, 3, D, H*W)

            # Points at or behind the source camera land at a fixed off-frame spot
            behind = proj_xyz[:, 2] <= eps  # (B, D, H*W)
            x = proj_xyz[:, 0].masked_fill(behind, float(width))
            y = proj_xyz[:, 1].masked_fill(behind, float(height))
            z = proj_xyz[:, 2].masked_fill(behind, 1.0)

            grid = normalize_coords(x / z, y / z, height, width)  # (B, D, H*W, 2)

        warped = F.grid_sample(
            src_feature,
            grid,
            mode="bilinear",
            padding_mode="zeros",
            align_corners=False,
        )  # (B, C, D, H*W)

        return warped.view(batch, channels, num_depth, height, width)
