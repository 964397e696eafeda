"""Per-pixel depth hypothesis generation in inverse-depth space."""

import torch


def inverse_depth_bounds(
    depth_min: torch.Tensor | float,
    depth_max: torch.Tensor | float,
    device: str | torch.device = "cpu",
) -> tuple[torch.Tensor, torch.Tensor]:
    """Return (1/depth_min, 1/depth_max) shaped for broadcasting over (B, D, H, W).

    Args:
        depth_min: Minimum depth, scalar or shape (B,).
        depth_max: Maximum depth, scalar or shape (B,).
        device: Device for the output tensors.

    Returns:
        inv_depth_min: Largest inverse depth, shape (B, 1, 1, 1) (or (1, 1, 1, 1)).
        inv_depth_max: Smallest inverse depth, same shape.
    """
    depth_min = torch.as_tensor(depth_min, dtype=torch.float32, device=device)
    depth_max = torch.as_tensor(depth_max, dtype=torch.float32, device=device)
    return 1.0 / depth_min.reshape(-1, 1, 1, 1), 1.0 / depth_max.reshape(-1, 1, 1, 1)


def generate_depth_hypotheses(
    depth: torch.Tensor | None,
    depth_min: torch.Tensor | float,
    depth_max: torch.Tensor | float,
    num_samples: int,
    interval_scale: float,
    batch: int,
    height: int,
    width: int,
    device: str | torch.device = "cpu",
    num_random_samples: int = 48,
) -> torch.Tensor:
    """Generate the per-pixel depth hypotheses for one patchmatch iteration.

    Three cases:
    - No previous depth: ``num_random_samples`` hypotheses, one drawn uniformly
      inside each of as many equal inverse-depth bins spanning the range.
    - ``num_samples == 1``: the previous depth is returned detached.
    - Otherwise: a centered integer ladder ``-N/2 .. N/2-1`` perturbs the
      previous inverse depth in steps of ``interval_scale`` times the inverse
      depth range; the result is clamped to the inverse-depth range.

    Args:
        depth: Previous depth estimate, shape (B, 1, H, W), or None.
        depth_min: Minimum depth, scalar or shape (B,).
        depth_max: Maximum depth, scalar or shape (B,).
        num_samples: Number of hypotheses once a previous depth exists.
        interval_scale: Ladder step as a fraction of the inverse depth range.
        batch: Batch size.
        height: Depth map height.
        width: Depth map width.
        device: Device for the output tensor.
        num_random_samples: Number of hypotheses for the random cold start.

    Returns:
        Depth hypotheses, shape (B, D, H, W), float32.
    """
    inv_depth_min, inv_depth_max = inverse_depth_bounds(depth_min, depth_max, device)

    if depth is None:
        bins = torch.rand(
            (batch, num_random_samples, height, width), device=device
        ) + torch.arange(num_random_samples, device=device).view(
            1, num_random_samples, 1, 1
        )
        inv_depth = inv_depth_max + bins / num_random_samples * (
            inv_depth_min - inv_depth_max
        )
        return 1.0 / inv_depth

    if num_samples == 1:
        return depth.detach()

    ladder = torch.arange(
        -(num_samples // 2), num_samples - num_samples // 2, device=device
    ).view(1, num_samples, 1, 1)
    inv_depth = 1.0 / depth.detach() + (
        (inv_depth_min - inv_depth_max) * interval_scale * ladder
    )
    return 1.0 / torch.clamp(inv_depth, min=inv_depth_max, max=inv_depth_min)
