"""Inference entry points."""

import logging
from pathlib import Path

import torch

from ..io import save_depth_map
from ..model import DepthEstimate, PatchMatchNet

logger = logging.getLogger(__name__)


def estimate_depth(
    model: PatchMatchNet,
    images: torch.Tensor,
    proj_matrices: torch.Tensor,
    depth_min: torch.Tensor | float,
    depth_max: torch.Tensor | float,
) -> DepthEstimate:
    """Run one no-gradient forward pass on the model's device.

    Args:
        model: Network, typically from ``build_model``.
        images: Reference and source images, shape (B, V, 3, H, W).
        proj_matrices: Projection matrices, shape (B, V, S, 4, 4).
        depth_min: Minimum depth, scalar or shape (B,).
        depth_max: Maximum depth, scalar or shape (B,).

    Returns:
        DepthEstimate with full-resolution depth and confidence.
    """
    device = next(model.parameters()).device
    images = images.to(device)
    proj_matrices = proj_matrices.to(device)

    with torch.no_grad():
        estimate = model(images, proj_matrices, depth_min, depth_max)

    logger.debug(
        "Estimated depth %s for %d views",
        tuple(estimate.depth.shape),
        images.shape[1],
    )
    return estimate


def save_estimate(
    estimate: DepthEstimate,
    output_dir: str | Path,
    names: list[str],
) -> list[Path]:
    """Save each batch element's depth and confidence as ``{name}.npz``.

    Args:
        estimate: Network output.
        output_dir: Directory for the archives.
        names: One name per batch element.

    Returns:
        Paths of the written archives.

    Raises:
        ValueError: If the number of names does not match the batch size.
    """
    batch = estimate.depth.shape[0]
    if len(names) != batch:
        raise ValueError(f"Got {len(names)} names for a batch of {batch}")

    output_dir = Path(output_dir)
    paths = []
    for i, name in enumerate(names):
        path = output_dir / f"{name}.npz"
        save_depth_map(estimate.depth[i], estimate.confidence[i], path)
        paths.append(path)

    logger.info("Saved %d depth maps to %s", len(paths), output_dir)
    return paths
