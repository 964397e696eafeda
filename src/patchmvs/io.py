"""Per-view archives of network depth and confidence output."""

from pathlib import Path

import numpy as np
import torch


def save_depth_map(
    depth_map: torch.Tensor,
    confidence: torch.Tensor,
    path: str | Path,
) -> None:
    """Write one reference view's estimate as an uncompressed ``.npz`` archive.

    The archive holds two float32 arrays: ``depth`` in the units of the depth
    range given to the network, and ``confidence``, the probability mass of
    the four hypotheses around the regressed index, in [0, 1]. Missing parent
    directories are created.

    Args:
        depth_map: Refined depth of one batch element, shape (H, W).
        confidence: Confidence of the same element, shape (H, W).
        path: Archive path, normally ending in ``.npz``.

    Raises:
        ValueError: If the two maps differ in shape.
    """
    if depth_map.shape != confidence.shape:
        raise ValueError(
            f"Depth {tuple(depth_map.shape)} and confidence "
            f"{tuple(confidence.shape)} must have the same shape"
        )

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(
        path,
        depth=depth_map.detach().to(torch.float32).cpu().numpy(),
        confidence=confidence.detach().to(torch.float32).cpu().numpy(),
    )


def load_depth_map(
    path: str | Path,
    device: str | torch.device = "cpu",
) -> tuple[torch.Tensor, torch.Tensor]:
    """Read an archive written by ``save_depth_map``.

    Returns:
        depth_map: shape (H, W), float32, on ``device``.
        confidence: shape (H, W), float32 in [0, 1], on ``device``.
    """
    with np.load(path) as data:
        depth_map = torch.from_numpy(data["depth"]).to(device)
        confidence = torch.from_numpy(data["confidence"]).to(device)
    return depth_map, confidence
