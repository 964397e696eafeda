"""Neighbor offset patterns and adaptive sampling grids.

Propagation and evaluation both look at a small set of neighbors around each
pixel. The neighbor positions are a fixed base pattern (a function of the
neighbor count and dilation) plus a learned per-pixel residual offset.
"""

from functools import lru_cache

import torch

from ..geometry.warping import make_pixel_grid, normalize_coords

Offsets = tuple[tuple[int, int], ...]


def _ring(dilation: int) -> list[tuple[int, int]]:
    """Return the eight (dy, dx) offsets of a 3x3 ring, row-major, without center."""
    return [
        (-dilation, -dilation),
        (-dilation, 0),
        (-dilation, dilation),
        (0, -dilation),
        (0, dilation),
        (dilation, -dilation),
        (dilation, 0),
        (dilation, dilation),
    ]


@lru_cache(maxsize=None)
def propagation_offsets(num_neighbors: int, dilation: int) -> Offsets:
    """Base (dy, dx) offsets for adaptive propagation.

    Args:
        num_neighbors: 0, 4, 8 or 16.
        dilation: Propagation range in pixels.

    Returns:
        Tuple of (dy, dx) integer pairs, one per neighbor.

    Raises:
        ValueError: If num_neighbors has no offset pattern.
    """
    match num_neighbors:
        case 0:
            return ()
        case 4:
            return ((-dilation, 0), (0, -dilation), (0, dilation), (dilation, 0))
        case 8:
            return tuple(_ring(dilation))
        case 16:
            ring = _ring(dilation)
            return tuple(ring + [(2 * dy, 2 * dx) for dy, dx in ring])
        case _:
            raise ValueError(
                f"Unsupported number of propagation neighbors: {num_neighbors!r}. "
                "Expected 0, 4, 8 or 16."
            )


@lru_cache(maxsize=None)
def evaluation_offsets(num_neighbors: int, dilation: int) -> Offsets:
    """Base (dy, dx) offsets for adaptive evaluation, center included.

    Args:
        num_neighbors: 9 or 17.
        dilation: Evaluation dilation in pixels.

    Returns:
        Tuple of (dy, dx) integer pairs, one per neighbor.

    Raises:
        ValueError: If num_neighbors has no offset pattern.
    """
    ring = _ring(dilation)
    square = ring[:4] + [(0, 0)] + ring[4:]
    match num_neighbors:
        case 9:
            return tuple(square)
        case 17:
            return tuple(square + [(2 * dy, 2 * dx) for dy, dx in ring])
        case _:
            raise ValueError(
                f"Unsupported number of evaluation neighbors: {num_neighbors!r}. "
                "Expected 9 or 17."
            )


def build_sampling_grid(
    offset: torch.Tensor,
    base_offsets: Offsets,
    height: int,
    width: int,
) -> torch.Tensor:
    """Convert learned per-pixel offsets into a normalized neighbor sampling grid.

    Args:
        offset: Learned residual offsets, shape (B, 2*N, H*W). Channel 2i is
            the x (column) residual of neighbor i, channel 2i+1 the y (row)
            residual.
        base_offsets: N base (dy, dx) offsets.
        height: Feature map height.
        width: Feature map width.

    Returns:
        Sampling grid, shape (B, N*H, W, 2), in grid_sample coordinates.
    """
    batch = offset.shape[0]
    num_neighbors = len(base_offsets)

    with torch.no_grad():
        pixels = make_pixel_grid(height, width, device=offset.device)  # (H*W, 2)
        u = pixels[:, 0].view(1, 1, height * width)
        v = pixels[:, 1].view(1, 1, height * width)
        base = torch.tensor(
            base_offsets, dtype=offset.dtype, device=offset.device
        ).view(1, num_neighbors, 2, 1)

    offset = offset.view(batch, num_neighbors, 2, height * width)
    x = u + base[:, :, 1] + offset[:, :, 0]  # (B, N, H*W)
    y = v + base[:, :, 0] + offset[:, :, 1]

    grid = normalize_coords(x, y, height, width)  # (B, N, H*W, 2)
    return grid.view(batch, num_neighbors * height, width, 2)
