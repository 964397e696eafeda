"""Per-stage camera projection matrices."""

import torch


def to_homogeneous(proj: torch.Tensor) -> torch.Tensor:
    """Augment 3x4 projection matrices to 4x4 with a (0, 0, 0, 1) last row.

    Args:
        proj: Projection matrices, shape (..., 3, 4) or (..., 4, 4).

    Returns:
        Projection matrices, shape (..., 4, 4). 4x4 input is returned unchanged.

    Raises:
        ValueError: If the trailing shape is neither (3, 4) nor (4, 4).
    """
    if proj.shape[-2:] == (4, 4):
        return proj
    if proj.shape[-2:] != (3, 4):
        raise ValueError(
            f"Expected projection matrices of shape (..., 3, 4) or (..., 4, 4), "
            f"got {tuple(proj.shape)}"
        )
    bottom = torch.zeros(*proj.shape[:-2], 1, 4, dtype=proj.dtype, device=proj.device)
    bottom[..., 0, 3] = 1.0
    return torch.cat([proj, bottom], dim=-2)


def projection_matrix(intrinsics: torch.Tensor, extrinsics: torch.Tensor) -> torch.Tensor:
    """Compose ``[K 0; 0 1] @ [R t; 0 1]``.

    Args:
        intrinsics: Camera matrices K, shape (..., 3, 3).
        extrinsics: World-to-camera transforms, shape (..., 4, 4) or (..., 3, 4).

    Returns:
        Projection matrices, shape (..., 4, 4).
    """
    k = torch.zeros(
        *intrinsics.shape[:-2], 4, 4, dtype=intrinsics.dtype, device=intrinsics.device
    )
    k[..., :3, :3] = intrinsics
    k[..., 3, 3] = 1.0
    return torch.matmul(k, to_homogeneous(extrinsics))


def stage_projections(
    intrinsics: torch.Tensor,
    extrinsics: torch.Tensor,
    num_stages: int = 3,
) -> torch.Tensor:
    """Build projection matrices for every pyramid stage.

    Stage ``s`` (0-based, fine to coarse) has resolution ``1 / 2**(s + 1)`` of
    the input image, so the first two rows of K are scaled accordingly.

    Args:
        intrinsics: Full-resolution camera matrices, shape (B, V, 3, 3).
        extrinsics: World-to-camera transforms, shape (B, V, 4, 4) or (B, V, 3, 4).
        num_stages: Number of stages.

    Returns:
        Projection matrices, shape (B, V, S, 4, 4).
    """
    stages = []
    for stage in range(num_stages):
        scaled = intrinsics.clone()
        scaled[..., :2, :] = intrinsics[..., :2, :] / 2 ** (stage + 1)
        stages.append(projection_matrix(scaled, extrinsics))
    return torch.stack(stages, dim=2)
