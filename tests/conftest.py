"""Shared pytest fixtures for PatchMVS tests."""

import pytest
import torch
import torch.nn as nn


@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    """Parametrized device fixture for CPU and CUDA testing.

    Args:
        request: pytest fixture request object.

    Returns:
        torch.device: Device to use for testing.

    Raises:
        pytest.skip: If CUDA is requested but not available.
    """
    if request.param == "cuda" and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
    return torch.device(request.param)


@pytest.fixture
def zero_weights():
    """Return a function that sets every parameter of a module to zero.

    Batch-norm running statistics keep their initial values (mean 0, var 1),
    so in eval mode every conv/bn/relu block outputs exactly zero.
    """

    def _zero(module: nn.Module) -> nn.Module:
        with torch.no_grad():
            for param in module.parameters():
                param.zero_()
        return module.eval()

    return _zero


def make_views(
    batch: int = 1,
    num_views: int = 3,
    height: int = 32,
    width: int = 48,
    baseline: float = 0.1,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Build a fronto-parallel camera rig with per-stage projection matrices.

    Cameras share intrinsics and are translated along x by ``baseline``.

    Returns:
        intrinsics: shape (B, V, 3, 3).
        extrinsics: shape (B, V, 4, 4).
    """
    K = torch.tensor(
        [
            [float(width), 0.0, width / 2.0],
            [0.0, float(width), height / 2.0],
            [0.0, 0.0, 1.0],
        ]
    )
    intrinsics = K.expand(batch, num_views, 3, 3).clone()
    extrinsics = torch.eye(4).expand(batch, num_views, 4, 4).clone()
    for v in range(num_views):
        extrinsics[:, v, 0, 3] = -baseline * v
    return intrinsics, extrinsics


@pytest.fixture
def camera_rig():
    """Return the camera rig factory ``make_views``."""
    return make_views
