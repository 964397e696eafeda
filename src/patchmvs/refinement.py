"""Image-guided depth refinement and confidence estimation."""

import torch
import torch.nn as nn
import torch.nn.functional as F

from .features.pyramid import upsample2x
from .nn.layers import ConvBnReLU2D


def _as_batch_view(value: torch.Tensor | float, like: torch.Tensor) -> torch.Tensor:
    """Reshape a scalar or (B,) depth bound to (B, 1, 1, 1) on the device of ``like``."""
    value = torch.as_tensor(value, dtype=like.dtype, device=like.device)
    return value.reshape(-1, 1, 1, 1)


class Refinement(nn.Module):
    """Upsamples depth 2x with a residual predicted from the full-resolution image.

    Depth is normalized to [0, 1] with the known range, refined, and mapped
    back to physical units.
    """

    def __init__(self):
        super().__init__()
        self.conv0 = ConvBnReLU2D(3, 8)
        self.conv1 = ConvBnReLU2D(1, 8)
        self.conv2 = ConvBnReLU2D(8, 8)
        self.deconv = nn.ConvTranspose2d(
            8, 8, kernel_size=3, padding=1, output_padding=1, stride=2, bias=False
        )
        self.bn = nn.BatchNorm2d(8)
        self.conv3 = ConvBnReLU2D(16, 8)
        self.res = nn.Conv2d(8, 1, kernel_size=3, padding=1, bias=False)

    def residual(self, image: torch.Tensor, depth: torch.Tensor) -> torch.Tensor:
        """Predict the normalized depth correction.

        Args:
            image: Reference image, shape (B, 3, H, W).
            depth: Normalized depth, shape (B, 1, H/2, W/2).

        Returns:
            Residual, shape (B, 1, H, W).
        """
        image_conv = self.conv0(image)
        depth_deconv = F.relu(
            self.bn(self.deconv(self.conv2(self.conv1(depth)))), inplace=True
        )
        return self.res(self.conv3(torch.cat([depth_deconv, image_conv], dim=1)))

    def forward(
        self,
        image: torch.Tensor,
        depth: torch.Tensor,
        depth_min: torch.Tensor | float,
        depth_max: torch.Tensor | float,
    ) -> torch.Tensor:
        """Refine depth to full resolution.

        Args:
            image: Reference image, shape (B, 3, H, W).
            depth: Depth from the finest stage, shape (B, 1, H/2, W/2).
            depth_min: Minimum depth, scalar or shape (B,).
            depth_max: Maximum depth, scalar or shape (B,).

        Returns:
            Refined depth, shape (B, H, W).
        """
        depth_min = _as_batch_view(depth_min, depth)
        depth_max = _as_batch_view(depth_max, depth)

        depth = (depth - depth_min) / (depth_max - depth_min)
        depth = upsample2x(depth) + self.residual(image, depth)
        return (depth * (depth_max - depth_min) + depth_min).squeeze(1)


def compute_confidence(score: torch.Tensor) -> torch.Tensor:
    """Photometric confidence from the final probability volume.

    The probability mass of a 4-wide window along the hypothesis axis (one
    hypothesis before, two after) is read at the expected hypothesis index,
    then upsampled 2x.

    Args:
        score: Probability volume, shape (B, D, H, W).

    Returns:
        Confidence in [0, 1], shape (B, 2H, 2W).
    """
    with torch.no_grad():
        num_depth = score.shape[1]
        score_sum = 4.0 * F.avg_pool3d(
            F.pad(score.unsqueeze(1), pad=(0, 0, 0, 0, 1, 2)),
            kernel_size=(4, 1, 1),
            stride=1,
            padding=0,
        ).squeeze(1)  # (B, D, H, W)

        index = torch.arange(num_depth, device=score.device, dtype=score.dtype).view(
            1, num_depth, 1, 1
        )
        index = torch.sum(score * index, dim=1, keepdim=True)
        index = torch.round(index).long().clamp(0, num_depth - 1)

        confidence = torch.gather(score_sum, 1, index)  # (B, 1, H, W)
        return upsample2x(confidence).squeeze(1)
