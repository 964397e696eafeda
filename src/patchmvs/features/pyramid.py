"""Multi-scale feature pyramid shared by all patchmatch stages."""

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..nn.layers import ConvBnReLU2D


def upsample2x(x: torch.Tensor) -> torch.Tensor:
    """Bilinear 2x upsampling (align_corners=False)."""
    return F.interpolate(x, scale_factor=2.0, mode="bilinear", align_corners=False)


class FeaturePyramid(nn.Module):
    """Feature extractor producing maps at 1/2, 1/4 and 1/8 of the input size.

    A strided trunk downsamples the image three times; a top-down path
    upsamples the coarser map and adds a 1x1-projected skip from the trunk.
    Each level then gets its own 1x1 output projection.

    Args:
        out_channels: Output channel counts, fine to coarse.
    """

    def __init__(self, out_channels: tuple[int, ...] = (16, 32, 64)):
        super().__init__()
        self.out_channels = tuple(out_channels)

        self.stage1 = nn.Sequential(
            ConvBnReLU2D(3, 8, 3, 1, 1),
            ConvBnReLU2D(8, 8, 3, 1, 1),
            ConvBnReLU2D(8, 16, 5, 2, 2),
            ConvBnReLU2D(16, 16, 3, 1, 1),
            ConvBnReLU2D(16, 16, 3, 1, 1),
        )
        self.stage2 = nn.Sequential(
            ConvBnReLU2D(16, 32, 5, 2, 2),
            ConvBnReLU2D(32, 32, 3, 1, 1),
            ConvBnReLU2D(32, 32, 3, 1, 1),
        )
        self.stage3 = nn.Sequential(
            ConvBnReLU2D(32, 64, 5, 2, 2),
            ConvBnReLU2D(64, 64, 3, 1, 1),
            ConvBnReLU2D(64, 64, 3, 1, 1),
        )

        self.inner1 = nn.Conv2d(16, 64, 1, bias=True)
        self.inner2 = nn.Conv2d(32, 64, 1, bias=True)

        self.output1 = nn.Conv2d(64, self.out_channels[0], 1, bias=False)
        self.output2 = nn.Conv2d(64, self.out_channels[1], 1, bias=False)
        self.output3 = nn.Conv2d(64, self.out_channels[2], 1, bias=False)

    def forward(self, image: torch.Tensor) -> list[torch.Tensor]:
        """Extract the feature pyramid of one image.

        Args:
            image: Image batch, shape (B, 3, H, W), H and W divisible by 8.

        Returns:
            Feature maps, fine to coarse:
            (B, C0, H/2, W/2), (B, C1, H/4, W/4), (B, C2, H/8, W/8).
        """
        res1 = self.stage1(image)
        res2 = self.stage2(res1)
        res3 = self.stage3(res2)

        intra2 = upsample2x(res3) + self.inner2(res2)
        intra1 = upsample2x(intra2) + self.inner1(res1)

        return [self.output1(intra1), self.output2(intra2), self.output3(res3)]
