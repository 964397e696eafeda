"""Tests for differentiable feature warping."""

import torch

from patchmvs.geometry.warping import (
    differentiable_warp,
    make_pixel_grid,
    normalize_coords,
)


def _identity(batch=1, device="cpu"):
    return torch.eye(4, device=device).expand(batch, 4, 4).clone()


class TestMakePixelGrid:
    """Tests for make_pixel_grid()."""

    def test_ordering(self):
        """Pixels are row-major with (u, v) = (column, row)."""
        grid = make_pixel_grid(2, 3)

        assert grid.shape == (6, 2)
        assert grid.dtype == torch.float32
        expected = torch.tensor(
            [[0, 0], [1, 0], [2, 0], [0, 1], [1, 1], [2, 1]], dtype=torch.float32
        )
        assert torch.equal(grid, expected)


class TestNormalizeCoords:
    """Tests for normalize_coords()."""

    def test_endpoints(self):
        """Pixel 0 maps to -1 and pixel dim-1 maps to 1."""
        u = torch.tensor([0.0, 9.0])
        v = torch.tensor([0.0, 4.0])
        coords = normalize_coords(u, v, height=5, width=10)

        assert coords.shape == (2, 2)
        assert torch.allclose(coords[0], torch.tensor([-1.0, -1.0]))
        assert torch.allclose(coords[1], torch.tensor([1.0, 1.0]))


class TestDifferentiableWarp:
    """Tests for differentiable_warp()."""

    def test_output_shape(self, device):
        """Warped features have one slice per hypothesis."""
        src = torch.rand(2, 4, 6, 8, device=device)
        depth = torch.rand(2, 5, 6, 8, device=device) + 1.0
        warped = differentiable_warp(
            src, _identity(2, device), _identity(2, device), depth
        )

        assert warped.shape == (2, 4, 5, 6, 8)
        assert warped.device.type == device.type

    def test_same_camera_constant_feature(self, device):
        """Warping into the same camera preserves a constant feature map inside."""
        src = torch.full((1, 3, 9, 11), 2.5, device=device)
        depth = torch.full((1, 2, 9, 11), 4.0, device=device)
        warped = differentiable_warp(
            src, _identity(device=device), _identity(device=device), depth
        )

        interior = warped[..., 1:-1, 1:-1]
        assert torch.allclose(interior, torch.full_like(interior, 2.5), atol=1e-5)

    def test_same_camera_center_pixel(self, device):
        """The center pixel of an odd-sized map samples itself exactly."""
        src = torch.rand(1, 4, 5, 7, device=device)
        depth = torch.full((1, 3, 5, 7), 2.0, device=device)
        warped = differentiable_warp(
            src, _identity(device=device), _identity(device=device), depth
        )

        for d in range(3):
            assert torch.allclose(warped[0, :, d, 2, 3], src[0, :, 2, 3], atol=1e-5)

    def test_degenerate_depth_is_zero(self, device):
        """Hypotheses at or behind the camera sample zeros, never NaN."""
        src = torch.rand(1, 4, 6, 8, device=device) + 1.0
        depth = torch.zeros(1, 2, 6, 8, device=device)
        depth[:, 1] = -3.0
        warped = differentiable_warp(
            src, _identity(device=device), _identity(device=device), depth
        )

        assert torch.isfinite(warped).all()
        assert torch.all(warped == 0)

    def test_translation_shifts_samples(self, device):
        """A translated source camera reads a shifted location."""
        height, width = 8, 16
        ramp = torch.arange(width, dtype=torch.float32, device=device)
        src = ramp.view(1, 1, 1, width).expand(1, 1, height, width).contiguous()

        ref_proj = _identity(device=device)
        src_proj = _identity(device=device)
        src_proj[:, 0, 3] = -2.0  # x_src = x_ref * d - 2
        depth = torch.ones(1, 1, height, width, device=device)

        shifted = differentiable_warp(src, src_proj, ref_proj, depth)
        same = differentiable_warp(src, ref_proj, ref_proj, depth)

        interior = (..., slice(3, -3))
        assert torch.all(shifted[interior] < same[interior])

    def test_no_gradient_through_grid(self, device):
        """Only source features receive gradients, not the hypotheses."""
        src = torch.rand(1, 2, 4, 4, device=device, requires_grad=True)
        depth = (torch.rand(1, 3, 4, 4, device=device) + 1.0).requires_grad_()
        warped = differentiable_warp(
            src, _identity(device=device), _identity(device=device), depth
        )
        warped.sum().backward()

        assert src.grad is not None
        assert depth.grad is None
