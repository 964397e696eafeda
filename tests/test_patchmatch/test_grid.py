"""Tests for neighbor offset patterns and sampling grids."""

import pytest
import torch

from patchmvs.geometry.warping import make_pixel_grid, normalize_coords
from patchmvs.patchmatch.grid import (
    build_sampling_grid,
    evaluation_offsets,
    propagation_offsets,
)


class TestPropagationOffsets:
    """Tests for propagation_offsets()."""

    def test_zero(self):
        """Zero neighbors means no propagation."""
        assert propagation_offsets(0, 2) == ()

    def test_four(self):
        """Four neighbors form a cross."""
        assert propagation_offsets(4, 3) == ((-3, 0), (0, -3), (0, 3), (3, 0))

    def test_eight(self):
        """Eight neighbors form a dilated 3x3 ring without the center."""
        offsets = propagation_offsets(8, 2)
        assert len(offsets) == 8
        assert (0, 0) not in offsets
        assert set(offsets) == {
            (dy, dx) for dy in (-2, 0, 2) for dx in (-2, 0, 2) if (dy, dx) != (0, 0)
        }

    def test_sixteen(self):
        """Sixteen neighbors add a second ring at twice the dilation."""
        offsets = propagation_offsets(16, 1)
        assert len(offsets) == 16
        assert offsets[:8] == propagation_offsets(8, 1)
        assert offsets[8:] == propagation_offsets(8, 2)

    @pytest.mark.parametrize("num_neighbors", [1, 9, 17, 32])
    def test_invalid(self, num_neighbors):
        """Counts without a pattern are rejected."""
        with pytest.raises(ValueError, match=str(num_neighbors)):
            propagation_offsets(num_neighbors, 1)

    def test_cached(self):
        """Patterns are computed once per (count, dilation)."""
        assert propagation_offsets(8, 4) is propagation_offsets(8, 4)


class TestEvaluationOffsets:
    """Tests for evaluation_offsets()."""

    def test_nine(self):
        """Nine neighbors form a dilated 3x3 square with the center in the middle."""
        offsets = evaluation_offsets(9, 3)
        assert len(offsets) == 9
        assert offsets[4] == (0, 0)
        assert offsets[0] == (-3, -3)
        assert offsets[8] == (3, 3)

    def test_seventeen(self):
        """Seventeen neighbors add the outer ring at twice the dilation."""
        offsets = evaluation_offsets(17, 1)
        assert len(offsets) == 17
        assert len(set(offsets)) == 17
        assert offsets[:9] == evaluation_offsets(9, 1)
        assert offsets[9:] == propagation_offsets(8, 2)

    @pytest.mark.parametrize("num_neighbors", [0, 8, 16])
    def test_invalid(self, num_neighbors):
        """Counts without a pattern are rejected."""
        with pytest.raises(ValueError, match="evaluation neighbors"):
            evaluation_offsets(num_neighbors, 1)


class TestBuildSamplingGrid:
    """Tests for build_sampling_grid()."""

    def test_zero_offset_is_base_pattern(self, device):
        """With zero learned offsets the grid is the shifted pixel grid."""
        height, width = 5, 7
        base = ((0, 0), (1, 2), (-1, -3))
        offset = torch.zeros(2, 2 * len(base), height * width, device=device)

        grid = build_sampling_grid(offset, base, height, width)

        assert grid.shape == (2, 3 * height, width, 2)
        grid = grid.view(2, 3, height, width, 2)
        pixels = make_pixel_grid(height, width, device=device)
        for i, (dy, dx) in enumerate(base):
            expected = normalize_coords(
                pixels[:, 0] + dx, pixels[:, 1] + dy, height, width
            ).view(height, width, 2)
            assert torch.allclose(grid[0, i], expected)
            assert torch.allclose(grid[1, i], expected)

    def test_learned_offset_channels(self):
        """Channel 2i shifts x and channel 2i+1 shifts y of neighbor i."""
        height, width = 4, 6
        base = ((0, 0), (0, 0))
        offset = torch.zeros(1, 4, height * width)
        offset[:, 2] = 1.0  # x of neighbor 1
        offset[:, 3] = -1.0  # y of neighbor 1

        grid = build_sampling_grid(offset, base, height, width).view(
            1, 2, height, width, 2
        )

        pixels = make_pixel_grid(height, width)
        expected = normalize_coords(
            pixels[:, 0] + 1.0, pixels[:, 1] - 1.0, height, width
        ).view(height, width, 2)
        assert torch.allclose(grid[0, 1], expected)

        unshifted = normalize_coords(pixels[:, 0], pixels[:, 1], height, width)
        assert torch.allclose(grid[0, 0], unshifted.view(height, width, 2))
