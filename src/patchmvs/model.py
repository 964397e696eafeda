"""Coarse-to-fine multi-view depth network."""

import logging
from dataclasses import dataclass, field

import torch
import torch.nn as nn
from torch.profiler import record_function

from .config import ModelConfig
from .features.pyramid import FeaturePyramid, upsample2x
from .geometry.projection import to_homogeneous
from .patchmatch.stage import PatchMatchStage
from .refinement import Refinement, compute_confidence

logger = logging.getLogger(__name__)

# Total downsampling of the coarsest pyramid level
SIZE_DIVISOR = 8


@dataclass
class DepthEstimate:
    """Output of one forward pass.

    Attributes:
        depth: Full-resolution depth, shape (B, H, W).
        confidence: Full-resolution confidence in [0, 1], shape (B, H, W).
        stage_depths: Final depth of each stage before upsampling, keyed by
            stage index (0 = finest), each shape (B, 1, h, w), detached.
    """

    depth: torch.Tensor
    confidence: torch.Tensor
    stage_depths: dict[int, torch.Tensor] = field(default_factory=dict)


class PatchMatchNet(nn.Module):
    """Learned patchmatch multi-view stereo network.

    Features are extracted once per image. The stages then run coarse to fine;
    each stage's depth and view weights are upsampled 2x and handed to the next
    finer stage. The finest stage's depth is refined to full resolution and a
    confidence map is derived from its probability volume.

    Args:
        config: Network configuration.

    Raises:
        ValueError: If a stage has an unsupported neighbor count.
    """

    def __init__(self, config: ModelConfig | None = None):
        super().__init__()
        self.config = config or ModelConfig()

        self.feature = FeaturePyramid(self.config.feature_channels)

        last = len(self.config.stages) - 1
        self.stages = nn.ModuleList(
            PatchMatchStage(
                stage_config,
                predict_view_weights=(i == last),
                num_random_samples=self.config.num_random_samples,
                min_view_weight=self.config.min_view_weight,
                degenerate_depth_eps=self.config.degenerate_depth_eps,
            )
            for i, stage_config in enumerate(self.config.stages)
        )

        self.refinement = Refinement() if self.config.refine else None

        logger.info(
            "Built PatchMatchNet with %d stages (%d parameters)",
            len(self.stages),
            sum(p.numel() for p in self.parameters()),
        )

    def _check_inputs(self, images: torch.Tensor, proj_matrices: torch.Tensor) -> None:
        """Validate input shapes before running the network."""
        if images.dim() != 5 or images.shape[2] != 3:
            raise ValueError(
                f"Expected images of shape (B, V, 3, H, W), got {tuple(images.shape)}"
            )
        num_views = images.shape[1]
        if num_views < 2:
            raise ValueError(
                f"Need a reference and at least one source view, got {num_views}"
            )
        if proj_matrices.dim() != 5 or proj_matrices.shape[1] != num_views:
            raise ValueError(
                f"Expected projection matrices of shape (B, {num_views}, S, 4, 4), "
                f"got {tuple(proj_matrices.shape)}"
            )
        if proj_matrices.shape[2] != len(self.stages):
            raise ValueError(
                f"Expected projection matrices for {len(self.stages)} stages, "
                f"got {proj_matrices.shape[2]}"
            )
        height, width = images.shape[-2:]
        if height % SIZE_DIVISOR or width % SIZE_DIVISOR:
            raise ValueError(
                f"Image size must be divisible by {SIZE_DIVISOR}, got {height}x{width}"
            )
        # Every stage needs at least two pixels per axis to normalize coordinates
        if min(height, width) < 2 * SIZE_DIVISOR:
            raise ValueError(
                f"Image size must be at least {2 * SIZE_DIVISOR} pixels per axis, "
                f"got {height}x{width}"
            )

    def forward(
        self,
        images: torch.Tensor,
        proj_matrices: torch.Tensor,
        depth_min: torch.Tensor | float,
        depth_max: torch.Tensor | float,
    ) -> DepthEstimate:
        """Estimate depth and confidence for the reference view.

        Args:
            images: Reference and source images, shape (B, V, 3, H, W); view 0
                is the reference.
            proj_matrices: Projection matrices, shape (B, V, S, 4, 4) or
                (B, V, S, 3, 4), stages ordered fine to coarse.
            depth_min: Minimum depth, scalar or shape (B,).
            depth_max: Maximum depth, scalar or shape (B,).

        Returns:
            DepthEstimate with full-resolution depth and confidence.

        Raises:
            ValueError: If input shapes are inconsistent.
        """
        proj_matrices = to_homogeneous(proj_matrices)
        self._check_inputs(images, proj_matrices)

        batch, num_views = images.shape[:2]
        device = images.device
        depth_min = torch.as_tensor(depth_min, dtype=torch.float32, device=device)
        depth_max = torch.as_tensor(depth_max, dtype=torch.float32, device=device)
        depth_min = depth_min.reshape(-1).expand(batch)
        depth_max = depth_max.reshape(-1).expand(batch)

        with record_function("feature_pyramid"):
            features = [self.feature(images[:, view]) for view in range(num_views)]

        depth = None
        view_weights = None
        score = None
        stage_depths = {}

        for idx in reversed(range(len(self.stages))):
            ref_feature = features[0][idx]
            src_features = [view_features[idx] for view_features in features[1:]]
            ref_proj = proj_matrices[:, 0, idx]
            src_projs = list(proj_matrices[:, 1:, idx].unbind(1))

            with record_function(f"patchmatch_stage_{idx}"):
                depth, score, view_weights = self.stages[idx](
                    ref_feature,
                    src_features,
                    ref_proj,
                    src_projs,
                    depth_min,
                    depth_max,
                    depth=depth,
                    view_weights=view_weights,
                )
            stage_depths[idx] = depth
            logger.debug("Stage %d: depth %s", idx, tuple(depth.shape))

            if idx > 0:
                depth = upsample2x(depth)
                view_weights = upsample2x(view_weights)

        with record_function("refinement"):
            if self.refinement is not None:
                depth = self.refinement(images[:, 0], depth, depth_min, depth_max)
            else:
                depth = upsample2x(depth).squeeze(1)

        with record_function("confidence"):
            confidence = compute_confidence(score)

        return DepthEstimate(
            depth=depth.contiguous(),
            confidence=confidence.contiguous(),
            stage_depths=stage_depths,
        )
