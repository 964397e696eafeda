"""Learned multi-scale image features."""

from .pyramid import FeaturePyramid, upsample2x

__all__ = ["FeaturePyramid", "upsample2x"]
