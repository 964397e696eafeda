"""Model construction and inference entry points."""

from .builder import build_model
from .runner import estimate_depth, save_estimate

__all__ = ["build_model", "estimate_depth", "save_estimate"]
