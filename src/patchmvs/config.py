"""Configuration management for the PatchMVS depth network."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

# Valid values for neighbor-count fields
VALID_PROPAGATION_NEIGHBORS = [0, 4, 8, 16]
VALID_EVALUATION_NEIGHBORS = [9, 17]

# Number of pyramid levels consumed by the patchmatch stages
NUM_STAGES = 3


class StageConfig(BaseModel):
    """Configuration for one coarse-to-fine patchmatch stage.

    Attributes:
        propagation_neighbors: Number of learned neighbors whose depth is borrowed
            during propagation (0 disables propagation).
        evaluation_neighbors: Number of learned neighbors (center included) used for
            spatial cost aggregation.
        iterations: Number of (hypothesis -> propagation -> evaluation) cycles.
        num_samples: Number of depth hypotheses per pixel once a prior depth exists.
        interval_scale: Hypothesis spacing as a fraction of the inverse depth range.
        propagation_range: Dilation of the base neighbor pattern (pixels).
        num_features: Channel count of this stage's feature map.
        group_correlations: Number of channel groups for group-wise correlation.
        inverse_regression: Regress depth in inverse-depth space on the final
            iteration (and skip propagation on that iteration).
    """

    model_config = ConfigDict(extra="allow")

    propagation_neighbors: int = 8
    evaluation_neighbors: int = 9
    iterations: int = Field(default=2, ge=1)
    num_samples: int = Field(default=8, ge=1)
    interval_scale: float = Field(default=0.0125, gt=0.0)
    propagation_range: int = Field(default=4, ge=1)
    num_features: int = Field(default=32, ge=1)
    group_correlations: int = Field(default=8, ge=1)
    inverse_regression: bool = False

    @field_validator("propagation_neighbors")
    @classmethod
    def validate_propagation_neighbors(cls, v: int) -> int:
        """Validate that propagation_neighbors has a known offset pattern."""
        if v not in VALID_PROPAGATION_NEIGHBORS:
            raise ValueError(
                f"Unsupported propagation_neighbors: {v!r}. "
                f"Valid values: {VALID_PROPAGATION_NEIGHBORS}"
            )
        return v

    @field_validator("evaluation_neighbors")
    @classmethod
    def validate_evaluation_neighbors(cls, v: int) -> int:
        """Validate that evaluation_neighbors has a known offset pattern."""
        if v not in VALID_EVALUATION_NEIGHBORS:
            raise ValueError(
                f"Unsupported evaluation_neighbors: {v!r}. "
                f"Valid values: {VALID_EVALUATION_NEIGHBORS}"
            )
        return v

    @model_validator(mode="after")
    def check_groups(self) -> "StageConfig":
        """Validate channel grouping and warn about extra fields."""
        if self.num_features % self.group_correlations != 0:
            raise ValueError(
                f"num_features ({self.num_features}) must be divisible by "
                f"group_correlations ({self.group_correlations})"
            )
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in StageConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


def default_stages() -> list[StageConfig]:
    """Return the reference stage configurations, ordered fine to coarse.

    Index 0 is the half-resolution stage, index 2 the eighth-resolution stage.
    """
    return [
        StageConfig(
            propagation_neighbors=0,
            evaluation_neighbors=9,
            iterations=1,
            num_samples=8,
            interval_scale=0.005,
            propagation_range=6,
            num_features=16,
            group_correlations=4,
            inverse_regression=True,
        ),
        StageConfig(
            propagation_neighbors=8,
            evaluation_neighbors=9,
            iterations=2,
            num_samples=8,
            interval_scale=0.0125,
            propagation_range=4,
            num_features=32,
            group_correlations=8,
        ),
        StageConfig(
            propagation_neighbors=16,
            evaluation_neighbors=9,
            iterations=2,
            num_samples=16,
            interval_scale=0.025,
            propagation_range=2,
            num_features=64,
            group_correlations=8,
        ),
    ]


class ModelConfig(BaseModel):
    """Configuration for the network architecture.

    Attributes:
        stages: Per-stage configurations, ordered fine to coarse (same order as
            the feature pyramid levels).
        refine: Apply the image-guided residual refinement. When disabled the
            finest stage's depth is bilinearly upsampled instead.
        num_random_samples: Hypothesis count for the cold-start random draw.
        min_view_weight: Floor added to the view-weight sum before normalizing.
        degenerate_depth_eps: Projected depths at or below this value are
            treated as behind the source camera.
    """

    model_config = ConfigDict(extra="allow")

    stages: list[StageConfig] = Field(default_factory=default_stages)
    refine: bool = True
    num_random_samples: int = Field(default=48, ge=1)
    min_view_weight: float = Field(default=1e-5, gt=0.0)
    degenerate_depth_eps: float = Field(default=1e-3, gt=0.0)

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: list[StageConfig]) -> list[StageConfig]:
        """Validate the number of stages."""
        if len(v) != NUM_STAGES:
            raise ValueError(f"Expected {NUM_STAGES} stages, got {len(v)}")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "ModelConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in ModelConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @property
    def feature_channels(self) -> tuple[int, ...]:
        """Feature channel count of each pyramid level, fine to coarse."""
        return tuple(stage.num_features for stage in self.stages)


class RuntimeConfig(BaseModel):
    """Configuration for runtime settings.

    Attributes:
        device: PyTorch device string.
        checkpoint_path: Optional path to a saved parameter archive.
    """

    model_config = ConfigDict(extra="allow")

    device: str = "cpu"
    checkpoint_path: str | None = None

    @field_validator("device")
    @classmethod
    def validate_device(cls, v: str) -> str:
        """Validate that device is "cpu", "cuda" or an indexed "cuda:N"."""
        kind, sep, index = v.partition(":")
        if kind == "cpu" and not sep:
            return v
        if kind == "cuda" and (not sep or index.isdigit()):
            return v
        raise ValueError(
            f"Unsupported device: {v!r}. Expected 'cpu', 'cuda' or 'cuda:<index>'"
        )

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class PatchMatchConfig(BaseModel):
    """Top-level configuration for PatchMVS.

    Attributes:
        model: Network architecture configuration.
        runtime: Runtime configuration.
    """

    model_config = ConfigDict(extra="allow")

    model: ModelConfig = Field(default_factory=ModelConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "PatchMatchConfig":
        """Warn about unknown top-level keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in PatchMatchConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PatchMatchConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        cls._log_default_sections(data)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    @staticmethod
    def _log_default_sections(data: dict[str, Any]) -> None:
        """Log INFO messages about sections using defaults.

        Args:
            data: Configuration dictionary.
        """
        for section in ["model", "runtime"]:
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                # List index
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
