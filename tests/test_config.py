"""Tests for configuration system."""

import logging

import pytest
import yaml

from patchmvs.config import (
    ModelConfig,
    PatchMatchConfig,
    RuntimeConfig,
    StageConfig,
    default_stages,
)


class TestStageConfig:
    """Tests for StageConfig."""

    def test_defaults(self):
        """Test default values."""
        config = StageConfig()
        assert config.propagation_neighbors == 8
        assert config.evaluation_neighbors == 9
        assert config.iterations == 2
        assert config.inverse_regression is False

    @pytest.mark.parametrize("neighbors", [0, 4, 8, 16])
    def test_valid_propagation_neighbors(self, neighbors):
        """All supported propagation neighbor counts are accepted."""
        config = StageConfig(propagation_neighbors=neighbors)
        assert config.propagation_neighbors == neighbors

    @pytest.mark.parametrize("neighbors", [1, 5, 9, 32])
    def test_invalid_propagation_neighbors(self, neighbors):
        """Unsupported propagation neighbor counts are rejected with the value."""
        with pytest.raises(ValueError, match=str(neighbors)):
            StageConfig(propagation_neighbors=neighbors)

    @pytest.mark.parametrize("neighbors", [0, 8, 16, 25])
    def test_invalid_evaluation_neighbors(self, neighbors):
        """Unsupported evaluation neighbor counts are rejected with the value."""
        with pytest.raises(ValueError, match="evaluation_neighbors"):
            StageConfig(evaluation_neighbors=neighbors)

    def test_groups_must_divide_features(self):
        """num_features must be divisible by group_correlations."""
        with pytest.raises(ValueError, match="divisible"):
            StageConfig(num_features=30, group_correlations=8)

    def test_interval_scale_positive(self):
        """interval_scale must be positive."""
        with pytest.raises(ValueError):
            StageConfig(interval_scale=0.0)

    def test_unknown_keys_warn(self, caplog):
        """Unknown keys are accepted with a warning."""
        with caplog.at_level(logging.WARNING, logger="patchmvs.config"):
            StageConfig(bogus=1)
        assert "bogus" in caplog.text


class TestModelConfig:
    """Tests for ModelConfig."""

    def test_default_stages(self):
        """Default stages reproduce the reference network, fine to coarse."""
        config = ModelConfig()
        assert len(config.stages) == 3
        assert config.feature_channels == (16, 32, 64)
        assert [s.iterations for s in config.stages] == [1, 2, 2]
        assert [s.num_samples for s in config.stages] == [8, 8, 16]
        assert [s.propagation_neighbors for s in config.stages] == [0, 8, 16]
        assert [s.group_correlations for s in config.stages] == [4, 8, 8]
        assert [s.interval_scale for s in config.stages] == [0.005, 0.0125, 0.025]
        assert [s.inverse_regression for s in config.stages] == [True, False, False]

    def test_defaults(self):
        """Test scalar default values."""
        config = ModelConfig()
        assert config.refine is True
        assert config.num_random_samples == 48
        assert config.min_view_weight == 1e-5

    def test_wrong_stage_count(self):
        """Exactly three stages are required."""
        with pytest.raises(ValueError, match="3 stages"):
            ModelConfig(stages=default_stages()[:2])

    def test_nested_stage_validation(self):
        """Invalid values inside a stage dict are reported."""
        stages = [s.model_dump() for s in default_stages()]
        stages[1]["propagation_neighbors"] = 3
        with pytest.raises(ValueError):
            ModelConfig(stages=stages)


class TestRuntimeConfig:
    """Tests for RuntimeConfig."""

    def test_defaults(self):
        """Test default values."""
        config = RuntimeConfig()
        assert config.device == "cpu"
        assert config.checkpoint_path is None

    @pytest.mark.parametrize("device", ["cpu", "cuda", "cuda:0", "cuda:1"])
    def test_valid_device(self, device):
        """Plain and indexed CUDA devices are accepted."""
        assert RuntimeConfig(device=device).device == device

    @pytest.mark.parametrize("device", ["tpu", "cpu:0", "cuda:", "cuda:x", "CUDA"])
    def test_invalid_device(self, device):
        """Other device strings are rejected with the value."""
        with pytest.raises(ValueError, match="Unsupported device"):
            RuntimeConfig(device=device)


class TestPatchMatchConfigYaml:
    """Tests for YAML serialization."""

    def test_round_trip(self, tmp_path):
        """Saving and loading preserves values."""
        config = PatchMatchConfig()
        config.model.stages[2].iterations = 3
        config.runtime.checkpoint_path = "weights.pt"

        path = tmp_path / "nested" / "config.yaml"
        config.to_yaml(path)
        loaded = PatchMatchConfig.from_yaml(path)

        assert loaded.model.stages[2].iterations == 3
        assert loaded.runtime.checkpoint_path == "weights.pt"
        assert loaded == config

    def test_empty_file_uses_defaults(self, tmp_path, caplog):
        """An empty file yields the default configuration."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        with caplog.at_level(logging.INFO, logger="patchmvs.config"):
            config = PatchMatchConfig.from_yaml(path)

        assert config == PatchMatchConfig()
        assert "Using default: model" in caplog.text

    def test_partial_override(self, tmp_path):
        """Missing fields keep their defaults."""
        path = tmp_path / "partial.yaml"
        path.write_text(yaml.safe_dump({"runtime": {"device": "cuda"}}))

        config = PatchMatchConfig.from_yaml(path)
        assert config.runtime.device == "cuda"
        assert config.model == ModelConfig()

    def test_validation_error_paths(self, tmp_path):
        """Validation errors are reported with YAML-style paths."""
        stages = [s.model_dump() for s in default_stages()]
        stages[0]["evaluation_neighbors"] = 10
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"model": {"stages": stages}}))

        pattern = r"model\.stages\[0\]\.evaluation_neighbors"
        with pytest.raises(ValueError, match=pattern):
            PatchMatchConfig.from_yaml(path)

    def test_missing_file(self, tmp_path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            PatchMatchConfig.from_yaml(tmp_path / "missing.yaml")
