# tests/foxrepro/test_config.py
"""Tests for loading and checking the analysis configuration."""

from pathlib import Path
from typing import Dict

import pytest
import yaml
from omegaconf import DictConfig, OmegaConf

from foxrepro.utils.config import (
    ConfigError,
    get_dataset_config,
    get_value,
    load_config,
    save_config,
    to_dict,
    validate_config,
)


class TestLoadConfig:
    """Reading YAML files and merging dotlist overrides."""

    def test_reads_datasets_and_settings(self, sample_config_file: Path):
        cfg = load_config(sample_config_file)

        assert isinstance(cfg, DictConfig)
        assert cfg.seed == 7
        assert cfg.diagnostics.n_sim == 30
        assert cfg.datasets.wild_litter_size.truncated is True
        assert [a.name for a in cfg.analyses] == ["wild_litter", "survival"]

    def test_overrides_take_precedence(self, sample_config_file: Path):
        cfg = load_config(sample_config_file, overrides=["diagnostics.n_sim=500", "seed=1"])

        assert cfg.diagnostics.n_sim == 500
        assert cfg.seed == 1
        assert cfg.predictions.n_points == 15

    def test_missing_file(self, temp_dir: Path):
        with pytest.raises(FileNotFoundError, match="not found"):
            load_config(temp_dir / "absent.yaml")

    def test_malformed_yaml(self, temp_dir: Path):
        broken = temp_dir / "broken.yaml"
        broken.write_text("datasets: {wild: [")

        with pytest.raises(ConfigError, match="Failed to load"):
            load_config(broken)

    def test_interpolated_data_dir(self, temp_dir: Path):
        path = temp_dir / "interp.yaml"
        path.write_text(
            yaml.safe_dump({"paths": {"root": "/field", "data_dir": "${paths.root}/csv"}})
        )

        cfg = load_config(path)
        assert cfg.paths.data_dir == "/field/csv"

    def test_shipped_config_is_valid(self):
        config_path = Path(__file__).parents[2] / "configs" / "analysis.yaml"
        cfg = load_config(config_path)
        validate_config(cfg)
        assert len(cfg.analyses) == 3


class TestValidateConfig:
    """Schema and cross-reference checks."""

    def test_sample_config_passes(self, sample_config_file: Path):
        cfg = load_config(sample_config_file)
        validate_config(cfg)

    def test_validate_missing_field(self, sample_config_dict: Dict):
        del sample_config_dict["seed"]
        cfg = OmegaConf.create(sample_config_dict)

        with pytest.raises(ConfigError, match="Missing required field: seed"):
            validate_config(cfg)

    def test_validate_wrong_type(self, sample_config_dict: Dict):
        sample_config_dict["diagnostics"]["n_sim"] = "many"
        cfg = OmegaConf.create(sample_config_dict)

        with pytest.raises(ConfigError, match="diagnostics.n_sim"):
            validate_config(cfg)

    def test_validate_unknown_dataset(self, sample_config_dict: Dict):
        sample_config_dict["analyses"][0]["dataset"] = "nope"
        cfg = OmegaConf.create(sample_config_dict)

        with pytest.raises(ConfigError, match="unknown dataset 'nope'"):
            validate_config(cfg)

    def test_validate_analysis_without_models(self, sample_config_dict: Dict):
        sample_config_dict["analyses"][1]["models"] = []
        cfg = OmegaConf.create(sample_config_dict)

        with pytest.raises(ConfigError, match="no models declared"):
            validate_config(cfg)

    def test_validate_model_missing_family(self, sample_config_dict: Dict):
        del sample_config_dict["analyses"][0]["models"][1]["family"]
        cfg = OmegaConf.create(sample_config_dict)

        with pytest.raises(ConfigError, match="missing 'family'"):
            validate_config(cfg)

    def test_validate_custom_schema(self):
        cfg = OmegaConf.create({"a": {"b": 1}})
        validate_config(cfg, schema={"a.b": int})

        with pytest.raises(ConfigError):
            validate_config(cfg, schema={"a.c": int})


class TestHelpers:
    """Tests for lookup and conversion helpers."""

    def test_get_value_with_default(self, sample_config_file: Path):
        cfg = load_config(sample_config_file)

        assert get_value(cfg, "diagnostics.alpha") == 0.05
        assert get_value(cfg, "diagnostics.missing", default=3) == 3

    def test_get_dataset_config(self, sample_config_file: Path):
        cfg = load_config(sample_config_file)

        assert get_dataset_config(cfg, "captive_survival").kind == "survival"
        with pytest.raises(ConfigError, match="not declared"):
            get_dataset_config(cfg, "unknown")

    def test_to_dict_and_save(self, sample_config_file: Path, temp_dir: Path):
        cfg = load_config(sample_config_file)
        data = to_dict(cfg)
        assert isinstance(data, dict)
        assert data["seed"] == 7

        out = temp_dir / "saved" / "config.yaml"
        save_config(cfg, out)
        assert load_config(out).seed == 7
