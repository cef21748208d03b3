# src/foxrepro/utils/config.py
"""Analysis configuration: YAML loading, overrides and checks.

The YAML file names the data directory, the datasets with their column
mappings, and one entry per analysis with its ordered model sequence.
Overrides use OmegaConf dotlist syntax (``diagnostics.n_sim=500``).
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from omegaconf import DictConfig, ListConfig, MissingMandatoryValue, OmegaConf

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(
    config_path: Union[str, Path],
    overrides: Optional[List[str]] = None,
    resolve: bool = True,
) -> DictConfig:
    """Read an analysis config and merge command-line overrides into it.

    Args:
        config_path: YAML file to read.
        overrides: Dotlist entries merged on top of the file,
            e.g. ["seed=7", "diagnostics.n_sim=500"].
        resolve: Resolve ``${...}`` interpolations after merging.

    Returns:
        Merged DictConfig.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ConfigError: If the YAML or an override cannot be parsed.

    Example:
        >>> cfg = load_config("configs/analysis.yaml", overrides=["seed=7"])
        >>> cfg.seed
        7
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        cfg = OmegaConf.load(path)
        if overrides:
            cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(list(overrides)))
        if resolve:
            OmegaConf.resolve(cfg)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e

    logger.info(f"Loaded config from {path} ({len(overrides or [])} overrides)")
    return cfg


_CONTAINER_TYPES = {list: (list, tuple, ListConfig), dict: (dict, DictConfig)}


def _type_error(path: str, value: Any, expected: Optional[type]) -> Optional[str]:
    if expected is None:
        return None
    accepted = _CONTAINER_TYPES.get(expected, expected)
    if isinstance(value, accepted):
        return None
    label = "mapping" if expected is dict else expected.__name__
    return f"Invalid type for {path}: expected {label}, got {type(value).__name__}"


def validate_config(
    cfg: DictConfig,
    schema: Optional[Dict[str, type]] = None,
) -> None:
    """Check required fields and their types, then the analysis entries.

    With the default schema every analysis must also name a declared
    dataset and list at least one model with a name, formula and family.
    A custom schema only checks the paths it lists.

    Args:
        cfg: Loaded configuration.
        schema: Dotted paths mapped to expected types. ``None`` uses the
            analysis schema.

    Raises:
        ConfigError: Listing every problem found.
    """
    cross_check = schema is None
    if schema is None:
        schema = _get_default_schema()

    errors = []
    for path, expected_type in schema.items():
        try:
            value = OmegaConf.select(cfg, path)
        except MissingMandatoryValue:
            value = None
        if value is None:
            errors.append(f"Missing required field: {path}")
            continue
        problem = _type_error(path, value, expected_type)
        if problem:
            errors.append(problem)

    if cross_check and not errors:
        errors.extend(_check_analyses(cfg))

    if errors:
        raise ConfigError("Configuration validation failed:\n  " + "\n  ".join(errors))

    logger.info("Configuration validation passed")


def _get_default_schema() -> Dict[str, type]:
    """Dotted paths every analysis config must define."""
    return {
        "paths.data_dir": str,
        "paths.output_dir": str,
        "datasets": dict,
        "analyses": list,
        "diagnostics.n_sim": int,
        "predictions.n_points": int,
        "seed": int,
    }


def _check_analyses(cfg: DictConfig) -> List[str]:
    """Cross-check analyses against declared datasets."""
    errors = []
    datasets = cfg.datasets
    for i, analysis in enumerate(cfg.analyses):
        name = analysis.get("name", f"analyses[{i}]")
        dataset = analysis.get("dataset")
        if dataset not in datasets:
            errors.append(f"{name}: unknown dataset '{dataset}'")
        models = analysis.get("models") or []
        if len(models) == 0:
            errors.append(f"{name}: no models declared")
        for j, model in enumerate(models):
            for key in ("name", "formula", "family"):
                if model.get(key) is None:
                    errors.append(f"{name}.models[{j}]: missing '{key}'")
    return errors


def get_dataset_config(cfg: DictConfig, key: str) -> DictConfig:
    """Return the dataset entry declared under ``datasets.<key>``.

    Raises:
        ConfigError: If the dataset is not declared.
    """
    if key not in cfg.datasets:
        raise ConfigError(
            f"Dataset '{key}' not declared. Available: {list(cfg.datasets.keys())}"
        )
    return cfg.datasets[key]


def to_dict(cfg: DictConfig, resolve: bool = True) -> Dict[str, Any]:
    """Plain ``dict`` copy of the config."""
    return OmegaConf.to_container(cfg, resolve=resolve)


def save_config(
    cfg: DictConfig,
    save_path: Union[str, Path],
    resolve: bool = True,
) -> None:
    """Write the effective config (overrides applied) next to the run outputs."""
    target = Path(save_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(OmegaConf.to_yaml(cfg, resolve=resolve))
    logger.info(f"Saved config to {target}")


def get_value(cfg: DictConfig, path: str, default: Any = None) -> Any:
    """Value at a dotted path, or ``default`` when it is absent or null.

    Example:
        >>> n_sim = get_value(cfg, "diagnostics.n_sim", default=250)
    """
    value = OmegaConf.select(cfg, path, default=None)
    return default if value is None else value
