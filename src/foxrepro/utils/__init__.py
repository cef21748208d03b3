"""
Utility functions for the analysis pipeline.

Common utilities for config, logging and reproducibility.
"""

from foxrepro.utils.config import (
    ConfigError,
    get_dataset_config,
    get_value,
    load_config,
    save_config,
    to_dict,
    validate_config,
)
from foxrepro.utils.logging import setup_logging
from foxrepro.utils.seed import make_rng, set_seed

__all__ = [
    # Config
    "ConfigError",
    "get_dataset_config",
    "get_value",
    "load_config",
    "save_config",
    "to_dict",
    "validate_config",
    # Logging
    "setup_logging",
    # Reproducibility
    "make_rng",
    "set_seed",
]
