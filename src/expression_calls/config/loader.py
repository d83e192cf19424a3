"""Configuration loading with YAML parsing and validation."""

from pathlib import Path
from typing import Any

import pydantic_yaml

from .schema import EngineConfig


def load_config(config_path: Path | str) -> EngineConfig:
    """
    Load and validate engine configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated EngineConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If config is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        yaml_content = f.read()

    return pydantic_yaml.parse_yaml_raw_as(EngineConfig, yaml_content)


def load_config_with_overrides(
    config_path: Path | str,
    overrides: dict[str, Any],
) -> EngineConfig:
    """
    Load config from YAML and apply dictionary overrides.

    Args:
        config_path: Path to YAML configuration file
        overrides: Values to override, nested sections addressed with dotted
            keys like "ranking.distance_threshold"

    Returns:
        Validated EngineConfig with overrides applied

    Raises:
        FileNotFoundError: If config file doesn't exist
        KeyError: If a dotted key names an unknown section
        pydantic.ValidationError: If final config is invalid
    """
    config = load_config(config_path)
    config_dict = config.model_dump(mode="json")

    for key, value in overrides.items():
        parts = key.split(".")
        target = config_dict
        for part in parts[:-1]:
            target = target[part]
        target[parts[-1]] = value

    # Re-validate so overrides go through the same constraints
    return EngineConfig.model_validate(config_dict)
