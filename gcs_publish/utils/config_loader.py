"""
YAML settings file loader and validator.

A settings file holds the same keys as the command-line flags, which makes
it convenient to keep per-environment upload settings in the repository.

Example config file (deploy/upload.yaml):
    ```yaml
    source: dist
    target: my-site/releases
    ignore: "*.map"
    gzip: [html, css, js, svg]
    acl:
      - allUsers:READER
    cache_control: "public, max-age=300"
    metadata:
      pipeline: web
    content_types:
      wasm: application/wasm
    concurrency: 50
    max_retries: 5
    ```

Usage:
    >>> from gcs_publish.utils.config_loader import load_config, validate_config
    >>> config = load_config("deploy/upload.yaml")
    >>> errors = validate_config(config)
    >>> if not errors:
    ...     print(f"Uploading {config['source']} to {config['target']}")
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from gcs_publish.utils.config import SETTING_NAMES
from gcs_publish.utils.logging import get_logger

logger = get_logger(__name__)

_STRING_FIELDS = ("source", "target", "ignore", "cache_control", "auth_key")
_LIST_FIELDS = ("acl", "gzip")


@dataclass
class ConfigError:
    """Validation error in configuration file."""

    field: str
    message: str
    value: Optional[Any] = None

    def __str__(self) -> str:
        """Format error message."""
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value})"
        return f"{self.field}: {self.message}"


def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load settings from a YAML file.

    Args:
        config_path: Path to YAML settings file

    Returns:
        Dictionary of settings

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the path is not a file, the file is empty, or the
            document is not a mapping
        yaml.YAMLError: If the YAML is malformed
    """
    path = Path(config_path)
    logger.info(f"Loading settings from: {path}")

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    if not path.is_file():
        raise ValueError(f"Configuration path is not a file: {path}")

    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML: {e}")
        raise

    if config is None:
        raise ValueError("Configuration file is empty")

    if not isinstance(config, dict):
        raise ValueError(
            f"Configuration file must contain a mapping, got {type(config).__name__}"
        )

    return dict(config)


def validate_config(config: Dict[str, Any]) -> List[ConfigError]:
    """
    Validate settings loaded from a YAML file.

    Required keys are not enforced here: they may still come from the
    environment or the command line.

    Args:
        config: Settings dictionary

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[ConfigError] = []

    for key in config:
        if key not in SETTING_NAMES:
            errors.append(ConfigError(str(key), "Unknown setting"))

    for name in _STRING_FIELDS:
        if name in config and not isinstance(config[name], str):
            errors.append(ConfigError(name, "Must be a string", type(config[name]).__name__))

    for name in _LIST_FIELDS:
        if name not in config:
            continue
        value = config[name]
        if not isinstance(value, list):
            errors.append(ConfigError(name, "Must be a list", type(value).__name__))
            continue
        for i, item in enumerate(value):
            if not isinstance(item, str):
                errors.append(
                    ConfigError(f"{name}[{i}]", "Must be a string", type(item).__name__)
                )

    for i, rule in enumerate(config.get("acl") or []):
        if isinstance(rule, str) and rule.count(":") != 1:
            errors.append(ConfigError(f"acl[{i}]", "Must have the form entity:role", rule))

    if "metadata" in config and not isinstance(config["metadata"], (dict, str)):
        errors.append(
            ConfigError("metadata", "Must be a mapping", type(config["metadata"]).__name__)
        )

    content_types = config.get("content_types")
    if isinstance(content_types, dict):
        for extension, content_type in content_types.items():
            if not isinstance(content_type, str):
                errors.append(
                    ConfigError(
                        f"content_types.{extension}",
                        "Must be a string",
                        type(content_type).__name__,
                    )
                )
    elif content_types is not None and not isinstance(content_types, str):
        errors.append(
            ConfigError("content_types", "Must be a mapping", type(content_types).__name__)
        )

    errors.extend(_validate_int(config, "concurrency", minimum=1))
    errors.extend(_validate_int(config, "max_retries", minimum=0))

    if errors:
        logger.warning(f"Configuration validation failed with {len(errors)} errors")
    else:
        logger.debug("Configuration validation passed")

    return errors


def _validate_int(config: Dict[str, Any], name: str, minimum: int) -> List[ConfigError]:
    if name not in config:
        return []
    value = config[name]
    # bool is an int subclass; "true" is not a worker count
    if not isinstance(value, int) or isinstance(value, bool):
        return [ConfigError(name, "Must be an integer", type(value).__name__)]
    if value < minimum:
        return [ConfigError(name, f"Must be >= {minimum}", value)]
    return []


def get_config_example() -> str:
    """Example settings file."""
    return """source: dist
target: my-site/releases
ignore: "*.map"
gzip: [html, css, js, svg]
acl:
  - allUsers:READER
cache_control: "public, max-age=300"
metadata:
  pipeline: web
content_types:
  wasm: application/wasm
concurrency: 50
max_retries: 5
"""
