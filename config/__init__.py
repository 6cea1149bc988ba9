"""
Configuration loading utilities.

    chains.yaml   per-chain RPC endpoints, segment mode, default heights
    capture.yaml  concurrency, retry backoff, output locations
"""

from pathlib import Path
from typing import Any, Dict

import yaml

from core.constants import ErrorCode
from core.exceptions import ConfigError


CONFIG_DIR = Path(__file__).parent


def load_yaml(filename: str, config_dir: Path = CONFIG_DIR, required: bool = False) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        filename: Name of file in config directory
        config_dir: Directory to look in
        required: Raise ConfigError if the file is missing

    Returns:
        Parsed YAML as dict ({} for a missing optional file)
    """
    filepath = Path(config_dir) / filename
    if not filepath.exists():
        if required:
            raise ConfigError(f"Config file not found: {filepath}")
        return {}

    try:
        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML in {filepath}: {e}",
            code=ErrorCode.CONFIG_INVALID_VALUE,
        ) from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"{filepath} must contain a mapping",
            code=ErrorCode.CONFIG_INVALID_VALUE,
        )
    return data


def load_chains(config_dir: Path = CONFIG_DIR) -> Dict[str, Any]:
    """Load chains configuration."""
    return load_yaml("chains.yaml", config_dir)


def load_capture(config_dir: Path = CONFIG_DIR) -> Dict[str, Any]:
    """Load capture configuration."""
    return load_yaml("capture.yaml", config_dir)


def get_chain_config(chain_key: str, config_dir: Path = CONFIG_DIR) -> Dict[str, Any]:
    """
    Get configuration for a specific chain ({} when not configured in YAML).

    Args:
        chain_key: Chain identifier (e.g., 'consensus')
    """
    chains = load_chains(config_dir)
    entry = chains.get(chain_key) or {}
    if not isinstance(entry, dict):
        raise ConfigError(
            f"chains.yaml entry for {chain_key} must be a mapping",
            code=ErrorCode.CONFIG_INVALID_VALUE,
        )
    return entry
