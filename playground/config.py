"""Sandbox configuration with YAML support."""

from __future__ import annotations

from pathlib import Path

import yaml

from analyzer.schemas import SandboxConfiguration


def load_config(yaml_path: str | Path) -> SandboxConfiguration:
    """Load a sandbox configuration from a YAML file.

    Keys may be written in snake_case (``loop_timeout_ms``) or camelCase
    (``loopTimeoutMs``). Missing keys take their defaults.

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If YAML is invalid or has unknown/invalid fields
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {yaml_path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {yaml_path}, got {type(data).__name__}")

    try:
        return SandboxConfiguration.from_dict(data)
    except Exception as e:
        raise ValueError(f"Invalid configuration in {yaml_path}: {e}") from e


def config_to_dict(config: SandboxConfiguration) -> dict[str, object]:
    data = config.model_dump(mode="json")
    for key in ("forbidden_names", "forbidden_attributes"):
        data[key] = sorted(data[key])
    return data


def save_config(config: SandboxConfiguration, yaml_path: str | Path) -> None:
    """Save a sandbox configuration to YAML for reproducibility."""
    yaml_path = Path(yaml_path)
    yaml_path.parent.mkdir(parents=True, exist_ok=True)

    with open(yaml_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_to_dict(config), f, default_flow_style=False, sort_keys=False, indent=2)
