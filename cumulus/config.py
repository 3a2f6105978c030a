"""TOML-based endpoint configuration.

Loads ~/.cumulus/defaults.toml (global) and cumulus.toml (project),
merges them, and resolves named endpoints into provider configs.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cumulus.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from cumulus.providers.cloudstack.config import CloudStack

    type ProviderConfig = CloudStack

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".cumulus" / "defaults.toml"
PROJECT_CONFIG_NAME = "cumulus.toml"


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("endpoints", {})
    return merged


def _get_provider_map() -> dict[str, type]:
    from cumulus.providers.cloudstack.config import CloudStack

    return {"cloudstack": CloudStack}


def _build_provider(name: str, raw: RawConfig) -> ProviderConfig:
    raw = dict(raw)
    provider_type = raw.pop("type", None)
    if provider_type is None:
        raise ConfigurationError(f"Endpoint '{name}' missing 'type' field")

    provider_map = _get_provider_map()
    cls = provider_map.get(provider_type)
    if cls is None:
        raise ConfigurationError(
            f"Unknown provider type '{provider_type}'. "
            f"Valid: {', '.join(provider_map)}"
        )
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Endpoint '{name}': {e}") from e


def resolve_endpoint(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ProviderConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)

    endpoints = config["endpoints"]
    if name not in endpoints:
        raise KeyError(f"Endpoint '{name}' not found. Available: {', '.join(endpoints) or 'none'}")

    return _build_provider(name, endpoints[name])
