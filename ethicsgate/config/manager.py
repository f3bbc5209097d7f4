"""
EthicsGate Configuration Manager

Loads the gate configuration from three layers, lowest precedence first:

1. Built-in defaults (ethicsgate/config/gate.yaml)
2. User configuration (~/.ethicsgate/config.yaml)
3. Project configuration (.ethicsgate.yaml in the project root)

Layers are deep-merged, environment overrides are applied last, and the
result is validated into a GateConfig.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from ethicsgate.config import GATE_DEFAULTS_FILE
from ethicsgate.config.models import GateConfig, format_validation_error

logger = logging.getLogger(__name__)

USER_CONFIG_FILE = Path.home() / ".ethicsgate" / "config.yaml"
PROJECT_CONFIG_NAME = ".ethicsgate.yaml"

# Environment variable -> (dotted key, type)
ENV_OVERRIDES = {
    "ETHICSGATE_POLICY_DIR": ("policy_dir", str),
    "ETHICSGATE_TEAMS_FILE": ("teams_file", str),
    "ETHICSGATE_BLOCK_ON_CRITICAL": ("block_on_critical", bool),
    "ETHICSGATE_REQUIRE_REVIEW_FOR_HIGH": ("require_review_for_high", bool),
    "ETHICSGATE_ALLOW_OVERRIDE": ("allow_override", bool),
    "ETHICSGATE_WORKERS": ("workers", int),
    "ETHICSGATE_ASSIST_ENABLED": ("assist.enabled", bool),
    "ETHICSGATE_ASSIST_PROVIDER": ("assist.provider", str),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised when a configuration layer cannot be read or validated."""

    def __init__(self, message: str, source: Optional[Path] = None):
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge overlay into a copy of base. Overlay wins on conflicts."""
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _read_layer(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read configuration: {e}", source=path) from e
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be a mapping", source=path)
    return data


def _coerce_env(name: str, raw: str, kind: type) -> Any:
    if kind is bool:
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigError(f"{name} must be a boolean, got {raw!r}")
    if kind is int:
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    return raw


def _set_dotted(data: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    target = data
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def apply_env_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply ETHICSGATE_* environment overrides on top of merged file layers."""
    environ = os.environ if environ is None else environ
    result = copy.deepcopy(data)
    for name, (dotted, kind) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        _set_dotted(result, dotted, _coerce_env(name, raw, kind))
        logger.debug(f"Config override from {name}: {dotted}")
    return result


def config_layers(
    project_dir: Optional[Union[str, Path]] = None,
    user_config: Optional[Path] = None,
) -> List[Path]:
    """Return the configuration files consulted, lowest precedence first."""
    layers = [GATE_DEFAULTS_FILE, user_config or USER_CONFIG_FILE]
    if project_dir is not None:
        layers.append(Path(project_dir) / PROJECT_CONFIG_NAME)
    return layers


def load_gate_config(
    project_dir: Optional[Union[str, Path]] = None,
    user_config: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> GateConfig:
    """
    Load and validate the layered gate configuration.

    Args:
        project_dir: Project root holding an optional .ethicsgate.yaml
        user_config: Override for the user-level config path
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated GateConfig

    Raises:
        ConfigError: If a layer is unreadable or the merged result is invalid
    """
    merged: Dict[str, Any] = {}
    for path in config_layers(project_dir, user_config):
        layer = _read_layer(path)
        if layer:
            logger.debug(f"Loaded config layer {path}")
        merged = deep_merge(merged, layer)

    merged = apply_env_overrides(merged, environ)

    try:
        return GateConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"invalid gate configuration: {format_validation_error(e)}") from e
