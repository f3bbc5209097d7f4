"""EthicsGate configuration module."""

from pathlib import Path

CONFIG_DIR = Path(__file__).parent
PATTERNS_FILE = CONFIG_DIR / "patterns.yaml"
DEFAULT_POLICY_FILE = CONFIG_DIR / "default_policy.yaml"
GATE_DEFAULTS_FILE = CONFIG_DIR / "gate.yaml"

__all__ = [
    "CONFIG_DIR", "PATTERNS_FILE", "DEFAULT_POLICY_FILE", "GATE_DEFAULTS_FILE",
    "ConfigError", "load_gate_config", "GateConfig", "PolicyDocument",
]


# Lazy imports so loading a path constant never pulls in pydantic
def __getattr__(name):
    if name in ("ConfigError", "load_gate_config"):
        from ethicsgate.config import manager
        return getattr(manager, name)
    if name in ("GateConfig", "PolicyDocument"):
        from ethicsgate.config import models
        return getattr(models, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
