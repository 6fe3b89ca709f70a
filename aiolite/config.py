import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import yaml

ENV_VAR = "AIOLITE_CONFIG"
DEFAULT_FILE = "aiolite.yaml"


@dataclass(frozen=True)
class Settings:
    timeout: float = 5.0
    verbose: bool = False
    pragmas: dict = field(default_factory=dict)


def config_file() -> Path:
    """Return config file path: $AIOLITE_CONFIG, else ./aiolite.yaml"""
    override = os.environ.get(ENV_VAR)
    if override:
        return Path(override)
    return Path.cwd() / DEFAULT_FILE


def _validate_config(cfg: dict) -> None:
    """Validate config structure. Fail fast on invalid types."""
    if not isinstance(cfg, dict):
        raise ValueError(f"Config must be a dict, got {type(cfg).__name__}")

    timeout = cfg.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        raise ValueError("Config 'timeout' must be a number")
    if timeout is not None and timeout < 0:
        raise ValueError("Config 'timeout' must not be negative")

    if "verbose" in cfg and not isinstance(cfg["verbose"], bool):
        raise ValueError("Config 'verbose' must be a bool")

    pragmas = cfg.get("pragmas")
    if pragmas is not None:
        if not isinstance(pragmas, dict):
            raise ValueError("Config 'pragmas' must be a dict")
        for name in pragmas:
            if not isinstance(name, str) or not name.replace("_", "").isalnum():
                raise ValueError(f"Config pragma name {name!r} is not an identifier")


def clear_cache():
    load_config.cache_clear()


@lru_cache(maxsize=1)
def load_config() -> dict:
    """Load the config file, returning its content or an empty dict if not found."""
    path = config_file()
    if not path.exists():
        return {}
    with open(path) as f:
        cfg = yaml.safe_load(f) or {}
    _validate_config(cfg)
    return cfg


def settings() -> Settings:
    cfg = load_config()
    return Settings(
        timeout=float(cfg.get("timeout", Settings.timeout)),
        verbose=cfg.get("verbose", False),
        pragmas=dict(cfg.get("pragmas") or {}),
    )
