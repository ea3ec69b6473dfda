import shutil
from functools import lru_cache
from pathlib import Path

import yaml

from .errors import ConfigError
from .lib import paths


def get_default_config_path() -> Path:
    return paths.package_root() / "config.yaml"


def _validate_config(cfg: dict) -> None:
    """Validate config structure. Fail fast on invalid types."""
    if not isinstance(cfg, dict):
        raise ConfigError(f"Config must be a dict, got {type(cfg).__name__}")

    for section in ("timeline", "viewport", "cache"):
        if section in cfg and not isinstance(cfg[section], dict):
            raise ConfigError(f"Config '{section}' must be a dict")

    timeline = cfg.get("timeline", {})
    for key in ("max_messages_per_conversation", "max_messages_per_room"):
        if key in timeline and (not isinstance(timeline[key], int) or timeline[key] < 1):
            raise ConfigError(f"Config 'timeline.{key}' must be a positive integer")

    viewport = cfg.get("viewport", {})
    if "throttle_ms" in viewport and (
        not isinstance(viewport["throttle_ms"], int) or viewport["throttle_ms"] < 0
    ):
        raise ConfigError("Config 'viewport.throttle_ms' must be a non-negative integer")
    threshold = viewport.get("visibility_threshold", 0.5)
    if not isinstance(threshold, (int, float)) or not 0 < threshold <= 1:
        raise ConfigError("Config 'viewport.visibility_threshold' must be in (0, 1]")


def _merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def clear_cache():
    load_config.cache_clear()


@lru_cache(maxsize=1)
def load_config() -> dict:
    """Load defaults overlaid with the user's config.yaml, if any."""
    cfg = _read_yaml(get_default_config_path())
    path = paths.config_file()
    if path.exists():
        user_cfg = _read_yaml(path)
        _validate_config(user_cfg)
        cfg = _merge(cfg, user_cfg)
    _validate_config(cfg)
    return cfg


def init_config() -> Path:
    """Initialize config.yaml in the readstate home from defaults if missing."""
    target = paths.config_file()
    if target.exists():
        return target

    target.parent.mkdir(parents=True, exist_ok=True)

    default_config_path = get_default_config_path()
    if not default_config_path.exists():
        raise FileNotFoundError(f"Default config not found at {default_config_path}")

    shutil.copy(default_config_path, target)
    return target


def max_messages(kind: str) -> int:
    return load_config()["timeline"][f"max_messages_per_{kind}"]


def throttle_ms() -> int:
    return load_config()["viewport"]["throttle_ms"]


def visibility_threshold() -> float:
    return float(load_config()["viewport"]["visibility_threshold"])


def cache_db_path() -> Path:
    return paths.cache_db(load_config()["cache"]["db_file"])
