from __future__ import annotations

import os
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..core.errors import ConfigError
from .models import RuntimeConfig

ENV_PREFIX = "ACTIONKIT_"
S3_LIMIT_ENV = "ILLA_S3_LIMIT"


def _parse_scalar(value: str) -> Any:
    v = value.strip()
    if v.lower() in {"true", "false"}:
        return v.lower() == "true"
    try:
        if "." in v:
            return float(v)
        return int(v)
    except ValueError:
        return value


def _set_by_path(data: dict, path: list[str], value: Any) -> None:
    cur = data
    for key in path[:-1]:
        if not isinstance(cur.get(key), dict):
            cur[key] = {}
        cur = cur[key]
    cur[path[-1]] = value


def _apply_env_overrides(cfg: dict, env: Mapping[str, str]) -> None:
    """Apply ACTIONKIT_SECTION__KEY=value overrides onto the raw config mapping."""
    for k, v in env.items():
        if not k.startswith(ENV_PREFIX):
            continue
        keypath = [p for p in k[len(ENV_PREFIX) :].lower().split("__") if p]
        if not keypath:
            continue
        _set_by_path(cfg, keypath, _parse_scalar(v))
    limit = env.get(S3_LIMIT_ENV)
    if limit:
        parsed = _parse_scalar(limit)
        if not isinstance(parsed, (int, float)) or isinstance(parsed, bool):
            raise ConfigError(f"{S3_LIMIT_ENV} must be a number of MiB, got {limit!r}")
        _set_by_path(cfg, ["s3", "object_size_limit_mib"], parsed)


def _deep_merge(dst: dict, src: dict) -> dict:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v
    return dst


def load_config(
    path: Optional[str] = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: dict[str, Any] | None = None,
) -> RuntimeConfig:
    """Load runtime config from optional YAML, env overrides, then dict overrides."""
    data: dict[str, Any] = {}
    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {path!r}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path!r}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path!r} must contain a mapping")

    if env is None:
        env = os.environ
    _apply_env_overrides(data, env)

    if overrides:
        _deep_merge(data, overrides)

    try:
        return RuntimeConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid runtime config: {exc}") from exc


_default_config: Optional[RuntimeConfig] = None


def get_config() -> RuntimeConfig:
    """Return the process default config, loading it from the environment on first use."""
    global _default_config
    if _default_config is None:
        _default_config = load_config()
    return _default_config


def set_config(config: Optional[RuntimeConfig]) -> None:
    global _default_config
    _default_config = config


__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "ENV_PREFIX",
    "S3_LIMIT_ENV",
]
