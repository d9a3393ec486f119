from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from .errors import ConfigError

DEFAULT_STORAGE_DIR = "~/.looped"
DEFAULT_MODEL = "gpt-4o-mini"

_ENV_KEYS = {
    "storage_dir": "LOOPED_STORAGE_DIR",
    "model": "LOOPED_MODEL",
    "judge_model": "LOOPED_JUDGE_MODEL",
    "reflection_model": "LOOPED_REFLECTION_MODEL",
    "batch_size": "LOOPED_BATCH_SIZE",
    "check_interval": "LOOPED_CHECK_INTERVAL",
    "max_metric_calls": "LOOPED_MAX_METRIC_CALLS",
    "max_turns": "LOOPED_MAX_TURNS",
    "log_level": "LOOPED_LOG_LEVEL",
    "log_format": "LOOPED_LOG_FORMAT",
}


@dataclass(slots=True)
class LoopedConfig:
    storage_dir: str = DEFAULT_STORAGE_DIR
    model: str = DEFAULT_MODEL
    judge_model: str = DEFAULT_MODEL
    reflection_model: str = DEFAULT_MODEL
    batch_size: int = 5
    check_interval: float = 60.0
    max_metric_calls: int = 32
    max_turns: int = 10
    log_level: str = "INFO"
    log_format: str = "console"

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_dir).expanduser()

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None, **overrides: Any) -> "LoopedConfig":
        """
        Build a config from LOOPED_* environment variables.
        Keyword overrides that are not None take precedence.
        """

        source = os.environ if env is None else env
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = source.get(_ENV_KEYS[f.name])
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, f.type, raw)

        for key, value in overrides.items():
            if key not in _ENV_KEYS:
                raise ConfigError(f"unknown config option: {key}")
            if value is not None:
                values[key] = value

        config = cls(**values)
        if config.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        if config.check_interval <= 0:
            raise ConfigError("check_interval must be positive")
        if config.max_turns < 1:
            raise ConfigError("max_turns must be at least 1")
        return config


def _coerce(name: str, type_name: Any, raw: str) -> Any:
    kind = type_name if isinstance(type_name, str) else getattr(type_name, "__name__", "str")
    try:
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{_ENV_KEYS[name]} must be a number, got {raw!r}") from exc
    return raw
