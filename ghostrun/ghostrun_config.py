from __future__ import annotations

import os
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ghostrun.ghostrun_datatypes import ConfigError

ENV_PREFIX = "GHOSTRUN_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}
_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class WorkerConfig:
    """Protocol constants and worker behaviour switches."""
    ready_marker: str = "[WAITING]"
    sentinel: str = "END"
    tagged: bool = True
    response_prefix: str = "RES"
    new_prefix: str = "NEW"
    exactly_once: bool = False
    preload: List[str] = field(default_factory=list)
    log_level: str = "WARNING"

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def _field_types() -> Dict[str, Any]:
    defaults = WorkerConfig()
    return {f.name: type(getattr(defaults, f.name)) for f in dataclasses.fields(WorkerConfig)}


def _coerce(name: str, value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigError(f"{name}: expected a boolean, got {value!r}")
    if kind is list:
        if isinstance(value, str):
            return [p for p in value.split(os.pathsep) if p]
        if isinstance(value, (list, tuple)):
            return [str(p) for p in value]
        raise ConfigError(f"{name}: expected a list, got {value!r}")
    if not isinstance(value, (str, int, float)):
        raise ConfigError(f"{name}: expected a string, got {value!r}")
    text = str(value)
    if name == "log_level":
        text = text.upper()
        if text not in _LEVELS:
            raise ConfigError(f"log_level: unknown level {value!r}")
    if name in ("sentinel", "ready_marker") and not text:
        raise ConfigError(f"{name}: must not be empty")
    return text


def _apply(values: Dict[str, Any], updates: Mapping[str, Any], types: Dict[str, Any]):
    for key, raw in updates.items():
        if key not in types:
            raise ConfigError(f"Unknown config key: {key!r}")
        if raw is None:
            continue
        values[key] = _coerce(key, raw, types[key])


def read_config_file(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {p}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {p} must contain a mapping")
    return data


def env_overrides(env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = os.environ if env is None else env
    types = _field_types()
    out = {}
    for name in types:
        key = ENV_PREFIX + name.upper()
        if key in env:
            out[name] = env[key]
    return out


def load_config(path: str | Path | None = None, *, env: Optional[Mapping[str, str]] = None,
                **overrides: Any) -> WorkerConfig:
    """Build a WorkerConfig from defaults < YAML file < environment < overrides.

    Overrides set to None are ignored, so argparse results can be passed through.
    """
    types = _field_types()
    values = WorkerConfig().to_dict()
    if path is not None:
        _apply(values, read_config_file(path), types)
    _apply(values, env_overrides(env), types)
    _apply(values, overrides, types)
    return WorkerConfig(**values)
