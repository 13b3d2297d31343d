from __future__ import annotations

import json
import math
import dataclasses
from typing import Any, Optional
import collections.abc

import yaml


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode(encoding or 'utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def error_to_builtin(err: BaseException) -> dict:
    """Exceptions travel as {"name": ..., "message": ...}."""
    return {"name": type(err).__name__, "message": str(err)}


def _to_builtin(obj: Any) -> Any:
    # Normalize arbitrary result values into JSON/YAML friendly structures
    if isinstance(obj, float) and not math.isfinite(obj):
        # JSON has no NaN or Infinity
        return None
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, BaseException):
        return error_to_builtin(obj)
    if isinstance(obj, (bytes, bytearray)):
        return _norm_text(obj)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _to_builtin(dataclasses.asdict(obj))
    if isinstance(obj, collections.abc.Mapping):
        return {str(k) if not isinstance(k, (str, int, float, bool)) else k: _to_builtin(v)
                for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, (set, frozenset)):
        items = [_to_builtin(x) for x in obj]
        try:
            return sorted(items)
        except TypeError:
            return items
    return repr(obj)


def detect_format(data_hint: Optional[str] = None) -> Optional[str]:
    """Returns 'json' when the text looks like JSON, else None."""
    if data_hint is None:
        return None
    s = data_hint.lstrip()
    if not s:
        return None
    if s[0] in '{["-' or s[0].isdigit() or s.startswith(('true', 'false', 'null')):
        return 'json'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str, *, fmt: Optional[str] = None) -> Any:
    """
    Convert wire data (bytes/string) to native Python structures.
    Supported fmt: 'json', 'yaml'. If fmt is None, sniffs for JSON.
    Returns raw text when nothing parses.
    """
    text = _norm_text(data)
    f = fmt or detect_format(text)
    if f == 'json':
        try:
            return json.loads(text)
        except ValueError:
            # Fallback to YAML if declared JSON but content is actually YAML-like
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError:
                return text
    if f == 'yaml':
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError:
            return text
    return text


def serialize(value: Any, *, fmt: str = 'json', pretty: bool = False) -> str:
    """
    Convert a native Python value into a textual representation.
    - fmt: 'json' | 'yaml'
    - JSON is compact unless `pretty`; the compact form is the wire format.
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        if pretty:
            return json.dumps(built, ensure_ascii=False, allow_nan=False, indent=2)
        return json.dumps(built, ensure_ascii=False, allow_nan=False, separators=(',', ':'))
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
    "error_to_builtin",
]
