from __future__ import annotations

import json
import os
import re
import tomllib
from typing import Any, Optional

import yaml


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        enc = encoding or 'utf-8'
        try:
            return data.decode(enc, errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None, path: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml', 'toml'.
    Uses the file extension, then Content-Type, then simple data sniffing.
    """
    if path:
        ext = os.path.splitext(path)[1].lower()
        if ext == ".json":
            return 'json'
        if ext in (".yaml", ".yml"):
            return 'yaml'
        if ext == ".toml":
            return 'toml'
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct:
        return 'yaml'
    if 'toml' in ct:
        return 'toml'
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        # YAML is a superset of JSON and the most forgiving fallback
        return 'yaml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None,
                path: Optional[str] = None) -> Any:
    """
    Decode a JSON/YAML/TOML document into native Python structures.

    Unlike wire payloads, options documents must parse: a malformed document
    raises ValueError naming the format.
    """
    enc = encoding_from_content_type(content_type)
    text = _norm_text(data, encoding=enc)
    f = fmt or detect_format(content_type, text, path)
    try:
        if f == 'json':
            return json.loads(text)
        if f == 'yaml':
            return yaml.safe_load(text)
        if f == 'toml':
            return tomllib.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise ValueError(f"invalid {f} document: {e}") from e
    raise ValueError(f"Unsupported format: {f!r}")


def load_options_file(path: str) -> dict:
    """Read an options document from disk and convert it into `load` options."""
    from modload.modload_env import options_from_config
    with open(path, "rb") as f:
        raw = f.read()
    return options_from_config(deserialize(raw, path=path))


__all__ = [
    "deserialize",
    "detect_format",
    "encoding_from_content_type",
    "load_options_file",
]
