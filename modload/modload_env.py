"""
Builds the frozen EnvironmentSpec a module body is evaluated against.

An EnvironmentSpec is a snapshot: the `options` passed to `load` are copied
on the way in, so the caller may mutate or reuse them afterwards without
changing what an already-loaded handle will see. Callables are kept by
reference, so an override function can still close over caller-side state.
Values that cannot be deep-copied, such as modules, are kept by reference as
well.
"""

import copy
import collections.abc
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from modload.modload_datatypes import OptionValidationError, OverrideEntry, Present, Removed, REMOVED

RECOGNIZED_KEYS = ("default_env", "overrides")
# Owned by the evaluator; an override would be silently replaced.
RESERVED_NAMES = ("__builtins__",)


@dataclass(frozen=True)
class EnvironmentSpec:
    """Which bindings a module body executes against. Never mutated after build."""
    default_env: bool = True
    overrides: Mapping[str, OverrideEntry] = field(default_factory=lambda: MappingProxyType({}))

    def is_removed(self, name: str) -> bool:
        return isinstance(self.overrides.get(name), Removed)

    def bound(self) -> dict:
        """Names explicitly bound by a `Present` override, in declaration order."""
        return {k: e.value for k, e in self.overrides.items() if isinstance(e, Present)}

    def removed(self) -> list:
        return [k for k, e in self.overrides.items() if isinstance(e, Removed)]


DEFAULT_ENV_SPEC = EnvironmentSpec()


def _snapshot(value: Any, memo: dict) -> Any:
    # Callables are captured by reference, also when nested in containers.
    if callable(value):
        return value
    vid = id(value)
    if vid in memo:
        return memo[vid]
    # Exact builtin containers are rebuilt here; subclasses keep their type via deepcopy.
    kind = type(value)
    if kind is dict:
        out = {}
        memo[vid] = out
        for k, v in value.items():
            out[_snapshot(k, memo)] = _snapshot(v, memo)
        return out
    if kind is list:
        out = []
        memo[vid] = out
        out.extend(_snapshot(v, memo) for v in value)
        return out
    if kind in (tuple, set, frozenset):
        out = kind(_snapshot(v, memo) for v in value)
        memo[vid] = out
        return out
    try:
        return copy.deepcopy(value, memo)
    except (TypeError, copy.Error):
        # Uncopyable values (modules, locks) are kept by reference.
        return value


def build_env_spec(options: Optional[Mapping[str, Any]] = None) -> EnvironmentSpec:
    """
    Validate `options` and freeze them into an EnvironmentSpec.

    Recognized keys:
      - default_env: bool (default True) - inherit the standard environment
      - overrides: mapping name -> Present(value) | Removed (default empty)

    Raises OptionValidationError for an unrecognized key or a malformed value.
    The `options` argument is never mutated.
    """
    if options is None:
        return DEFAULT_ENV_SPEC
    if not isinstance(options, collections.abc.Mapping):
        raise OptionValidationError(None, f"options must be a mapping, not {type(options).__name__}")

    for key in options:
        if key not in RECOGNIZED_KEYS:
            raise OptionValidationError(str(key), "unrecognized option")

    default_env = options.get("default_env", True)
    if not isinstance(default_env, bool):
        raise OptionValidationError("default_env", f"expected a bool, got {type(default_env).__name__}")

    raw_overrides = options.get("overrides")
    if raw_overrides is None:
        raw_overrides = {}
    if not isinstance(raw_overrides, collections.abc.Mapping):
        raise OptionValidationError("overrides", f"expected a mapping, got {type(raw_overrides).__name__}")

    memo: dict = {}
    frozen: dict[str, OverrideEntry] = {}
    for name, entry in raw_overrides.items():
        if not isinstance(name, str) or not name.isidentifier():
            raise OptionValidationError("overrides", f"invalid binding name {name!r}")
        if name in RESERVED_NAMES:
            raise OptionValidationError(f"overrides.{name}", "reserved name cannot be overridden")
        match entry:
            case Present():
                frozen[name] = Present(_snapshot(entry.value, memo))
            case Removed():
                frozen[name] = REMOVED
            case _:
                raise OptionValidationError(
                    f"overrides.{name}",
                    f"expected Present(value) or Removed, got {type(entry).__name__}",
                )

    if default_env and not frozen:
        return DEFAULT_ENV_SPEC
    return EnvironmentSpec(default_env=default_env, overrides=MappingProxyType(frozen))


def options_from_config(data: Any) -> dict:
    """
    Convert a decoded options document (YAML/JSON/TOML) into `load` options.

    Each override in the document is one of:
      name: {value: <anything>}   -> Present(<anything>)
      name: {removed: true}       -> Removed
      name: removed               -> Removed
    """
    if data is None:
        return {}
    if not isinstance(data, collections.abc.Mapping):
        raise OptionValidationError(None, f"options document must be a mapping, not {type(data).__name__}")

    out: dict[str, Any] = {}
    for key, val in data.items():
        if key != "overrides":
            out[key] = val
            continue
        if val is None:
            out["overrides"] = {}
            continue
        if not isinstance(val, collections.abc.Mapping):
            raise OptionValidationError("overrides", f"expected a mapping, got {type(val).__name__}")
        entries = {}
        for name, spec in val.items():
            match spec:
                case "removed":
                    entries[name] = REMOVED
                case {"removed": True} if len(spec) == 1:
                    entries[name] = REMOVED
                case {"value": v} if len(spec) == 1:
                    entries[name] = Present(v)
                case _:
                    raise OptionValidationError(
                        f"overrides.{name}",
                        "expected {value: ...}, {removed: true} or 'removed'",
                    )
        out["overrides"] = entries
    return out


__all__ = [
    "EnvironmentSpec",
    "DEFAULT_ENV_SPEC",
    "build_env_spec",
    "options_from_config",
]
