"""
Defines the core data types for the modload runtime.

This module provides the identifier and source descriptor records exchanged
with resolvers and compilers, the tagged override entries used to describe
a module environment, and the exception taxonomy raised by `load`/`require`.
"""

from dataclasses import dataclass
from typing import Any, Optional


# =================================================================
# Errors
# =================================================================

class ModuleError(Exception):
    """Base class for every error raised by the module subsystem."""
    pass


class ResolutionError(ModuleError):
    """An identifier could not be resolved to module source."""
    def __init__(self, identifier: Any, reason: Optional[str] = None):
        msg = f"cannot resolve module {identifier!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.identifier = identifier
        self.reason = reason


class OptionValidationError(ModuleError):
    """Load options were malformed or contained an unrecognized key."""
    def __init__(self, key: Optional[str], message: str):
        super().__init__(f"{key}: {message}" if key else message)
        self.key = key


class CyclicLoadError(ModuleError):
    """A handle was required while its own evaluation was still in progress."""
    def __init__(self, identifier: Any, chain: Optional[list] = None):
        self.identifier = identifier
        self.chain = list(chain or [])
        if self.chain:
            path = " -> ".join(str(i) for i in self.chain + [identifier])
            super().__init__(f"cyclic load of {identifier}: {path}")
        else:
            super().__init__(f"cyclic load of {identifier}")


class EvaluationError(ModuleError):
    """
    A module body failed while running.

    `fault` holds the original exception unmodified (None when the evaluation
    was aborted by the host rather than failing on its own).
    """
    def __init__(self, identifier: Any, fault: Optional[BaseException] = None, message: Optional[str] = None):
        if message is None:
            if fault is not None:
                message = f"{type(fault).__name__}: {fault}"
            else:
                message = "evaluation failed"
        super().__init__(f"error evaluating {identifier}: {message}")
        self.identifier = identifier
        self.fault = fault
        self.detail = message

    @property
    def aborted(self) -> bool:
        return self.fault is None


class InvalidHandleUsageError(ModuleError):
    """A module handle was passed to an API it is incompatible with."""
    pass


# =================================================================
# Identifiers and resolved source
# =================================================================

@dataclass(frozen=True)
class ModuleIdentifier:
    """Resolver-produced module identity: a scheme plus a scheme-specific key."""
    scheme: str
    key: str

    def __str__(self):
        if self.scheme in ("http", "https"):
            return self.key
        return f"{self.scheme}://{self.key}"


@dataclass
class SourceDescriptor:
    """The resolved source of one module, as handed to the compiler."""
    identifier: ModuleIdentifier
    source: str
    origin: str
    base_dir: Optional[str] = None


# =================================================================
# Environment override entries
# =================================================================

class OverrideEntry:
    """Abstract base for the two override tags, `Present` and `Removed`."""
    __slots__ = ()


class Present(OverrideEntry):
    """Bind a name to `value` inside the module body."""
    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __eq__(self, other):
        if isinstance(other, Present):
            return self.value == other.value
        return NotImplemented

    __hash__ = None

    def __repr__(self):
        return f"Present({self.value!r})"


class Removed(OverrideEntry):
    """Unbind a name that the default environment would otherwise provide."""
    __slots__ = ()
    _instance = None

    def __new__(cls):
        # A single instance; `Removed()` and `REMOVED` are interchangeable.
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "Removed"


REMOVED = Removed()


__all__ = [
    "ModuleError",
    "ResolutionError",
    "OptionValidationError",
    "CyclicLoadError",
    "EvaluationError",
    "InvalidHandleUsageError",
    "ModuleIdentifier",
    "SourceDescriptor",
    "OverrideEntry",
    "Present",
    "Removed",
    "REMOVED",
]
