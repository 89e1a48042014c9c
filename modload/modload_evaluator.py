"""
Compiles module source and evaluates it under an EnvironmentSpec.

Module bodies are Python source run as a module-level script. Top-level
`await` is allowed, so a body may suspend cooperatively (for example on a
nested `await require(...)`). The value of a module is the value of its final
top-level expression statement; a body that does not end in an expression
produces a read-only namespace of the public names it bound.
"""

import ast
import builtins
import collections.abc
import inspect
import linecache
import types
from typing import Any, Callable, Optional

from modload.modload_datatypes import EvaluationError, InvalidHandleUsageError, Present, Removed, SourceDescriptor
from modload.modload_env import EnvironmentSpec
from modload.modload_handle import ModuleHandle

_RESULT_NAME = "__modload_result__"


class ModuleNamespace(collections.abc.Mapping):
    """Read-only view of the names a module body bound."""
    __slots__ = ("_name", "_bindings")

    def __init__(self, name: str, bindings: dict):
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_bindings", dict(bindings))

    def __getitem__(self, key):
        return self._bindings[key]

    def __iter__(self):
        return iter(self._bindings)

    def __len__(self):
        return len(self._bindings)

    def __getattr__(self, name: str):
        d = self._bindings
        if name in d:
            return d[name]
        raise AttributeError(name)

    def __setattr__(self, name, value):
        raise AttributeError("module namespaces are read-only")

    def __repr__(self):
        return f"<module namespace {self._name}: {', '.join(self._bindings)}>"


# ===================================================================
# Compiler
# ===================================================================

class ModuleBody:
    """An executable module body produced by a compiler."""

    def __init__(self, code: types.CodeType, name: str, has_result: bool):
        self.code = code
        self.name = name
        self.has_result = has_result

    @property
    def is_async(self) -> bool:
        return bool(self.code.co_flags & inspect.CO_COROUTINE)

    async def run(self, env: dict) -> Any:
        result = eval(self.code, env)
        if self.is_async:
            await result
        return env.pop(_RESULT_NAME, None)


class PythonCompiler:
    """Compiles module source text into a ModuleBody."""

    def compile(self, descriptor: SourceDescriptor) -> ModuleBody:
        source = descriptor.source
        filename = descriptor.origin
        tree = ast.parse(source, filename=filename, mode="exec")
        body = tree.body
        has_result = bool(body) and isinstance(body[-1], ast.Expr)
        # The final expression statement becomes the module's value.
        if has_result:
            last = body[-1]
            assign = ast.Assign(targets=[ast.Name(id=_RESULT_NAME, ctx=ast.Store())], value=last.value)
            body[-1] = ast.copy_location(assign, last)
        ast.fix_missing_locations(tree)
        code = compile(tree, filename, "exec", flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT, dont_inherit=True)
        # Make the source visible to traceback formatting.
        lines = source.splitlines(keepends=True)
        linecache.cache[filename] = (len(source), None, lines, filename)
        return ModuleBody(code, str(descriptor.identifier), has_result)


# ===================================================================
# Engine builtins shared by every standard environment
# ===================================================================

def typeof(value: Any) -> str:
    """Type tag for script values. Handles report `module`, never `function`."""
    if isinstance(value, ModuleHandle):
        return "module"
    if value is None:
        return "none"
    # bool is a subclass of int, so check it before int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "list"
    if isinstance(value, collections.abc.Mapping):
        return "dict"
    if callable(value):
        return "function"
    return "object"


def getenv(target: Any) -> collections.abc.Mapping:
    """Read-only view of the environment a function was defined in."""
    if isinstance(target, ModuleHandle):
        raise InvalidHandleUsageError("module handles have no environment; require the handle instead")
    fn = getattr(target, "__func__", target)
    env = getattr(fn, "__globals__", None)
    if env is None:
        raise TypeError(f"getenv expects a function, not {type(target).__name__}")
    return types.MappingProxyType(env)


def standard_builtins() -> dict:
    return dict(builtins.__dict__)


# ===================================================================
# Evaluator
# ===================================================================

EngineGlobals = Callable[[SourceDescriptor], dict]


class Evaluator:
    """
    Runs a module body once under the environment described by an EnvironmentSpec.

    `engine_globals` builds the per-module engine bindings (`require`, `load`,
    ...) that are part of the standard environment.
    """

    def __init__(self, compiler: Optional[PythonCompiler] = None, engine_globals: Optional[EngineGlobals] = None):
        self.compiler = compiler or PythonCompiler()
        self.engine_globals = engine_globals

    def build_environment(self, descriptor: SourceDescriptor, env_spec: EnvironmentSpec) -> dict:
        if env_spec.default_env:
            base = standard_builtins()
            base["typeof"] = typeof
            base["getenv"] = getenv
            if self.engine_globals is not None:
                base.update(self.engine_globals(descriptor))
        else:
            base = {}

        env: dict[str, Any] = {
            "__name__": str(descriptor.identifier),
            "__file__": descriptor.origin,
        }
        for name, entry in env_spec.overrides.items():
            match entry:
                case Present(value=v):
                    env[name] = v
                case Removed():
                    base.pop(name, None)
                    env.pop(name, None)
        env["__builtins__"] = base
        return env

    async def evaluate(self, descriptor: SourceDescriptor, env_spec: EnvironmentSpec) -> Any:
        """
        Compile and run the module body; returns its value.

        Any exception raised by the body (or by compilation) is wrapped in an
        EvaluationError whose `fault` is the original exception, `SystemExit`
        included. Cancellation and interrupts are left to the caller.
        """
        ident = descriptor.identifier
        try:
            body = self.compiler.compile(descriptor)
            env = self.build_environment(descriptor, env_spec)
            before = dict(env)
            value = await body.run(env)
        except (Exception, SystemExit) as e:
            raise EvaluationError(ident, e) from e

        if not body.has_result:
            exports = {
                name: val for name, val in env.items()
                if not name.startswith("_") and ((name not in before) or (before.get(name) is not val))
            }
            return ModuleNamespace(str(ident), exports)
        return value


__all__ = [
    "ModuleBody",
    "ModuleNamespace",
    "PythonCompiler",
    "Evaluator",
    "typeof",
    "getenv",
    "standard_builtins",
]
