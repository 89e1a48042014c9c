"""
The handle registry: `load`, `require` and `release`.

`load` always allocates a fresh handle; `require` drives the handle's cache
slot through UNSET -> EVALUATING -> READY | FAILED. String requires issued
from inside a module body take a separate path through the GlobalRequireCache
and never see the enclosing handle's environment overrides.
"""

import os
import sys
import weakref
from typing import Any, Mapping, Optional

from modload.modload_datatypes import (
    CyclicLoadError, EvaluationError, InvalidHandleUsageError, ModuleIdentifier,
    ResolutionError, SourceDescriptor,
)
from modload.modload_env import DEFAULT_ENV_SPEC, build_env_spec
from modload.modload_evaluator import Evaluator, PythonCompiler, getenv, typeof
from modload.modload_handle import CacheFailures, FailurePolicy, ModuleHandle, SlotState
from modload.modload_resolver import Resolver, default_resolver


class GlobalRequireCache:
    """Identifier-keyed values for plain (non-handle) requires."""

    def __init__(self):
        self._values: dict[ModuleIdentifier, Any] = {}
        self._loading: list[ModuleIdentifier] = []

    def __contains__(self, key: ModuleIdentifier) -> bool:
        return key in self._values

    def __getitem__(self, key: ModuleIdentifier) -> Any:
        return self._values[key]

    def __len__(self):
        return len(self._values)

    def store(self, key: ModuleIdentifier, value: Any):
        self._values[key] = value

    def is_loading(self, key: ModuleIdentifier) -> bool:
        return key in self._loading

    def loading(self) -> list:
        return list(self._loading)

    def begin_loading(self, key: ModuleIdentifier):
        self._loading.append(key)

    def end_loading(self, key: ModuleIdentifier):
        self._loading.remove(key)


class ModuleRegistry:
    """Creates module handles and evaluates them on demand."""

    def __init__(self,
                 resolver: Optional[Resolver] = None,
                 compiler: Optional[PythonCompiler] = None,
                 failure_policy: Optional[FailurePolicy] = None):
        self.resolver = resolver or default_resolver()
        self.evaluator = Evaluator(compiler, engine_globals=self._engine_globals)
        self.failure_policy = failure_policy or CacheFailures()
        self.global_cache = GlobalRequireCache()
        # Handles are tracked weakly so the registry never keeps one alive.
        self._live: weakref.WeakSet = weakref.WeakSet()
        # (handle id, identifier) for evaluations in progress, outermost first.
        self._evaluating: list[tuple[int, ModuleIdentifier]] = []
        self.reclaimed: int = 0

    def _dbg(self, *parts):
        if os.environ.get("MODLOAD_DEBUG"):
            try:
                print("[DBG]", *parts, file=sys.stderr)
            except Exception:
                pass

    # ------------------------------------------------------------------
    # load
    # ------------------------------------------------------------------

    async def _resolve(self, identifier: Any, base_dir: Optional[str]) -> SourceDescriptor:
        try:
            descriptor = await self.resolver.resolve(identifier, base_dir=base_dir)
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(identifier, f"{type(e).__name__}: {e}") from e
        if descriptor is None:
            raise ResolutionError(identifier, "no resolver accepts this identifier")
        return descriptor

    async def load(self, identifier: Any, options: Optional[Mapping[str, Any]] = None, *, base_dir: Optional[str] = None) -> ModuleHandle:
        """
        Resolve `identifier` and return a new, unevaluated handle for it.

        Raises ResolutionError or OptionValidationError; on either failure no
        handle is allocated.
        """
        descriptor = await self._resolve(identifier, base_dir)
        env_spec = build_env_spec(options)
        handle = ModuleHandle(descriptor, env_spec, on_reclaim=self._on_reclaim)
        self._live.add(handle)
        self._dbg("LOAD", handle, "overrides=", list(env_spec.overrides))
        return handle

    # ------------------------------------------------------------------
    # require
    # ------------------------------------------------------------------

    def _check_handle(self, handle: Any) -> ModuleHandle:
        if not isinstance(handle, ModuleHandle):
            raise InvalidHandleUsageError(f"require expects a module handle, not {type(handle).__name__}")
        if handle.released:
            raise InvalidHandleUsageError(f"{handle!r} has been released")
        return handle

    async def require(self, handle: ModuleHandle) -> Any:
        """
        Evaluate the handle's module at most once and return its value.

        READY returns the memoized value, FAILED re-raises the stored error,
        EVALUATING (a reentrant require) raises CyclicLoadError without
        touching the slot.
        """
        handle = self._check_handle(handle)
        slot = handle._slot

        match slot.state:
            case SlotState.READY:
                self._dbg("HIT", handle)
                return slot.value
            case SlotState.FAILED:
                self._dbg("HIT-FAILED", handle)
                raise slot.error
            case SlotState.EVALUATING:
                chain = [ident for _, ident in self._evaluating]
                self._dbg("CYCLE", handle, chain)
                raise CyclicLoadError(handle.identifier, chain)

        slot.begin()
        marker = (id(handle), handle.identifier)
        self._evaluating.append(marker)
        self._dbg("EVAL", handle)
        try:
            value = await self.evaluator.evaluate(slot.descriptor, handle.env)
        except EvaluationError as e:
            self._settle_failure(slot, e)
            raise
        except BaseException as e:
            # Host-level abort (cancellation, interrupt): never leave EVALUATING behind.
            err = EvaluationError(handle.identifier, None, f"evaluation aborted ({type(e).__name__})")
            self._settle_failure(slot, err)
            raise
        finally:
            self._evaluating.remove(marker)

        if slot.state is SlotState.EVALUATING:
            slot.succeed(value)
        self._dbg("READY", handle)
        return value

    def _settle_failure(self, slot, error: EvaluationError):
        # A slot released mid-evaluation stays released.
        if slot.state is SlotState.EVALUATING:
            self.failure_policy.on_failure(slot, error)
        self._dbg("FAILED", error)

    # ------------------------------------------------------------------
    # Nested string requires (global cache path)
    # ------------------------------------------------------------------

    async def require_global(self, identifier: Any, *, base_dir: Optional[str] = None) -> Any:
        """
        Evaluate a module through the GlobalRequireCache.

        Always uses the standard environment. Successful values are cached by
        identifier; failures are not cached.
        """
        key = self.resolver.identify(identifier, base_dir=base_dir)
        cache = self.global_cache
        if key is not None and key in cache:
            return cache[key]
        descriptor = await self._resolve(identifier, base_dir)
        key = descriptor.identifier
        if key in cache:
            return cache[key]
        if cache.is_loading(key):
            raise CyclicLoadError(key, cache.loading())
        cache.begin_loading(key)
        try:
            value = await self.evaluator.evaluate(descriptor, DEFAULT_ENV_SPEC)
        finally:
            cache.end_loading(key)
        cache.store(key, value)
        self._dbg("GLOBAL", key)
        return value

    def _engine_globals(self, descriptor: SourceDescriptor) -> dict:
        registry = self
        base_dir = descriptor.base_dir

        async def require(target):
            if isinstance(target, ModuleHandle):
                return await registry.require(target)
            return await registry.require_global(target, base_dir=base_dir)

        async def load(target, options=None):
            return await registry.load(target, options, base_dir=base_dir)

        return {"require": require, "load": load}

    # ------------------------------------------------------------------
    # Reclamation and introspection
    # ------------------------------------------------------------------

    def _on_reclaim(self, label: str):
        self.reclaimed += 1
        self._dbg("RECLAIM", label)

    def release(self, handle: ModuleHandle):
        """Release a handle's cached outcome and source now. Idempotent."""
        if not isinstance(handle, ModuleHandle):
            raise InvalidHandleUsageError(f"release expects a module handle, not {type(handle).__name__}")
        # weakref.finalize runs its callback at most once.
        handle._finalizer()
        self._live.discard(handle)

    def live_handles(self) -> int:
        return len(self._live)

    def typeof(self, value: Any) -> str:
        return typeof(value)

    def getenv(self, target: Any):
        return getenv(target)


__all__ = [
    "GlobalRequireCache",
    "ModuleRegistry",
]
