"""
Module handles and their per-handle cache slots.

A ModuleHandle is an opaque, identity-only value. Everything it owns (the
resolved source and the cache slot) is released by a `weakref.finalize`
callback once the handle is collected, or earlier via `release()`.
"""

import enum
import itertools
import weakref
from typing import Any, Optional

from modload.modload_datatypes import ModuleIdentifier, SourceDescriptor
from modload.modload_env import EnvironmentSpec


class SlotState(enum.Enum):
    UNSET = "unset"
    EVALUATING = "evaluating"
    READY = "ready"
    FAILED = "failed"
    RELEASED = "released"


class CacheSlot:
    """
    Memoized outcome of evaluating one handle.

    Transitions: UNSET -> EVALUATING -> READY | FAILED, and any state ->
    RELEASED when the owning handle is reclaimed. Only the registry's
    `require` path calls the transition methods.
    """
    __slots__ = ("state", "value", "error", "descriptor", "__weakref__")

    def __init__(self, descriptor: SourceDescriptor):
        self.state = SlotState.UNSET
        self.value: Any = None
        self.error: Optional[BaseException] = None
        self.descriptor: Optional[SourceDescriptor] = descriptor

    def _expect(self, state: SlotState):
        if self.state is not state:
            raise RuntimeError(f"cache slot is {self.state.value}, expected {state.value}")

    def begin(self):
        self._expect(SlotState.UNSET)
        self.state = SlotState.EVALUATING

    def succeed(self, value: Any):
        self._expect(SlotState.EVALUATING)
        self.value = value
        self.state = SlotState.READY

    def fail(self, error: BaseException):
        self._expect(SlotState.EVALUATING)
        self.error = error
        self.state = SlotState.FAILED

    def reset(self):
        """Back to UNSET; used only by a retrying failure policy."""
        self.error = None
        self.value = None
        self.state = SlotState.UNSET

    def release(self):
        self.value = None
        self.error = None
        self.descriptor = None
        self.state = SlotState.RELEASED

    def __repr__(self):
        return f"CacheSlot<{self.state.value}>"


# =================================================================
# Failure policy
# =================================================================

class FailurePolicy:
    """Decides what a FAILED slot does on the next require."""

    def on_failure(self, slot: CacheSlot, error: BaseException):
        raise NotImplementedError


class CacheFailures(FailurePolicy):
    """Keep the failure; every later require re-raises the same error."""

    def on_failure(self, slot: CacheSlot, error: BaseException):
        slot.fail(error)


class RetryFailures(FailurePolicy):
    """Forget the failure; the next require evaluates the body again."""

    def on_failure(self, slot: CacheSlot, error: BaseException):
        slot.fail(error)
        slot.reset()


# =================================================================
# Handles
# =================================================================

_handle_ids = itertools.count(1)


def _reclaim(slot_ref, label: str, on_reclaim):
    # Runs from weakref.finalize: must not reference the handle or hold the slot.
    # A failed slot can reach its handle through the stored traceback.
    slot = slot_ref()
    if slot is not None:
        slot.release()
    if on_reclaim is not None:
        on_reclaim(label)


class ModuleHandle:
    """
    An opaque reference to a loaded, not necessarily evaluated, module.

    Handles compare and hash by identity only: two loads of the same module
    with the same options yield two handles that are never equal. A handle is
    not callable and is rejected by environment introspection.
    """
    __slots__ = ("_id", "_identifier", "_env", "_slot", "_finalizer", "__weakref__")

    def __init__(self, descriptor: SourceDescriptor, env: EnvironmentSpec, *, on_reclaim=None):
        self._id = next(_handle_ids)
        self._identifier = descriptor.identifier
        self._env = env
        self._slot = CacheSlot(descriptor)
        self._finalizer = weakref.finalize(self, _reclaim, weakref.ref(self._slot), self._label(), on_reclaim)

    def _label(self) -> str:
        return f"{self._identifier}#{self._id}"

    @property
    def identifier(self) -> ModuleIdentifier:
        return self._identifier

    @property
    def env(self) -> EnvironmentSpec:
        return self._env

    @property
    def state(self) -> SlotState:
        return self._slot.state

    @property
    def released(self) -> bool:
        return self._slot.state is SlotState.RELEASED

    def __eq__(self, other):
        return self is other

    def __hash__(self):
        return object.__hash__(self)

    def __reduce__(self):
        raise TypeError("module handles cannot be pickled")

    # Copies are the same handle.
    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __repr__(self):
        return f"ModuleHandle<{self._label()} {self._slot.state.value}>"


__all__ = [
    "SlotState",
    "CacheSlot",
    "FailurePolicy",
    "CacheFailures",
    "RetryFailures",
    "ModuleHandle",
]
