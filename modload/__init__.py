from modload.modload_datatypes import (
    ModuleError, ResolutionError, OptionValidationError, CyclicLoadError,
    EvaluationError, InvalidHandleUsageError, ModuleIdentifier, SourceDescriptor,
    OverrideEntry, Present, Removed, REMOVED,
)
from modload.modload_env import EnvironmentSpec, build_env_spec, options_from_config
from modload.modload_handle import ModuleHandle, SlotState, FailurePolicy, CacheFailures, RetryFailures
from modload.modload_evaluator import Evaluator, PythonCompiler, ModuleNamespace, typeof, getenv
from modload.modload_resolver import Resolver, MemoryResolver, FileResolver, HttpResolver, ChainResolver, default_resolver
from modload.modload_registry import ModuleRegistry, GlobalRequireCache
from modload.modload_runtime import ModuleRunner, ExecutionResult
