import linecache
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from modload.modload_datatypes import EvaluationError, ModuleError
from modload.modload_handle import ModuleHandle
from modload.modload_registry import ModuleRegistry
from modload.modload_resolver import Resolver

Token = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of loading and requiring one module."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    handle: Optional[ModuleHandle] = None
    error: Optional[BaseException] = None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")

        # Add a location prefix when we have a token; avoid duplicating the same prefix
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ModuleRunner:
    """Loads and evaluates modules on behalf of a host, reporting ExecutionResults."""

    def __init__(self, registry: Optional[ModuleRegistry] = None, resolver: Optional[Resolver] = None):
        self.registry = registry or ModuleRegistry(resolver=resolver)

    def _source_context(self, origin: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = [l.rstrip("\n") for l in linecache.getlines(origin)]
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            content = lines[i - 1]
            out.append(f"{prefix} {ln} | {content}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _fault_location(self, fault: BaseException, origin: Optional[str]) -> Optional[Token]:
        match fault:
            case SyntaxError(lineno=line, offset=col) if line is not None:
                return {'line': line, 'col': col, 'origin': fault.filename or origin}
        if origin is None:
            return None
        # Innermost frame that belongs to the module source
        frames: List[traceback.FrameSummary] = traceback.extract_tb(fault.__traceback__)
        for fs in reversed(frames):
            if fs.filename == origin:
                return {'line': fs.lineno, 'col': None, 'origin': origin}
        return None

    def _format_error(self, e: ModuleError, origin: Optional[str]) -> tuple[str, Optional[Token]]:
        match e:
            case EvaluationError(fault=None):
                return f"EvaluationError: {e.detail} in {e.identifier}", None
            case EvaluationError(fault=fault):
                msg = f"{type(fault).__name__}: {fault}"
                token = self._fault_location(fault, origin)
                if token:
                    context = self._source_context(token['origin'], token['line'], token.get('col'))
                    msg = f"{msg}\n(in {e.identifier}, line {token['line']})"
                    if context:
                        msg = f"{msg}\n{context}"
                return msg, token
            case _:
                return f"{type(e).__name__}: {e}", None

    async def run_module(self, identifier: Any, options: Optional[dict] = None) -> ExecutionResult:
        """The main entry point: load `identifier` and require the new handle."""
        handle = None
        origin = None
        try:
            handle = await self.registry.load(identifier, options)
            desc = handle._slot.descriptor
            origin = desc.origin if desc is not None else None
            value = await self.registry.require(handle)
            return ExecutionResult(status='success', value=value, handle=handle)
        except ModuleError as e:
            err_msg, err_token = self._format_error(e, origin)
            return ExecutionResult(
                status='error',
                error_message=err_msg,
                error_token=err_token,
                handle=handle,
                error=e,
            )

    async def require(self, handle: ModuleHandle) -> ExecutionResult:
        """Require an existing handle, reporting the outcome as an ExecutionResult."""
        try:
            value = await self.registry.require(handle)
            return ExecutionResult(status='success', value=value, handle=handle)
        except ModuleError as e:
            desc = handle._slot.descriptor if isinstance(handle, ModuleHandle) else None
            err_msg, err_token = self._format_error(e, desc.origin if desc else None)
            return ExecutionResult(status='error', error_message=err_msg, error_token=err_token, handle=handle, error=e)
