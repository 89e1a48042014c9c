"""
Resolvers turn a caller-supplied identifier into a SourceDescriptor.

Identifiers are opaque to the rest of the subsystem: strings with a scheme
(`file://`, `http://`, `https://`, `memory://`), bare names known to a
MemoryResolver, and host reference types such as `pathlib.Path` are all
accepted here and nowhere else.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Any, Iterable, Mapping, Optional

from modload.modload_datatypes import ModuleIdentifier, ResolutionError, SourceDescriptor


class Resolver(ABC):
    """Maps identifiers to module source."""

    @abstractmethod
    def accepts(self, identifier: Any) -> bool:
        raise NotImplementedError

    @abstractmethod
    def identify(self, identifier: Any, *, base_dir: Optional[str] = None) -> Optional[ModuleIdentifier]:
        """The identifier this resolver would produce, without fetching source."""
        raise NotImplementedError

    @abstractmethod
    async def resolve(self, identifier: Any, *, base_dir: Optional[str] = None) -> SourceDescriptor:
        raise NotImplementedError


# ===================================================================
# In-memory sources
# ===================================================================

class MemoryResolver(Resolver):
    """Serves module source from a mapping of name -> source text."""

    def __init__(self, modules: Optional[Mapping[str, str]] = None):
        self.modules: dict[str, str] = dict(modules or {})

    def add(self, name: str, source: str):
        self.modules[name] = source

    def _name(self, identifier: Any) -> Optional[str]:
        if not isinstance(identifier, str):
            return None
        s = identifier.strip()
        if s.startswith("memory://"):
            return s[len("memory://"):]
        if "://" in s:
            return None
        return s

    def accepts(self, identifier: Any) -> bool:
        return self._name(identifier) is not None

    def identify(self, identifier: Any, *, base_dir: Optional[str] = None) -> Optional[ModuleIdentifier]:
        name = self._name(identifier)
        return ModuleIdentifier("memory", name) if name is not None else None

    async def resolve(self, identifier: Any, *, base_dir: Optional[str] = None) -> SourceDescriptor:
        name = self._name(identifier)
        if name is None or name not in self.modules:
            raise ResolutionError(identifier, "no such module")
        return SourceDescriptor(
            identifier=ModuleIdentifier("memory", name),
            source=self.modules[name],
            origin=f"<memory:{name}>",
            base_dir=None,
        )


# ===================================================================
# Filesystem
# ===================================================================

def _resolve_locator(locator: str, base_dir: Optional[str]) -> str:
    # locator is like 'file://...', strip scheme
    assert locator.startswith("file://"), locator
    rest = locator[7:]
    # Absolute filesystem root
    if rest.startswith("/"):
        return "/" + rest.lstrip("/")
    # Home directory
    if rest.startswith("~"):
        tail = rest[1:]
        return os.path.expanduser("~" + (tail if tail.startswith("/") else ("/" + tail if tail else "")))
    base = base_dir or os.getcwd()
    if rest.startswith("./"):
        return os.path.normpath(os.path.join(base, rest[2:]))
    # '../x' and plain 'x' are both relative to the requiring module's directory
    return os.path.normpath(os.path.join(base, rest))


class FileResolver(Resolver):
    """Resolves `file://` locators and path objects to files on disk."""

    def __init__(self, base_dir: Optional[str] = None, encoding: str = "utf-8"):
        self.base_dir = base_dir
        self.encoding = encoding

    def _path(self, identifier: Any, base_dir: Optional[str]) -> Optional[str]:
        base = base_dir or self.base_dir
        if isinstance(identifier, PurePath):
            p = os.fspath(identifier)
            if not os.path.isabs(p):
                p = os.path.join(base or os.getcwd(), p)
            return os.path.normpath(p)
        if isinstance(identifier, str) and identifier.strip().startswith("file://"):
            return _resolve_locator(identifier.strip(), base)
        return None

    def accepts(self, identifier: Any) -> bool:
        return isinstance(identifier, PurePath) or (isinstance(identifier, str) and identifier.strip().startswith("file://"))

    def identify(self, identifier: Any, *, base_dir: Optional[str] = None) -> Optional[ModuleIdentifier]:
        path = self._path(identifier, base_dir)
        return ModuleIdentifier("file", path) if path is not None else None

    async def resolve(self, identifier: Any, *, base_dir: Optional[str] = None) -> SourceDescriptor:
        path = self._path(identifier, base_dir)
        if path is None:
            raise ResolutionError(identifier, "not a file locator")
        if os.path.isdir(path):
            raise ResolutionError(identifier, f"{path} is a directory")
        try:
            with open(path, "r", encoding=self.encoding) as f:
                source = f.read()
        except OSError as e:
            raise ResolutionError(identifier, str(e)) from e
        return SourceDescriptor(
            identifier=ModuleIdentifier("file", path),
            source=source,
            origin=path,
            base_dir=os.path.dirname(path) or os.getcwd(),
        )


# ===================================================================
# HTTP
# ===================================================================

class HttpResolver(Resolver):
    """Fetches module source over http(s) using modload_http."""

    def __init__(self, config: Optional[dict] = None):
        self.config = dict(config or {})

    def accepts(self, identifier: Any) -> bool:
        return isinstance(identifier, str) and identifier.strip().startswith(("http://", "https://"))

    def identify(self, identifier: Any, *, base_dir: Optional[str] = None) -> Optional[ModuleIdentifier]:
        if not self.accepts(identifier):
            return None
        url = identifier.strip()
        return ModuleIdentifier(url.split("://", 1)[0], url)

    async def resolve(self, identifier: Any, *, base_dir: Optional[str] = None) -> SourceDescriptor:
        ident = self.identify(identifier)
        if ident is None:
            raise ResolutionError(identifier, "not an http(s) URL")
        from modload.modload_http import fetch_source  # local import keeps httpx optional until needed
        try:
            source = await fetch_source(ident.key, config=self.config)
        except Exception as e:
            raise ResolutionError(identifier, str(e)) from e
        return SourceDescriptor(identifier=ident, source=source, origin=ident.key, base_dir=None)


# ===================================================================
# Composition
# ===================================================================

class ChainResolver(Resolver):
    """Delegates to the first resolver that accepts the identifier."""

    def __init__(self, resolvers: Iterable[Resolver]):
        self.resolvers = list(resolvers)

    def _pick(self, identifier: Any) -> Optional[Resolver]:
        for r in self.resolvers:
            if r.accepts(identifier):
                return r
        return None

    def accepts(self, identifier: Any) -> bool:
        return self._pick(identifier) is not None

    def identify(self, identifier: Any, *, base_dir: Optional[str] = None) -> Optional[ModuleIdentifier]:
        r = self._pick(identifier)
        return r.identify(identifier, base_dir=base_dir) if r else None

    async def resolve(self, identifier: Any, *, base_dir: Optional[str] = None) -> SourceDescriptor:
        r = self._pick(identifier)
        if r is None:
            raise ResolutionError(identifier, f"unsupported identifier type {type(identifier).__name__}")
        return await r.resolve(identifier, base_dir=base_dir)


def default_resolver(modules: Optional[Mapping[str, str]] = None) -> ChainResolver:
    resolvers: list[Resolver] = [FileResolver(), HttpResolver()]
    if modules is not None:
        resolvers.append(MemoryResolver(modules))
    return ChainResolver(resolvers)


__all__ = [
    "Resolver",
    "MemoryResolver",
    "FileResolver",
    "HttpResolver",
    "ChainResolver",
    "default_resolver",
]
