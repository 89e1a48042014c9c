import os
from pathlib import Path

import pytest

from modload import (
    ChainResolver, FileResolver, HttpResolver, MemoryResolver, ModuleIdentifier,
    ModuleRegistry, ResolutionError, default_resolver,
)
from modload.modload_resolver import _resolve_locator


@pytest.mark.asyncio
async def test_memory_resolver_bare_and_scheme_names():
    r = MemoryResolver({"util": "1\n"})
    d1 = await r.resolve("util")
    d2 = await r.resolve("memory://util")
    assert d1.identifier == d2.identifier == ModuleIdentifier("memory", "util")
    assert d1.source == "1\n"
    assert d1.origin == "<memory:util>"
    assert not r.accepts("file:///x.py")
    assert not r.accepts(Path("x.py"))
    with pytest.raises(ResolutionError):
        await r.resolve("nope")


def test_resolve_locator_rules(tmp_path):
    base = tmp_path.as_posix()
    assert _resolve_locator("file:///abs/mod.py", base) == "/abs/mod.py"
    assert _resolve_locator("file://./mod.py", base) == os.path.join(base, "mod.py")
    assert _resolve_locator("file://mod.py", base) == os.path.join(base, "mod.py")
    assert _resolve_locator("file://../mod.py", base) == os.path.normpath(os.path.join(base, "..", "mod.py"))
    assert _resolve_locator("file://~/mod.py", base) == os.path.expanduser("~/mod.py")


@pytest.mark.asyncio
async def test_file_resolver_locators_and_paths(tmp_path):
    mod = tmp_path / "mod.py"
    mod.write_text("40 + 2\n", encoding="utf-8")
    r = FileResolver()

    by_locator = await r.resolve(f"file://{mod.as_posix()}")
    by_path = await r.resolve(mod)
    assert by_locator.identifier == by_path.identifier == ModuleIdentifier("file", str(mod))
    assert by_locator.source == "40 + 2\n"
    assert by_locator.base_dir == str(tmp_path)
    assert by_locator.origin == str(mod)

    relative = await r.resolve("file://./mod.py", base_dir=str(tmp_path))
    assert relative.identifier == by_path.identifier


@pytest.mark.asyncio
async def test_file_resolver_errors(tmp_path):
    r = FileResolver()
    with pytest.raises(ResolutionError):
        await r.resolve(tmp_path / "missing.py")
    with pytest.raises(ResolutionError):
        await r.resolve(f"file://{tmp_path.as_posix()}")
    with pytest.raises(ResolutionError):
        await r.resolve("http://example.com/x.py")


@pytest.mark.asyncio
async def test_nested_relative_file_requires(tmp_path):
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "half.py").write_text("21\n", encoding="utf-8")
    (tmp_path / "main.py").write_text("(await require('file://./lib/half.py')) * 2\n", encoding="utf-8")

    reg = ModuleRegistry()
    h = await reg.load(tmp_path / "main.py")
    assert await reg.require(h) == 42
    assert ModuleIdentifier("file", str(tmp_path / "lib" / "half.py")) in reg.global_cache


class DummyResp:
    def __init__(self, status, content, headers=None):
        self.status_code = status
        self.content = content
        self.headers = headers or {}
        self.text = content.decode("utf-8", errors="ignore")


def install_dummy_client(monkeypatch, responses, seen):
    class DummyAsyncClient:
        def __init__(self, *args, **kwargs):
            seen.append(("init", kwargs.get("timeout")))

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def request(self, method, url, headers=None):
            seen.append((method, url))
            return responses.pop(0)

    import modload.modload_http as http_mod
    monkeypatch.setattr(http_mod, "httpx", type("X", (), {"AsyncClient": DummyAsyncClient}))


@pytest.mark.asyncio
async def test_http_resolver_fetches_source(monkeypatch):
    seen = []
    install_dummy_client(monkeypatch, [
        DummyResp(200, "'café'\n".encode("latin-1"), {"Content-Type": "text/x-python; charset=latin-1"}),
    ], seen)
    r = HttpResolver(config={"retries": 0, "timeout": 1.5})
    d = await r.resolve("https://example.com/mods/cafe.py")
    assert d.identifier == ModuleIdentifier("https", "https://example.com/mods/cafe.py")
    assert d.source == "'café'\n"
    assert d.base_dir is None
    assert seen == [("init", 1.5), ("GET", "https://example.com/mods/cafe.py")]


@pytest.mark.asyncio
async def test_http_resolver_retries_then_fails(monkeypatch):
    seen = []
    install_dummy_client(monkeypatch, [DummyResp(500, b"oops"), DummyResp(503, b"still")], seen)
    r = HttpResolver(config={"retries": 1, "backoff": 0})
    with pytest.raises(ResolutionError) as ei:
        await r.resolve("http://example.com/m.py")
    assert "HTTP 503" in str(ei.value)
    assert [s for s in seen if s[0] == "GET"] == [("GET", "http://example.com/m.py")] * 2


@pytest.mark.asyncio
async def test_http_module_through_registry(monkeypatch):
    install_dummy_client(monkeypatch, [DummyResp(200, b"6 * 7\n")], [])
    monkeypatch.setenv("MODLOAD_HTTP_RETRIES", "0")
    reg = ModuleRegistry()
    h = await reg.load("http://example.com/answer.py")
    assert await reg.require(h) == 42


@pytest.mark.asyncio
async def test_chain_resolver_dispatch_and_unsupported_types():
    chain = ChainResolver([FileResolver(), MemoryResolver({"m": "1\n"})])
    assert (await chain.resolve("m")).identifier == ModuleIdentifier("memory", "m")
    assert chain.identify("memory://m") == ModuleIdentifier("memory", "m")
    with pytest.raises(ResolutionError):
        await chain.resolve(12345)


@pytest.mark.asyncio
async def test_default_resolver_with_memory_modules():
    r = default_resolver({"m": "1\n"})
    assert (await r.resolve("m")).source == "1\n"
    reg = ModuleRegistry(resolver=default_resolver())
    with pytest.raises(ResolutionError):
        await reg.load(object())
