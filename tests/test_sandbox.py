import collections
import math

import pytest

from modload import (
    EvaluationError, MemoryResolver, ModuleIdentifier, ModuleRegistry, Present, REMOVED,
)

PROBE_PRINT = (
    "try:\n"
    "    print\n"
    "    found = True\n"
    "except NameError:\n"
    "    found = False\n"
    "found\n"
)


def make_registry(modules):
    return ModuleRegistry(resolver=MemoryResolver(modules))


@pytest.mark.asyncio
async def test_default_env_provides_builtins_and_engine_globals():
    reg = make_registry({"m": "[typeof(len), typeof(require), typeof(load), typeof(getenv)]\n"})
    h = await reg.load("m")
    assert await reg.require(h) == ["function", "function", "function", "function"]


@pytest.mark.asyncio
async def test_removed_unbinds_a_default_name():
    reg = make_registry({"probe": PROBE_PRINT})
    plain = await reg.load("probe")
    sandboxed = await reg.load("probe", {"default_env": True, "overrides": {"print": REMOVED}})
    assert await reg.require(plain) is True
    assert await reg.require(sandboxed) is False


@pytest.mark.asyncio
async def test_removed_engine_global_is_unbound():
    reg = make_registry({"m": "await require('other')\n", "other": "1\n"})
    h = await reg.load("m", {"overrides": {"require": REMOVED}})
    with pytest.raises(EvaluationError) as ei:
        await reg.require(h)
    assert isinstance(ei.value.fault, NameError)


@pytest.mark.asyncio
async def test_present_shadows_builtin():
    reg = make_registry({"m": "len([1, 2, 3])\n"})
    h = await reg.load("m", {"overrides": {"len": Present(lambda xs: -1)}})
    assert await reg.require(h) == -1


@pytest.mark.asyncio
async def test_present_value_of_none_is_bound():
    reg = make_registry({"m": "answer is None\n"})
    h = await reg.load("m", {"overrides": {"answer": Present(None)}})
    assert await reg.require(h) is True


@pytest.mark.asyncio
async def test_empty_environment_when_default_env_is_false():
    reg = make_registry({"m": "len([1])\n", "n": "x + 1\n"})
    bare = await reg.load("m", {"default_env": False})
    with pytest.raises(EvaluationError) as ei:
        await reg.require(bare)
    assert isinstance(ei.value.fault, NameError)

    only_x = await reg.load("n", {"default_env": False, "overrides": {"x": Present(41)}})
    assert await reg.require(only_x) == 42


@pytest.mark.asyncio
async def test_mutating_options_after_load_does_not_change_the_module():
    reg = make_registry({"m": "[cfg['n'], len(cfg['n'])]\n"})
    data = {"n": [1]}
    options = {"overrides": {"cfg": Present(data)}}
    h = await reg.load("m", options)

    data["n"].append(2)
    options["default_env"] = False
    options["overrides"]["len"] = REMOVED

    assert await reg.require(h) == [[1], 1]


@pytest.mark.asyncio
async def test_override_functions_close_over_caller_state():
    state = {"calls": 0}

    def tick():
        state["calls"] += 1
        return state["calls"]

    reg = make_registry({"m": "tick() + tick()\n"})
    h = await reg.load("m", {"overrides": {"tick": Present(tick)}})
    state["calls"] = 10
    assert await reg.require(h) == 11 + 12


@pytest.mark.asyncio
async def test_overrides_are_not_transitive_to_nested_requires():
    inner = (
        "try:\n"
        "    secret\n"
        "    seen = 'override'\n"
        "except NameError:\n"
        "    seen = 'isolated'\n"
        "[seen, typeof(print)]\n"
    )
    outer = "await require('inner')\n"
    reg = make_registry({"outer": outer, "inner": inner})
    h = await reg.load("outer", {"overrides": {"secret": Present(1), "print": REMOVED}})

    assert await reg.require(h) == ["isolated", "function"]
    assert ModuleIdentifier("memory", "inner") in reg.global_cache


@pytest.mark.asyncio
async def test_nested_requires_share_the_global_cache():
    reg = make_registry({
        "counter": "import itertools\nitertools.count(1)\n",
        "a": "next(await require('counter'))\n",
        "b": "next(await require('counter'))\n",
    })
    ha = await reg.load("a")
    hb = await reg.load("b")
    assert await reg.require(ha) == 1
    assert await reg.require(hb) == 2
    assert len(reg.global_cache) == 1


@pytest.mark.asyncio
async def test_global_cache_is_untouched_by_handle_requires():
    reg = make_registry({"m": "1\n"})
    h = await reg.load("m")
    await reg.require(h)
    assert len(reg.global_cache) == 0


@pytest.mark.asyncio
async def test_nested_global_cycle_is_detected():
    reg = make_registry({
        "a": "await require('b')\n",
        "b": "await require('a')\n",
    })
    with pytest.raises(EvaluationError) as ei:
        await reg.require_global("a")
    # a -> b -> a: the innermost failure is the cycle
    err = ei.value
    while isinstance(err, EvaluationError):
        err = err.fault
    assert type(err).__name__ == "CyclicLoadError"
    assert reg.global_cache.loading() == []
    assert len(reg.global_cache) == 0


@pytest.mark.asyncio
async def test_nested_failures_are_not_cached_globally():
    reg = make_registry({"bad": "raise ValueError('x')\n", "m": "await require('bad')\n"})
    h = await reg.load("m")
    with pytest.raises(EvaluationError):
        await reg.require(h)
    assert len(reg.global_cache) == 0


@pytest.mark.asyncio
async def test_module_override_is_usable_in_body():
    reg = make_registry({"m": "int(m.sqrt(16))\n"})
    h = await reg.load("m", {"overrides": {"m": Present(math)}})
    assert await reg.require(h) == 4


@pytest.mark.asyncio
async def test_namedtuple_and_defaultdict_overrides_keep_behavior():
    Point = collections.namedtuple("Point", "x y")
    reg = make_registry({"m": "groups['k'].append(p.x)\n[p.y, dict(groups)]\n"})
    h = await reg.load("m", {"overrides": {
        "p": Present(Point(1, 2)),
        "groups": Present(collections.defaultdict(list)),
    }})
    assert await reg.require(h) == [2, {"k": [1]}]
