import json

import pytest

from flowkit.cel import CelEvaluator
from flowkit.demo_tools import FuncTool, echo_chain_tools, router_tools, tools_by_name
from flowkit.engine import load_compile
from flowkit.ir import Port
from flowkit.nodes import Deps, NodeKind, NodeRegistry

ECHO_FLOW = json.dumps({
    "id": "echo_chain",
    "nodes": [
        {"id": "upper", "type": "tool", "config": {"tool": "upper"}},
        {"id": "reverse", "type": "tool", "config": {"tool": "reverse"}},
    ],
    "edges": [{"source": {"node": "upper", "port": "output"},
               "target": {"node": "reverse", "port": "input"}}],
    "inputs": [{"name": "in", "node": "upper", "port": "input"}],
    "outputs": [{"name": "out", "node": "reverse", "port": "output"}],
})

ROUTER_FLOW = json.dumps({
    "id": "router",
    "nodes": [
        {"id": "classify", "type": "tool", "config": {"tool": "classify"}},
        {"id": "greet_path", "type": "tool", "config": {"tool": "make_greeting"}},
        {"id": "other_path", "type": "tool", "config": {"tool": "say_other"}},
    ],
    "edges": [
        {"source": {"node": "classify", "port": "output"},
         "target": {"node": "greet_path", "port": "input"}, "condition": 'value == "greet"'},
        {"source": {"node": "classify", "port": "output"},
         "target": {"node": "other_path", "port": "input"}, "condition": 'value != "greet"'},
    ],
    "inputs": [{"name": "in", "node": "classify", "port": "input"}],
    "outputs": [
        {"name": "greeting", "node": "greet_path", "port": "output"},
        {"name": "other", "node": "other_path", "port": "output"},
    ],
})


class _ToolNode(NodeKind):
    def __init__(self, tool):
        self._tool = tool

    def inputs(self):
        return [Port("input")]

    def outputs(self):
        return [Port("output")]

    async def run(self, inputs):
        out = await self._tool.execute(json.dumps({"input": inputs.get("input", "")}))
        return {"output": out}


def _registry():
    reg = NodeRegistry()
    reg.register("tool", lambda cfg, deps: _ToolNode(deps.tools[cfg["tool"]]))
    return reg


@pytest.mark.asyncio
async def test_echo_chain_round_trip():
    eng = load_compile(ECHO_FLOW, _registry(), Deps(tools=tools_by_name(echo_chain_tools())))
    assert await eng.run({"in": "hello"}) == {"out": "OLLEH"}


def _router():
    return load_compile(ROUTER_FLOW, _registry(), Deps(tools=tools_by_name(router_tools())),
                        condition_evaluator=CelEvaluator())


@pytest.mark.asyncio
async def test_router_greet_branch():
    out = await _router().run({"in": "hello there"})
    assert out == {"greeting": "Hello! Nice to see you."}


@pytest.mark.asyncio
async def test_router_other_branch():
    out = await _router().run({"in": "what time is it"})
    assert "greeting" not in out
    assert out["other"]


@pytest.mark.asyncio
async def test_upper_is_ascii_only():
    upper = tools_by_name(echo_chain_tools())["upper"]
    assert await upper.execute('{"input": "abcé"}') == "ABCé"


@pytest.mark.asyncio
async def test_invalid_json_raises():
    reverse = tools_by_name(echo_chain_tools())["reverse"]
    with pytest.raises(ValueError):
        await reverse.execute("not json")


@pytest.mark.asyncio
async def test_async_func_tool():
    async def fn(args):
        return args.upper()

    assert await FuncTool("t", "d", fn).execute("x") == "X"


def test_tools_by_name_skips_none_and_overwrites():
    first = FuncTool("a", "", lambda a: "1")
    second = FuncTool("a", "", lambda a: "2")
    assert tools_by_name([first, None, second]) == {"a": second}