import json

import pytest

from flowkit.cel import CelError, CelEvaluator
from flowkit.condition import CondEnv
from flowkit.engine import load_compile
from flowkit.ir import Port
from flowkit.nodes import Deps, NodeKind, NodeRegistry, Tool


def _check(expr, value):
    return CelEvaluator().compile(expr).evaluate(CondEnv(value=value))


def test_equality():
    assert _check('value == "go"', "go") is True
    assert _check('value == "go"', "stop") is False


def test_string_functions():
    assert _check('value.startsWith("hello")', "hello world") is True
    assert _check('value.startsWith("hello")', "goodbye") is False


def test_regex_matches():
    assert _check('value.matches("^[A-Z]+$")', "HELLO") is True
    assert _check('value.matches("^[A-Z]+$")', "Hello") is False


@pytest.mark.parametrize("value,expected", [("hello", True), ("skip", False), ("hi", False)])
def test_size_and_logic(value, expected):
    assert _check('size(value) > 3 && value != "skip"', value) is expected


def test_syntax_error():
    with pytest.raises(CelError, match="compile"):
        CelEvaluator().compile("value ==")


def test_rejects_non_bool():
    with pytest.raises(CelError, match="want bool"):
        CelEvaluator().compile("value")


def test_rejects_unknown_var():
    with pytest.raises(CelError):
        CelEvaluator().compile('nope == "x"')


def test_type_mismatch_rejected():
    with pytest.raises(CelError):
        CelEvaluator().compile("value == 1")


def test_ternary_and_arithmetic():
    assert _check('(size(value) % 2 == 0 ? "even" : "odd") == "even"', "ab") is True
    assert _check("int(value) / 2 == -1", "-3") is True


def test_runtime_error_wrapped():
    cond = CelEvaluator().compile("int(value) > 0")
    with pytest.raises(CelError, match="evaluate"):
        cond.evaluate(CondEnv(value="abc"))


class _LiteralTool(Tool):
    def __init__(self, name, v=""):
        self._name = name
        self._v = v

    @property
    def name(self):
        return self._name

    async def execute(self, args):
        if self._v:
            return self._v
        return json.loads(args).get("input", "")


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
async def test_integration_with_engine():
    src = json.dumps({
        "id": "router",
        "nodes": [
            {"id": "src", "type": "tool", "config": {"tool": "src"}},
            {"id": "left", "type": "tool", "config": {"tool": "echo"}},
            {"id": "right", "type": "tool", "config": {"tool": "echo"}},
        ],
        "edges": [
            {"source": {"node": "src", "port": "output"},
             "target": {"node": "left", "port": "input"}, "condition": 'value == "go"'},
            {"source": {"node": "src", "port": "output"},
             "target": {"node": "right", "port": "input"}, "condition": 'value != "go"'},
        ],
        "outputs": [
            {"name": "L", "node": "left", "port": "output"},
            {"name": "R", "node": "right", "port": "output"},
        ],
    })
    tools = {"src": _LiteralTool("src", "go"), "echo": _LiteralTool("echo")}
    eng = load_compile(src, _registry(), Deps(tools=tools), condition_evaluator=CelEvaluator())
    out = await eng.run(None)
    assert out == {"L": "go"}