"""Small function-backed tools used by the bundled demo flows."""

from __future__ import annotations

import inspect
import json
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Optional, Union

from flowkit.nodes import Tool

ToolFunc = Callable[[str], Union[str, Awaitable[str]]]

_INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"input": {"type": "string"}},
    "required": ["input"],
}


class FuncTool(Tool):
    """A tool whose behaviour is a plain (sync or async) function of its JSON arguments."""

    def __init__(
        self,
        name: str,
        description: str,
        func: ToolFunc,
        parameters: Optional[dict[str, Any]] = None,
    ) -> None:
        self._name = name
        self.description = description
        self.parameters = parameters if parameters is not None else dict(_INPUT_SCHEMA)
        self._func = func

    @property
    def name(self) -> str:
        return self._name

    async def execute(self, args: str) -> str:
        result = self._func(args)
        if inspect.isawaitable(result):
            result = await result
        return result


def _input_of(args: str) -> str:
    data = json.loads(args)
    if not isinstance(data, dict):
        raise ValueError("arguments must be a JSON object")
    value = data.get("input")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError('field "input" must be a string')
    return value


def _ascii_upper(text: str) -> str:
    return "".join(chr(ord(c) - 32) if "a" <= c <= "z" else c for c in text)


def _classify(args: str) -> str:
    low = _input_of(args).lower()
    if any(word in low for word in ("hello", "hi", "你好")):
        return "greet"
    return "other"


def echo_chain_tools() -> list[FuncTool]:
    """The ``upper`` and ``reverse`` tools of the echo-chain demo."""
    return [
        FuncTool("upper", "Uppercase its input string.", lambda a: _ascii_upper(_input_of(a))),
        FuncTool("reverse", "Reverse its input string.", lambda a: _input_of(a)[::-1]),
    ]


def router_tools() -> list[FuncTool]:
    """The classifier and two branch responders of the router demo."""
    return [
        FuncTool("classify", "Classify the input into one of: greet, other.", _classify),
        FuncTool("make_greeting", "Render a greeting reply.", lambda _a: "Hello! Nice to see you."),
        FuncTool(
            "say_other",
            "Fallback responder when no specific intent matches.",
            lambda _a: "Sorry — I do not know how to handle that yet.",
        ),
    ]


def tools_by_name(tools: Iterable[Optional[Tool]]) -> dict[str, Tool]:
    """Map tools by name, skipping ``None``; later duplicates win."""
    return {tool.name: tool for tool in tools if tool is not None}