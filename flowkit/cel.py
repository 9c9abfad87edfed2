"""Condition evaluator for a statically typed subset of the CEL expression language.

One variable is declared: ``value`` (string), the value flowing through the
edge. Supported are string, int, double and bool literals, comparison,
arithmetic, ``&&``, ``||``, ``!``, the ternary operator, the global
functions ``size``, ``int``, ``double`` and ``string``, and the string
methods ``size``, ``startsWith``, ``endsWith``, ``contains``, ``matches``,
``lowerAscii``, ``upperAscii`` and ``trim``.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable
from typing import Any

from flowkit.condition import CondEnv, Condition, ConditionEvaluator
from flowkit.ir import FlowError

_Fn = Callable[[dict[str, Any]], Any]
_Typed = tuple[str, _Fn]

_LEXEME_RE = re.compile(
    r"""\s*(?:
        (?P<num>\d+\.\d*|\d+)
      | (?P<str>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<id>[A-Za-z_]\w*)
      | (?P<op>==|!=|<=|>=|&&|\|\||[<>!+\-*/%().,?:])
    )""",
    re.VERBOSE,
)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}
_NUMERIC = frozenset({"int", "double"})
_VARIABLES = {"value": "string"}


class CelError(FlowError):
    """An expression failed to compile or to evaluate."""


def _unquote(literal: str) -> str:
    body = literal[1:-1]
    out: list[str] = []
    chars = iter(body)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            if nxt not in _ESCAPES:
                raise CelError(f"invalid escape sequence \\{nxt}")
            out.append(_ESCAPES[nxt])
        else:
            out.append(ch)
    return "".join(out)


def _tokenize(expr: str) -> list[tuple[str, str]]:
    lexemes: list[tuple[str, str]] = []
    pos = 0
    while expr[pos:].strip():
        match = _LEXEME_RE.match(expr, pos)
        if match is None:
            raise CelError(f"syntax error at offset {pos}: unexpected {expr[pos:].strip()[:1]!r}")
        kind = match.lastgroup or ""
        lexemes.append((kind, match.group(kind)))
        pos = match.end()
    return lexemes


@functools.lru_cache(maxsize=256)
def _regex(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise CelError(f"invalid regex {pattern!r}: {exc}") from exc


def _int_div(a: int, b: int) -> int:
    if b == 0:
        raise CelError("division by zero")
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _int_mod(a: int, b: int) -> int:
    if b == 0:
        raise CelError("modulus by zero")
    return a - _int_div(a, b) * b


def _to_int(v: Any) -> int:
    try:
        return int(v)
    except (TypeError, ValueError) as exc:
        raise CelError(f"int conversion failed: {v!r}") from exc


def _to_double(v: Any) -> float:
    try:
        return float(v)
    except (TypeError, ValueError) as exc:
        raise CelError(f"double conversion failed: {v!r}") from exc


def _to_string(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


_GLOBALS: dict[tuple[str, str], tuple[str, Callable[[Any], Any]]] = {
    ("size", "string"): ("int", len),
    ("int", "string"): ("int", _to_int),
    ("int", "int"): ("int", _to_int),
    ("int", "double"): ("int", _to_int),
    ("double", "string"): ("double", _to_double),
    ("double", "int"): ("double", _to_double),
    ("double", "double"): ("double", _to_double),
    ("string", "string"): ("string", _to_string),
    ("string", "int"): ("string", _to_string),
    ("string", "double"): ("string", _to_string),
    ("string", "bool"): ("string", _to_string),
}

_METHODS: dict[str, tuple[tuple[str, ...], str, Callable[..., Any]]] = {
    "size": ((), "int", len),
    "startsWith": (("string",), "bool", lambda s, p: s.startswith(p)),
    "endsWith": (("string",), "bool", lambda s, p: s.endswith(p)),
    "contains": (("string",), "bool", lambda s, p: p in s),
    "matches": (("string",), "bool", lambda s, p: _regex(p).search(s) is not None),
    "lowerAscii": ((), "string", lambda s: "".join(c.lower() if c.isascii() else c for c in s)),
    "upperAscii": ((), "string", lambda s: "".join(c.upper() if c.isascii() else c for c in s)),
    "trim": ((), "string", str.strip),
}


class _Parser:
    def __init__(self, expr: str) -> None:
        self._items = _tokenize(expr)
        self._pos = 0

    def parse(self) -> _Typed:
        if not self._items:
            raise CelError("syntax error: empty expression")
        node = self._expr()
        if self._pos != len(self._items):
            raise CelError(f"syntax error: unexpected {self._items[self._pos][1]!r}")
        return node

    def _peek(self) -> str | None:
        return self._items[self._pos][1] if self._pos < len(self._items) else None

    def _next(self) -> tuple[str, str]:
        if self._pos >= len(self._items):
            raise CelError("syntax error: unexpected end of expression")
        item = self._items[self._pos]
        self._pos += 1
        return item

    def _expect(self, text: str) -> None:
        kind, got = self._next()
        if got != text or kind == "str":
            raise CelError(f"syntax error: expected {text!r}, got {got!r}")

    def _accept(self, *ops: str) -> str | None:
        if self._pos < len(self._items):
            kind, text = self._items[self._pos]
            if kind == "op" and text in ops:
                self._pos += 1
                return text
        return None

    def _expr(self) -> _Typed:
        cond = self._or()
        if self._accept("?") is None:
            return cond
        then = self._expr()
        self._expect(":")
        other = self._expr()
        if cond[0] != "bool":
            raise CelError(f"ternary condition must be bool, got {cond[0]}")
        if then[0] != other[0]:
            raise CelError(f"ternary branches differ: {then[0]} and {other[0]}")
        c, t, o = cond[1], then[1], other[1]
        return then[0], lambda env: t(env) if c(env) else o(env)

    def _logical(self, op: str, sub: Callable[[], _Typed]) -> _Typed:
        left = sub()
        while self._accept(op):
            right = sub()
            if left[0] != "bool" or right[0] != "bool":
                raise CelError(f"no matching overload for {op!r} on {left[0]}, {right[0]}")
            lf, rf = left[1], right[1]
            if op == "&&":
                left = ("bool", lambda env, lf=lf, rf=rf: bool(lf(env)) and bool(rf(env)))
            else:
                left = ("bool", lambda env, lf=lf, rf=rf: bool(lf(env)) or bool(rf(env)))
        return left

    def _or(self) -> _Typed:
        return self._logical("||", self._and)

    def _and(self) -> _Typed:
        return self._logical("&&", self._rel)

    def _rel(self) -> _Typed:
        left = self._add()
        op = self._accept("==", "!=", "<", "<=", ">", ">=")
        if op is None:
            return left
        right = self._add()
        lt, rt = left[0], right[0]
        comparable = lt == rt or (lt in _NUMERIC and rt in _NUMERIC)
        if op in ("<", "<=", ">", ">="):
            comparable = comparable and lt != "bool"
        if not comparable:
            raise CelError(f"no matching overload for {op!r} on {lt}, {rt}")
        lf, rf = left[1], right[1]
        compare: Callable[[Any, Any], bool] = {
            "==": lambda a, b: a == b,
            "!=": lambda a, b: a != b,
            "<": lambda a, b: a < b,
            "<=": lambda a, b: a <= b,
            ">": lambda a, b: a > b,
            ">=": lambda a, b: a >= b,
        }[op]
        return "bool", lambda env: compare(lf(env), rf(env))

    def _arith(self, op: str, left: _Typed, right: _Typed) -> _Typed:
        lt, rt = left[0], right[0]
        lf, rf = left[1], right[1]
        if op == "+" and lt == rt == "string":
            return "string", lambda env: lf(env) + rf(env)
        if lt not in _NUMERIC or rt not in _NUMERIC or (op == "%" and "double" in (lt, rt)):
            raise CelError(f"no matching overload for {op!r} on {lt}, {rt}")
        result = "int" if lt == rt == "int" else "double"
        if op == "/":
            if result == "int":
                return result, lambda env: _int_div(lf(env), rf(env))

            def divide(env: dict[str, Any]) -> float:
                b = rf(env)
                if b == 0:
                    raise CelError("division by zero")
                return lf(env) / b

            return result, divide
        if op == "%":
            return result, lambda env: _int_mod(lf(env), rf(env))
        binary: Callable[[Any, Any], Any] = {
            "+": lambda a, b: a + b,
            "-": lambda a, b: a - b,
            "*": lambda a, b: a * b,
        }[op]
        return result, lambda env: binary(lf(env), rf(env))

    def _add(self) -> _Typed:
        left = self._mul()
        while (op := self._accept("+", "-")) is not None:
            left = self._arith(op, left, self._mul())
        return left

    def _mul(self) -> _Typed:
        left = self._unary()
        while (op := self._accept("*", "/", "%")) is not None:
            left = self._arith(op, left, self._unary())
        return left

    def _unary(self) -> _Typed:
        if self._accept("!"):
            typ, fn = self._unary()
            if typ != "bool":
                raise CelError(f"no matching overload for '!' on {typ}")
            return "bool", lambda env: not fn(env)
        if self._accept("-"):
            typ, fn = self._unary()
            if typ not in _NUMERIC:
                raise CelError(f"no matching overload for '-' on {typ}")
            return typ, lambda env: -fn(env)
        return self._member()

    def _args(self) -> list[_Typed]:
        args: list[_Typed] = []
        if self._accept(")"):
            return args
        while True:
            args.append(self._expr())
            if self._accept(")"):
                return args
            self._expect(",")

    def _member(self) -> _Typed:
        node = self._primary()
        while self._accept("."):
            kind, name = self._next()
            if kind != "id":
                raise CelError(f"syntax error: expected method name, got {name!r}")
            self._expect("(")
            args = self._args()
            node = self._method(node, name, args)
        return node

    @staticmethod
    def _method(target: _Typed, name: str, args: list[_Typed]) -> _Typed:
        spec = _METHODS.get(name)
        if target[0] != "string" or spec is None:
            raise CelError(f"found no matching overload for '{name}' on {target[0]}")
        params, result, impl = spec
        if tuple(a[0] for a in args) != params:
            raise CelError(f"found no matching overload for '{name}' with {len(args)} argument(s)")
        tf = target[1]
        arg_fns = [a[1] for a in args]
        return result, lambda env: impl(tf(env), *(f(env) for f in arg_fns))

    def _primary(self) -> _Typed:
        kind, text = self._next()
        if kind == "num":
            if "." in text:
                num = float(text)
                return "double", lambda env: num
            whole = int(text)
            return "int", lambda env: whole
        if kind == "str":
            literal = _unquote(text)
            return "string", lambda env: literal
        if kind == "id":
            if text in ("true", "false"):
                flag = text == "true"
                return "bool", lambda env: flag
            if self._accept("("):
                args = self._args()
                if len(args) != 1 or (text, args[0][0]) not in _GLOBALS:
                    raise CelError(f"found no matching overload for '{text}'")
                result, impl = _GLOBALS[(text, args[0][0])]
                af = args[0][1]
                return result, lambda env: impl(af(env))
            if text not in _VARIABLES:
                raise CelError(f"undeclared reference to '{text}'")
            return _VARIABLES[text], lambda env: env[text]
        if text == "(":
            node = self._expr()
            self._expect(")")
            return node
        raise CelError(f"syntax error: unexpected {text!r}")


class CelCondition(Condition):
    """A compiled, immutable expression; safe to evaluate concurrently."""

    def __init__(self, expr: str, program: _Fn) -> None:
        self._expr = expr
        self._program = program

    @property
    def expr(self) -> str:
        """Source text of the expression."""
        return self._expr

    def evaluate(self, env: CondEnv) -> bool:
        try:
            result = self._program({"value": env.value})
        except CelError as exc:
            raise CelError(f'evaluate "{self._expr}": {exc}') from exc
        if not isinstance(result, bool):
            raise CelError(f"expected bool, got {type(result).__name__}")
        return result


class CelEvaluator(ConditionEvaluator):
    """Compiles guard expressions with ``value`` (string) in scope."""

    def compile(self, expr: str) -> CelCondition:
        try:
            typ, program = _Parser(expr).parse()
        except CelError as exc:
            raise CelError(f'compile "{expr}": {exc}') from exc
        if typ != "bool":
            raise CelError(f'compile "{expr}": expression returns {typ}, want bool')
        return CelCondition(expr, program)