"""Pluggable guard expressions for conditional edges."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CondEnv:
    """Environment an edge guard sees: the value flowing through the edge."""

    value: str = ""


class Condition(ABC):
    """A compiled edge guard; must be safe to evaluate from many runs at once."""

    @abstractmethod
    def evaluate(self, env: CondEnv) -> bool:
        """Return whether the edge fires for ``env``; raise if evaluation fails."""


class ConditionEvaluator(ABC):
    """Compiles guard expressions into :class:`Condition` objects."""

    @abstractmethod
    def compile(self, expr: str) -> Condition:
        """Parse ``expr``; raise on syntax or type errors so loading fails early."""