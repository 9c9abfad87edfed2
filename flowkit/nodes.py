"""Node and tool contracts, dependency bag and the node-type registry."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from flowkit.ir import FlowError, Node, Port


class NodeKind(ABC):
    """Runtime behaviour a flow node resolves to.

    Ports are declared statically; ``run`` maps input port values to
    output port values.
    """

    @abstractmethod
    def inputs(self) -> list[Port]:
        """Declared input ports."""

    @abstractmethod
    def outputs(self) -> list[Port]:
        """Declared output ports."""

    @abstractmethod
    async def run(self, inputs: Mapping[str, str]) -> dict[str, str]:
        """Execute the node and return its outputs keyed by port name."""


class MetadataAware(NodeKind):
    """A node that also reports side-channel metadata about each execution.

    An exception raised from ``run_with_metadata`` may carry a ``metadata``
    attribute (a dict) so failed runs still surface that information.
    """

    @abstractmethod
    async def run_with_metadata(
        self, inputs: Mapping[str, str]
    ) -> tuple[dict[str, str], dict[str, str] | None]:
        """Execute the node and return ``(outputs, metadata)``."""

    async def run(self, inputs: Mapping[str, str]) -> dict[str, str]:
        outputs, _ = await self.run_with_metadata(inputs)
        return outputs


class Tool(ABC):
    """A named callable taking a JSON argument document and returning text."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name the tool is looked up by."""

    @abstractmethod
    async def execute(self, args: str) -> str:
        """Run the tool with ``args``, a JSON-encoded argument object."""


class MetadataAwareTool(Tool):
    """A tool that also reports side-channel metadata about each call.

    As with :class:`MetadataAware`, an exception may carry a ``metadata``
    attribute.
    """

    @abstractmethod
    async def execute_with_metadata(self, args: str) -> tuple[str, dict[str, str] | None]:
        """Run the tool and return ``(result, metadata)``."""

    async def execute(self, args: str) -> str:
        result, _ = await self.execute_with_metadata(args)
        return result


class ToolLookup(ABC):
    """Resolves tools by name."""

    @abstractmethod
    def lookup(self, name: str) -> Tool | None:
        """Return the tool called ``name``, or ``None`` if there is none."""


ToolSource = Union[ToolLookup, Mapping[str, Tool]]


@dataclass(frozen=True)
class Deps:
    """Dependencies a node factory may draw on when building a node."""

    tools: ToolSource | None = None


NodeFactory = Callable[[Any, Deps], NodeKind]


class NodeRegistry:
    """Thread-safe mapping from node-type names to node factories."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: dict[str, NodeFactory] = {}

    def register(self, type_name: str, factory: NodeFactory) -> None:
        """Associate ``type_name`` with ``factory``; each type registers once."""
        if not type_name:
            raise ValueError("register: empty type")
        if not callable(factory):
            raise TypeError("register: factory is not callable")
        with self._lock:
            if type_name in self._factories:
                raise FlowError(f'register: type "{type_name}" already registered')
            self._factories[type_name] = factory

    def build(self, node: Node, deps: Deps) -> NodeKind:
        """Resolve ``node`` into its runtime :class:`NodeKind`."""
        with self._lock:
            factory = self._factories.get(node.type)
        if factory is None:
            raise FlowError(f'build node "{node.id}": unknown type "{node.type}"')
        try:
            return factory(node.config, deps)
        except Exception as exc:
            raise FlowError(f'build node "{node.id}": {exc}') from exc