"""Serializable flow description: nodes, edges and port references."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import IO, Any, Union

FlowSource = Union[str, bytes, bytearray, IO[str], IO[bytes]]


class FlowError(Exception):
    """Base class for errors raised while building or running a flow."""


class LoadError(FlowError):
    """A flow document could not be parsed."""


@dataclass(frozen=True)
class PortRef:
    """A (node, port) pair."""

    node: str = ""
    port: str = ""


@dataclass(frozen=True)
class NamedPortRef:
    """A port reference with the external name used for run inputs/outputs."""

    node: str = ""
    port: str = ""
    name: str = ""


@dataclass(frozen=True)
class Port:
    """Static descriptor of one input or output port of a node type."""

    name: str
    type: str = ""


@dataclass
class Node:
    """One vertex of the flow graph; ``type`` resolves through a registry."""

    id: str = ""
    type: str = ""
    config: Any = None


@dataclass
class Edge:
    """Connects a source port to a target port, optionally guarded."""

    source: PortRef = field(default_factory=PortRef)
    target: PortRef = field(default_factory=PortRef)
    condition: str = ""


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _object(data: Any, where: str, allowed: frozenset[str]) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise LoadError(f"{where}: expected a JSON object, got {_json_type(data)}")
    for key in data:
        if key not in allowed:
            raise LoadError(f'{where}: unknown field "{key}"')
    return data


def _string(data: dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise LoadError(f'{where}: field "{key}" must be a string, got {_json_type(value)}')
    return value


def _array(data: dict[str, Any], key: str, where: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise LoadError(f'{where}: field "{key}" must be an array, got {_json_type(value)}')
    return value


_PORT_REF_KEYS = frozenset({"node", "port"})
_NAMED_REF_KEYS = frozenset({"name", "node", "port"})
_NODE_KEYS = frozenset({"id", "type", "config"})
_EDGE_KEYS = frozenset({"source", "target", "condition"})
_FLOW_KEYS = frozenset({"id", "name", "description", "nodes", "edges", "inputs", "outputs"})


def _parse_port_ref(data: Any, where: str) -> PortRef:
    if data is None:
        return PortRef()
    obj = _object(data, where, _PORT_REF_KEYS)
    return PortRef(node=_string(obj, "node", where), port=_string(obj, "port", where))


def _parse_named_ref(data: Any, where: str) -> NamedPortRef:
    obj = _object(data, where, _NAMED_REF_KEYS)
    return NamedPortRef(
        node=_string(obj, "node", where),
        port=_string(obj, "port", where),
        name=_string(obj, "name", where),
    )


def _parse_node(data: Any, where: str) -> Node:
    obj = _object(data, where, _NODE_KEYS)
    return Node(
        id=_string(obj, "id", where),
        type=_string(obj, "type", where),
        config=obj.get("config"),
    )


def _parse_edge(data: Any, where: str) -> Edge:
    obj = _object(data, where, _EDGE_KEYS)
    return Edge(
        source=_parse_port_ref(obj.get("source"), f"{where}.source"),
        target=_parse_port_ref(obj.get("target"), f"{where}.target"),
        condition=_string(obj, "condition", where),
    )


def _port_ref_dict(ref: PortRef) -> dict[str, str]:
    return {"node": ref.node, "port": ref.port}


def _named_ref_dict(ref: NamedPortRef) -> dict[str, str]:
    out: dict[str, str] = {}
    if ref.name:
        out["name"] = ref.name
    out["node"] = ref.node
    out["port"] = ref.port
    return out


def _node_dict(node: Node) -> dict[str, Any]:
    out: dict[str, Any] = {"id": node.id, "type": node.type}
    if node.config is not None:
        out["config"] = node.config
    return out


def _edge_dict(edge: Edge) -> dict[str, Any]:
    out: dict[str, Any] = {
        "source": _port_ref_dict(edge.source),
        "target": _port_ref_dict(edge.target),
    }
    if edge.condition:
        out["condition"] = edge.condition
    return out


@dataclass
class Flow:
    """A named DAG of nodes and edges with declared input and output ports."""

    id: str = ""
    name: str = ""
    description: str = ""
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    inputs: list[NamedPortRef] = field(default_factory=list)
    outputs: list[NamedPortRef] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> Flow:
        """Build a flow from decoded JSON, rejecting unknown fields."""
        obj = _object(data, "flow", _FLOW_KEYS)
        return cls(
            id=_string(obj, "id", "flow"),
            name=_string(obj, "name", "flow"),
            description=_string(obj, "description", "flow"),
            nodes=[_parse_node(n, f"nodes[{i}]") for i, n in enumerate(_array(obj, "nodes", "flow"))],
            edges=[_parse_edge(e, f"edges[{i}]") for i, e in enumerate(_array(obj, "edges", "flow"))],
            inputs=[
                _parse_named_ref(r, f"inputs[{i}]")
                for i, r in enumerate(_array(obj, "inputs", "flow"))
            ],
            outputs=[
                _parse_named_ref(r, f"outputs[{i}]")
                for i, r in enumerate(_array(obj, "outputs", "flow"))
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation; empty optional fields are omitted."""
        out: dict[str, Any] = {"id": self.id}
        if self.name:
            out["name"] = self.name
        if self.description:
            out["description"] = self.description
        out["nodes"] = [_node_dict(n) for n in self.nodes]
        out["edges"] = [_edge_dict(e) for e in self.edges]
        if self.inputs:
            out["inputs"] = [_named_ref_dict(r) for r in self.inputs]
        if self.outputs:
            out["outputs"] = [_named_ref_dict(r) for r in self.outputs]
        return out


def load(source: FlowSource) -> Flow:
    """Parse a flow from JSON text, bytes or a readable file.

    Only the JSON syntax and shape are checked, not the graph itself.
    Anything after the first JSON value is ignored.
    """
    text: Any = source.read() if hasattr(source, "read") else source
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise LoadError(f"load: {exc}") from exc
    if not isinstance(text, str):
        raise TypeError(f"load: unsupported source type {type(source).__name__}")
    try:
        data, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except json.JSONDecodeError as exc:
        raise LoadError(f"load: {exc}") from exc
    return Flow.from_dict(data)


def marshal(flow: Flow) -> str:
    """Serialize a flow as indented JSON; round-trips through :func:`load`."""
    return json.dumps(flow.to_dict(), indent=2, ensure_ascii=False)