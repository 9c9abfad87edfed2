# flowkit

flowkit describes a workflow as a directed acyclic graph of nodes joined by
port-to-port edges. You write the graph as JSON. flowkit checks it when it is
compiled, and an asyncio-based topological engine runs it. Each node is a
small unit of work that you register by type name. Edges can carry guard
expressions, which let a flow send a value down one branch and skip another.

The package needs nothing outside the standard library.

## The flow format

```json
{
  "id": "echo_chain",
  "name": "echo chain",
  "nodes": [
    { "id": "upper",   "type": "tool", "config": { "tool": "upper" } },
    { "id": "reverse", "type": "tool", "config": { "tool": "reverse" } }
  ],
  "edges": [
    { "source": { "node": "upper",   "port": "output" },
      "target": { "node": "reverse", "port": "input"  } }
  ],
  "inputs":  [{ "name": "in",  "node": "upper",   "port": "input"  }],
  "outputs": [{ "name": "out", "node": "reverse", "port": "output" }]
}
```

- `nodes`: each node has an `id` and a `type`. The `type` is looked up in a
  `NodeRegistry`. A node may also have a `config` value, which is passed to the
  registered factory as it is.
- `edges`: each edge joins a source `(node, port)` to a target `(node, port)`.
  An edge may carry a `condition`. When the condition is false, the edge does
  not fire.
- `inputs` / `outputs`: these name the ports that receive the values passed to
  a run, and the ports whose values the run returns.

The types for this format live in `flowkit.ir`: `Flow`, `Node`, `Edge`,
`PortRef`, `NamedPortRef` and `Port`.

- `load(source)` accepts JSON text, bytes or a readable file. It rejects
  unknown fields and wrong value types by raising `LoadError`, which is a
  subclass of `FlowError`.
- `marshal(flow)` writes indented JSON that `load` reads back.
- `Flow.from_dict` and `Flow.to_dict` do the same conversion on plain
  dictionaries.

## Nodes and tools

The contracts for nodes and tools live in `flowkit.nodes`.

- `NodeKind` declares `inputs()` and `outputs()` as lists of `Port`. Its
  `async run(inputs)` method maps input port values to output port values.
- `MetadataAware` is a `NodeKind` that also implements
  `async run_with_metadata(inputs)`, which returns `(outputs, metadata)`. The
  metadata is attached to the node's `NODE_FINISHED` event. If an exception
  carries a `metadata` attribute, that metadata is kept on the failure event
  too.
- `Tool` has a `name` property and an `async execute(args)` method, where
  `args` is a JSON argument string. `MetadataAwareTool` adds
  `execute_with_metadata`.
- `Deps(tools=...)` holds either a `ToolLookup` or a plain mapping of name to
  tool. Node factories receive it.
- `NodeRegistry.register(type_name, factory)` raises in these cases:
  - `ValueError` when the name is empty.
  - `TypeError` when the factory is not callable.
  - `FlowError` when the name is already registered.
- `NodeRegistry.build(node, deps)` raises `FlowError` when the type is unknown
  or when the factory fails.

`flowkit.demo_tools` includes a few ready-made tools:

| Name | What it gives you |
| --- | --- |
| `echo_chain_tools()` | The tools `upper` and `reverse`. |
| `router_tools()` | The tools `classify`, `make_greeting` and `say_other`. |
| `tools_by_name(tools)` | A mapping keyed by tool name. It skips `None`, and later duplicates win. |
| `FuncTool(name, description, func)` | A tool built from a sync or async function of the JSON arguments. |

## Running a flow

flowkit has no built-in node types, so you register the ones your flows use.
This example wraps tools as one-input, one-output nodes:

```python
import asyncio
import json

from flowkit.cel import CelEvaluator
from flowkit.demo_tools import echo_chain_tools, router_tools, tools_by_name
from flowkit.engine import load_compile
from flowkit.ir import Port
from flowkit.nodes import Deps, NodeKind, NodeRegistry


class ToolNode(NodeKind):
    def __init__(self, tool):
        self.tool = tool

    def inputs(self):
        return [Port("input")]

    def outputs(self):
        return [Port("output")]

    async def run(self, inputs):
        args = json.dumps({"input": inputs.get("input", "")})
        return {"output": await self.tool.execute(args)}


registry = NodeRegistry()
registry.register("tool", lambda config, deps: ToolNode(deps.tools[config["tool"]]))
deps = Deps(tools=tools_by_name(echo_chain_tools() + router_tools()))

with open("flow.json") as fh:
    engine = load_compile(fh, registry, deps, condition_evaluator=CelEvaluator())

print(asyncio.run(engine.run({"in": "hello"})))  # {'out': 'OLLEH'}
```

`Engine.compile(flow, registry, deps, ...)` and `load_compile(source, ...)`
work through these steps, in order:

1. Reject duplicate node ids, and reject edges, inputs or outputs that refer
   to unknown nodes.
2. Build every node through the registry.
3. Compile every edge condition. If a flow has a condition and no
   `condition_evaluator` was given, compilation fails.
4. Order the nodes into topological layers, which also rejects cycles.

Problems in steps 1, 3 and 4 raise `FlowError`. `engine.layers` shows the
resulting layers.

Layers run one after another. Nodes within a layer run concurrently, and
`max_node_concurrency` caps how many run at once. A value of 0 or less means
there is no cap. The first node that fails cancels the rest of its layer.

A compiled `Engine` is a `Runner`. You can run it any number of times:

- `await engine.run(inputs)` returns the declared outputs, keyed by name. An
  output without a name is keyed as `node.port`. A node is skipped when none
  of its incoming edges fired, and its outputs are then left out. A missing
  required input, a failing node or a failing condition raises `FlowError`.
- `async for event in engine.run_stream(inputs)` yields `FlowEvent` objects
  from `flowkit.events`:
  - first `FLOW_STARTED`;
  - then `NODE_STARTED` and `NODE_FINISHED`, or `NODE_SKIPPED`, for each node;
  - then `FLOW_DONE` (with `outputs`) or `FLOW_ERR` (with `error`).

  `FlowEvent.payload()` returns the JSON-ready form of an event. Fields that
  are not set are left out.

`engine.flow_id` and `engine.flow_name` name the flow the engine was compiled
from.

## Edge conditions

`flowkit.cel.CelEvaluator` compiles a statically typed subset of CEL. The
expression sees one variable, `value`, which is the string flowing through the
edge:

```
value == "go"
value.startsWith("hello")
value.matches("^[A-Z]+$")
size(value) > 3 && value != "skip"
```

The subset supports the following:

- Literals: string, int, double and bool.
- Comparison and arithmetic operators.
- Logical operators: `&&`, `||` and `!`.
- The ternary operator `?:`.
- The functions `size`, `int`, `double` and `string`.
- The string methods `size`, `startsWith`, `endsWith`, `contains`, `matches`,
  `lowerAscii`, `upperAscii` and `trim`.

`compile` raises `CelError` for any of these:

- A syntax error.
- A reference to an unknown variable.
- An expression that does not produce a bool.

To use a different expression language, implement `ConditionEvaluator` and
`Condition` from `flowkit.condition`.

## Serving helpers

`flowkit.cache.EngineCache(capacity)` is a thread-safe LRU cache of compiled
engines, keyed by flow id.

- `get` returns `None` on a miss.
- A capacity of 0 or less means the cache never evicts.

`flowkit.auth` contains the following:

- `BearerTokenAuthenticator(token)` checks an `Authorization: Bearer token`
  header. Depending on the header, it does one of three things:
  - It raises `Unauthorized` when the header is missing or malformed.
  - It raises `Forbidden` when the token is wrong.
  - It allows every request when its token is empty.
- `auth_bypass(path)` is true for `/healthz` only.
- `authorize(authenticator, path, headers)` returns `None` when the request
  may go ahead. Otherwise it returns an `AuthFailure` with one of two
  statuses:
  - 401 for `Unauthorized`, with a `WWW-Authenticate` challenge header.
  - 403 for any other exception.

## What flowkit does not do

- flowkit has no command-line program.
- It has no HTTP server. The cache and auth helpers are building blocks for
  one, not a server.
- It does not store flows or run history.
- It does not come with a ready-made node type, such as a tool node. You
  register those yourself, as in the example above.