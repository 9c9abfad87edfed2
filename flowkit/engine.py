"""Topological executor that compiles a flow once and runs it many times."""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Optional

from flowkit.condition import CondEnv, Condition, ConditionEvaluator
from flowkit.events import FlowEvent, FlowEventKind
from flowkit.ir import Edge, Flow, FlowError, FlowSource, load
from flowkit.nodes import Deps, MetadataAware, NodeKind, NodeRegistry

_Emit = Callable[[FlowEvent], None]
_Job = Callable[[], Awaitable[None]]


class Runner(ABC):
    """Anything that can execute a compiled flow, synchronously or as a stream."""

    @abstractmethod
    async def run(self, inputs: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Run the flow and return its declared outputs keyed by name."""

    @abstractmethod
    def run_stream(self, inputs: Optional[Mapping[str, str]] = None) -> AsyncIterator[FlowEvent]:
        """Run the flow and yield its lifecycle events, ending with a terminal event."""


def _clone(values: Optional[Mapping[str, str]]) -> Optional[dict[str, str]]:
    return None if values is None else dict(values)


def _check_structure(flow: Flow) -> None:
    """Reject graphs that reference nodes which do not exist or repeat node ids."""
    known: set[str] = set()
    for node in flow.nodes:
        if node.id in known:
            raise FlowError(f'compile: duplicate node id "{node.id}"')
        known.add(node.id)
    for i, edge in enumerate(flow.edges):
        for end, ref in (("source", edge.source), ("target", edge.target)):
            if ref.node not in known:
                raise FlowError(f'compile: edge[{i}] {end} references unknown node "{ref.node}"')
    for kind, refs in (("input", flow.inputs), ("output", flow.outputs)):
        for ref in refs:
            if ref.node not in known:
                raise FlowError(f'compile: {kind} "{ref.name}" references unknown node "{ref.node}"')


def _topological_layers(flow: Flow) -> list[list[str]]:
    indegree = {node.id: 0 for node in flow.nodes}
    successors: dict[str, list[str]] = defaultdict(list)
    for edge in flow.edges:
        successors[edge.source.node].append(edge.target.node)
        indegree[edge.target.node] += 1

    layers: list[list[str]] = []
    layer = [node.id for node in flow.nodes if indegree[node.id] == 0]
    visited = 0
    while layer:
        layers.append(layer)
        visited += len(layer)
        following: list[str] = []
        for node_id in layer:
            for succ in successors[node_id]:
                indegree[succ] -= 1
                if indegree[succ] == 0:
                    following.append(succ)
        layer = following
    if visited != len(flow.nodes):
        raise FlowError("compile: flow contains a cycle")
    return layers


class Engine(Runner):
    """A flow compiled against a node registry; immutable and reusable across runs.

    Layers run one after another; the nodes inside a layer run concurrently,
    at most ``max_node_concurrency`` at a time (0 or less means unlimited).
    """

    def __init__(
        self,
        flow: Flow,
        registry: NodeRegistry,
        deps: Optional[Deps] = None,
        *,
        max_node_concurrency: int = 0,
        condition_evaluator: Optional[ConditionEvaluator] = None,
    ) -> None:
        if registry is None:
            raise ValueError("compile: nil registry")
        deps = deps if deps is not None else Deps()
        _check_structure(flow)

        self._nodes: dict[str, NodeKind] = {
            node.id: registry.build(node, deps) for node in flow.nodes
        }
        self._edge_conditions: list[Optional[Condition]] = [
            self._compile_condition(i, edge, condition_evaluator)
            for i, edge in enumerate(flow.edges)
        ]
        self._preds: dict[str, list[Edge]] = defaultdict(list)
        for edge in flow.edges:
            self._preds[edge.target.node].append(edge)
        self._layers = _topological_layers(flow)
        self._flow = flow
        self._deps = deps
        self._max_node_concurrency = max_node_concurrency

    @classmethod
    def compile(
        cls,
        flow: Flow,
        registry: NodeRegistry,
        deps: Optional[Deps] = None,
        *,
        max_node_concurrency: int = 0,
        condition_evaluator: Optional[ConditionEvaluator] = None,
    ) -> Engine:
        """Resolve every node, precompile edge guards and order the graph."""
        return cls(
            flow,
            registry,
            deps,
            max_node_concurrency=max_node_concurrency,
            condition_evaluator=condition_evaluator,
        )

    @staticmethod
    def _compile_condition(
        index: int, edge: Edge, evaluator: Optional[ConditionEvaluator]
    ) -> Optional[Condition]:
        if not edge.condition:
            return None
        if evaluator is None:
            raise FlowError(
                f'compile: edge[{index}] "{edge.source.node}"→"{edge.target.node}" has a '
                "condition but no ConditionEvaluator was configured"
            )
        try:
            return evaluator.compile(edge.condition)
        except Exception as exc:
            raise FlowError(
                f'compile: edge[{index}] condition "{edge.condition}": {exc}'
            ) from exc

    @property
    def flow_id(self) -> str:
        """Id of the compiled flow."""
        return self._flow.id

    @property
    def flow_name(self) -> str:
        """Declared name of the compiled flow (may be empty)."""
        return self._flow.name

    @property
    def layers(self) -> list[list[str]]:
        """Node ids grouped into topological layers, in execution order."""
        return [list(layer) for layer in self._layers]

    async def run(self, inputs: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Run the flow and return the declared outputs.

        Outputs of skipped nodes are left out rather than reported as errors.
        """
        return await self._execute(inputs, None)

    async def run_stream(
        self, inputs: Optional[Mapping[str, str]] = None
    ) -> AsyncIterator[FlowEvent]:
        """Run the flow, yielding events until ``FLOW_DONE`` or ``FLOW_ERR``."""
        queue: asyncio.Queue[object] = asyncio.Queue()
        finished = object()

        async def drive() -> None:
            try:
                await self._execute(inputs, queue.put_nowait)
            except Exception:
                pass  # already delivered to the consumer as a FLOW_ERR event
            finally:
                queue.put_nowait(finished)

        task = asyncio.ensure_future(drive())
        try:
            while True:
                item = await queue.get()
                if item is finished:
                    break
                assert isinstance(item, FlowEvent)
                yield item
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _execute(self, inputs: Optional[Mapping[str, str]], emit: Optional[_Emit]) -> dict[str, str]:
        def send(event: FlowEvent) -> None:
            if emit is not None:
                emit(event)

        send(FlowEvent(FlowEventKind.FLOW_STARTED, flow_id=self._flow.id))
        try:
            return await self._drive(dict(inputs or {}), send)
        except Exception as exc:
            send(FlowEvent(FlowEventKind.FLOW_ERR, error=exc))
            raise

    async def _drive(self, inputs: dict[str, str], send: _Emit) -> dict[str, str]:
        ports: dict[str, dict[str, str]] = defaultdict(dict)
        activated = {node_id for node_id in self._nodes if not self._preds.get(node_id)}

        for ref in self._flow.inputs:
            if ref.name not in inputs:
                raise FlowError(f'run: missing required input "{ref.name}"')
            ports[ref.node][ref.port] = inputs[ref.name]
            activated.add(ref.node)

        for layer in self._layers:
            jobs: list[_Job] = []
            for node_id in layer:
                if node_id not in activated:
                    send(FlowEvent(FlowEventKind.NODE_SKIPPED, node_id=node_id))
                    continue
                jobs.append(self._node_job(node_id, dict(ports[node_id]), ports, send))
            await self._run_layer(jobs)
            for source_id in layer:
                if source_id in activated:
                    self._fire_edges(source_id, ports, activated)

        outputs: dict[str, str] = {}
        for ref in self._flow.outputs:
            if ref.node not in activated:
                continue
            node_ports = ports.get(ref.node, {})
            if ref.port not in node_ports:
                raise FlowError(
                    f'run: output "{ref.name}" awaits "{ref.node}"."{ref.port}" '
                    "but it was not emitted"
                )
            outputs[ref.name or f"{ref.node}.{ref.port}"] = node_ports[ref.port]

        send(FlowEvent(FlowEventKind.FLOW_DONE, outputs=dict(outputs)))
        return outputs

    def _node_job(
        self,
        node_id: str,
        node_inputs: dict[str, str],
        ports: dict[str, dict[str, str]],
        send: _Emit,
    ) -> _Job:
        node = self._nodes[node_id]

        async def job() -> None:
            send(FlowEvent(FlowEventKind.NODE_STARTED, node_id=node_id, input=dict(node_inputs)))
            metadata: Optional[Mapping[str, str]] = None
            try:
                if isinstance(node, MetadataAware):
                    outputs, metadata = await node.run_with_metadata(dict(node_inputs))
                else:
                    outputs = await node.run(dict(node_inputs))
            except Exception as exc:
                carried = getattr(exc, "metadata", None)
                wrapped = FlowError(f'run: node "{node_id}": {exc}')
                send(
                    FlowEvent(
                        FlowEventKind.NODE_FINISHED,
                        node_id=node_id,
                        error=wrapped,
                        metadata=_clone(carried if isinstance(carried, Mapping) else None),
                    )
                )
                raise wrapped from exc
            produced = dict(outputs or {})
            ports[node_id].update(produced)
            send(
                FlowEvent(
                    FlowEventKind.NODE_FINISHED,
                    node_id=node_id,
                    output=produced,
                    metadata=_clone(metadata),
                )
            )

        return job

    async def _run_layer(self, jobs: list[_Job]) -> None:
        """Run one layer's jobs concurrently; the first failure cancels the rest."""
        if not jobs:
            return
        limit = self._max_node_concurrency
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def guarded(job: _Job) -> None:
            if semaphore is None:
                await job()
                return
            async with semaphore:
                await job()

        tasks = [asyncio.ensure_future(guarded(job)) for job in jobs]
        try:
            _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in tasks:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                raise exc

    def _fire_edges(
        self, source_id: str, ports: dict[str, dict[str, str]], activated: set[str]
    ) -> None:
        source_ports = dict(ports.get(source_id, {}))
        for index, edge in enumerate(self._flow.edges):
            if edge.source.node != source_id:
                continue
            if edge.source.port not in source_ports:
                continue  # the source ran but did not emit this port
            value = source_ports[edge.source.port]
            condition = self._edge_conditions[index]
            if condition is not None:
                try:
                    fire = condition.evaluate(CondEnv(value=value))
                except Exception as exc:
                    raise FlowError(
                        f"run: edge[{index}] ({edge.source.node}.{edge.source.port} → "
                        f"{edge.target.node}.{edge.target.port}) condition: {exc}"
                    ) from exc
                if not fire:
                    continue
            ports[edge.target.node][edge.target.port] = value
            activated.add(edge.target.node)


def load_compile(
    source: FlowSource,
    registry: NodeRegistry,
    deps: Optional[Deps] = None,
    *,
    max_node_concurrency: int = 0,
    condition_evaluator: Optional[ConditionEvaluator] = None,
) -> Engine:
    """Load a flow from JSON and compile it in one step."""
    return Engine.compile(
        load(source),
        registry,
        deps,
        max_node_concurrency=max_node_concurrency,
        condition_evaluator=condition_evaluator,
    )