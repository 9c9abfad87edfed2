"""Typed events emitted while a flow runs."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class FlowEventKind(enum.IntEnum):
    """Variants of :class:`FlowEvent`, in the order a run produces them."""

    FLOW_STARTED = 0
    NODE_STARTED = 1
    NODE_FINISHED = 2
    NODE_SKIPPED = 3
    FLOW_DONE = 4
    FLOW_ERR = 5


@dataclass
class FlowEvent:
    """One lifecycle event of a flow run; which fields are set depends on ``kind``."""

    kind: FlowEventKind
    flow_id: str = ""
    node_id: str = ""
    input: dict[str, str] | None = None
    output: dict[str, str] | None = None
    outputs: dict[str, str] | None = None
    error: BaseException | None = None
    metadata: dict[str, str] | None = None

    def payload(self) -> dict[str, Any]:
        """Return the JSON-ready body of this event, leaving out unset fields."""
        out: dict[str, Any] = {}
        if self.flow_id:
            out["flow"] = self.flow_id
        if self.node_id:
            out["node"] = self.node_id
        if self.input is not None:
            out["input"] = dict(self.input)
        if self.output is not None:
            out["output"] = dict(self.output)
        if self.outputs is not None:
            out["outputs"] = dict(self.outputs)
        if self.error is not None:
            out["error"] = str(self.error)
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out