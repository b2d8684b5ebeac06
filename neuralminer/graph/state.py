"""Run state, per-node execution history and run results.

RunState is owned by exactly one run and mutated only by the Coordinator
driving it. History entries are append-only and exist for observability;
control flow never reads them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from neuralminer.graph.node import AgentOutput, Critique


class RunInput(BaseModel):
    """What a caller hands to Coordinator.execute()."""

    keyword: str
    options: dict[str, Any] = Field(default_factory=dict)


class NodeError(BaseModel):
    """One recorded node failure."""

    node_id: str
    error: str
    error_type: str = ""
    timestamp: float = 0.0


class RunMetadata(BaseModel):
    start_time: float
    current_time: float
    errors: list[NodeError] = Field(default_factory=list)

    def errors_for(self, node_id: str) -> int:
        return sum(1 for e in self.errors if e.node_id == node_id)


class RunState(BaseModel):
    """Mutable state of a single run."""

    run_id: str
    graph_id: str
    input: RunInput
    current_node_id: str
    completed_node_ids: list[str] = Field(default_factory=list)
    node_outputs: dict[str, AgentOutput] = Field(default_factory=dict)
    metadata: RunMetadata

    @property
    def elapsed(self) -> float:
        return self.metadata.current_time - self.metadata.start_time


class CritiqueRecord(BaseModel):
    """A critique a node's output received, and whether it was accepted."""

    from_agent: str = Field(description="ID of the critiquing agent")
    critique: Critique
    accepted: bool


class ExecutionHistoryEntry(BaseModel):
    """Append-only record of one node execution."""

    node_id: str
    agent_id: str
    start_time: float
    end_time: float | None = None
    success: bool = False
    error: str | None = None
    critiques: list[CritiqueRecord] = Field(default_factory=list)


class RunMetrics(BaseModel):
    execution_time_ms: int = 0
    nodes_executed: int = 0
    nodes_completed: int = 0
    error_count: int = 0
    critiques_received: int = 0
    critiques_accepted: int = 0
    adjustments: list[str] = Field(default_factory=list)


class RunResult(BaseModel):
    """Outcome of Coordinator.execute()."""

    success: bool
    keyword: str
    run_id: str
    graph_id: str
    metrics: RunMetrics = Field(default_factory=RunMetrics)
    error: str | None = None
