"""Graph structures: Nodes, Edges, Run state and the Coordinator."""

from neuralminer.graph.adjustment import AdjustmentKind, PlanAdjustment, evaluate_adjustment
from neuralminer.graph.coordinator import (
    Coordinator,
    get_default_coordinator,
    reset_default_coordinator,
)
from neuralminer.graph.critique import CritiqueRound, run_critique_round, sample_size
from neuralminer.graph.edge import ComputedTarget, EdgeSpec, GraphSpec, StaticTarget
from neuralminer.graph.node import (
    Agent,
    AgentInput,
    AgentOutput,
    AgentStatus,
    Critique,
    CritiqueResponse,
    NodeSpec,
)
from neuralminer.graph.state import (
    CritiqueRecord,
    ExecutionHistoryEntry,
    NodeError,
    RunInput,
    RunMetadata,
    RunMetrics,
    RunResult,
    RunState,
)

__all__ = [
    # Node / agent contract
    "Agent",
    "AgentInput",
    "AgentOutput",
    "AgentStatus",
    "Critique",
    "CritiqueResponse",
    "NodeSpec",
    # Edge / graph
    "EdgeSpec",
    "GraphSpec",
    "StaticTarget",
    "ComputedTarget",
    # Run state
    "RunInput",
    "RunState",
    "RunMetadata",
    "RunMetrics",
    "RunResult",
    "NodeError",
    "CritiqueRecord",
    "ExecutionHistoryEntry",
    # Adjustments and critique
    "AdjustmentKind",
    "PlanAdjustment",
    "evaluate_adjustment",
    "CritiqueRound",
    "run_critique_round",
    "sample_size",
    # Coordinator
    "Coordinator",
    "get_default_coordinator",
    "reset_default_coordinator",
]
