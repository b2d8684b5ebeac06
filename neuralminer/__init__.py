"""
NeuralMiner - orchestration core for multi-agent keyword research.

A Coordinator runs workflow graphs of agents, lets peer agents critique
each other's output, and adapts routing under error or time pressure. The
RecoveryManager decides how callers should react when an agent fails.
"""

from neuralminer.config import CoordinatorConfig, RecoveryConfig
from neuralminer.errors import (
    AgentExecutionError,
    AgentNotFoundError,
    AgentReportedFailure,
    CircuitOpenError,
    ConfigurationError,
    GraphInvalidError,
    GraphNotFoundError,
    NeuralMinerError,
    RecoveryAbortedError,
    RoutingError,
    RunTimeoutError,
)
from neuralminer.graph import (
    Agent,
    AgentInput,
    AgentOutput,
    AgentStatus,
    ComputedTarget,
    Coordinator,
    Critique,
    CritiqueResponse,
    EdgeSpec,
    GraphSpec,
    NodeSpec,
    RunInput,
    RunResult,
    get_default_coordinator,
)
from neuralminer.recovery import (
    FailureKind,
    RecoveringAgent,
    RecoveryManager,
    RecoveryStrategy,
    classify_error,
)
from neuralminer.runtime import EventBus, EventType

__version__ = "0.1.0"

__all__ = [
    # Config
    "CoordinatorConfig",
    "RecoveryConfig",
    # Graph
    "Agent",
    "AgentInput",
    "AgentOutput",
    "AgentStatus",
    "ComputedTarget",
    "Coordinator",
    "Critique",
    "CritiqueResponse",
    "EdgeSpec",
    "GraphSpec",
    "NodeSpec",
    "RunInput",
    "RunResult",
    "get_default_coordinator",
    # Recovery
    "FailureKind",
    "RecoveringAgent",
    "RecoveryManager",
    "RecoveryStrategy",
    "classify_error",
    # Runtime
    "EventBus",
    "EventType",
    # Errors
    "NeuralMinerError",
    "ConfigurationError",
    "GraphNotFoundError",
    "GraphInvalidError",
    "AgentNotFoundError",
    "AgentExecutionError",
    "AgentReportedFailure",
    "RoutingError",
    "RunTimeoutError",
    "RecoveryAbortedError",
    "CircuitOpenError",
]
