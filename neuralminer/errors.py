"""Exception types raised by the orchestration core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from neuralminer.recovery.failures import RecoveryAction


class NeuralMinerError(Exception):
    """Base class for all neuralminer errors."""

    pass


class ConfigurationError(NeuralMinerError):
    """Raised when a configuration value is out of range."""

    pass


class GraphNotFoundError(NeuralMinerError):
    """Raised when executing a graph id that was never registered."""

    def __init__(self, graph_id: str):
        self.graph_id = graph_id
        super().__init__(f"Graph '{graph_id}' is not registered")


class GraphInvalidError(NeuralMinerError):
    """Raised at registration when a graph fails structural validation."""

    def __init__(self, graph_id: str, errors: list[str]):
        self.graph_id = graph_id
        self.errors = list(errors)
        super().__init__(f"Graph '{graph_id}' is invalid: " + "; ".join(self.errors))


class AgentNotFoundError(NeuralMinerError):
    """Raised when a node references an agent missing from the registry."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' is not registered")


class RoutingError(NeuralMinerError):
    """Raised when no outgoing edge yields a usable next node."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(message)


class RunTimeoutError(NeuralMinerError):
    """Raised when a run exhausts its time budget."""

    def __init__(self, elapsed: float, budget: float):
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(f"Run exceeded time budget: {elapsed:.2f}s elapsed, budget {budget:.2f}s")


class AgentExecutionError(NeuralMinerError):
    """Raised when an agent reports a failed output instead of raising."""

    def __init__(self, node_id: str, agent_id: str, message: str):
        self.node_id = node_id
        self.agent_id = agent_id
        super().__init__(message)


class AgentReportedFailure(NeuralMinerError):
    """Raised in place of a FAILED output so recovery can classify it like an exception."""

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(message)


class RecoveryAbortedError(NeuralMinerError):
    """Raised when a recovery decision ends the call instead of recovering."""

    def __init__(self, origin_id: str, action: RecoveryAction, cause: BaseException | None = None):
        self.origin_id = origin_id
        self.action = action
        self.cause = cause
        super().__init__(f"{origin_id}: {action.message}")


class CircuitOpenError(NeuralMinerError):
    """Raised when an origin has failed too often inside the monitoring window."""

    def __init__(self, origin_id: str):
        self.origin_id = origin_id
        super().__init__(f"Too many recent failures for '{origin_id}', refusing to proceed")
