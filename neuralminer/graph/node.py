"""
Node Protocol - The agent contract and the graph steps bound to agents.

A node is one step of a workflow graph. It names the agent that performs
the step; the agent itself is registered with the Coordinator separately so
the same graph can be run against different agent implementations.

Agents may also take part in peer review:
- critique(): challenge another agent's output (default: no opinion)
- receive_critique(): decide whether to accept a peer's critique
"""

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class AgentStatus(StrEnum):
    """Outcome reported by an agent."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Usable but incomplete, never critiqued
    FAILED = "failed"  # Treated as a node failure


class NodeSpec(BaseModel):
    """
    Specification for one step of a workflow graph.

    Example:
        NodeSpec(
            id="mine",
            agent_id="keyword-miner",
            description="Expand the seed keyword",
            optional=False,
        )
    """

    id: str
    agent_id: str = Field(description="ID of the registered agent that runs this step")
    description: str = ""
    optional: bool = Field(
        default=False, description="Failures of optional nodes are absorbed and the run continues"
    )

    model_config = {"extra": "allow"}


class AgentInput(BaseModel):
    """Input handed to Agent.execute()."""

    keyword: str
    options: dict[str, Any] = Field(default_factory=dict)
    previous_outputs: dict[str, Any] = Field(
        default_factory=dict, description="Output data of preceding nodes, keyed by agent ID"
    )


class AgentOutput(BaseModel):
    """Result of Agent.execute()."""

    data: Any = None
    status: AgentStatus = AgentStatus.SUCCESS
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failed(cls, error: str, **metadata: Any) -> "AgentOutput":
        return cls(status=AgentStatus.FAILED, error=error, metadata=metadata)


class Critique(BaseModel):
    """A peer agent's structured challenge to another agent's output."""

    content: str
    reasons: list[str] = Field(default_factory=list)
    severity: int = Field(default=3, ge=1, le=5, description="1 = minor, 5 = critical")
    suggestions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CritiqueResponse(BaseModel):
    """How the producing agent answered a critique."""

    accepted: bool
    content: str = ""
    updated_output: AgentOutput | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Agent(ABC):
    """
    Base class for everything the Coordinator can run.

    Subclasses must provide `id` and `execute`. The critique hooks default
    to "no opinion" and "accept without change".
    """

    @property
    @abstractmethod
    def id(self) -> str:
        """Stable identity used for registration and critique bookkeeping."""

    @abstractmethod
    async def execute(self, input: AgentInput) -> AgentOutput:
        """Run the agent. May raise; may also return a FAILED output."""

    async def critique(self, peer_id: str, peer_output: AgentOutput) -> Critique | None:
        return None

    async def receive_critique(
        self, critique: Critique, current_output: AgentOutput
    ) -> CritiqueResponse:
        return CritiqueResponse(accepted=True, content="acknowledged")
