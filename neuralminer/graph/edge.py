"""
Edge Protocol - How nodes connect in a workflow graph.

Edges define:
1. Source and target nodes
2. An optional guard deciding whether the edge is taken
3. Either a fixed target or a target computed from run state

Targets are a tagged variant instead of bare callables so the graph stays
introspectable:
- StaticTarget: a fixed node ID, visible to distance and predecessor analysis
- ComputedTarget: a function of RunState, resolved only at routing time

Distance-to-end estimation (used by the fast-path redirect) follows static
targets only. Computed edges are treated as having unknown destinations, so
graphs that rely on them for their only path to the end report those nodes
as unreachable. This is a known precision gap of the estimate.
"""

from collections import deque
from collections.abc import Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

from neuralminer.graph.node import NodeSpec

# Guards and computed targets receive the live RunState
Guard = Callable[[Any], bool]
TargetFn = Callable[[Any], str]


class StaticTarget(BaseModel):
    """A fixed destination node."""

    kind: Literal["static"] = "static"
    node_id: str


class ComputedTarget(BaseModel):
    """A destination chosen from run state when the edge is taken."""

    kind: Literal["computed"] = "computed"
    fn: TargetFn
    description: str = ""


EdgeTarget = Annotated[StaticTarget | ComputedTarget, Field(discriminator="kind")]


class EdgeSpec(BaseModel):
    """
    Specification for an edge between nodes.

    Examples:
        # Unconditional
        EdgeSpec(source="mine", target="evaluate")

        # Guarded: only taken when the miner produced something
        EdgeSpec(
            source="mine",
            target="report",
            guard=lambda state: bool(state.node_outputs.get("mine")),
        )

        # Computed destination
        EdgeSpec(
            source="evaluate",
            target=ComputedTarget(fn=lambda state: "deep-dive" if ... else "report"),
        )

    A plain string target is shorthand for StaticTarget, a plain callable for
    ComputedTarget.
    """

    id: str = ""
    source: str = Field(description="Source node ID")
    target: EdgeTarget = Field(description="Static node ID or computed destination")
    guard: Guard | None = Field(
        default=None, description="Predicate over RunState; edge is taken when it returns True"
    )
    description: str = ""

    model_config = {"extra": "allow"}

    @model_validator(mode="before")
    @classmethod
    def _coerce_target(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        target = data.get("target")
        if isinstance(target, str):
            data = {**data, "target": StaticTarget(node_id=target)}
        elif callable(target) and not isinstance(target, BaseModel):
            data = {**data, "target": ComputedTarget(fn=target)}
        if not data.get("id"):
            label = data["target"].node_id if isinstance(data.get("target"), StaticTarget) else "*"
            data = {**data, "id": f"{data.get('source')}->{label}"}
        return data

    @property
    def static_target(self) -> str | None:
        """Destination node ID, or None when the target is computed."""
        if isinstance(self.target, StaticTarget):
            return self.target.node_id
        return None

    def should_traverse(self, state: Any) -> bool:
        """Edges without a guard are always taken."""
        if self.guard is None:
            return True
        return bool(self.guard(state))

    def resolve_target(self, state: Any) -> str:
        if isinstance(self.target, StaticTarget):
            return self.target.node_id
        return self.target.fn(state)


class GraphSpec(BaseModel):
    """
    Complete, immutable description of a workflow.

    Example:
        GraphSpec(
            id="keyword-discovery",
            name="Keyword discovery",
            start_node="start",
            end_node="end",
            nodes=[
                NodeSpec(id="start", agent_id="seed"),
                NodeSpec(id="mine", agent_id="keyword-miner"),
                NodeSpec(id="report", agent_id="reporter"),
                NodeSpec(id="end", agent_id="sink"),
            ],
            edges=[
                EdgeSpec(source="start", target="mine"),
                EdgeSpec(source="mine", target="report"),
                EdgeSpec(source="report", target="end"),
            ],
        )

    Cycles are allowed. Termination is guaranteed by the run time budget and
    the skip/terminate adjustments, not by the structure.
    """

    id: str
    name: str = ""
    description: str = ""

    start_node: str = Field(description="ID of the first node to execute")
    end_node: str = Field(description="ID of the node that ends a run (never executed)")

    nodes: list[NodeSpec] = Field(default_factory=list, description="All node specifications")
    edges: list[EdgeSpec] = Field(default_factory=list, description="All edge specifications")

    model_config = {"extra": "allow", "frozen": True}

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all static edges entering a node."""
        return [e for e in self.edges if e.static_target == node_id]

    def preceding_nodes(self, node_id: str) -> list[str]:
        """
        Every node that structurally precedes node_id.

        Walks incoming static edges transitively, de-duplicated, nearest
        predecessors first. The node itself is excluded even inside a cycle.
        """
        visited: set[str] = {node_id}
        ordered: list[str] = []
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for edge in self.get_incoming_edges(current):
                if edge.source in visited:
                    continue
                visited.add(edge.source)
                ordered.append(edge.source)
                queue.append(edge.source)
        return ordered

    def distance_to_end(self, node_id: str) -> int | None:
        """
        Shortest unweighted edge count from node_id to the end node.

        Breadth-first over static edges only; None when the end node cannot
        be reached that way.
        """
        if node_id == self.end_node:
            return 0
        visited = {node_id}
        queue = deque([(node_id, 0)])
        while queue:
            current, distance = queue.popleft()
            for edge in self.get_outgoing_edges(current):
                target = edge.static_target
                if target is None or target in visited:
                    continue
                if target == self.end_node:
                    return distance + 1
                visited.add(target)
                queue.append((target, distance + 1))
        return None

    def fast_path_node(self) -> str | None:
        """
        Node to jump to when the run is under time pressure.

        Among all non-end nodes, the one whose distance to the end is
        second-smallest. Ties keep declaration order and unreachable nodes
        sort last. None when the graph has fewer than two non-end nodes.
        """
        candidates = [n.id for n in self.nodes if n.id != self.end_node]
        if len(candidates) < 2:
            return None

        def sort_key(node_id: str) -> tuple[bool, int]:
            distance = self.distance_to_end(node_id)
            return (distance is None, distance or 0)

        return sorted(candidates, key=sort_key)[1]

    def validate(self, agent_ids: set[str] | None = None) -> list[str]:
        """
        Validate the graph structure.

        Args:
            agent_ids: Registered agent IDs; when given, every node's agent
                must be among them.

        Returns:
            All problems found, empty when the graph is valid.
        """
        errors = []

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen.add(node.id)

        if not self.get_node(self.start_node):
            errors.append(f"Start node '{self.start_node}' not found")
        if not self.get_node(self.end_node):
            errors.append(f"End node '{self.end_node}' not found")

        if agent_ids is not None:
            for node in self.nodes:
                if node.agent_id not in agent_ids:
                    errors.append(
                        f"Node '{node.id}' references unregistered agent '{node.agent_id}'"
                    )

        for edge in self.edges:
            if not self.get_node(edge.source):
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            target = edge.static_target
            if target is not None and not self.get_node(target):
                errors.append(f"Edge '{edge.id}' references missing target '{target}'")

        for node in self.nodes:
            if node.id == self.end_node or node.optional:
                continue
            if not self.get_outgoing_edges(node.id):
                errors.append(f"Node '{node.id}' has no outgoing edge")

        return errors
