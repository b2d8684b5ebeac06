"""
Tests for runtime plan adjustments: skip under repeated errors, redirect to
the fast path and terminate under time pressure.
"""

import pytest

from neuralminer.config import CoordinatorConfig
from neuralminer.graph.adjustment import AdjustmentKind, evaluate_adjustment
from neuralminer.graph.coordinator import Coordinator
from neuralminer.graph.edge import EdgeSpec, GraphSpec
from neuralminer.graph.node import Agent, AgentOutput, NodeSpec
from neuralminer.graph.state import NodeError, RunInput, RunMetadata, RunState

CHAIN = ["start", "a", "b", "c", "end"]


def chain_graph():
    return GraphSpec(
        id="chain",
        start_node="start",
        end_node="end",
        nodes=[NodeSpec(id=n, agent_id=f"agent-{n}") for n in CHAIN],
        edges=[EdgeSpec(source=s, target=t) for s, t in zip(CHAIN, CHAIN[1:], strict=False)],
    )


def make_state(current, elapsed=0.0, errors=(), completed=()):
    return RunState(
        run_id="r",
        graph_id="chain",
        input=RunInput(keyword="k"),
        current_node_id=current,
        completed_node_ids=list(completed),
        metadata=RunMetadata(
            start_time=0.0,
            current_time=elapsed,
            errors=[NodeError(node_id=n, error="boom") for n in errors],
        ),
    )


CONFIG = CoordinatorConfig(max_run_time=100.0)


class TestEvaluateAdjustment:
    def test_normal_when_nothing_fires(self):
        assert evaluate_adjustment(chain_graph(), make_state("a", elapsed=10), CONFIG) is None

    def test_skip_after_three_errors(self):
        adjustment = evaluate_adjustment(
            chain_graph(), make_state("a", errors=["a", "a", "a"]), CONFIG
        )
        assert adjustment.kind == AdjustmentKind.SKIP
        assert adjustment.target == "b"

    def test_two_errors_do_not_skip(self):
        state = make_state("a", errors=["a", "a"])
        assert evaluate_adjustment(chain_graph(), state, CONFIG) is None

    def test_errors_of_other_nodes_do_not_count(self):
        state = make_state("a", errors=["b", "b", "b"])
        assert evaluate_adjustment(chain_graph(), state, CONFIG) is None

    def test_computed_first_edge_disables_skip(self):
        graph = GraphSpec(
            id="computed",
            start_node="start",
            end_node="end",
            nodes=[NodeSpec(id=n, agent_id=n) for n in ("start", "end")],
            edges=[EdgeSpec(source="start", target=lambda state: "end")],
        )
        state = make_state("start", errors=["start"] * 3)
        assert evaluate_adjustment(graph, state, CONFIG) is None

    def test_redirect_past_seventy_percent(self):
        adjustment = evaluate_adjustment(chain_graph(), make_state("start", elapsed=71), CONFIG)
        assert adjustment.kind == AdjustmentKind.REDIRECT
        # Distances to end: c=1, b=2, a=3, start=4
        assert adjustment.target == "b"

    def test_redirect_needs_strictly_more_than_ratio(self):
        assert evaluate_adjustment(chain_graph(), make_state("start", elapsed=70), CONFIG) is None

    def test_no_redirect_onto_current_node(self):
        assert evaluate_adjustment(chain_graph(), make_state("b", elapsed=75), CONFIG) is None

    def test_no_redirect_onto_completed_node(self):
        state = make_state("c", elapsed=75, completed=["start", "a", "b"])
        assert evaluate_adjustment(chain_graph(), state, CONFIG) is None

    def test_redirect_covers_the_whole_tail_of_the_budget_by_default(self):
        state = make_state("a", elapsed=285, completed=["start"])
        adjustment = evaluate_adjustment(chain_graph(), state, CoordinatorConfig())
        assert adjustment.kind == AdjustmentKind.REDIRECT
        assert adjustment.target == "b"

    def test_terminate_near_budget(self):
        config = CoordinatorConfig(max_run_time=100.0, terminate_ratio=0.9)
        adjustment = evaluate_adjustment(chain_graph(), make_state("a", elapsed=90), config)
        assert adjustment.kind == AdjustmentKind.TERMINATE
        assert adjustment.target == "end"

    def test_skip_takes_precedence(self):
        state = make_state("a", elapsed=95, errors=["a", "a", "a"])
        assert evaluate_adjustment(chain_graph(), state, CONFIG).kind == AdjustmentKind.SKIP


# ---------------------------------------------------------------------------
# Through the Coordinator
# ---------------------------------------------------------------------------


class TimedAgent(Agent):
    def __init__(self, agent_id, clock=None, spend=0.0):
        self._id = agent_id
        self.clock = clock
        self.spend = spend
        self.calls = 0

    @property
    def id(self):
        return self._id

    async def execute(self, input):
        self.calls += 1
        if self.clock is not None:
            self.clock.advance(self.spend)
        return AgentOutput(data=self._id)


class FlakyAgent(Agent):
    """Raises on the first `failures` calls, then succeeds."""

    def __init__(self, agent_id, failures):
        self._id = agent_id
        self.failures = failures
        self.calls = 0

    @property
    def id(self):
        return self._id

    async def execute(self, input):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"flake {self.calls}")
        return AgentOutput(data="finally")


def register(coordinator, agents, graph):
    for agent in agents.values():
        coordinator.register_agent(agent)
    coordinator.register_graph(graph)


class TestAdjustmentsDuringRun:
    @pytest.mark.asyncio
    async def test_redirect_jumps_to_fast_path(self, clock):
        coordinator = Coordinator(
            config=CoordinatorConfig(enable_critique=False, max_run_time=100.0), clock=clock
        )
        agents = {n: TimedAgent(f"agent-{n}") for n in CHAIN}
        agents["start"] = TimedAgent("agent-start", clock=clock, spend=75.0)
        register(coordinator, agents, chain_graph())

        result = await coordinator.execute("chain", RunInput(keyword="k"))

        assert result.success is True
        assert result.metrics.adjustments == ["redirect"]
        assert agents["a"].calls == 0
        assert agents["b"].calls == 1
        assert agents["c"].calls == 1

    @pytest.mark.asyncio
    async def test_terminate_goes_straight_to_end(self, clock):
        coordinator = Coordinator(
            config=CoordinatorConfig(
                enable_critique=False, max_run_time=100.0, terminate_ratio=0.9
            ),
            clock=clock,
        )
        agents = {n: TimedAgent(f"agent-{n}") for n in CHAIN}
        agents["start"] = TimedAgent("agent-start", clock=clock, spend=95.0)
        register(coordinator, agents, chain_graph())

        result = await coordinator.execute("chain", RunInput(keyword="k"))

        assert result.success is True
        assert result.metrics.adjustments == ["terminate"]
        assert coordinator.get_run_state(result.run_id).completed_node_ids == ["start"]

    @pytest.mark.asyncio
    async def test_dynamic_routing_can_be_disabled(self, clock):
        coordinator = Coordinator(
            config=CoordinatorConfig(
                enable_critique=False, enable_dynamic_routing=False, max_run_time=100.0
            ),
            clock=clock,
        )
        agents = {n: TimedAgent(f"agent-{n}") for n in CHAIN}
        agents["start"] = TimedAgent("agent-start", clock=clock, spend=75.0)
        register(coordinator, agents, chain_graph())

        result = await coordinator.execute("chain", RunInput(keyword="k"))

        assert result.success is True
        assert result.metrics.adjustments == []
        assert agents["a"].calls == 1

    @pytest.mark.asyncio
    async def test_skip_after_repeated_errors(self, clock):
        graph = GraphSpec(
            id="flaky",
            start_node="start",
            end_node="end",
            nodes=[
                NodeSpec(id="start", agent_id="agent-start"),
                NodeSpec(id="flaky", agent_id="agent-flaky", optional=True),
                NodeSpec(id="enrich", agent_id="agent-enrich"),
                NodeSpec(id="report", agent_id="agent-report"),
                NodeSpec(id="end", agent_id="agent-end"),
            ],
            edges=[
                EdgeSpec(source="start", target="flaky"),
                # Never taken by normal routing, only as the skip target
                EdgeSpec(source="flaky", target="report", guard=lambda state: False),
                EdgeSpec(
                    source="flaky",
                    target="flaky",
                    guard=lambda state: "flaky" not in state.completed_node_ids,
                ),
                EdgeSpec(source="flaky", target="enrich"),
                EdgeSpec(source="enrich", target="report"),
                EdgeSpec(source="report", target="end"),
            ],
        )
        agents = {
            "start": TimedAgent("agent-start"),
            "flaky": FlakyAgent("agent-flaky", failures=3),
            "enrich": TimedAgent("agent-enrich"),
            "report": TimedAgent("agent-report"),
            "end": TimedAgent("agent-end"),
        }
        coordinator = Coordinator(config=CoordinatorConfig(enable_critique=False), clock=clock)
        register(coordinator, agents, graph)

        result = await coordinator.execute("flaky", RunInput(keyword="k"))

        assert result.success is True
        assert result.metrics.adjustments == ["skip"]
        assert result.metrics.error_count == 3
        assert agents["flaky"].calls == 4
        assert agents["enrich"].calls == 0
        assert agents["report"].calls == 1
