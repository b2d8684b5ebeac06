"""
Coordinator - Runs workflow graphs.

The coordinator:
1. Holds the agent and graph registries
2. Builds fresh RunState for every execute() call
3. Executes nodes one at a time, following edges
4. Lets sampled peer agents critique each successful output
5. Adjusts the plan (skip/redirect/terminate) under error or time pressure
6. Returns a RunResult; run-level failures never raise

Several runs may be in flight on one Coordinator. They share only the
registries; each RunState is owned by the run that created it.
"""

import logging
import random
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable

from neuralminer.config import CoordinatorConfig
from neuralminer.errors import (
    AgentExecutionError,
    AgentNotFoundError,
    GraphInvalidError,
    GraphNotFoundError,
    RoutingError,
    RunTimeoutError,
)
from neuralminer.graph.adjustment import evaluate_adjustment
from neuralminer.graph.critique import run_critique_round, sample_critics
from neuralminer.graph.edge import EdgeSpec, GraphSpec
from neuralminer.graph.node import Agent, AgentInput, AgentStatus, NodeSpec
from neuralminer.graph.state import (
    ExecutionHistoryEntry,
    NodeError,
    RunInput,
    RunMetadata,
    RunMetrics,
    RunResult,
    RunState,
)
from neuralminer.observability import set_trace_context
from neuralminer.runtime.event_bus import EventBus


class Coordinator:
    """
    Executes workflow graphs against registered agents.

    Example:
        coordinator = Coordinator(config=CoordinatorConfig(critique_sampling_rate=0.5))
        coordinator.register_agent(KeywordMiner())
        coordinator.register_agent(Reporter())
        coordinator.register_graph(graph_spec)

        result = await coordinator.execute("keyword-discovery", RunInput(keyword="note apps"))
        history = coordinator.get_execution_history(result.run_id)
    """

    STREAM_ID = "coordinator"

    def __init__(
        self,
        config: CoordinatorConfig | None = None,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the coordinator.

        Args:
            config: Run-loop behaviour (defaults to CoordinatorConfig())
            event_bus: Bus for lifecycle events (a private one if omitted)
            rng: Randomness for critique sampling; seed it for reproducible runs
            clock: Seconds source used for the time budget and history
        """
        self.config = config or CoordinatorConfig()
        self.event_bus = event_bus or EventBus()
        self._rng = rng or random.Random()
        self._clock = clock

        self._agents: dict[str, Agent] = {}
        self._graphs: dict[str, GraphSpec] = {}

        # Finished and in-flight runs, oldest first, bounded by max_retained_runs
        self._run_states: OrderedDict[str, RunState] = OrderedDict()
        self._histories: dict[str, list[ExecutionHistoryEntry]] = {}

        self.logger = logging.getLogger(__name__)

    # === REGISTRY ===

    def register_agent(self, agent: Agent) -> None:
        if agent.id in self._agents:
            self.logger.warning(f"⚠ Replacing already registered agent '{agent.id}'")
        self._agents[agent.id] = agent
        self.logger.debug(f"Agent registered: {agent.id}")

    def unregister_agent(self, agent_id: str) -> bool:
        return self._agents.pop(agent_id, None) is not None

    def get_agent(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def register_graph(self, graph: GraphSpec) -> None:
        """
        Validate and register a graph.

        Raises:
            GraphInvalidError: unregistered agent reference, missing start or
                end node, or a required node without an outgoing edge
        """
        errors = graph.validate(agent_ids=set(self._agents))
        if errors:
            for err in errors:
                self.logger.error(f"   • {err}")
            raise GraphInvalidError(graph.id, errors)
        self._graphs[graph.id] = graph
        self.logger.info(f"✓ Graph registered: {graph.name or graph.id} ({graph.id})")

    def unregister_graph(self, graph_id: str) -> bool:
        return self._graphs.pop(graph_id, None) is not None

    def get_graph(self, graph_id: str) -> GraphSpec:
        graph = self._graphs.get(graph_id)
        if graph is None:
            raise GraphNotFoundError(graph_id)
        return graph

    def list_graphs(self) -> list[str]:
        return list(self._graphs)

    # === INSPECTION ===

    def get_execution_history(self, run_id: str) -> list[ExecutionHistoryEntry] | None:
        """Per-node history of a run, in execution order. None if unknown or evicted."""
        history = self._histories.get(run_id)
        return list(history) if history is not None else None

    def get_run_state(self, run_id: str) -> RunState | None:
        return self._run_states.get(run_id)

    def _retain(self, state: RunState, history: list[ExecutionHistoryEntry]) -> None:
        self._run_states[state.run_id] = state
        self._histories[state.run_id] = history
        while len(self._run_states) > self.config.max_retained_runs:
            evicted, _ = self._run_states.popitem(last=False)
            self._histories.pop(evicted, None)

    # === EXECUTION ===

    async def execute(self, graph_id: str, run_input: RunInput | dict) -> RunResult:
        """
        Run a registered graph to its end node.

        Raises:
            GraphNotFoundError: graph_id was never registered

        Every other failure (required node, routing, time budget) is
        reported as RunResult(success=False, error=...) carrying the metrics
        collected up to that point.
        """
        graph = self.get_graph(graph_id)
        if isinstance(run_input, dict):
            run_input = RunInput.model_validate(run_input)

        run_id = uuid.uuid4().hex
        now = self._clock()
        state = RunState(
            run_id=run_id,
            graph_id=graph.id,
            input=run_input,
            current_node_id=graph.start_node,
            metadata=RunMetadata(start_time=now, current_time=now),
        )
        history: list[ExecutionHistoryEntry] = []
        adjustments: list[str] = []
        self._retain(state, history)

        set_trace_context(run_id=run_id, graph_id=graph.id, keyword=run_input.keyword)
        self.logger.info(f"🚀 Starting run: {graph.name or graph.id}")
        self.logger.info(f"   Keyword: {run_input.keyword}")
        self.logger.info(f"   Start node: {graph.start_node}")
        await self.event_bus.emit_run_started(
            stream_id=self.STREAM_ID,
            run_id=run_id,
            graph_id=graph.id,
            keyword=run_input.keyword,
        )

        try:
            await self._run_until_end(graph, state, history, adjustments)
        except Exception as e:
            state.metadata.current_time = self._clock()
            metrics = self._collect_metrics(state, history, adjustments)
            self.logger.error(f"✗ Run failed at '{state.current_node_id}': {e}")
            await self.event_bus.emit_run_failed(
                stream_id=self.STREAM_ID,
                run_id=run_id,
                error=str(e),
                node_id=state.current_node_id,
            )
            return RunResult(
                success=False,
                keyword=run_input.keyword,
                run_id=run_id,
                graph_id=graph.id,
                metrics=metrics,
                error=str(e),
            )

        state.metadata.current_time = self._clock()
        metrics = self._collect_metrics(state, history, adjustments)
        self.logger.info(
            f"✓ Run completed: {metrics.nodes_completed} nodes in {metrics.execution_time_ms}ms"
        )
        await self.event_bus.emit_run_completed(
            stream_id=self.STREAM_ID,
            run_id=run_id,
            metrics=metrics.model_dump(),
        )
        return RunResult(
            success=True,
            keyword=run_input.keyword,
            run_id=run_id,
            graph_id=graph.id,
            metrics=metrics,
        )

    async def _run_until_end(
        self,
        graph: GraphSpec,
        state: RunState,
        history: list[ExecutionHistoryEntry],
        adjustments: list[str],
    ) -> None:
        # The end node marks completion and is never executed
        while state.current_node_id != graph.end_node:
            state.metadata.current_time = self._clock()
            if state.elapsed > self.config.max_run_time:
                raise RunTimeoutError(state.elapsed, self.config.max_run_time)

            node = graph.get_node(state.current_node_id)
            if node is None:
                raise RoutingError(state.current_node_id, f"Unknown node '{state.current_node_id}'")

            succeeded = await self._execute_node(graph, node, state, history)

            next_node: str | None = None
            if succeeded and self.config.enable_dynamic_routing:
                state.metadata.current_time = self._clock()
                adjustment = evaluate_adjustment(graph, state, self.config)
                if adjustment is not None:
                    self.logger.warning(
                        f"⚠ Plan adjusted ({adjustment.kind}): {node.id} → {adjustment.target}"
                        f" ({adjustment.reason})"
                    )
                    adjustments.append(adjustment.kind.value)
                    await self.event_bus.emit_plan_adjusted(
                        stream_id=self.STREAM_ID,
                        node_id=node.id,
                        run_id=state.run_id,
                        kind=adjustment.kind.value,
                        target=adjustment.target,
                        reason=adjustment.reason,
                    )
                    next_node = adjustment.target

            if next_node is None:
                next_node, edge = self._resolve_next_node(graph, state)
                self.logger.info(f"   ↪ {node.id} → {next_node}")
                await self.event_bus.emit_edge_traversed(
                    stream_id=self.STREAM_ID,
                    source_node=node.id,
                    target_node=next_node,
                    run_id=state.run_id,
                    edge_id=edge.id,
                )

            state.current_node_id = next_node

    async def _execute_node(
        self,
        graph: GraphSpec,
        node: NodeSpec,
        state: RunState,
        history: list[ExecutionHistoryEntry],
    ) -> bool:
        """
        Run one node. Returns False when an optional node failed.

        A required node's failure is re-raised after being recorded.
        """
        set_trace_context(node_id=node.id)
        entry = ExecutionHistoryEntry(
            node_id=node.id, agent_id=node.agent_id, start_time=self._clock()
        )
        history.append(entry)

        self.logger.info(f"▶ Node: {node.id} (agent: {node.agent_id})")
        await self.event_bus.emit_node_started(
            stream_id=self.STREAM_ID, node_id=node.id, run_id=state.run_id
        )

        try:
            agent = self.get_agent(node.agent_id)
            output = await agent.execute(self._prepare_input(graph, node, state))
            if output.status == AgentStatus.FAILED:
                raise AgentExecutionError(
                    node.id, agent.id, output.error or f"Agent '{agent.id}' reported failure"
                )
        except Exception as e:
            entry.end_time = self._clock()
            entry.error = str(e)
            state.metadata.errors.append(
                NodeError(
                    node_id=node.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    timestamp=entry.end_time,
                )
            )
            await self.event_bus.emit_node_failed(
                stream_id=self.STREAM_ID,
                node_id=node.id,
                run_id=state.run_id,
                error=str(e),
                optional=node.optional,
            )
            if node.optional:
                self.logger.warning(f"⚠ Optional node '{node.id}' failed, continuing: {e}")
                return False
            self.logger.error(f"   ✗ Failed: {e}")
            raise

        state.node_outputs[node.id] = output
        if node.id not in state.completed_node_ids:
            state.completed_node_ids.append(node.id)

        if self.config.enable_critique and output.status == AgentStatus.SUCCESS:
            critics = sample_critics(
                agent.id, self._agents, self.config.critique_sampling_rate, self._rng
            )
            critique_round = await run_critique_round(agent, output, critics)
            state.node_outputs[node.id] = critique_round.output
            entry.critiques.extend(critique_round.records)
            for record in critique_round.records:
                await self.event_bus.emit_critique_received(
                    stream_id=self.STREAM_ID,
                    node_id=node.id,
                    run_id=state.run_id,
                    from_agent=record.from_agent,
                    severity=record.critique.severity,
                    accepted=record.accepted,
                )

        entry.success = True
        entry.end_time = self._clock()
        self.logger.info(f"   ✓ {node.id} finished ({output.status})")
        await self.event_bus.emit_node_completed(
            stream_id=self.STREAM_ID,
            node_id=node.id,
            run_id=state.run_id,
            status=output.status.value,
        )
        return True

    def _prepare_input(self, graph: GraphSpec, node: NodeSpec, state: RunState) -> AgentInput:
        """Collect output data of every structurally preceding node, keyed by agent ID."""
        previous_outputs = {}
        # Farthest first so the nearest predecessor wins when agents repeat
        for node_id in reversed(graph.preceding_nodes(node.id)):
            output = state.node_outputs.get(node_id)
            if output is None:
                continue
            previous_outputs[graph.get_node(node_id).agent_id] = output.data
        return AgentInput(
            keyword=state.input.keyword,
            options=state.input.options,
            previous_outputs=previous_outputs,
        )

    def _resolve_next_node(self, graph: GraphSpec, state: RunState) -> tuple[str, EdgeSpec]:
        """First outgoing edge, in declaration order, whose guard passes."""
        node_id = state.current_node_id
        for edge in graph.get_outgoing_edges(node_id):
            if not edge.should_traverse(state):
                continue
            target = edge.resolve_target(state)
            if graph.get_node(target) is None:
                raise RoutingError(node_id, f"Edge '{edge.id}' resolved to unknown node '{target}'")
            return target, edge
        raise RoutingError(node_id, f"No outgoing edge of '{node_id}' matched")

    def _collect_metrics(
        self,
        state: RunState,
        history: list[ExecutionHistoryEntry],
        adjustments: list[str],
    ) -> RunMetrics:
        critiques = [c for entry in history for c in entry.critiques]
        return RunMetrics(
            execution_time_ms=int(state.elapsed * 1000),
            nodes_executed=len(history),
            nodes_completed=len(state.completed_node_ids),
            error_count=len(state.metadata.errors),
            critiques_received=len(critiques),
            critiques_accepted=sum(1 for c in critiques if c.accepted),
            adjustments=list(adjustments),
        )


_default_coordinator: Coordinator | None = None


def get_default_coordinator() -> Coordinator:
    """Process-wide shared Coordinator, created on first use."""
    global _default_coordinator
    if _default_coordinator is None:
        _default_coordinator = Coordinator(config=CoordinatorConfig.from_file())
    return _default_coordinator


def reset_default_coordinator() -> None:
    global _default_coordinator
    _default_coordinator = None
