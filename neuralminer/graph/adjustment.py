"""
Runtime plan adjustments.

Evaluated once per node, after it succeeds. Best-effort degradation under
error or time pressure; it trades completeness for bounded latency and is
not a correctness mechanism.

    Normal ──(node errors >= threshold)──────────────▶ Adjusted(skip)
           ──(elapsed >= terminate_ratio * budget)───▶ Adjusted(terminate)
           ──(elapsed >  fast_path_ratio * budget)───▶ Adjusted(redirect)

Checked in that order; the first match wins. Terminate only fires when
terminate_ratio is set.
"""

from enum import StrEnum

from pydantic import BaseModel

from neuralminer.config import CoordinatorConfig
from neuralminer.graph.edge import GraphSpec
from neuralminer.graph.state import RunState


class AdjustmentKind(StrEnum):
    SKIP = "skip"
    REDIRECT = "redirect"
    TERMINATE = "terminate"


class PlanAdjustment(BaseModel):
    """A fired adjustment: where to go instead of normal routing."""

    kind: AdjustmentKind
    target: str
    reason: str = ""


def evaluate_adjustment(
    graph: GraphSpec,
    state: RunState,
    config: CoordinatorConfig,
) -> PlanAdjustment | None:
    """Return the adjustment that fires for the current node, or None for Normal."""
    node_id = state.current_node_id

    error_count = state.metadata.errors_for(node_id)
    if error_count >= config.skip_error_threshold:
        outgoing = graph.get_outgoing_edges(node_id)
        # A computed first edge has no knowable destination to skip to
        if outgoing and outgoing[0].static_target is not None:
            return PlanAdjustment(
                kind=AdjustmentKind.SKIP,
                target=outgoing[0].static_target,
                reason=f"node '{node_id}' has {error_count} recorded errors",
            )

    elapsed = state.elapsed
    budget = config.max_run_time

    if config.terminate_ratio is not None and elapsed >= budget * config.terminate_ratio:
        return PlanAdjustment(
            kind=AdjustmentKind.TERMINATE,
            target=graph.end_node,
            reason=f"{elapsed:.1f}s of {budget:.1f}s budget used",
        )

    if elapsed > budget * config.fast_path_ratio:
        fast_path = graph.fast_path_node()
        if (
            fast_path is not None
            and fast_path != node_id
            and fast_path not in state.completed_node_ids
        ):
            return PlanAdjustment(
                kind=AdjustmentKind.REDIRECT,
                target=fast_path,
                reason=f"{elapsed:.1f}s of {budget:.1f}s budget used, taking fast path",
            )

    return None
