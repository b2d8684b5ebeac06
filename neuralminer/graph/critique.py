"""
Peer critique - let sampled agents challenge a freshly produced output.

One round only: critiques are gathered concurrently from a random sample
of the other registered agents, then handed to the producing agent one at a
time. An accepted critique that carries an updated output replaces the
current output before the next critique is considered.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field

from neuralminer.graph.node import Agent, AgentOutput, Critique
from neuralminer.graph.state import CritiqueRecord

logger = logging.getLogger(__name__)


def sample_size(peer_count: int, rate: float) -> int:
    """
    Number of peers to ask for a critique.

    0 when rate <= 0 or there are no peers, every peer when rate >= 1,
    otherwise round(peer_count * rate) (halves round up) but at least 1.
    """
    if rate <= 0 or peer_count <= 0:
        return 0
    if rate >= 1:
        return peer_count
    return min(peer_count, max(1, int(peer_count * rate + 0.5)))


def sample_critics(
    producer_id: str,
    agents: dict[str, Agent],
    rate: float,
    rng: random.Random,
) -> list[Agent]:
    """Randomly pick critics among the registered agents other than the producer."""
    peers = [agent for agent_id, agent in agents.items() if agent_id != producer_id]
    return rng.sample(peers, sample_size(len(peers), rate))


@dataclass
class CritiqueRound:
    """Outcome of one critique round for a node's output."""

    output: AgentOutput
    records: list[CritiqueRecord] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return sum(1 for r in self.records if r.accepted)


async def run_critique_round(
    producer: Agent,
    output: AgentOutput,
    critics: list[Agent],
) -> CritiqueRound:
    """
    Collect critiques concurrently, then fold them back into the output.

    A critic that raises is logged and ignored. A producer that raises while
    receiving a critique leaves the output unchanged and the critique is
    recorded as not accepted.
    """
    result = CritiqueRound(output=output)
    if not critics:
        return result

    critiques = await asyncio.gather(
        *[critic.critique(producer.id, output) for critic in critics],
        return_exceptions=True,
    )

    for critic, critique in zip(critics, critiques, strict=True):
        if isinstance(critique, BaseException):
            logger.warning(f"⚠ Critic '{critic.id}' failed: {critique}")
            continue
        if critique is None:
            continue
        result.records.append(await _deliver(producer, critic.id, critique, result))

    return result


async def _deliver(
    producer: Agent,
    critic_id: str,
    critique: Critique,
    round_: CritiqueRound,
) -> CritiqueRecord:
    try:
        response = await producer.receive_critique(critique, round_.output)
    except Exception as e:
        logger.warning(f"⚠ '{producer.id}' failed to handle critique from '{critic_id}': {e}")
        return CritiqueRecord(from_agent=critic_id, critique=critique, accepted=False)

    if response.accepted and response.updated_output is not None:
        round_.output = response.updated_output
        logger.info(f"   ✎ '{producer.id}' revised its output after critique from '{critic_id}'")

    return CritiqueRecord(from_agent=critic_id, critique=critique, accepted=response.accepted)
