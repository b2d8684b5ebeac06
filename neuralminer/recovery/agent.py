"""
RecoveringAgent - applies the recovery policy around another agent.

The Coordinator never retries a node itself. Wrapping an agent in a
RecoveringAgent before registering it is how a node gets retries, a
fallback, or graceful degradation:

    coordinator.register_agent(
        RecoveringAgent(KeywordMiner(), manager, fallback=CachedKeywordMiner())
    )
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from neuralminer.errors import AgentReportedFailure, CircuitOpenError, RecoveryAbortedError
from neuralminer.graph.node import (
    Agent,
    AgentInput,
    AgentOutput,
    AgentStatus,
    Critique,
    CritiqueResponse,
)
from neuralminer.recovery.classify import classify_error
from neuralminer.recovery.failures import RecoveryAction, RecoveryStrategy
from neuralminer.recovery.manager import RecoveryManager

logger = logging.getLogger(__name__)


class RecoveringAgent(Agent):
    """Agent wrapper that records failures and follows the manager's decisions."""

    def __init__(
        self,
        inner: Agent,
        manager: RecoveryManager,
        fallback: Agent | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.inner = inner
        self.manager = manager
        self.fallback = fallback
        self._sleep = sleep
        self._last_good: AgentOutput | None = None

    @property
    def id(self) -> str:
        return self.inner.id

    async def critique(self, peer_id: str, peer_output: AgentOutput) -> Critique | None:
        return await self.inner.critique(peer_id, peer_output)

    async def receive_critique(
        self, critique: Critique, current_output: AgentOutput
    ) -> CritiqueResponse:
        return await self.inner.receive_critique(critique, current_output)

    async def execute(self, input: AgentInput) -> AgentOutput:
        # The breaker guards new calls; inside a call the retry budget decides
        if not self.manager.can_proceed(self.id):
            if self.fallback is not None:
                logger.warning(f"⚠ Circuit open for '{self.id}', using fallback")
                return await self.fallback.execute(input)
            raise CircuitOpenError(self.id)

        while True:
            try:
                output = await self.inner.execute(input)
                if output.status == AgentStatus.FAILED:
                    raise AgentReportedFailure(self.id, output.error or "agent reported failure")
            except Exception as e:
                error = e
                action = await self._record(e)
            else:
                if output.status == AgentStatus.SUCCESS:
                    self._last_good = output
                return output

            if action.strategy == RecoveryStrategy.RETRY:
                logger.info(f"   ↻ {action.message}")
                await self._sleep(action.delay or 0.0)
                continue
            return await self._finish(input, action, error)

    async def _record(self, error: Exception) -> RecoveryAction:
        kind = classify_error(error)
        record = await self.manager.record_failure(self.id, kind, error)
        action = self.manager.get_recovery_action(record)
        logger.warning(f"⚠ Recovery strategy for '{self.id}': {action.strategy}")
        return action

    async def _finish(
        self, input: AgentInput, action: RecoveryAction, error: Exception
    ) -> AgentOutput:
        """Act on a non-retry decision."""
        if action.strategy == RecoveryStrategy.FALLBACK and self.fallback is not None:
            return await self.fallback.execute(input)

        if action.strategy == RecoveryStrategy.SKIP:
            return AgentOutput(
                status=AgentStatus.PARTIAL,
                error=action.message,
                metadata={"recovery": action.strategy.value},
            )

        if action.strategy == RecoveryStrategy.ROLLBACK and self._last_good is not None:
            logger.info(f"   ↺ Rolling back '{self.id}' to its last good output")
            return self._last_good.model_copy(
                update={"metadata": {**self._last_good.metadata, "recovery": "rollback"}}
            )

        raise RecoveryAbortedError(self.id, action, cause=error) from error
