"""
Recovery Manager - Failure bookkeeping and recovery-policy decisions.

The manager:
1. Records failures per origin (agent or tool) and counts them globally
2. Turns a FailureRecord into an advisory RecoveryAction
3. Acts as a per-origin circuit breaker via can_proceed()
4. Prunes old records on a background timer, started by the first
   recorded failure (or start()) and cancelled by stop()

Decisions are advisory; the manager never cancels anything itself. The
failure history is shared across every run that reports to the manager,
so the read that computes `attempt` and the append happen under one lock.
"""

import asyncio
import logging
import random
import threading
import time
from collections.abc import Callable

from neuralminer.config import RecoveryConfig
from neuralminer.recovery.failures import (
    FailureKind,
    FailureRecord,
    RecoveryAction,
    RecoveryStrategy,
)
from neuralminer.runtime.event_bus import EventBus, EventHandler, EventType

logger = logging.getLogger(__name__)

# Decision once an origin has used up its retries, by failure kind
_TRANSIENT_KINDS = {FailureKind.MODEL_ERROR, FailureKind.EXTERNAL_API_ERROR}
_MALFORMED_DATA_KINDS = {FailureKind.VALIDATION_ERROR, FailureKind.PARSING_ERROR}

JITTER_MIN = 0.85
JITTER_MAX = 1.15


class RecoveryManager:
    """
    Tracks failures and decides how callers should recover from them.

    Example:
        manager = RecoveryManager(RecoveryConfig(max_retries=2))

        try:
            output = await agent.execute(agent_input)
        except Exception as e:
            record = await manager.record_failure(agent.id, classify_error(e), e)
            action = manager.get_recovery_action(record)
            if action.strategy == RecoveryStrategy.RETRY:
                await asyncio.sleep(action.delay)
                ...

        # Cancel the pruning task on exit
        async with RecoveryManager() as manager:
            ...
    """

    STREAM_ID = "recovery"

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the recovery manager.

        Args:
            config: Retry, backoff and circuit-breaker policy
            event_bus: Bus for failure events (a private one if omitted)
            rng: Jitter source; seed it for reproducible delays
            clock: Seconds source for failure timestamps and windows
        """
        self.config = config or RecoveryConfig()
        self.event_bus = event_bus or EventBus()
        self._rng = rng or random.Random()
        self._clock = clock

        self._failures: dict[str, list[FailureRecord]] = {}
        self._global_failure_count = 0
        self._lock = threading.Lock()
        self._prune_task: asyncio.Task | None = None

    @property
    def global_failure_count(self) -> int:
        return self._global_failure_count

    # === RECORDING ===

    async def record_failure(
        self,
        origin_id: str,
        kind: FailureKind,
        error: BaseException | str | None,
        context: dict | None = None,
    ) -> FailureRecord:
        """
        Record a failure and publish it.

        `attempt` is 1 + the number of earlier records of the same kind for
        the same origin. Publishes AGENT_FAILURE, plus
        FAILURE_THRESHOLD_EXCEEDED while the global count is at or above
        the configured threshold.
        """
        message = str(error) if error is not None else ""

        with self._lock:
            records = self._failures.setdefault(origin_id, [])
            attempt = sum(1 for r in records if r.kind == kind) + 1
            record = FailureRecord(
                origin_id=origin_id,
                kind=kind,
                timestamp=self._clock(),
                message=message,
                attempt=attempt,
                context=context,
            )
            records.append(record)
            self._global_failure_count += 1
            count = self._global_failure_count

        self._ensure_pruning()
        logger.warning(
            f"⚠ Failure recorded for '{origin_id}': {kind} (attempt {attempt}): {message}",
            extra={"origin_id": origin_id},
        )
        await self.event_bus.emit_agent_failure(
            stream_id=self.STREAM_ID,
            origin_id=origin_id,
            record=record.model_dump(),
        )

        if count >= self.config.failure_threshold:
            logger.error(
                f"✗ Global failure threshold exceeded: {count} >= {self.config.failure_threshold}"
            )
            await self.event_bus.emit_failure_threshold_exceeded(
                stream_id=self.STREAM_ID,
                count=count,
                threshold=self.config.failure_threshold,
            )

        return record

    # === DECISIONS ===

    def backoff_delay(self, attempt: int) -> float:
        """Un-jittered exponential backoff, clamped to max_delay."""
        raw = self.config.initial_delay * self.config.backoff_factor ** (attempt - 1)
        return min(self.config.max_delay, raw)

    def get_recovery_action(self, record: FailureRecord) -> RecoveryAction:
        """
        Decide how to recover from a recorded failure.

        Within the retry budget: RETRY after exponential backoff, jittered
        by a factor in [0.85, 1.15] when enabled. Past it: SKIP for model
        and external API failures, ROLLBACK for malformed data, ABORT for
        everything else.
        """
        cfg = self.config

        if record.attempt > cfg.max_retries:
            if record.kind in _TRANSIENT_KINDS:
                return RecoveryAction(
                    strategy=RecoveryStrategy.SKIP,
                    message=f"{record.kind} persisted after {cfg.max_retries} retries, skipping",
                )
            if record.kind in _MALFORMED_DATA_KINDS:
                return RecoveryAction(
                    strategy=RecoveryStrategy.ROLLBACK,
                    message=(
                        f"{record.kind} persisted after {cfg.max_retries} retries, "
                        "rolling back to the last good output"
                    ),
                )
            return RecoveryAction(
                strategy=RecoveryStrategy.ABORT,
                message=f"{record.kind} persisted after {cfg.max_retries} retries, aborting",
            )

        delay = self.backoff_delay(record.attempt)
        if cfg.enable_jitter:
            delay *= JITTER_MIN + self._rng.random() * (JITTER_MAX - JITTER_MIN)

        return RecoveryAction(
            strategy=RecoveryStrategy.RETRY,
            delay=delay,
            message=f"Retry {record.attempt}/{cfg.max_retries} in {delay:.2f}s",
        )

    def can_proceed(self, origin_id: str) -> bool:
        """False once the origin failed max_consecutive_failures times in the window."""
        window_start = self._clock() - self.config.monitoring_window
        with self._lock:
            recent = sum(1 for r in self._failures.get(origin_id, []) if r.timestamp > window_start)
        return recent < self.config.max_consecutive_failures

    # === HISTORY ===

    def get_failure_history(self, origin_id: str) -> list[FailureRecord]:
        with self._lock:
            return list(self._failures.get(origin_id, []))

    def clear_failures(self, origin_id: str) -> int:
        """Forget an origin's failures. Returns how many were dropped."""
        with self._lock:
            dropped = len(self._failures.pop(origin_id, []))
            self._global_failure_count -= dropped
        if dropped:
            logger.info(f"Cleared {dropped} failure records for '{origin_id}'")
        return dropped

    def prune(self, now: float | None = None) -> int:
        """Drop records older than two monitoring windows. Returns how many were dropped."""
        cutoff = (self._clock() if now is None else now) - 2 * self.config.monitoring_window
        removed = 0
        with self._lock:
            for origin_id in list(self._failures):
                records = self._failures[origin_id]
                kept = [r for r in records if r.timestamp >= cutoff]
                removed += len(records) - len(kept)
                if kept:
                    self._failures[origin_id] = kept
                else:
                    del self._failures[origin_id]
            self._global_failure_count -= removed
        if removed:
            logger.debug(f"Pruned {removed} expired failure records")
        return removed

    # === SUBSCRIPTIONS ===

    def on_failure(self, handler: EventHandler) -> str:
        return self.event_bus.subscribe(
            event_types=[EventType.AGENT_FAILURE],
            handler=handler,
            filter_stream=self.STREAM_ID,
        )

    def on_origin_failure(self, origin_id: str, handler: EventHandler) -> str:
        return self.event_bus.subscribe(
            event_types=[EventType.AGENT_FAILURE],
            handler=handler,
            filter_stream=self.STREAM_ID,
            filter_node=origin_id,
        )

    def on_threshold_exceeded(self, handler: EventHandler) -> str:
        return self.event_bus.subscribe(
            event_types=[EventType.FAILURE_THRESHOLD_EXCEEDED],
            handler=handler,
            filter_stream=self.STREAM_ID,
        )

    # === PRUNING TIMER ===

    @property
    def is_running(self) -> bool:
        return self._prune_task is not None and not self._prune_task.done()

    async def start(self) -> None:
        """Start pruning every monitoring window in the background."""
        self._ensure_pruning()

    def _ensure_pruning(self) -> None:
        # Also runs on every recorded failure
        if self.is_running:
            return
        self._prune_task = asyncio.create_task(self._prune_loop())
        logger.info("RecoveryManager pruning started")

    async def stop(self) -> None:
        if self._prune_task is None:
            return
        task, self._prune_task = self._prune_task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("RecoveryManager pruning stopped")

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.monitoring_window)
            self.prune()

    async def __aenter__(self) -> "RecoveryManager":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
