"""Per-task health checker: schedules probes and interprets their outcomes.

One HealthChecker runs per launched task on its own asyncio task:

    delay -> probe -> handle outcome -> interval -> probe -> ...

Only one probe attempt is ever in flight. Health is reported to the
supervisor only when it changes; a task that never proved healthy is left
alone while inside its grace period. Once enough consecutive failures
accumulate outside the grace period the checker asks the supervisor to
kill the task and stops.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Protocol

from .models import CheckerPhase, HealthCheckSpec, HealthState
from .probes import Probe, ProbeOutcome, ProbeStatus, probe_with_timeout, select_probe
from .validation import ensure_valid

logger = logging.getLogger(__name__)


class Supervisor(Protocol):
    """What a checker needs from the host that owns the task.

    Both calls are fire-and-forget: they must not block on the effect.
    """

    def report_health(self, task_id: str, healthy: bool) -> None: ...

    def request_kill(self, task_id: str, reason: str) -> None: ...


class HealthChecker:
    """Health check lifecycle for a single running task."""

    def __init__(
        self,
        task_id: str,
        spec: HealthCheckSpec,
        supervisor: Supervisor,
        *,
        env: Mapping[str, str] | None = None,
        probe: Probe | None = None,
        start_time: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        ensure_valid(spec)
        self.task_id = task_id
        self.spec = spec
        self.supervisor = supervisor
        self._probe = probe or select_probe(spec, env)
        self._clock = clock
        self.start_time = clock() if start_time is None else start_time

        self.phase = CheckerPhase.PENDING
        self.consecutive_failures = 0
        self.last_reported = HealthState.UNKNOWN
        self.last_outcome: ProbeOutcome | None = None
        self.attempts = 0
        self.killed = False
        self._cancelled = False
        self._task: asyncio.Task[None] | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        """Begin scheduling probes on the running event loop."""
        if self._task is not None or self._cancelled:
            return
        self._task = asyncio.create_task(self._run(), name=f"health-{self.task_id}")
        logger.info(
            "Health checker started for task %s: %s check, delay=%ss interval=%ss grace=%ss",
            self.task_id, self.spec.kind.value, self.spec.delay_seconds,
            self.spec.interval_seconds, self.spec.grace_period_seconds,
        )

    def cancel(self) -> None:
        """Stop checking; any in-flight probe is abandoned and its result dropped."""
        if self._cancelled:
            return
        self._cancelled = True
        self.phase = CheckerPhase.CANCELLED
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        logger.debug("Health checker for task %s cancelled", self.task_id)

    async def wait(self) -> None:
        """Wait until the checker loop has exited."""
        if self._task is None:
            return
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    # -- Loop ---------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self.spec.delay_seconds)
            while not self._cancelled:
                self.phase = CheckerPhase.PROBING
                outcome = await self._attempt()
                if self._cancelled:
                    break  # late result after cancellation
                self.phase = CheckerPhase.IDLE
                self.handle_outcome(outcome)
                if self._cancelled:
                    break
                await asyncio.sleep(self.spec.interval_seconds)
        except asyncio.CancelledError:
            pass
        finally:
            self.phase = CheckerPhase.CANCELLED

    async def _attempt(self) -> ProbeOutcome:
        self.attempts += 1
        try:
            outcome = await probe_with_timeout(self._probe, self.spec.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Health probe for task %s raised", self.task_id)
            outcome = ProbeOutcome(
                status=ProbeStatus.FAILURE,
                message=f"Probe error: {type(e).__name__}: {e}",
            )
        logger.debug(
            "Task %s probe #%d: %s (%sms) %s",
            self.task_id, self.attempts, outcome.status.value, outcome.latency_ms, outcome.message,
        )
        return outcome

    # -- State machine --------------------------------------------------------

    def within_grace_period(self) -> bool:
        return (self._clock() - self.start_time) < self.spec.grace_period_seconds

    def handle_outcome(self, outcome: ProbeOutcome) -> None:
        """Fold one probe outcome into the checker state."""
        if self._cancelled:
            return
        self.last_outcome = outcome
        in_grace = self.within_grace_period()

        if outcome.ok:
            self.consecutive_failures = 0
            if self.last_reported != HealthState.HEALTHY:
                self._report(True)
            return

        self.consecutive_failures += 1

        if self.last_reported == HealthState.UNKNOWN and in_grace:
            logger.debug(
                "Task %s failed health check %d time(s) during grace period, not reporting: %s",
                self.task_id, self.consecutive_failures, outcome.message,
            )
            return

        if self.last_reported != HealthState.UNHEALTHY:
            self._report(False)

        if self.consecutive_failures >= self.spec.consecutive_failures and not in_grace:
            self._kill(outcome)

    def _report(self, healthy: bool) -> None:
        self.last_reported = HealthState.HEALTHY if healthy else HealthState.UNHEALTHY
        logger.info("Task %s is now %s", self.task_id, self.last_reported.value)
        self.supervisor.report_health(self.task_id, healthy)

    def _kill(self, outcome: ProbeOutcome) -> None:
        reason = (
            f"Health check failed {self.consecutive_failures} consecutive time(s): "
            f"{outcome.message}"
        )
        logger.warning("Killing task %s: %s", self.task_id, reason)
        self.killed = True
        self.supervisor.request_kill(self.task_id, reason)
        self.cancel()
