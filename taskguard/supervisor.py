"""Task supervisor: launches tasks, owns their checkers, applies health effects.

The supervisor is the host side of the checker contract: it attaches the
reported health flag to the task's status stream (and to reconciliation
answers) and turns a kill request into a terminated process whose terminal
status carries ``healthy = False``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from taskguard.config import settings
from taskguard.health.checker import HealthChecker
from taskguard.health.validation import ensure_valid
from taskguard.tasks import TaskDefinition, TaskState, TaskStatus

logger = logging.getLogger(__name__)


class TaskNotFoundError(KeyError):
    """Raised when a task id is not known to the supervisor."""


class DuplicateTaskError(ValueError):
    """Raised when launching a task whose id is already in use."""


@dataclass
class TaskRecord:
    """Everything the supervisor tracks for one launched task."""

    definition: TaskDefinition
    process: asyncio.subprocess.Process | None = None
    checker: HealthChecker | None = None
    statuses: list[TaskStatus] = field(default_factory=list)
    healthy: bool | None = None
    killing: bool = False
    kill_reason: str = ""
    unhealthy_kill: bool = False
    terminated: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def latest(self) -> TaskStatus:
        return self.statuses[-1]

    @property
    def is_terminal(self) -> bool:
        return bool(self.statuses) and self.latest.state.is_terminal


class TaskSupervisor:
    """In-process task host implementing the checker's Supervisor protocol."""

    def __init__(
        self,
        kill_grace_seconds: float | None = None,
        on_status: Callable[[TaskStatus], Any] | None = None,
    ) -> None:
        self.kill_grace_seconds = (
            settings.kill_grace_seconds if kill_grace_seconds is None else kill_grace_seconds
        )
        self._tasks: dict[str, TaskRecord] = {}
        self._subscribers: list[Callable[[TaskStatus], Any]] = [on_status] if on_status else []
        self._background: set[asyncio.Task[Any]] = set()

    def subscribe(self, callback: Callable[[TaskStatus], Any]) -> None:
        self._subscribers.append(callback)

    def get(self, task_id: str) -> TaskRecord:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFoundError(task_id) from None

    @property
    def task_ids(self) -> list[str]:
        return list(self._tasks)

    # -- Launch -----------------------------------------------------------------

    async def launch(self, task: TaskDefinition) -> TaskStatus:
        """Start ``task`` and, once it runs, its health checker.

        An invalid health check raises HealthCheckValidationError and the
        task is never started.
        """
        if task.id in self._tasks:
            raise DuplicateTaskError(f"Task '{task.id}' already exists")
        if task.health_check is not None:
            ensure_valid(task.health_check)

        env = {**os.environ, **task.environment}
        record = TaskRecord(definition=task)
        self._tasks[task.id] = record

        try:
            if task.shell:
                record.process = await asyncio.create_subprocess_shell(
                    task.command, stdin=asyncio.subprocess.DEVNULL, env=env, start_new_session=True,
                )
            else:
                record.process = await asyncio.create_subprocess_exec(
                    task.command, *task.arguments,
                    stdin=asyncio.subprocess.DEVNULL, env=env, start_new_session=True,
                )
        except OSError as e:
            logger.error("Failed to launch task %s: %s", task.id, e)
            return self._terminate(record, TaskState.FAILED, f"Failed to launch: {e}")

        status = self._record_status(
            record, TaskState.RUNNING, message=f"Task started (pid {record.process.pid})",
        )
        logger.info("Launched task %s (pid %d)", task.id, record.process.pid)

        if task.health_check is not None:
            record.checker = HealthChecker(task.id, task.health_check, self, env=env)
            record.checker.start()

        self._spawn(self._watch(record), name=f"watch-{task.id}")
        return status

    async def _watch(self, record: TaskRecord) -> None:
        returncode = await record.process.wait()
        if record.killing:
            state = TaskState.KILLED
            message = record.kill_reason
        elif returncode == 0:
            state = TaskState.FINISHED
            message = "Command exited with status 0"
        else:
            state = TaskState.FAILED
            message = f"Command exited with status {returncode}"
        self._terminate(record, state, message)

    # -- Supervisor protocol ----------------------------------------------------

    def report_health(self, task_id: str, healthy: bool) -> None:
        """Attach a health flag to the task's status stream."""
        record = self._tasks.get(task_id)
        if record is None or record.is_terminal:
            logger.debug("Ignoring health report for inactive task %s", task_id)
            return
        record.healthy = healthy
        self._record_status(
            record, TaskState.RUNNING, healthy=healthy, reason="health_check",
            message="Task is healthy" if healthy else "Task is unhealthy",
        )

    def request_kill(self, task_id: str, reason: str) -> None:
        """Kill an unhealthy task in the background; its terminal status is unhealthy."""
        record = self._tasks.get(task_id)
        if record is None or record.is_terminal or record.killing:
            return
        record.healthy = False
        record.unhealthy_kill = True
        self._spawn(self._kill(record, reason), name=f"kill-{task_id}")

    # -- Operator actions -------------------------------------------------------

    async def kill_task(self, task_id: str, reason: str = "Killed by operator") -> TaskStatus:
        record = self.get(task_id)
        if not record.is_terminal:
            await self._kill(record, reason)
        return record.latest

    async def wait_terminal(self, task_id: str) -> TaskStatus:
        record = self.get(task_id)
        await record.terminated.wait()
        return record.latest

    def reconcile(self, task_ids: list[str] | None = None) -> list[TaskStatus]:
        """Latest status of the given tasks (explicit) or of all tasks (implicit)."""
        ids = self.task_ids if not task_ids else task_ids
        statuses = []
        for task_id in ids:
            record = self._tasks.get(task_id)
            if record is None or not record.statuses:
                logger.debug("Reconciliation for unknown task %s", task_id)
                continue
            statuses.append(record.latest.model_copy(update={"reason": "reconciliation"}))
        return statuses

    def state(self) -> dict[str, Any]:
        """Introspection view: ``tasks[i].statuses[-1].healthy`` is the current flag."""
        tasks = []
        for task_id, record in self._tasks.items():
            entry: dict[str, Any] = {
                "id": task_id,
                "name": record.definition.name,
                "state": record.latest.state.value if record.statuses else None,
                "statuses": [s.to_dict() for s in record.statuses],
            }
            if record.checker is not None:
                entry["health_check"] = {
                    "kind": record.checker.spec.kind.value,
                    "phase": record.checker.phase.value,
                    "consecutive_failures": record.checker.consecutive_failures,
                    "last_reported": record.checker.last_reported.value,
                }
            tasks.append(entry)
        return {"tasks": tasks}

    async def shutdown(self) -> None:
        """Kill every running task and wait for background work to settle."""
        running = [r for r in self._tasks.values() if not r.is_terminal]
        if running:
            await asyncio.gather(
                *(self._kill(r, "Supervisor shutting down") for r in running),
                return_exceptions=True,
            )
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Task supervisor stopped")

    # -- Internals --------------------------------------------------------------

    async def _kill(self, record: TaskRecord, reason: str) -> None:
        if record.killing:
            await record.terminated.wait()
            return
        record.killing = True
        record.kill_reason = reason
        if record.checker is not None:
            record.checker.cancel()

        proc = record.process
        logger.info("Killing task %s: %s", record.definition.id, reason)
        _signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), self.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Task %s ignored SIGTERM, sending SIGKILL", record.definition.id)
            _signal_group(proc, signal.SIGKILL)
            await proc.wait()
        await record.terminated.wait()

    def _terminate(self, record: TaskRecord, state: TaskState, message: str) -> TaskStatus:
        if record.checker is not None:
            record.checker.cancel()
        healthy = False if record.unhealthy_kill else record.healthy
        status = self._record_status(record, state, healthy=healthy, message=message)
        record.terminated.set()
        logger.info("Task %s reached %s", record.definition.id, state.value)
        return status

    def _record_status(
        self,
        record: TaskRecord,
        state: TaskState,
        healthy: bool | None = None,
        message: str = "",
        reason: str = "",
    ) -> TaskStatus:
        status = TaskStatus(
            task_id=record.definition.id, state=state, healthy=healthy,
            message=message, reason=reason,
        )
        record.statuses.append(status)
        for callback in self._subscribers:
            try:
                callback(status)
            except Exception:
                logger.exception("Status callback error")
        return status

    def _spawn(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _signal_group(proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass  # already gone
