"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

import pytest

from taskguard.health.models import CheckKind, CommandCheck, HealthCheckSpec
from taskguard.health.probes import ProbeOutcome, ProbeStatus


class RecordingSupervisor:
    """Supervisor double that records every call in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, object]] = []

    def report_health(self, task_id: str, healthy: bool) -> None:
        self.events.append(("health", task_id, healthy))

    def request_kill(self, task_id: str, reason: str) -> None:
        self.events.append(("kill", task_id, reason))

    @property
    def reports(self) -> list[bool]:
        return [e[2] for e in self.events if e[0] == "health"]

    @property
    def kills(self) -> list[str]:
        return [e[2] for e in self.events if e[0] == "kill"]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedProbe:
    """Returns the scripted outcomes in order, then blocks until cancelled."""

    def __init__(self, outcomes: Iterable[bool | ProbeStatus]) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0
        self.exhausted = asyncio.Event()

    async def __call__(self) -> ProbeOutcome:
        if self.calls >= len(self._outcomes):
            self.exhausted.set()
            await asyncio.Event().wait()
        item = self._outcomes[self.calls]
        self.calls += 1
        if isinstance(item, ProbeStatus):
            return ProbeOutcome(status=item, message=item.value)
        return ProbeOutcome(status=ProbeStatus.SUCCESS if item else ProbeStatus.FAILURE)


def _command_spec(value: str = "exit 0", **overrides: object) -> HealthCheckSpec:
    fields: dict[str, object] = {
        "kind": CheckKind.COMMAND,
        "command": CommandCheck(value=value),
        "delay_seconds": 0,
        "interval_seconds": 0,
        "grace_period_seconds": 0,
    }
    fields.update(overrides)
    return HealthCheckSpec(**fields)


@pytest.fixture
def supervisor() -> RecordingSupervisor:
    return RecordingSupervisor()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def command_spec() -> Callable[..., HealthCheckSpec]:
    """Factory for COMMAND specs with immediate, back-to-back probing unless overridden."""
    return _command_spec


@pytest.fixture
def scripted_probe() -> Callable[[Iterable[bool | ProbeStatus]], ScriptedProbe]:
    """Factory for probes that replay a fixed list of outcomes."""
    return ScriptedProbe
