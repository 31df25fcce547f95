"""Probe executors: one attempt of a command, HTTP or TCP health check.

Every runner returns a ProbeOutcome and never raises for probe-level
problems (launch failure, refused connection, non-2xx, non-zero exit):
those are all FAILURE outcomes. A bounded attempt that does not resolve in
time is abandoned and reported as TIMED_OUT.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import httpx

from .models import CheckKind, CommandCheck, HealthCheckSpec, HttpCheck, TcpCheck
from .validation import HealthCheckValidationError

logger = logging.getLogger(__name__)

PROBE_HOST = "localhost"

# Trailing stderr kept for failure diagnostics
_STDERR_TAIL = 1024

Probe = Callable[[], Awaitable["ProbeOutcome"]]


# ── Models ───────────────────────────────────────────────────────────────────


class ProbeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"


@dataclass
class ProbeOutcome:
    """Result of a single probe attempt."""

    status: ProbeStatus
    message: str = ""
    latency_ms: float = 0.0
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def ok(self) -> bool:
        return self.status == ProbeStatus.SUCCESS


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


# ── Probe runners ────────────────────────────────────────────────────────────


async def run_command_probe(
    check: CommandCheck,
    env: Mapping[str, str] | None = None,
) -> ProbeOutcome:
    """Run the check command; healthy iff it exits with status 0.

    ``env`` is the task's own environment (defaults to this process's);
    the check's environment overlay is applied on top of it.
    """
    t0 = time.perf_counter()
    environment = {**(os.environ if env is None else env), **check.environment}

    try:
        if check.shell:
            proc = await asyncio.create_subprocess_shell(
                check.value,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=environment,
                start_new_session=True,
            )
        else:
            proc = await asyncio.create_subprocess_exec(
                check.value,
                *check.arguments,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=environment,
                start_new_session=True,
            )
    except OSError as e:
        logger.debug("Health command %r could not be launched: %s", check.value, e)
        return ProbeOutcome(
            status=ProbeStatus.FAILURE, latency_ms=_elapsed_ms(t0),
            message=f"Failed to launch '{check.value}': {e}",
        )

    try:
        _, stderr = await proc.communicate()
    finally:
        # Abandoned attempt (timeout or cancellation): take the whole group down
        if proc.returncode is None:
            await _kill_process_group(proc)

    latency = _elapsed_ms(t0)
    if proc.returncode == 0:
        return ProbeOutcome(status=ProbeStatus.SUCCESS, latency_ms=latency, message="Command exited with status 0")

    if proc.returncode < 0:
        msg = f"Command terminated by signal {-proc.returncode}"
    else:
        msg = f"Command exited with status {proc.returncode}"
    err = stderr.decode(errors="replace").strip()[-_STDERR_TAIL:]
    if err:
        msg += f": {err}"
    return ProbeOutcome(status=ProbeStatus.FAILURE, latency_ms=latency, message=msg)


async def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    await proc.wait()


async def run_http_probe(
    check: HttpCheck,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProbeOutcome:
    """GET scheme://localhost:port/path; healthy iff the status is 2xx."""
    url = f"{check.scheme or 'http'}://{PROBE_HOST}:{check.port}{check.path or ''}"
    t0 = time.perf_counter()
    try:
        async with httpx.AsyncClient(
            timeout=None, follow_redirects=True, verify=False, transport=transport,
        ) as client:
            resp = await client.get(url)
    except httpx.HTTPError as e:
        return ProbeOutcome(
            status=ProbeStatus.FAILURE, latency_ms=_elapsed_ms(t0),
            message=f"HTTP request to {url} failed: {type(e).__name__}: {e}",
        )

    latency = _elapsed_ms(t0)
    if 200 <= resp.status_code < 300:
        return ProbeOutcome(status=ProbeStatus.SUCCESS, latency_ms=latency, message=f"{resp.status_code} OK")
    return ProbeOutcome(
        status=ProbeStatus.FAILURE, latency_ms=latency,
        message=f"{url} returned {resp.status_code}",
    )


async def run_tcp_probe(check: TcpCheck) -> ProbeOutcome:
    """Healthy iff a TCP connection to localhost:port can be established."""
    t0 = time.perf_counter()
    try:
        _, writer = await asyncio.open_connection(PROBE_HOST, check.port)
    except OSError as e:
        return ProbeOutcome(
            status=ProbeStatus.FAILURE, latency_ms=_elapsed_ms(t0),
            message=f"TCP connect to {PROBE_HOST}:{check.port} failed: {e}",
        )

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass  # peer reset on close; the connect itself succeeded
    return ProbeOutcome(status=ProbeStatus.SUCCESS, latency_ms=_elapsed_ms(t0), message=f"Port {check.port} open")


async def probe_with_timeout(probe: Probe, timeout_seconds: float | None) -> ProbeOutcome:
    """Run one attempt, abandoning it after ``timeout_seconds`` if set."""
    if timeout_seconds is None:
        return await probe()

    t0 = time.perf_counter()
    try:
        return await asyncio.wait_for(probe(), timeout_seconds)
    except asyncio.TimeoutError:
        return ProbeOutcome(
            status=ProbeStatus.TIMED_OUT, latency_ms=_elapsed_ms(t0),
            message=f"Health check timed out after {timeout_seconds}s",
        )


# Dispatcher
PROBE_RUNNERS: dict[CheckKind, Callable[[HealthCheckSpec, Mapping[str, str] | None], Awaitable[ProbeOutcome]]] = {
    CheckKind.COMMAND: lambda spec, env: run_command_probe(spec.command, env),
    CheckKind.HTTP: lambda spec, env: run_http_probe(spec.http),
    CheckKind.TCP: lambda spec, env: run_tcp_probe(spec.tcp),
}


def select_probe(spec: HealthCheckSpec, env: Mapping[str, str] | None = None) -> Probe:
    """Bind the runner for ``spec.kind`` once; returns a zero-arg probe."""
    runner = PROBE_RUNNERS.get(spec.kind)
    if runner is None:
        raise HealthCheckValidationError(f"Unknown health check kind: {spec.kind.value}")
    return lambda: runner(spec, env)
