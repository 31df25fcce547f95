"""Health check definitions and checker state types."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

# ── Check definitions ────────────────────────────────────────────────────────


class CheckKind(str, Enum):
    UNKNOWN = "UNKNOWN"
    COMMAND = "COMMAND"
    HTTP = "HTTP"
    TCP = "TCP"


class CommandCheck(BaseModel):
    """Command probe: a shell string, or an executable plus arguments."""

    model_config = {"frozen": True}

    value: str = ""
    arguments: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    shell: bool = True


class HttpCheck(BaseModel):
    model_config = {"frozen": True}

    port: int
    path: str | None = None
    scheme: str | None = None


class TcpCheck(BaseModel):
    model_config = {"frozen": True}

    port: int


class HealthCheckSpec(BaseModel):
    """Declarative health check attached to a task at launch.

    Only the structure is enforced here. Whether the shape makes sense
    (kind matches the populated probe, HTTP path/scheme rules) is decided
    by ``validation.validate_health_check`` before a checker is built.
    """

    model_config = {"frozen": True}

    kind: CheckKind = CheckKind.UNKNOWN
    command: CommandCheck | None = None
    http: HttpCheck | None = None
    tcp: TcpCheck | None = None

    delay_seconds: float = 15.0
    interval_seconds: float = 10.0
    timeout_seconds: float | None = None  # None = attempt may run unbounded
    grace_period_seconds: float = 10.0
    consecutive_failures: int = 3


# ── Checker state ────────────────────────────────────────────────────────────


class HealthState(str, Enum):
    """Last health value reported for a task."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class CheckerPhase(str, Enum):
    PENDING = "pending"
    PROBING = "probing"
    IDLE = "idle"
    CANCELLED = "cancelled"
