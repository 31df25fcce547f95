"""Health subsystem: check validation, probe executors, per-task checker."""

from .checker import HealthChecker, Supervisor
from .models import CheckerPhase, CheckKind, CommandCheck, HealthCheckSpec, HealthState, HttpCheck, TcpCheck
from .probes import ProbeOutcome, ProbeStatus, select_probe
from .validation import HealthCheckValidationError, ensure_valid, validate_health_check
