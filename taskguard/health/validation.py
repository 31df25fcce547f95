"""Health check validation: rejects malformed specs before a checker exists."""

from __future__ import annotations

from .models import CheckKind, HealthCheckSpec

HTTP_SCHEMES = ("http", "https")


class HealthCheckValidationError(Exception):
    """Raised (or returned) when a health check spec is malformed."""


def validate_health_check(spec: HealthCheckSpec) -> HealthCheckValidationError | None:
    """Return the first problem found in ``spec``, or None if it is valid."""
    if spec.kind not in (CheckKind.COMMAND, CheckKind.HTTP, CheckKind.TCP):
        return HealthCheckValidationError("Health check 'kind' must be set to COMMAND, HTTP or TCP")

    if spec.kind == CheckKind.COMMAND:
        if spec.command is None:
            return HealthCheckValidationError("Expecting 'command' to be set for COMMAND health check")
        if not spec.command.value.strip():
            return HealthCheckValidationError("Command health check must contain 'command.value'")

    elif spec.kind == CheckKind.HTTP:
        if spec.http is None:
            return HealthCheckValidationError("Expecting 'http' to be set for HTTP health check")
        scheme = spec.http.scheme
        if scheme is not None and scheme not in HTTP_SCHEMES:
            return HealthCheckValidationError(
                f"Unsupported HTTP health check scheme: '{scheme}'"
            )
        path = spec.http.path
        if path is not None and not path.startswith("/"):
            return HealthCheckValidationError(
                f"The path '{path}' of HTTP health check must start with '/'"
            )

    elif spec.tcp is None:
        return HealthCheckValidationError("Expecting 'tcp' to be set for TCP health check")

    for name in ("delay_seconds", "interval_seconds", "grace_period_seconds", "consecutive_failures"):
        if getattr(spec, name) < 0:
            return HealthCheckValidationError(f"Expecting '{name}' to be non-negative")

    if spec.timeout_seconds is not None and spec.timeout_seconds <= 0:
        return HealthCheckValidationError("Expecting 'timeout_seconds' to be positive")

    return None


def ensure_valid(spec: HealthCheckSpec) -> None:
    """Raise HealthCheckValidationError if ``spec`` is malformed."""
    error = validate_health_check(spec)
    if error is not None:
        raise error
