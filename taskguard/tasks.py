"""Task definitions: typed models and the YAML task file loader.

A task file looks like::

    tasks:
      - id: web
        command: python -m http.server 8080
        health_check:
          kind: HTTP
          http: {port: 8080, path: /}
          delay_seconds: 1
          interval_seconds: 5
          consecutive_failures: 3
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from taskguard.health.models import HealthCheckSpec

logger = logging.getLogger(__name__)


# ── Data models ──────────────────────────────────────────────────────────────


class TaskDefinition(BaseModel):
    """A task to launch, with its optional health check."""

    id: str
    name: str = ""
    command: str
    shell: bool = True
    arguments: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    health_check: HealthCheckSpec | None = None


class TaskState(str, Enum):
    RUNNING = "TASK_RUNNING"
    FINISHED = "TASK_FINISHED"
    FAILED = "TASK_FAILED"
    KILLED = "TASK_KILLED"

    @property
    def is_terminal(self) -> bool:
        return self != TaskState.RUNNING


class TaskStatus(BaseModel):
    """One status update of a task; ``healthy`` is None until a checker reports."""

    task_id: str
    state: TaskState
    healthy: bool | None = None
    message: str = ""
    reason: str = ""
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def has_healthy(self) -> bool:
        return self.healthy is not None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ── Loader ───────────────────────────────────────────────────────────────────


def load_task_file(path: Path) -> list[TaskDefinition]:
    """Parse a YAML task file; malformed entries are logged and skipped."""
    if not path.exists():
        logger.warning("Task file not found: %s", path)
        return []

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        logger.error("Failed to parse %s: %s", path, e)
        return []

    if not isinstance(raw, dict):
        logger.warning("Task file %s must be a mapping with a 'tasks' list", path)
        return []

    tasks = []
    for entry in raw.get("tasks", []) or []:
        try:
            tasks.append(TaskDefinition.model_validate(entry))
        except ValidationError as e:
            logger.warning("Skipping malformed task entry: %s", e)

    logger.info("Loaded %d task(s) from %s", len(tasks), path)
    return tasks
