"""FastAPI application: task supervisor lifespan + routes."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from taskguard import __version__
from taskguard.api.routes import router
from taskguard.config import settings
from taskguard.health.validation import HealthCheckValidationError
from taskguard.supervisor import DuplicateTaskError, TaskSupervisor
from taskguard.tasks import load_task_file

logger = logging.getLogger(__name__)


# ── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the supervisor and launch any tasks from the configured file."""
    supervisor = TaskSupervisor()
    app.state.supervisor = supervisor

    try:
        if settings.tasks_file:
            tasks_path = Path(settings.tasks_file)
            if not tasks_path.is_absolute():
                tasks_path = Path.cwd() / tasks_path
            for task in load_task_file(tasks_path):
                try:
                    await supervisor.launch(task)
                except HealthCheckValidationError as e:
                    logger.error("Not launching task %s: invalid health check: %s", task.id, e)
                except DuplicateTaskError as e:
                    logger.error("Not launching task %s: %s", task.id, e)

        yield
    finally:
        await supervisor.shutdown()


# ── App factory ──────────────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create the taskguard FastAPI application."""
    app = FastAPI(
        title="taskguard: task health checking",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
