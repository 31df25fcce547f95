"""API routes for task state and control.

Endpoints:
  GET  /health                : service liveness
  GET  /state                 : all tasks with their status history
  GET  /tasks/{task_id}       : one task
  POST /tasks                 : launch a task (422 on invalid health check)
  POST /tasks/{task_id}/kill  : kill a task
  POST /reconcile             : latest status per task (empty list = all)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from taskguard import __version__
from taskguard.health.validation import HealthCheckValidationError
from taskguard.supervisor import DuplicateTaskError, TaskNotFoundError
from taskguard.tasks import TaskDefinition

logger = logging.getLogger(__name__)

router = APIRouter()


class ReconcileRequest(BaseModel):
    task_ids: list[str] = Field(default_factory=list)


@router.get("/health")
def service_health() -> dict[str, Any]:
    return {"ok": True, "version": __version__}


@router.get("/state")
def cluster_state(request: Request) -> dict[str, Any]:
    """Full task state; ``tasks[i].statuses[-1].healthy`` holds the health flag."""
    return request.app.state.supervisor.state()


@router.get("/tasks/{task_id}")
def get_task(task_id: str, request: Request) -> dict[str, Any]:
    state = request.app.state.supervisor.state()
    task = next((t for t in state["tasks"] if t["id"] == task_id), None)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return task


@router.post("/tasks", status_code=201)
async def launch_task(task: TaskDefinition, request: Request) -> dict[str, Any]:
    supervisor = request.app.state.supervisor
    try:
        status = await supervisor.launch(task)
    except HealthCheckValidationError as e:
        logger.warning("Rejected task %s: invalid health check: %s", task.id, e)
        raise HTTPException(status_code=422, detail=f"Invalid health check: {e}") from e
    except DuplicateTaskError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return status.to_dict()


@router.post("/tasks/{task_id}/kill")
async def kill_task(task_id: str, request: Request) -> dict[str, Any]:
    supervisor = request.app.state.supervisor
    try:
        status = await supervisor.kill_task(task_id)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}") from None
    return status.to_dict()


@router.post("/reconcile")
def reconcile(body: ReconcileRequest, request: Request) -> dict[str, Any]:
    statuses = request.app.state.supervisor.reconcile(body.task_ids or None)
    return {"statuses": [s.to_dict() for s in statuses]}
