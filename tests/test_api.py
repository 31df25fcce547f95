"""Tests for the FastAPI routes."""

from __future__ import annotations

import textwrap
import time
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from taskguard.api.app import create_app


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    with TestClient(create_app()) as client:
        yield client


def _task(task_id: str = "web", **health: Any) -> dict[str, Any]:
    check = {
        "kind": "COMMAND",
        "command": {"value": "exit 0"},
        "delay_seconds": 0,
        "interval_seconds": 0.1,
        "grace_period_seconds": 0,
    }
    check.update(health)
    return {"id": task_id, "command": "sleep 30", "health_check": check}


def _wait_for_health(client: TestClient, task_id: str, timeout: float = 10) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        task = client.get(f"/tasks/{task_id}").json()
        if "healthy" in task["statuses"][-1]:
            return task
        time.sleep(0.05)
    raise AssertionError(f"task {task_id} never reported health")


class TestServiceRoutes:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

    def test_empty_state(self, client: TestClient) -> None:
        assert client.get("/state").json() == {"tasks": []}


class TestTaskRoutes:
    def test_launch_and_state_path(self, client: TestClient) -> None:
        resp = client.post("/tasks", json=_task())
        assert resp.status_code == 201
        assert resp.json()["state"] == "TASK_RUNNING"
        assert "healthy" not in resp.json()

        _wait_for_health(client, "web")
        state = client.get("/state").json()
        assert state["tasks"][0]["id"] == "web"
        assert state["tasks"][0]["statuses"][-1]["healthy"] is True

    def test_invalid_health_check_rejected(self, client: TestClient) -> None:
        body = _task(kind="HTTP", command=None, http={"port": 8080, "path": "healthz"})
        resp = client.post("/tasks", json=body)
        assert resp.status_code == 422
        assert "healthz" in resp.json()["detail"]
        assert client.get("/state").json() == {"tasks": []}

    def test_unset_kind_rejected(self, client: TestClient) -> None:
        resp = client.post("/tasks", json={"id": "x", "command": "sleep 30", "health_check": {}})
        assert resp.status_code == 422

    def test_duplicate_task(self, client: TestClient) -> None:
        assert client.post("/tasks", json=_task()).status_code == 201
        assert client.post("/tasks", json=_task()).status_code == 409

    def test_unknown_task(self, client: TestClient) -> None:
        assert client.get("/tasks/nope").status_code == 404
        assert client.post("/tasks/nope/kill").status_code == 404

    def test_kill(self, client: TestClient) -> None:
        client.post("/tasks", json=_task())
        resp = client.post("/tasks/web/kill")
        assert resp.status_code == 200
        assert resp.json()["state"] == "TASK_KILLED"

    def test_unhealthy_task_killed(self, client: TestClient) -> None:
        client.post("/tasks", json=_task(command={"value": "exit 1"}, consecutive_failures=2))

        deadline = time.monotonic() + 10
        task = client.get("/tasks/web").json()
        while task["state"] != "TASK_KILLED" and time.monotonic() < deadline:
            time.sleep(0.05)
            task = client.get("/tasks/web").json()

        assert task["state"] == "TASK_KILLED"
        assert task["statuses"][-1]["healthy"] is False


class TestReconcile:
    def test_explicit_and_implicit(self, client: TestClient) -> None:
        client.post("/tasks", json=_task())
        _wait_for_health(client, "web")

        explicit = client.post("/reconcile", json={"task_ids": ["web"]}).json()["statuses"]
        implicit = client.post("/reconcile", json={}).json()["statuses"]

        assert explicit[0]["healthy"] is True
        assert explicit[0]["reason"] == "reconciliation"
        assert implicit[0]["healthy"] is True


class TestTaskFileStartup:
    def test_duplicate_ids_skipped_and_tasks_stopped(self, tmp_path: Path) -> None:
        marker = tmp_path / "marker"
        path = tmp_path / "tasks.yaml"
        path.write_text(textwrap.dedent(f"""\
            tasks:
              - id: web
                command: "sleep 30"
              - id: web
                command: "touch {marker}"
        """), encoding="utf-8")

        app = create_app()
        with patch("taskguard.api.app.settings.tasks_file", str(path)):
            with TestClient(app) as client:
                state = client.get("/state").json()

        assert [t["id"] for t in state["tasks"]] == ["web"]
        assert not marker.exists()
        record = app.state.supervisor.get("web")
        assert record.latest.state.value == "TASK_KILLED"
