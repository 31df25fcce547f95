"""Entry point: `taskguard` console script."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.panel import Panel

from taskguard.config import settings
from taskguard.health.validation import HealthCheckValidationError
from taskguard.supervisor import DuplicateTaskError, TaskSupervisor
from taskguard.tasks import TaskDefinition, TaskState, TaskStatus, load_task_file

console = Console()

_STATE_STYLE = {
    "TASK_RUNNING": "cyan",
    "TASK_FINISHED": "green",
    "TASK_FAILED": "red",
    "TASK_KILLED": "red",
}


def print_status(status: TaskStatus) -> None:
    """Render one status update on the console."""
    style = _STATE_STYLE.get(status.state.value, "white")
    health = ""
    if status.has_healthy:
        health = " [green]healthy[/green]" if status.healthy else " [red]unhealthy[/red]"
    console.print(
        f"[dim]{status.timestamp}[/dim] [bold]{status.task_id}[/bold] "
        f"[{style}]{status.state.value}[/{style}]{health} {status.message}"
    )


def run_server() -> None:
    """Start the API server (state endpoint + task control)."""
    console.print(
        Panel.fit(
            f"[bold]taskguard[/bold]\n"
            f"Bind:  {settings.api_host}:{settings.api_port}\n"
            f"Tasks: {settings.tasks_file or '(none)'}",
            title="taskguard serve",
            border_style="green",
        )
    )
    uvicorn.run(
        "taskguard.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


async def run_tasks(tasks: list[TaskDefinition]) -> int:
    """Launch ``tasks`` in-process and wait until every one is terminal.

    Returns the number of tasks that did not finish successfully.
    """
    supervisor = TaskSupervisor(on_status=print_status)
    launched = []
    failures = 0
    try:
        for task in tasks:
            try:
                await supervisor.launch(task)
            except HealthCheckValidationError as e:
                console.print(f"[red]Not launching {task.id}: invalid health check: {e}[/red]")
                failures += 1
                continue
            except DuplicateTaskError as e:
                console.print(f"[red]Not launching {task.id}: {e}[/red]")
                failures += 1
                continue
            launched.append(task.id)

        finals = await asyncio.gather(*(supervisor.wait_terminal(t) for t in launched))
    finally:
        await supervisor.shutdown()

    failures += sum(1 for s in finals if s.state != TaskState.FINISHED)
    return failures


def run_file(path: Path) -> None:
    """Run the tasks of a YAML task file until they all terminate."""
    tasks = load_task_file(path)
    if not tasks:
        console.print(f"[yellow]No tasks found in {path}[/yellow]")
        sys.exit(1)

    console.print(Panel(f"{len(tasks)} task(s) from {path}", title="taskguard", style="bold blue"))
    try:
        failures = asyncio.run(run_tasks(tasks))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        sys.exit(130)
    sys.exit(1 if failures else 0)


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="taskguard: task health checking")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")

    run_parser = sub.add_parser("run", help="Run the tasks of a YAML task file")
    run_parser.add_argument("file", type=Path, help="Task file (YAML)")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "run":
        run_file(args.file)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
