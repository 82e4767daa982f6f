"""CLI entrypoint for mission-control."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from mission_control import __version__
from mission_control.config import Settings
from mission_control.errors import MissionControlError
from mission_control.squad.controllers import (
    ActivityCommand,
    AgentsListCommand,
    CostsCommand,
    HeartbeatCommand,
    InitCommand,
    SpawnCommand,
    SquadCliController,
    SweepCommand,
    TaskInspectCommand,
    TasksListCommand,
)
from mission_control.squad.models import ActivityCategory, AgentStatus, TaskStatus

click.rich_click.USE_MARKDOWN = True
SQUAD_CONTROLLER = SquadCliController()
CommandT = TypeVar("CommandT")
ResultT = TypeVar("ResultT")


@click.group()
@click.version_option(version=__version__, prog_name="mission-control")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (defaults to MISSION_CONTROL_LOG_LEVEL or WARNING).",
)
def mission_control(log_level: str | None) -> None:
    """Agent squad mission control CLI."""

    logging.basicConfig(
        level=(log_level or os.getenv("MISSION_CONTROL_LOG_LEVEL", "WARNING")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@mission_control.command("init")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def init(db_path: Path | None) -> None:
    """Apply migrations and register catalogued agents."""

    _emit_lines(_run(SQUAD_CONTROLLER.init, InitCommand(db_path=db_path)))


@mission_control.group()
def agents() -> None:
    """Agent catalogue and liveness commands."""


@agents.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def agents_list(db_path: Path | None) -> None:
    """Show agents with liveness and today's spend."""

    _emit_lines(_run(SQUAD_CONTROLLER.list_agents, AgentsListCommand(db_path=db_path)))


@agents.command("heartbeat")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("agent_id")
@click.option(
    "--status",
    type=click.Choice([status.value for status in AgentStatus]),
    default=None,
    help="Optional status hint.",
)
def agents_heartbeat(db_path: Path | None, agent_id: str, status: str | None) -> None:
    """Record one heartbeat for an agent."""

    _emit_lines(
        _run(
            SQUAD_CONTROLLER.heartbeat,
            HeartbeatCommand(db_path=db_path, agent_id=agent_id, status=status),
        ),
    )


@mission_control.command("spawn")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("agent_id")
@click.argument("description")
@click.option("--context", default=None, help="Extra context handed to the agent.")
@click.option(
    "--deliverable",
    "deliverables",
    multiple=True,
    help="Expected deliverable. Can be repeated.",
)
@click.option(
    "--estimated-tokens",
    type=click.IntRange(min=0),
    default=None,
    help="Token estimate used for budget admission (default from settings).",
)
@click.option(
    "--max-duration",
    "max_duration_minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Advisory time limit in minutes.",
)
@click.option("--area-id", default=None, help="Area the cost is attributed to.")
def spawn(  # noqa: PLR0913
    db_path: Path | None,
    agent_id: str,
    description: str,
    context: str | None,
    deliverables: tuple[str, ...],
    estimated_tokens: int | None,
    max_duration_minutes: int | None,
    area_id: str | None,
) -> None:
    """Spawn an agent task, escalating when the budget does not allow it."""

    _emit_lines(
        _run(
            SQUAD_CONTROLLER.spawn,
            SpawnCommand(
                db_path=db_path,
                agent_id=agent_id,
                description=description,
                context=context,
                deliverables=deliverables,
                estimated_tokens=estimated_tokens,
                max_duration_minutes=max_duration_minutes,
                area_id=area_id,
            ),
        ),
    )


@mission_control.group()
def tasks() -> None:
    """Task inspection commands."""


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
    help="Optional status filter.",
)
@click.option("--agent", "agent_id", default=None, help="Optional agent filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks_list(db_path: Path | None, status: str | None, agent_id: str | None, limit: int) -> None:
    """List recent tasks."""

    _emit_lines(
        _run(
            SQUAD_CONTROLLER.list_tasks,
            TasksListCommand(db_path=db_path, status=status, agent_id=agent_id, limit=limit),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its activity trail."""

    _emit_lines(
        _run(SQUAD_CONTROLLER.inspect_task, TaskInspectCommand(db_path=db_path, task_id=task_id)),
    )


@mission_control.command("costs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def costs(db_path: Path | None) -> None:
    """Show cost rollups and remaining daily budgets."""

    _emit_lines(_run(SQUAD_CONTROLLER.costs, CostsCommand(db_path=db_path)))


@mission_control.command("activity")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of events to print.",
)
@click.option(
    "--category",
    type=click.Choice([category.value for category in ActivityCategory]),
    default=None,
    help="Optional category filter.",
)
@click.option("--actor", default=None, help="Optional actor filter.")
def activity(db_path: Path | None, limit: int, category: str | None, actor: str | None) -> None:
    """Show the most recent activity events."""

    _emit_lines(
        _run(
            SQUAD_CONTROLLER.activity,
            ActivityCommand(db_path=db_path, limit=limit, category=category, actor=actor),
        ),
    )


@mission_control.command("sweep")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run a single sweep or keep sweeping on the configured interval.",
)
def sweep(db_path: Path | None, once: bool) -> None:
    """Run staleness detection, daily budget reset and journal pruning."""

    command = SweepCommand(db_path=db_path)
    if once:
        _emit_lines(_run(SQUAD_CONTROLLER.sweep_once, command))
    else:
        _emit_lines(_run(SQUAD_CONTROLLER.sweep_loop, command))


@mission_control.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default=None, help="Bind host (defaults to MISSION_CONTROL_API_HOST).")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Bind port (defaults to MISSION_CONTROL_API_PORT).",
)
@click.option(
    "--sweeps/--no-sweeps",
    default=True,
    show_default=True,
    help="Run periodic sweeps inside the server process.",
)
def serve(db_path: Path | None, host: str | None, port: int | None, sweeps: bool) -> None:
    """Serve the heartbeat endpoint and dashboard reads."""

    import uvicorn  # noqa: PLC0415

    from mission_control.api.app import create_app  # noqa: PLC0415

    settings = _run(Settings.from_env, db_path)
    uvicorn.run(
        create_app(settings, run_sweeps=sweeps),
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level=settings.log_level.lower(),
    )


@mission_control.group()
def executor() -> None:
    """Reference executor commands."""


@executor.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
@click.argument("agent_id")
def executor_run(db_path: Path | None, task_id: str, agent_id: str) -> None:
    """Run one spawned task in the foreground."""

    from mission_control.squad.executor.runner import run_task  # noqa: PLC0415

    settings = _run(Settings.from_env, db_path)
    try:
        exit_code = run_task(settings, task_id=task_id, agent_id=agent_id)
    except MissionControlError as error:
        raise click.ClickException(str(error)) from error
    if exit_code != 0:
        raise click.ClickException(f"Task {task_id} did not complete.")
    click.echo(f"Task completed: {task_id}")


def _run(action: Callable[[CommandT], ResultT], command: CommandT) -> ResultT:
    try:
        return action(command)
    except (MissionControlError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    mission_control()
