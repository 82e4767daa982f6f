"""Controllers for squad CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from mission_control.config import Settings
from mission_control.squad.aggregator import compute_rollup
from mission_control.squad.models import ActivityCategory, SpawnRequest, TaskStatus
from mission_control.squad.runtime import open_runtime


@dataclass(slots=True)
class InitCommand:
    """CLI input for schema setup."""

    db_path: Path | None


@dataclass(slots=True)
class AgentsListCommand:
    """CLI input for agent catalogue and liveness listing."""

    db_path: Path | None


@dataclass(slots=True)
class SpawnCommand:
    """CLI input for spawning one task."""

    db_path: Path | None
    agent_id: str
    description: str
    context: str | None
    deliverables: tuple[str, ...]
    estimated_tokens: int | None
    max_duration_minutes: int | None
    area_id: str | None


@dataclass(slots=True)
class TasksListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    agent_id: str | None
    limit: int


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class CostsCommand:
    """CLI input for budget and rollup report."""

    db_path: Path | None


@dataclass(slots=True)
class ActivityCommand:
    """CLI input for recent activity listing."""

    db_path: Path | None
    limit: int
    category: str | None
    actor: str | None


@dataclass(slots=True)
class SweepCommand:
    """CLI input for maintenance sweeps."""

    db_path: Path | None


@dataclass(slots=True)
class HeartbeatCommand:
    """CLI input for a manual heartbeat."""

    db_path: Path | None
    agent_id: str
    status: str | None


class SquadCliController:
    """Coordinates spawn, inspection and maintenance CLI operations."""

    def init(self, command: InitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            agents = runtime.liveness.all()
        return [
            f"Database ready: {settings.db_path}",
            f"Agents registered: {len(agents)}",
        ]

    def list_agents(self, command: AgentsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            liveness = {record.agent_id: record for record in runtime.liveness.all()}
            budgets = {
                agent.id: (
                    runtime.ledger.spent_today(agent.id),
                    agent.cost_profile.daily_budget,
                )
                for agent in runtime.registry
            }
            agents = runtime.registry.all()

        lines = [f"Agents: {len(agents)}"]
        for agent in agents:
            record = liveness.get(agent.id)
            spent, budget = budgets[agent.id]
            heartbeat = (
                record.last_heartbeat.isoformat()
                if record is not None and record.last_heartbeat
                else "-"
            )
            lines.append(
                f"  {agent.id} role={agent.role!r} "
                f"controller={'yes' if agent.is_controller else 'no'} "
                f"active={'yes' if agent.active else 'no'} "
                f"status={record.status.value if record else '-'} "
                f"online={'yes' if record and record.is_online else 'no'} "
                f"last_heartbeat={heartbeat} "
                f"spent=${_money(spent)}/${_money(budget)}",
            )
        return lines

    def spawn(self, command: SpawnCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            spawned = runtime.spawner.create(
                command.agent_id,
                SpawnRequest(
                    description=command.description,
                    context=command.context,
                    deliverables=command.deliverables,
                    estimated_tokens=command.estimated_tokens,
                    max_duration_minutes=command.max_duration_minutes,
                    area_id=command.area_id,
                ),
            )
        task = spawned.task
        if spawned.escalated:
            return [
                f"Task escalated: task_id={task.task_id} agent={task.agent_id}",
                f"Reason: {task.escalation_reason}",
            ]
        pid = spawned.handle.process_id if spawned.handle is not None else None
        return [
            f"Task spawned: task_id={task.task_id} agent={task.agent_id} "
            f"estimated_cost=${_money(task.estimated_cost)} pid={pid if pid is not None else '-'}",
        ]

    def list_tasks(self, command: TasksListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with open_runtime(settings) as runtime:
            tasks = runtime.tasks.list_tasks(
                status=status_filter,
                agent_id=command.agent_id,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} agent={task.agent_id} status={task.status.value} "
                f"estimated=${_money(task.estimated_cost)} "
                f"started_at={task.started_at.isoformat()} "
                f"description={task.description!r}",
            )
        return lines

    def inspect_task(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            task = runtime.tasks.get_task(command.task_id)
            events = runtime.activity_log.recent(limit=100, task_id=command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]

        actual = _money(task.actual_cost) if task.actual_cost is not None else "-"
        lines = [
            f"Task: {task.task_id}",
            f"Agent: {task.agent_id}",
            f"Status: {task.status.value}",
            f"Description: {task.description}",
            f"Deliverables: {', '.join(task.deliverables) or '-'}",
            f"Estimated: {task.estimated_tokens} tokens, ${_money(task.estimated_cost)}",
            f"Actual cost: {actual}",
            f"Progress: {task.progress or '-'}",
            f"Process: {task.process_id if task.process_id is not None else '-'}",
            f"Exit code: {task.exit_code if task.exit_code is not None else '-'}",
            f"Error: {task.error or '-'}",
            f"Escalation: {task.escalation_reason or '-'}",
            f"Started: {task.started_at.isoformat()}",
            f"Completed: {task.completed_at.isoformat() if task.completed_at else '-'}",
            f"Events: {len(events)}",
        ]
        for event in reversed(events):
            timestamp = event.timestamp.isoformat() if event.timestamp else "-"
            lines.append(
                f"  {timestamp} {event.actor} {event.category.value}/{event.action} "
                f"{event.description}",
            )
        return lines

    def costs(self, command: CostsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            rollup = compute_rollup(runtime.store, tz=runtime.tz)
            budgets = [
                (
                    agent.id,
                    runtime.ledger.spent_today(agent.id),
                    runtime.ledger.remaining_budget(agent.id),
                    agent.cost_profile.daily_budget,
                )
                for agent in runtime.registry.active()
            ]
            alerts = runtime.ledger.budget_alerts()

        lines = [
            f"Today: ${_money(rollup.today_cost)}",
            f"Week: ${_money(rollup.week_cost)}",
            f"Month: ${_money(rollup.month_cost)}",
            "By agent (today):",
        ]
        for agent_id, cost in sorted(rollup.cost_by_agent.items()):
            lines.append(f"  {agent_id}: ${_money(cost)}")
        if rollup.cost_by_area:
            lines.append("By area (today):")
            for area_id, cost in sorted(rollup.cost_by_area.items()):
                lines.append(f"  {area_id}: ${_money(cost)}")
        lines.append("Budgets:")
        for agent_id, spent, remaining, budget in budgets:
            lines.append(
                f"  {agent_id}: spent=${_money(spent)} remaining=${_money(remaining)} "
                f"budget=${_money(budget)}",
            )
        if alerts:
            lines.append("Alerts:")
            for alert in alerts:
                lines.append(f"  [{alert.severity.value}] {alert.message}")
        return lines

    def activity(self, command: ActivityCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        category = ActivityCategory(command.category) if command.category else None
        with open_runtime(settings) as runtime:
            events = runtime.activity_log.recent(
                limit=command.limit,
                category=category,
                actor=command.actor,
            )

        lines = [f"Activities: {len(events)}"]
        for event in events:
            timestamp = event.timestamp.isoformat() if event.timestamp else "-"
            cost = f" cost=${_money(event.cost)}" if event.cost is not None else ""
            lines.append(
                f"  {timestamp} {event.actor} ({event.actor_type.value}) "
                f"{event.category.value}/{event.action}: {event.description}{cost}",
            )
        return lines

    def sweep_once(self, command: SweepCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            report = runtime.sweeps.run_once()
        if report is None:
            return ["Sweep skipped: another sweep is running."]
        return [
            "Sweep complete: "
            f"offline={','.join(report.went_offline) or '-'} "
            f"ledger_reset={'yes' if report.ledger_reset else 'no'} "
            f"pruned_changes={report.pruned_changes}",
        ]

    def sweep_loop(self, command: SweepCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            try:
                runtime.sweeps.run_forever()
            except KeyboardInterrupt:
                pass
        return ["Sweeps stopped."]

    def heartbeat(self, command: HeartbeatCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            record = runtime.liveness.heartbeat(command.agent_id, command.status)
        heartbeat = record.last_heartbeat.isoformat() if record.last_heartbeat else "-"
        return [
            f"Heartbeat recorded: agent={record.agent_id} status={record.status.value} "
            f"online={'yes' if record.is_online else 'no'} last_heartbeat={heartbeat}",
        ]


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _money(value: Decimal) -> str:
    return f"{value:.4f}"
