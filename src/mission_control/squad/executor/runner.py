"""Reference executor: runs one spawned task and reports back to the store.

Usage: ``python -m mission_control.squad.executor.runner --task-id ID --agent-id AGENT``
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from mission_control.config import Settings
from mission_control.errors import MissionControlError
from mission_control.squad.activity import ActivityLog
from mission_control.squad.heartbeat_client import HeartbeatClient
from mission_control.squad.liveness import LivenessMonitor
from mission_control.squad.models import ActivityCategory, AgentStatus, TaskView
from mission_control.squad.registry import AgentRegistry
from mission_control.squad.runtime import open_runtime
from mission_control.squad.spawner import build_agent_prompt
from mission_control.squad.tasks import TaskRepository

logger = logging.getLogger(__name__)

MIN_ACTUAL_COST = Decimal("0.001")
HeartbeatSink = Callable[[str, str | None], object]


@dataclass(slots=True, frozen=True)
class WorkStep:
    """One reported unit of progress."""

    progress: str
    description: str
    category: ActivityCategory
    action: str
    share: Decimal


_DEFAULT_PLAN = (
    WorkStep(
        progress="Gathering context...",
        description="Gathering context",
        category=ActivityCategory.WEB,
        action="search",
        share=Decimal("0.4"),
    ),
    WorkStep(
        progress="Analyzing findings...",
        description="Analyzing findings",
        category=ActivityCategory.FILE,
        action="write",
        share=Decimal("0.3"),
    ),
    WorkStep(
        progress="Compiling result...",
        description="Writing result",
        category=ActivityCategory.FILE,
        action="write",
        share=Decimal("0.3"),
    ),
)


def plan_steps(task: TaskView) -> list[WorkStep]:
    """One step per deliverable, or the default three-phase plan."""

    if not task.deliverables:
        return list(_DEFAULT_PLAN)
    count = len(task.deliverables)
    return [
        WorkStep(
            progress=f"Working on ({index}/{count}): {deliverable}",
            description=f"Working on ({index}/{count}): {deliverable}",
            category=ActivityCategory.FILE,
            action="write",
            share=Decimal(1) / count,
        )
        for index, deliverable in enumerate(task.deliverables, start=1)
    ]


class ReferenceExecutor:
    """Drive a pending task to a terminal status.

    Step events carry their token-share cost in metadata only; the charged
    amount was committed by the spawner, so rollups and the ledger agree.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: AgentRegistry,
        tasks: TaskRepository,
        activity_log: ActivityLog,
        heartbeat: HeartbeatSink,
        workdir: Path,
        step_delay_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.tasks = tasks
        self.activity_log = activity_log
        self.heartbeat = heartbeat
        self.workdir = workdir
        self.step_delay_seconds = step_delay_seconds
        self.sleep = sleep

    def run(self, task_id: str, agent_id: str) -> int:
        """Return the process exit code: 0 on completion, 1 otherwise."""

        task = self.tasks.get_task(task_id)
        if task is None:
            logger.error("Task not found: %s", task_id)
            return 1
        if task.agent_id != agent_id:
            logger.error("Task %s belongs to %s, not %s", task_id, task.agent_id, agent_id)
            return 1
        if not self.tasks.mark_running(task_id, process_id=os.getpid()):
            logger.error("Task %s is %s; refusing to run it", task_id, task.status.value)
            return 1

        self.heartbeat(agent_id, AgentStatus.ACTIVE.value)
        self.activity_log.emit(
            actor=agent_id,
            category=ActivityCategory.TASK,
            action="start",
            description=f"Started working on: {task.description}",
            metadata={"taskId": task_id},
            agent_id=agent_id,
            area_id=task.area_id,
            task_id=task_id,
            session_id=_session_id(agent_id, task_id),
        )
        try:
            result = self._execute(task)
        except (MissionControlError, OSError, SQLAlchemyError, ValueError) as error:
            message = str(error) or type(error).__name__
            self.tasks.fail_task(task_id, error=message, exit_code=1)
            self.activity_log.log_task_failed(
                task.description,
                message,
                task_id=task_id,
                actor=agent_id,
            )
            logger.exception("Task %s failed", task_id)
            return 1

        actual_cost = max(
            self.registry.estimate_cost(agent_id, task.estimated_tokens),
            MIN_ACTUAL_COST,
        )
        if not self.tasks.complete_task(task_id, result=result, actual_cost=actual_cost):
            logger.error("Task %s left running state before completion", task_id)
            return 1
        self.activity_log.log_task_completed(
            task.description,
            task_id=task_id,
            actor=agent_id,
            actualCost=str(actual_cost),
            estimatedCost=str(task.estimated_cost),
        )
        self.heartbeat(agent_id, None)
        logger.info("Task %s completed; actual cost $%.4f", task_id, actual_cost)
        return 0

    def _execute(self, task: TaskView) -> str:
        task_dir = self.workdir / task.task_id
        task_dir.mkdir(parents=True, exist_ok=True)
        prompt = build_agent_prompt(task, self.registry.system_prompt(task.agent_id))
        (task_dir / "prompt.txt").write_text(prompt, "utf-8")

        rate = self.registry.get(task.agent_id).cost_profile.estimated_cost_per_1k_tokens
        steps = plan_steps(task)
        for step in steps:
            self.tasks.update_progress(task.task_id, step.progress)
            step_cost = Decimal(task.estimated_tokens) * step.share / 1000 * rate
            self.activity_log.emit(
                actor=task.agent_id,
                category=step.category,
                action=step.action,
                description=step.description,
                metadata={
                    "taskId": task.task_id,
                    "stepCost": str(step_cost.quantize(Decimal("0.0001"))),
                },
                agent_id=task.agent_id,
                area_id=task.area_id,
                task_id=task.task_id,
                session_id=_session_id(task.agent_id, task.task_id),
            )
            self.heartbeat(task.agent_id, AgentStatus.ACTIVE.value)
            self.sleep(self.step_delay_seconds)

        result = {
            "summary": f"Completed {len(steps)} steps",
            "deliverables": list(task.deliverables),
            "promptPath": str(task_dir / "prompt.txt"),
        }
        (task_dir / "result.json").write_text(json.dumps(result, indent=2), "utf-8")
        return json.dumps(result)


def local_heartbeat(liveness: LivenessMonitor) -> HeartbeatSink:
    """Heartbeat straight into the store; failures are logged, not raised."""

    def send(agent_id: str, status: str | None) -> None:
        try:
            liveness.heartbeat(agent_id, status)
        except (MissionControlError, SQLAlchemyError) as error:
            logger.warning("Heartbeat for %s failed: %s", agent_id, error)

    return send


def _session_id(agent_id: str, task_id: str) -> str:
    return f"agent-{agent_id}-{task_id}"


def main(argv: list[str] | None = None) -> int:
    """Run one task to completion using settings from the environment."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--task-id", required=True)
    parser.add_argument("--agent-id", required=True)
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run_task(settings, task_id=args.task_id, agent_id=args.agent_id)


def run_task(settings: Settings, *, task_id: str, agent_id: str) -> int:
    with open_runtime(settings) as runtime:
        client = (
            HeartbeatClient(settings.executor.heartbeat_url)
            if settings.executor.heartbeat_url
            else None
        )
        heartbeat: HeartbeatSink = (
            client.send if client is not None else local_heartbeat(runtime.liveness)
        )
        executor = ReferenceExecutor(
            registry=runtime.registry,
            tasks=runtime.tasks,
            activity_log=runtime.activity_log,
            heartbeat=heartbeat,
            workdir=settings.executor.workdir,
            step_delay_seconds=settings.executor.step_delay_seconds,
        )
        try:
            return executor.run(task_id, agent_id)
        finally:
            if client is not None:
                client.close()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
