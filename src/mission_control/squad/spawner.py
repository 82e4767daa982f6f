"""Budget-aware admission control and dispatch of agent tasks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from mission_control.errors import MissionControlError
from mission_control.squad.activity import ActivityLog
from mission_control.squad.escalation import EscalationEvaluator
from mission_control.squad.executor.base import (
    ExecutorBackend,
    ExecutorHandle,
    ExecutorLaunchError,
    LaunchRequest,
)
from mission_control.squad.ledger import CostLedger
from mission_control.squad.models import (
    EscalationTrigger,
    SpawnRequest,
    TaskStatus,
    TaskView,
)
from mission_control.squad.registry import AgentRegistry
from mission_control.squad.tasks import TaskRepository
from mission_control.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_TOKENS = 2_000


class BudgetExceeded(MissionControlError):
    """Estimated cost does not fit the agent's remaining daily budget."""

    def __init__(self, agent_id: str, estimated_cost: Decimal, remaining: Decimal) -> None:
        super().__init__(
            f"Budget exceeded for {agent_id}: estimated ${estimated_cost:.4f}, "
            f"remaining ${remaining:.4f}",
        )
        self.agent_id = agent_id
        self.estimated_cost = estimated_cost
        self.remaining = remaining


class DispatchError(MissionControlError):
    """Executor could not be started; the task was marked failed."""

    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(f"Dispatch failed for task {task_id}: {message}")
        self.task_id = task_id


class AgentUnavailable(MissionControlError):
    """Agent is catalogued but not active."""


@dataclass(slots=True)
class SpawnedTask:
    """Outcome of one spawn request."""

    task: TaskView
    handle: ExecutorHandle | None = None

    @property
    def escalated(self) -> bool:
        return self.task.status == TaskStatus.ESCALATED


class TaskSpawner:
    """Admit, persist, dispatch and charge one unit of agent work.

    Admission and the charge are a single guarded ledger update, so
    concurrent spawns for one agent cannot overrun its daily budget. The task
    is then persisted ``pending`` and the executor launched; a single
    ``agent/spawn`` event records the charged estimate. Any launch failure
    leaves a ``failed`` task and refunds the charge.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: AgentRegistry,
        ledger: CostLedger,
        evaluator: EscalationEvaluator,
        activity_log: ActivityLog,
        tasks: TaskRepository,
        executor: ExecutorBackend,
        default_estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.evaluator = evaluator
        self.activity_log = activity_log
        self.tasks = tasks
        self.executor = executor
        self.default_estimated_tokens = default_estimated_tokens

    def create(
        self,
        agent_id: str,
        work: SpawnRequest,
        *,
        now: datetime | None = None,
    ) -> SpawnedTask:
        agent = self.registry.get(agent_id)
        if not agent.active:
            raise AgentUnavailable(f"Agent {agent_id} is not active.")
        tokens = (
            work.estimated_tokens
            if work.estimated_tokens is not None
            else self.default_estimated_tokens
        )
        estimated_cost = self.registry.estimate_cost(agent_id, tokens)

        charged_at = now or utc_now()
        if not self.ledger.try_spend(agent_id, estimated_cost, now=charged_at):
            return self._escalate_or_reject(
                agent_id,
                work,
                tokens=tokens,
                estimated_cost=estimated_cost,
                now=now,
            )

        try:
            task = self.tasks.create_task(
                agent_id=agent_id,
                work=work,
                estimated_tokens=tokens,
                estimated_cost=estimated_cost,
                now=now,
            )
        except Exception:
            self.ledger.refund(agent_id, estimated_cost, now=charged_at)
            raise
        try:
            handle = self.executor.launch(
                LaunchRequest(
                    task_id=task.task_id,
                    agent_id=agent_id,
                    on_exit=self.reconcile_exit,
                ),
            )
        except Exception as error:  # noqa: BLE001
            message = str(error) if isinstance(error, ExecutorLaunchError) else repr(error)
            self.ledger.refund(agent_id, estimated_cost, now=charged_at)
            self._fail_dispatch(task, message)
            raise DispatchError(task.task_id, message) from error

        if handle.process_id is not None:
            self.tasks.set_process_id(task.task_id, handle.process_id)
        self.activity_log.log_agent_spawn(
            agent_id,
            work.description,
            task_id=task.task_id,
            cost=estimated_cost,
            area_id=work.area_id,
            estimatedTokens=tokens,
            deliverables=list(work.deliverables),
            parentTaskId=work.parent_task_id,
        )
        logger.info(
            "Spawned %s for task %s (est. $%.4f, %d tokens)",
            agent_id,
            task.task_id,
            estimated_cost,
            tokens,
        )
        return SpawnedTask(task=task, handle=handle)

    def reconcile_exit(self, task_id: str, exit_code: int) -> bool:
        """Fail a task whose executor ended without reporting a terminal status."""

        task = self.tasks.get_task(task_id)
        if task is None:
            logger.warning("Executor exited for unknown task %s", task_id)
            return False
        if task.is_terminal:
            return False
        error = f"Executor exited with code {exit_code} before reporting completion"
        if not self.tasks.fail_task(task_id, error=error, exit_code=exit_code):
            return False
        self.activity_log.log_task_failed(
            task.description,
            error,
            task_id=task_id,
            actor=task.agent_id,
            exitCode=exit_code,
        )
        logger.warning("Task %s failed: %s", task_id, error)
        return True

    def spawn_coder(
        self,
        description: str,
        *,
        files: list[str] | None = None,
        context: str | None = None,
    ) -> SpawnedTask:
        focus = f"Focus on these files: {', '.join(files)}" if files else ""
        return self.create(
            "silk",
            SpawnRequest(
                description=description,
                context=context or f"You are writing code for the project.\n{focus}".strip(),
                deliverables=("Working code", "Brief explanation of changes"),
                estimated_tokens=2_000,
                max_duration_minutes=30,
            ),
        )

    def spawn_researcher(self, target: str, *, depth: str = "quick") -> SpawnedTask:
        if depth not in {"quick", "deep"}:
            raise ValueError(f"Unsupported research depth: {depth!r}")
        deep = depth == "deep"
        description = (
            f"Deep research on {target}: pricing, features, customers, weaknesses, "
            "market position"
            if deep
            else f"Quick overview of {target}: key facts and positioning"
        )
        return self.create(
            "barak",
            SpawnRequest(
                description=description,
                deliverables=("Research report", "Key findings summary"),
                estimated_tokens=5_000 if deep else 2_000,
                max_duration_minutes=60 if deep else 20,
            ),
        )

    def spawn_writer(
        self,
        content_type: str,
        topic: str,
        *,
        seo_keywords: list[str] | None = None,
    ) -> SpawnedTask:
        try:
            kind = _CONTENT_TYPES[content_type]
        except KeyError:
            raise ValueError(f"Unsupported content type: {content_type!r}") from None
        return self.create(
            "polgara",
            SpawnRequest(
                description=f"Write {kind} about: {topic}",
                context=f"SEO keywords to include: {', '.join(seo_keywords)}"
                if seo_keywords
                else None,
                deliverables=("Draft content", "Meta description", "Suggested title"),
                estimated_tokens=4_000,
                max_duration_minutes=30,
            ),
        )

    def _escalate_or_reject(
        self,
        agent_id: str,
        work: SpawnRequest,
        *,
        tokens: int,
        estimated_cost: Decimal,
        now: datetime | None,
    ) -> SpawnedTask:
        remaining = self.ledger.remaining_budget(agent_id, now=now)
        if not self.evaluator.should_escalate(agent_id, EscalationTrigger.COST_EXCEEDED):
            logger.warning(
                "Budget exceeded for %s: estimated $%.4f, remaining $%.4f",
                agent_id,
                estimated_cost,
                remaining,
            )
            raise BudgetExceeded(agent_id, estimated_cost, remaining)

        reason = (
            f"{EscalationTrigger.COST_EXCEEDED.value}: estimated ${estimated_cost:.4f} "
            f"exceeds remaining budget ${remaining:.4f}"
        )
        task = self.tasks.create_task(
            agent_id=agent_id,
            work=work,
            estimated_tokens=tokens,
            estimated_cost=estimated_cost,
            status=TaskStatus.ESCALATED,
            escalation_reason=reason,
            now=now,
        )
        self.activity_log.log_agent_escalation(
            agent_id,
            work.description,
            task_id=task.task_id,
            reason=reason,
        )
        logger.warning(
            "Escalated task %s for %s to %s: %s",
            task.task_id,
            agent_id,
            self.evaluator.escalation_target(),
            reason,
        )
        return SpawnedTask(task=task)

    def _fail_dispatch(self, task: TaskView, error: str) -> None:
        self.tasks.fail_task(task.task_id, error=error, from_statuses=(TaskStatus.PENDING,))
        self.activity_log.log_task_failed(
            task.description,
            error,
            task_id=task.task_id,
            actor=task.agent_id,
        )
        logger.error("Dispatch failed for task %s: %s", task.task_id, error)


def build_agent_prompt(work: SpawnRequest | TaskView, system_prompt: str) -> str:
    """Full prompt handed to an executor for one task."""

    sections = [system_prompt, "", "=== YOUR TASK ===", work.description, ""]
    if work.context:
        sections.extend(["=== CONTEXT ===", work.context, ""])
    if work.deliverables:
        sections.append("=== DELIVERABLES ===")
        sections.extend(f"- {item}" for item in work.deliverables)
        sections.append("")
    sections.extend(
        [
            "=== INSTRUCTIONS ===",
            "1. Work on this task autonomously",
            "2. Report progress to the task record as you go",
            "3. Escalate to the controller if you are blocked",
            "4. When complete, write results to the task record",
            "5. Be cost-conscious - use the cheapest tools that work",
            "",
            f"You have {work.max_duration_minutes or 60} minutes.",
        ],
    )
    return "\n".join(sections)


_CONTENT_TYPES = {
    "blog": "SEO-optimized blog post",
    "email": "Email sequence",
    "landing_page": "Landing page copy",
    "social": "Social media posts",
}
