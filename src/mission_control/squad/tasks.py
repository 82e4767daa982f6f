"""Task records over the ``tasks`` collection with status-guarded transitions."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlmodel import col

from mission_control.squad.models import SpawnRequest, TaskStatus, TaskView
from mission_control.storage.common import (
    from_micros,
    to_db_datetime,
    to_micros,
    to_utc_aware,
    utc_now,
)
from mission_control.storage.sqlmodel_models import AgentTask
from mission_control.storage.store import Collection, DocumentStore

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (TaskStatus.PENDING, TaskStatus.RUNNING)


class TaskRepository:
    """Reads and conditional writes for task documents.

    Every transition names its allowed source statuses, so terminal tasks
    (completed, failed, escalated) can never be rewritten.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def create_task(  # noqa: PLR0913
        self,
        *,
        agent_id: str,
        work: SpawnRequest,
        estimated_tokens: int,
        estimated_cost: Decimal,
        status: TaskStatus = TaskStatus.PENDING,
        escalation_reason: str | None = None,
        now: datetime | None = None,
    ) -> TaskView:
        if status not in {TaskStatus.PENDING, TaskStatus.ESCALATED}:
            raise ValueError(f"Tasks are created pending or escalated, not {status.value}")
        timestamp = to_db_datetime(now or utc_now())
        row = AgentTask(
            task_id=str(uuid4()),
            agent_id=agent_id,
            status=status.value,
            description=work.description,
            context=work.context,
            deliverables_json=json.dumps(list(work.deliverables)) if work.deliverables else None,
            area_id=work.area_id,
            estimated_tokens=estimated_tokens,
            estimated_cost_micros=to_micros(estimated_cost),
            max_duration_minutes=work.max_duration_minutes,
            escalation_reason=escalation_reason,
            started_at=timestamp,
            completed_at=timestamp if status == TaskStatus.ESCALATED else None,
            updated_at=timestamp,
        )
        self.store.create(Collection.TASKS, row)
        logger.info("Created task %s for %s (%s)", row.task_id, agent_id, status.value)
        return _to_task_view(row)

    def get_task(self, task_id: str) -> TaskView | None:
        row = self.store.get(Collection.TASKS, task_id)
        return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        agent_id: str | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status and agent."""

        where = []
        if status is not None:
            where.append(col(AgentTask.status) == status.value)
        if agent_id is not None:
            where.append(col(AgentTask.agent_id) == agent_id)
        rows = self.store.query(
            Collection.TASKS,
            where=where,
            order_by=(col(AgentTask.started_at).desc(),),
            limit=limit,
        )
        return [_to_task_view(row) for row in rows]

    def mark_running(self, task_id: str, *, process_id: int | None = None) -> bool:
        """Move a pending task to running."""

        values: dict[str, object] = {
            "status": TaskStatus.RUNNING.value,
            "updated_at": to_db_datetime(utc_now()),
        }
        if process_id is not None:
            values["process_id"] = process_id
        return self._transition(task_id, values, from_statuses=(TaskStatus.PENDING,))

    def set_process_id(self, task_id: str, process_id: int) -> bool:
        return self._transition(
            task_id,
            {"process_id": process_id, "updated_at": to_db_datetime(utc_now())},
            from_statuses=_ACTIVE_STATUSES,
        )

    def update_progress(self, task_id: str, progress: str) -> bool:
        return self._transition(
            task_id,
            {"progress": progress, "updated_at": to_db_datetime(utc_now())},
            from_statuses=(TaskStatus.RUNNING,),
        )

    def complete_task(
        self,
        task_id: str,
        *,
        result: str,
        actual_cost: Decimal | None = None,
    ) -> bool:
        """Mark a running task as completed."""

        now = to_db_datetime(utc_now())
        return self._transition(
            task_id,
            {
                "status": TaskStatus.COMPLETED.value,
                "result": result,
                "progress": "100%",
                "actual_cost_micros": to_micros(actual_cost) if actual_cost is not None else None,
                "exit_code": 0,
                "completed_at": now,
                "updated_at": now,
            },
            from_statuses=(TaskStatus.RUNNING,),
        )

    def fail_task(
        self,
        task_id: str,
        *,
        error: str,
        exit_code: int | None = None,
        from_statuses: Iterable[TaskStatus] = _ACTIVE_STATUSES,
    ) -> bool:
        """Mark a pending or running task as failed."""

        now = to_db_datetime(utc_now())
        return self._transition(
            task_id,
            {
                "status": TaskStatus.FAILED.value,
                "error": error,
                "exit_code": exit_code,
                "completed_at": now,
                "updated_at": now,
            },
            from_statuses=tuple(from_statuses),
        )

    def _transition(
        self,
        task_id: str,
        values: dict[str, object],
        *,
        from_statuses: tuple[TaskStatus, ...],
    ) -> bool:
        updated = self.store.update(
            Collection.TASKS,
            task_id,
            values,
            where=(col(AgentTask.status).in_([status.value for status in from_statuses]),),
        )
        if not updated:
            logger.debug(
                "Task %s not updated: status is not one of %s",
                task_id,
                ", ".join(status.value for status in from_statuses),
            )
        return updated


def _to_task_view(row: AgentTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        agent_id=row.agent_id,
        status=TaskStatus(row.status),
        description=row.description,
        context=row.context,
        deliverables=tuple(json.loads(row.deliverables_json)) if row.deliverables_json else (),
        area_id=row.area_id,
        estimated_tokens=row.estimated_tokens,
        estimated_cost=from_micros(row.estimated_cost_micros),
        actual_cost=from_micros(row.actual_cost_micros)
        if row.actual_cost_micros is not None
        else None,
        max_duration_minutes=row.max_duration_minutes,
        progress=row.progress,
        result=row.result,
        error=row.error,
        exit_code=row.exit_code,
        process_id=row.process_id,
        escalation_reason=row.escalation_reason,
        started_at=to_utc_aware(row.started_at),
        completed_at=to_utc_aware(row.completed_at) if row.completed_at else None,
        updated_at=to_utc_aware(row.updated_at),
    )
