"""Append-only activity recorder shared by every squad component.

Activity logging is observability, not a correctness dependency: any
failure is reported to the operational log and swallowed so the caller's
primary operation proceeds.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlmodel import col

from mission_control.squad.models import (
    ActivityCategory,
    ActivityEvent,
    ActorType,
)
from mission_control.squad.registry import AgentRegistry
from mission_control.storage.common import (
    from_micros,
    to_db_datetime,
    to_micros,
    to_utc_aware,
    utc_now,
)
from mission_control.storage.sqlmodel_models import ActivityRecord
from mission_control.storage.store import Collection, DocumentStore

logger = logging.getLogger(__name__)


class ActivityLog:
    """Records immutable :class:`ActivityEvent` entries in the ``activities`` collection."""

    def __init__(self, *, store: DocumentStore, registry: AgentRegistry) -> None:
        self.store = store
        self.registry = registry

    def record(self, event: ActivityEvent) -> str | None:
        """Persist ``event`` and return its id, or None when logging failed."""

        stamped = replace(
            event,
            event_id=event.event_id or str(uuid4()),
            timestamp=event.timestamp or utc_now(),
        )
        try:
            row = to_record(stamped)
            self.store.create(Collection.ACTIVITIES, row)
        except Exception as error:  # noqa: BLE001
            logger.warning("Failed to log activity %r: %s", event.description, error)
            return None
        logger.debug("Logged activity: %s", stamped.description)
        return stamped.event_id

    def recent(
        self,
        *,
        limit: int = 50,
        category: ActivityCategory | None = None,
        actor: str | None = None,
        task_id: str | None = None,
    ) -> list[ActivityEvent]:
        """Newest-first audit listing."""

        where = []
        if category is not None:
            where.append(col(ActivityRecord.category) == category.value)
        if actor is not None:
            where.append(col(ActivityRecord.actor) == actor)
        if task_id is not None:
            where.append(col(ActivityRecord.task_id) == task_id)
        rows = self.store.query(
            Collection.ACTIVITIES,
            where=where,
            order_by=(col(ActivityRecord.timestamp).desc(),),
            limit=limit,
        )
        return [to_event(row) for row in rows]

    def emit(  # noqa: PLR0913
        self,
        *,
        actor: str,
        category: ActivityCategory,
        action: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        cost: Decimal | None = None,
        agent_id: str | None = None,
        area_id: str | None = None,
        task_id: str | None = None,
        session_id: str | None = None,
    ) -> str | None:
        return self.record(
            ActivityEvent(
                actor=actor,
                actor_type=self.registry.actor_type(actor),
                category=category,
                action=action,
                description=description,
                metadata=metadata or {},
                cost=cost,
                agent_id=agent_id,
                area_id=area_id,
                task_id=task_id,
                session_id=session_id or "unknown",
            ),
        )

    def log_file_read(self, file_path: str, *, actor: str, **metadata: Any) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.FILE,
            action="read",
            description=f"Read file: {file_path}",
            metadata={"filePath": file_path, **metadata},
        )

    def log_file_write(self, file_path: str, *, actor: str, **metadata: Any) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.FILE,
            action="write",
            description=f"Wrote file: {file_path}",
            metadata={"filePath": file_path, **metadata},
        )

    def log_file_edit(self, file_path: str, *, actor: str, **metadata: Any) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.FILE,
            action="edit",
            description=f"Edited file: {file_path}",
            metadata={"filePath": file_path, **metadata},
        )

    def log_web_search(
        self,
        query: str,
        result_count: int,
        *,
        actor: str,
        cost: Decimal | None = None,
        **metadata: Any,
    ) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.WEB,
            action="search",
            description=f'Searched web: "{query}" ({result_count} results)',
            metadata={"query": query, "resultCount": result_count, **metadata},
            cost=cost,
        )

    def log_web_fetch(self, url: str, *, actor: str, **metadata: Any) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.WEB,
            action="fetch",
            description=f"Fetched URL: {url}",
            metadata={"url": url, **metadata},
        )

    def log_command(self, command: str, exit_code: int, *, actor: str, **metadata: Any) -> str | None:
        head = command.split(" ", 1)[0]
        return self.emit(
            actor=actor,
            category=ActivityCategory.TOOL,
            action="run",
            description=f"Executed: {head}",
            metadata={"command": command, "exitCode": exit_code, "success": exit_code == 0, **metadata},
        )

    def log_message_sent(
        self,
        channel: str,
        recipient: str,
        *,
        actor: str,
        **metadata: Any,
    ) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.COMMUNICATION,
            action="send",
            description=f"Sent message to {recipient} via {channel}",
            metadata={"channel": channel, "recipient": recipient, **metadata},
        )

    def log_agent_spawn(  # noqa: PLR0913
        self,
        target_agent: str,
        task: str,
        *,
        task_id: str,
        cost: Decimal,
        area_id: str | None = None,
        **metadata: Any,
    ) -> str | None:
        controller = self.registry.controller.id
        return self.emit(
            actor=controller,
            category=ActivityCategory.AGENT,
            action="spawn",
            description=f"Spawned {target_agent} for: {task}",
            metadata={"targetAgent": target_agent, "task": task, **metadata},
            cost=cost,
            agent_id=target_agent,
            area_id=area_id,
            task_id=task_id,
        )

    def log_agent_escalation(
        self,
        agent_id: str,
        task: str,
        *,
        task_id: str,
        reason: str,
        **metadata: Any,
    ) -> str | None:
        controller = self.registry.controller.id
        return self.emit(
            actor=agent_id,
            category=ActivityCategory.AGENT,
            action="escalate",
            description=f"Escalated {agent_id} task to {controller}: {task}",
            metadata={"escalatedTo": controller, "reason": reason, "task": task, **metadata},
            agent_id=agent_id,
            task_id=task_id,
        )

    def log_task_created(self, title: str, *, task_id: str, actor: str, **metadata: Any) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.TASK,
            action="create",
            description=f"Created task: {title}",
            metadata={"taskTitle": title, **metadata},
            task_id=task_id,
        )

    def log_task_completed(
        self,
        title: str,
        *,
        task_id: str,
        actor: str,
        cost: Decimal | None = None,
        **metadata: Any,
    ) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.TASK,
            action="complete",
            description=f"Completed task: {title}",
            metadata={"taskTitle": title, **metadata},
            cost=cost,
            task_id=task_id,
        )

    def log_task_failed(
        self,
        title: str,
        error: str,
        *,
        task_id: str,
        actor: str,
        **metadata: Any,
    ) -> str | None:
        return self.emit(
            actor=actor,
            category=ActivityCategory.TASK,
            action="fail",
            description=f"Failed task: {title} - {error}",
            metadata={"taskTitle": title, "error": error, **metadata},
            task_id=task_id,
        )


def to_record(event: ActivityEvent) -> ActivityRecord:
    if event.event_id is None or event.timestamp is None:
        raise ValueError("Activity event must be stamped before persisting.")
    return ActivityRecord(
        event_id=event.event_id,
        timestamp=to_db_datetime(event.timestamp),
        actor=event.actor,
        actor_type=ActorType(event.actor_type).value,
        category=ActivityCategory(event.category).value,
        action=event.action,
        description=event.description,
        metadata_json=json.dumps(event.metadata, ensure_ascii=False, sort_keys=True, default=str)
        if event.metadata
        else None,
        cost_micros=to_micros(event.cost) if event.cost is not None else None,
        agent_id=event.agent_id,
        area_id=event.area_id,
        task_id=event.task_id,
        session_id=event.session_id,
    )


def to_event(row: ActivityRecord) -> ActivityEvent:
    return ActivityEvent(
        event_id=row.event_id,
        timestamp=to_utc_aware(row.timestamp),
        actor=row.actor,
        actor_type=ActorType(row.actor_type),
        category=ActivityCategory(row.category),
        action=row.action,
        description=row.description,
        metadata=json.loads(row.metadata_json) if row.metadata_json else {},
        cost=from_micros(row.cost_micros) if row.cost_micros is not None else None,
        agent_id=row.agent_id,
        area_id=row.area_id,
        task_id=row.task_id,
        session_id=row.session_id,
    )
