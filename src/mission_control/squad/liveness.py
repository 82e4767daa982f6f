"""Heartbeat ingestion and staleness detection for squad agents."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy import and_, case, or_
from sqlmodel import col

from mission_control.squad.models import AgentLivenessRecord, AgentStatus
from mission_control.squad.registry import AgentRegistry, UnknownAgent
from mission_control.storage.common import to_db_datetime, to_utc_aware, utc_now
from mission_control.storage.sqlmodel_models import AgentRecord
from mission_control.storage.store import ChangeNotification, Collection, DocumentStore

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Owner of the ``agents`` collection.

    Heartbeats and staleness sweeps are single SQL updates, so concurrent
    writers for one agent never lose each other's effect.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        heartbeat_interval_seconds: int = 30,
        staleness_threshold_seconds: int = 90,
    ) -> None:
        if staleness_threshold_seconds <= heartbeat_interval_seconds:
            raise ValueError(
                "Staleness threshold must exceed the heartbeat interval "
                f"({staleness_threshold_seconds}s <= {heartbeat_interval_seconds}s).",
            )
        self.store = store
        self.heartbeat_interval = timedelta(seconds=heartbeat_interval_seconds)
        self.staleness_threshold = timedelta(seconds=staleness_threshold_seconds)
        self._view: dict[str, AgentLivenessRecord] = {}
        self._view_lock = threading.Lock()

    def register_agents(self, registry: AgentRegistry, *, now: datetime | None = None) -> int:
        """Seed an offline ``idle`` record for every catalogued agent missing one."""

        timestamp = to_db_datetime(now or utc_now())
        created = 0
        for agent in registry:
            if self.store.get(Collection.AGENTS, agent.id) is not None:
                continue
            self.store.create(
                Collection.AGENTS,
                AgentRecord(
                    agent_id=agent.id,
                    status=AgentStatus.IDLE.value,
                    is_online=False,
                    created_at=timestamp,
                    updated_at=timestamp,
                ),
            )
            created += 1
        if created:
            logger.info("Registered %d agent liveness records", created)
        return created

    def heartbeat(
        self,
        agent_id: str,
        status: AgentStatus | str | None = None,
        *,
        now: datetime | None = None,
    ) -> AgentLivenessRecord:
        """Record a heartbeat and return the resulting record.

        ``last_heartbeat`` only moves forward. A status hint of ``active``
        promotes ``idle`` (or a recovering ``offline``) agent to ``active``;
        no hint ever demotes an agent, and an unrecognised hint counts as none.
        """

        hint = _parse_hint(status)
        timestamp = to_db_datetime(now or utc_now())
        last_heartbeat = col(AgentRecord.last_heartbeat)
        last_activity = col(AgentRecord.last_activity)
        current_status = col(AgentRecord.status)

        recovering_status = (
            AgentStatus.ACTIVE.value if hint == AgentStatus.ACTIVE else AgentStatus.IDLE.value
        )
        whens = [(current_status == AgentStatus.OFFLINE.value, recovering_status)]
        if hint == AgentStatus.ACTIVE:
            whens.append((current_status == AgentStatus.IDLE.value, AgentStatus.ACTIVE.value))

        updated = self.store.update(
            Collection.AGENTS,
            agent_id,
            {
                "last_heartbeat": case(
                    (
                        or_(last_heartbeat.is_(None), last_heartbeat < timestamp),
                        timestamp,
                    ),
                    else_=last_heartbeat,
                ),
                "last_activity": case(
                    (
                        or_(last_activity.is_(None), last_activity < timestamp),
                        timestamp,
                    ),
                    else_=last_activity,
                ),
                "is_online": True,
                "status": case(*whens, else_=current_status),
                "updated_at": timestamp,
            },
        )
        if not updated:
            raise UnknownAgent(agent_id)
        record = self.get(agent_id)
        assert record is not None
        logger.debug("Heartbeat from %s (%s)", agent_id, record.status.value)
        return record

    def touch_activity(self, agent_id: str, *, now: datetime | None = None) -> bool:
        timestamp = to_db_datetime(now or utc_now())
        return self.store.update(
            Collection.AGENTS,
            agent_id,
            {"last_activity": timestamp, "updated_at": timestamp},
        )

    def check_staleness(
        self,
        threshold: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Mark agents silent for longer than ``threshold`` offline.

        Returns the ids that transitioned. Re-running is a no-op.
        """

        current = now or utc_now()
        cutoff = to_db_datetime(current - (threshold or self.staleness_threshold))
        last_heartbeat = col(AgentRecord.last_heartbeat)
        stale_predicate = and_(
            or_(last_heartbeat.is_(None), last_heartbeat < cutoff),
            or_(
                col(AgentRecord.is_online).is_(True),
                col(AgentRecord.status) != AgentStatus.OFFLINE.value,
            ),
        )
        candidates = self.store.query(Collection.AGENTS, where=(stale_predicate,))
        transitioned: list[str] = []
        for row in candidates:
            if self.store.update(
                Collection.AGENTS,
                row.agent_id,
                {
                    "is_online": False,
                    "status": AgentStatus.OFFLINE.value,
                    "updated_at": to_db_datetime(current),
                },
                where=(stale_predicate,),
            ):
                transitioned.append(row.agent_id)
        if transitioned:
            logger.warning(
                "Marked %d agent(s) offline after %ss of silence: %s",
                len(transitioned),
                int((threshold or self.staleness_threshold).total_seconds()),
                ", ".join(transitioned),
            )
        return transitioned

    def get(self, agent_id: str) -> AgentLivenessRecord | None:
        row = self.store.get(Collection.AGENTS, agent_id)
        return _to_liveness_record(row) if row is not None else None

    def all(self) -> list[AgentLivenessRecord]:
        rows = self.store.query(Collection.AGENTS, order_by=(col(AgentRecord.agent_id).asc(),))
        return [_to_liveness_record(row) for row in rows]

    def apply(self, batch: Sequence[ChangeNotification]) -> dict[str, AgentLivenessRecord]:
        """Update the passive view from an ``agents`` change batch."""

        with self._view_lock:
            for notification in batch:
                record = _to_liveness_record(notification.document)
                self._view[record.agent_id] = record
            return dict(self._view)

    def view(self) -> dict[str, AgentLivenessRecord]:
        with self._view_lock:
            return dict(self._view)


def _to_liveness_record(row: AgentRecord) -> AgentLivenessRecord:
    return AgentLivenessRecord(
        agent_id=row.agent_id,
        status=AgentStatus(row.status),
        last_heartbeat=to_utc_aware(row.last_heartbeat) if row.last_heartbeat else None,
        is_online=bool(row.is_online),
        last_activity=to_utc_aware(row.last_activity) if row.last_activity else None,
    )


def _parse_hint(status: AgentStatus | str | None) -> AgentStatus | None:
    if not status:
        return None
    try:
        return AgentStatus(status)
    except ValueError:
        logger.debug("Ignoring unrecognised heartbeat status %r", status)
        return None
