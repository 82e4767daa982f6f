"""Windowed cost rollups derived from the activity stream."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import Decimal

from sqlmodel import col

from mission_control.squad.activity import to_event
from mission_control.squad.clock import start_of_day, start_of_month, start_of_week
from mission_control.squad.models import ActivityEvent, CostRollup
from mission_control.storage.common import to_db_datetime, to_utc_aware, utc_now
from mission_control.storage.sqlmodel_models import ActivityRecord
from mission_control.storage.store import (
    ChangeNotification,
    Collection,
    DocumentStore,
    Subscription,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CostEntry:
    """Cost-bearing slice of one activity event."""

    event_id: str
    timestamp: datetime
    agent_id: str
    area_id: str | None
    cost: Decimal

    @classmethod
    def from_event(cls, event: ActivityEvent) -> CostEntry | None:
        if event.event_id is None or event.timestamp is None:
            return None
        return cls(
            event_id=event.event_id,
            timestamp=to_utc_aware(event.timestamp),
            agent_id=event.cost_agent,
            area_id=event.area_id,
            cost=event.cost if event.cost is not None else Decimal(0),
        )


def window_start(tz: tzinfo | None, now: datetime | None = None) -> datetime:
    """Earliest instant any rollup window can include."""

    return min(start_of_week(tz, now), start_of_month(tz, now))


def fold_costs(entries: Iterable[CostEntry], *, now: datetime, tz: tzinfo | None) -> CostRollup:
    """Sum ``entries`` into today/week/month totals.

    Per-agent and per-area breakdowns cover the today window. Entries in the
    future relative to ``now`` are ignored.
    """

    today = start_of_day(tz, now)
    week = start_of_week(tz, now)
    month = start_of_month(tz, now)
    rollup = CostRollup()
    for entry in entries:
        if entry.timestamp > now:
            continue
        if entry.timestamp >= month:
            rollup.month_cost += entry.cost
        if entry.timestamp >= week:
            rollup.week_cost += entry.cost
        if entry.timestamp < today:
            continue
        rollup.today_cost += entry.cost
        rollup.cost_by_agent[entry.agent_id] = (
            rollup.cost_by_agent.get(entry.agent_id, Decimal(0)) + entry.cost
        )
        if entry.area_id:
            rollup.cost_by_area[entry.area_id] = (
                rollup.cost_by_area.get(entry.area_id, Decimal(0)) + entry.cost
            )
    return rollup


class CostAggregator:
    """Incremental consumer of the ``activities`` change feed.

    Entries are keyed by event id, so a redelivered event replaces itself
    instead of being counted twice.
    """

    def __init__(self, *, store: DocumentStore, tz: tzinfo | None) -> None:
        self.store = store
        self.tz = tz
        self._entries: dict[str, CostEntry] = {}
        self._lock = threading.Lock()

    def subscribe(self, *, now: datetime | None = None) -> Subscription:
        """Subscription whose first batch replays the current rollup window."""

        lower = to_db_datetime(window_start(self.tz, now))
        return self.store.subscribe(
            Collection.ACTIVITIES,
            where=(col(ActivityRecord.timestamp) >= lower,),
            replay=True,
        )

    def apply(
        self,
        batch: Sequence[ChangeNotification],
        *,
        now: datetime | None = None,
    ) -> CostRollup:
        """Fold one delivered batch in and return the recomputed rollup."""

        with self._lock:
            for notification in batch:
                entry = CostEntry.from_event(to_event(notification.document))
                if entry is not None and entry.cost:
                    self._entries[entry.event_id] = entry
        rollup = self.rollup(now=now)
        logger.debug(
            "Applied %d activity changes; today=$%s",
            len(batch),
            rollup.today_cost,
        )
        return rollup

    def rollup(self, *, now: datetime | None = None) -> CostRollup:
        """Recompute windows at query time, evicting entries before the earliest window."""

        current = now or utc_now()
        lower = window_start(self.tz, current)
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.timestamp < lower]
            for key in expired:
                del self._entries[key]
            entries = list(self._entries.values())
        return fold_costs(entries, now=current, tz=self.tz)

    def __len__(self) -> int:
        return len(self._entries)


def compute_rollup(
    store: DocumentStore,
    *,
    tz: tzinfo | None,
    now: datetime | None = None,
) -> CostRollup:
    """One-shot rollup read straight from the store."""

    current = now or utc_now()
    aggregator = CostAggregator(store=store, tz=tz)
    subscription = aggregator.subscribe(now=current)
    try:
        return aggregator.apply(subscription.poll(), now=current)
    finally:
        subscription.close()
