from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4
from zoneinfo import ZoneInfo

import allure

from mission_control.squad.activity import ActivityLog, to_record
from mission_control.squad.aggregator import (
    CostAggregator,
    CostEntry,
    compute_rollup,
    fold_costs,
    window_start,
)
from mission_control.squad.models import ActivityCategory, ActivityEvent, ActorType
from mission_control.storage.store import DocumentStore

pytestmark = [
    allure.epic("Agent Squad"),
    allure.feature("Cost Rollups"),
]

UTC_ZONE = ZoneInfo("UTC")
NOON = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _event(
    agent_id: str,
    cost: Decimal | None,
    timestamp: datetime,
    *,
    area_id: str | None = None,
) -> ActivityEvent:
    return ActivityEvent(
        actor=agent_id,
        actor_type=ActorType.MAIN if agent_id == "garion" else ActorType.SUBAGENT,
        category=ActivityCategory.TOOL,
        action="run",
        description=f"{agent_id} work",
        cost=cost,
        area_id=area_id,
        event_id=str(uuid4()),
        timestamp=timestamp,
    )


def _entry(agent_id: str, cost: str, timestamp: datetime, area_id: str | None = None) -> CostEntry:
    return CostEntry(
        event_id=str(uuid4()),
        timestamp=timestamp,
        agent_id=agent_id,
        area_id=area_id,
        cost=Decimal(cost),
    )


def test_rollup_over_thousands_of_events(store: DocumentStore) -> None:
    per_event = {
        "garion": Decimal("0.0055"),
        "silk": Decimal("0.00325"),
        "barak": Decimal("0.01"),
    }
    events = [
        _event(agent_id, cost, NOON - timedelta(seconds=index + 1))
        for agent_id, cost in per_event.items()
        for index in range(1_000)
    ]
    events.append(_event("barak", None, NOON - timedelta(minutes=5)))
    events.append(_event("garion", Decimal(0), NOON - timedelta(minutes=6)))
    with store.session() as session:
        session.add_all([to_record(event) for event in events])
        session.commit()

    rollup = compute_rollup(store, tz=UTC_ZONE, now=NOON)

    assert rollup.cost_by_agent == {
        "garion": Decimal("5.5"),
        "silk": Decimal("3.25"),
        "barak": Decimal("10"),
    }
    assert rollup.today_cost == Decimal("18.75")
    assert rollup.week_cost == Decimal("18.75")
    assert rollup.month_cost == Decimal("18.75")


def test_incremental_changes_and_redelivery_are_counted_once(
    store: DocumentStore,
    activity_log: ActivityLog,
) -> None:
    start = datetime.now(tz=UTC)
    activity_log.record(_event("fury", Decimal("1.25"), start - timedelta(seconds=1)))
    aggregator = CostAggregator(store=store, tz=UTC_ZONE)
    subscription = aggregator.subscribe(now=start)

    snapshot = subscription.poll()
    assert aggregator.apply(snapshot, now=start).today_cost == Decimal("1.25")

    activity_log.log_agent_spawn(
        "mason",
        "Research",
        task_id="task-1",
        cost=Decimal("0.5"),
        area_id="growth",
    )
    activity_log.record(_event("mason", None, start))
    batch = subscription.poll()
    assert len(batch) == 2

    now = datetime.now(tz=UTC)
    first = aggregator.apply(batch, now=now)
    again = aggregator.apply(batch, now=now)
    replayed = aggregator.apply(snapshot, now=now)

    assert first == again == replayed
    assert first.cost_by_agent == {"fury": Decimal("1.25"), "mason": Decimal("0.5")}
    assert first.cost_by_area == {"growth": Decimal("0.5")}
    assert first.today_cost == Decimal("1.75")
    assert len(aggregator) == 2
    assert subscription.poll() == []


def test_fold_costs_windows() -> None:
    entries = [
        _entry("fury", "1", NOON - timedelta(hours=2), area_id="ops"),
        _entry("fury", "2", datetime(2026, 3, 9, 23, 0, tzinfo=UTC)),
        _entry("mason", "4", datetime(2026, 3, 2, 8, 0, tzinfo=UTC)),
        _entry("mason", "8", datetime(2026, 2, 28, 8, 0, tzinfo=UTC)),
        _entry("mason", "16", NOON + timedelta(minutes=1)),
    ]

    rollup = fold_costs(entries, now=NOON, tz=UTC_ZONE)

    assert rollup.today_cost == Decimal(1)
    assert rollup.week_cost == Decimal(3)
    assert rollup.month_cost == Decimal(7)
    assert rollup.cost_by_agent == {"fury": Decimal(1)}
    assert rollup.cost_by_area == {"ops": Decimal(1)}


def test_week_spanning_month_boundary() -> None:
    now = datetime(2026, 4, 1, 12, 0, tzinfo=UTC)
    entries = [
        _entry("fury", "3", datetime(2026, 3, 30, 10, 0, tzinfo=UTC)),
        _entry("fury", "5", datetime(2026, 4, 1, 9, 0, tzinfo=UTC)),
    ]

    rollup = fold_costs(entries, now=now, tz=UTC_ZONE)

    assert window_start(UTC_ZONE, now) == datetime(2026, 3, 29, tzinfo=UTC_ZONE)
    assert rollup.week_cost == Decimal(8)
    assert rollup.month_cost == Decimal(5)
    assert rollup.today_cost == Decimal(5)


def test_local_day_boundary_follows_timezone() -> None:
    tokyo = ZoneInfo("Asia/Tokyo")
    now = datetime(2026, 3, 10, 16, 0, tzinfo=UTC)
    entries = [
        _entry("fury", "1", datetime(2026, 3, 10, 14, 30, tzinfo=UTC)),
        _entry("fury", "2", datetime(2026, 3, 10, 15, 30, tzinfo=UTC)),
    ]

    rollup = fold_costs(entries, now=now, tz=tokyo)

    assert rollup.today_cost == Decimal(2)


def test_old_entries_are_evicted(store: DocumentStore) -> None:
    aggregator = CostAggregator(store=store, tz=UTC_ZONE)
    early = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
    with store.session() as session:
        session.add(to_record(_event("fury", Decimal(1), early)))
        session.commit()
    aggregator.apply(
        aggregator.subscribe(now=datetime(2026, 3, 1, 12, 0, tzinfo=UTC)).poll(),
        now=datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
    )
    assert len(aggregator) == 1

    rollup = aggregator.rollup(now=datetime(2026, 4, 8, 12, 0, tzinfo=UTC))
    assert rollup.month_cost == Decimal(0)
    assert len(aggregator) == 0
