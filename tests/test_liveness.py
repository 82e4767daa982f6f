from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from mission_control.squad.liveness import LivenessMonitor
from mission_control.squad.models import AgentStatus
from mission_control.squad.registry import AgentRegistry, UnknownAgent
from mission_control.storage.store import Collection, DocumentStore

pytestmark = [
    allure.epic("Agent Squad"),
    allure.feature("Agent Liveness"),
]

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def test_register_agents_seeds_offline_idle_records_once(
    store: DocumentStore,
    registry: AgentRegistry,
) -> None:
    monitor = LivenessMonitor(store=store)

    assert monitor.register_agents(registry) == len(registry)
    assert monitor.register_agents(registry) == 0
    records = monitor.all()
    assert [record.agent_id for record in records] == ["dormant", "fury", "garion", "mason"]
    assert all(record.status is AgentStatus.IDLE for record in records)
    assert not any(record.is_online for record in records)


def test_heartbeat_marks_agent_online_and_is_idempotent(liveness: LivenessMonitor) -> None:
    first = liveness.heartbeat("fury", now=T0)
    second = liveness.heartbeat("fury", now=T0)

    assert first == second
    assert second.is_online
    assert second.status is AgentStatus.IDLE
    assert second.last_heartbeat == T0


def test_last_heartbeat_never_moves_backwards(liveness: LivenessMonitor) -> None:
    liveness.heartbeat("fury", now=T0)
    record = liveness.heartbeat("fury", now=T0 - timedelta(seconds=20))

    assert record.last_heartbeat == T0


def test_status_hint_promotes_but_never_demotes(liveness: LivenessMonitor) -> None:
    assert liveness.heartbeat("fury", AgentStatus.ACTIVE, now=T0).status is AgentStatus.ACTIVE
    assert liveness.heartbeat("fury", now=T0).status is AgentStatus.ACTIVE
    assert liveness.heartbeat("fury", "idle", now=T0).status is AgentStatus.ACTIVE


def test_staleness_marks_silent_agents_offline(liveness: LivenessMonitor) -> None:
    liveness.heartbeat("fury", AgentStatus.ACTIVE, now=T0)
    liveness.heartbeat("mason", now=T0 + timedelta(seconds=60))

    went_offline = liveness.check_staleness(now=T0 + timedelta(seconds=91))

    assert "fury" in went_offline
    assert "mason" not in went_offline
    fury = liveness.get("fury")
    assert fury is not None
    assert fury.status is AgentStatus.OFFLINE
    assert not fury.is_online
    assert liveness.check_staleness(now=T0 + timedelta(seconds=91)) == []


def test_staleness_treats_never_seen_agents_as_stale(liveness: LivenessMonitor) -> None:
    went_offline = liveness.check_staleness(now=T0)

    assert sorted(went_offline) == ["dormant", "fury", "garion", "mason"]
    assert all(record.status is AgentStatus.OFFLINE for record in liveness.all())


def test_offline_agent_recovers_on_heartbeat(liveness: LivenessMonitor) -> None:
    liveness.heartbeat("fury", now=T0)
    liveness.check_staleness(now=T0 + timedelta(minutes=5))

    recovered = liveness.heartbeat("fury", now=T0 + timedelta(minutes=6))
    assert recovered.is_online
    assert recovered.status is AgentStatus.IDLE

    liveness.check_staleness(now=T0 + timedelta(minutes=10))
    active = liveness.heartbeat("fury", "active", now=T0 + timedelta(minutes=11))
    assert active.status is AgentStatus.ACTIVE


def test_custom_staleness_threshold(liveness: LivenessMonitor) -> None:
    liveness.heartbeat("fury", now=T0)

    assert "fury" not in liveness.check_staleness(now=T0 + timedelta(seconds=40))
    assert "fury" in liveness.check_staleness(
        timedelta(seconds=30),
        now=T0 + timedelta(seconds=40),
    )


def test_heartbeat_for_unknown_agent_raises(liveness: LivenessMonitor) -> None:
    with pytest.raises(UnknownAgent):
        liveness.heartbeat("ghost", now=T0)


def test_unrecognised_status_hint_still_records_heartbeat(liveness: LivenessMonitor) -> None:
    record = liveness.heartbeat("fury", "running", now=T0)

    assert record.is_online
    assert record.status is AgentStatus.IDLE
    assert record.last_heartbeat == T0


def test_heartbeat_stamps_last_activity_monotonically(liveness: LivenessMonitor) -> None:
    assert liveness.heartbeat("fury", now=T0).last_activity == T0

    later = liveness.heartbeat("fury", now=T0 + timedelta(seconds=30))
    assert later.last_activity == T0 + timedelta(seconds=30)

    late_delivery = liveness.heartbeat("fury", now=T0)
    assert late_delivery.last_activity == T0 + timedelta(seconds=30)


def test_threshold_must_exceed_interval(store: DocumentStore) -> None:
    with pytest.raises(ValueError):
        LivenessMonitor(store=store, heartbeat_interval_seconds=30, staleness_threshold_seconds=30)


def test_passive_view_follows_agent_changes(
    store: DocumentStore,
    liveness: LivenessMonitor,
) -> None:
    subscription = store.subscribe(Collection.AGENTS)
    view = liveness.apply(subscription.poll())
    assert set(view) == {"dormant", "fury", "garion", "mason"}

    liveness.heartbeat("fury", AgentStatus.ACTIVE, now=T0)
    liveness.touch_activity("fury", now=T0)
    batch = subscription.poll()
    liveness.apply(batch)

    assert [notification.doc_id for notification in batch] == ["fury"]
    fury = liveness.view()["fury"]
    assert fury.status is AgentStatus.ACTIVE
    assert fury.last_activity == T0
