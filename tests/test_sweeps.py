from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import allure

from mission_control.squad.models import AgentStatus
from mission_control.squad.runtime import SquadRuntime

pytestmark = [
    allure.epic("Agent Squad"),
    allure.feature("Maintenance Sweeps"),
]

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def test_sweep_marks_stale_agents_and_resets_ledger_once(runtime: SquadRuntime) -> None:
    runtime.liveness.heartbeat("fury", AgentStatus.ACTIVE, now=T0)
    runtime.ledger.spend("fury", Decimal(3), now=T0 - timedelta(days=1))

    report = runtime.sweeps.run_once(now=T0 + timedelta(minutes=5))
    again = runtime.sweeps.run_once(now=T0 + timedelta(minutes=6))

    assert report is not None
    assert "fury" in report.went_offline
    assert report.ledger_reset is True
    assert again is not None
    assert again.went_offline == []
    assert again.ledger_reset is False
    assert runtime.ledger.spent_today("fury", now=T0 - timedelta(days=1)) == Decimal(0)


def test_overlapping_sweep_is_skipped(runtime: SquadRuntime) -> None:
    runtime.sweeps._in_flight.acquire()
    try:
        assert runtime.sweeps.run_once(now=T0) is None
    finally:
        runtime.sweeps._in_flight.release()

    assert runtime.sweeps.run_once(now=T0) is not None


def test_background_sweeps_start_and_stop(runtime: SquadRuntime) -> None:
    runtime.liveness.heartbeat("fury", now=T0)
    runtime.sweeps.interval_seconds = 0.05
    runtime.sweeps.start()
    runtime.sweeps.start()
    try:
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            fury = runtime.liveness.get("fury")
            if fury is not None and not fury.is_online:
                break
            time.sleep(0.05)
    finally:
        runtime.sweeps.stop()

    fury = runtime.liveness.get("fury")
    assert fury is not None
    assert fury.status is AgentStatus.OFFLINE
