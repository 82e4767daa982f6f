from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import allure
import pytest

from mission_control.squad.ledger import CostLedger
from mission_control.squad.models import AlertSeverity
from mission_control.squad.registry import UnknownAgent

pytestmark = [
    allure.epic("Agent Squad"),
    allure.feature("Cost Ledger"),
]

NOON = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def test_spend_accumulates_and_reduces_remaining_budget(ledger: CostLedger) -> None:
    assert ledger.spent_today("fury", now=NOON) == Decimal(0)
    assert ledger.remaining_budget("fury", now=NOON) == Decimal(10)

    ledger.spend("fury", Decimal("2.5"), now=NOON)
    ledger.spend("fury", Decimal("0.000001"), now=NOON)

    assert ledger.spent_today("fury", now=NOON) == Decimal("2.500001")
    assert ledger.remaining_budget("fury", now=NOON) == Decimal("7.499999")
    assert ledger.snapshot(now=NOON) == {"fury": Decimal("2.500001")}


def test_has_budget_boundary_is_inclusive(ledger: CostLedger) -> None:
    ledger.spend("fury", Decimal(6), now=NOON)

    assert ledger.has_budget("fury", Decimal(4), now=NOON)
    assert not ledger.has_budget("fury", Decimal("4.000001"), now=NOON)


def test_spend_order_does_not_change_total(ledger: CostLedger) -> None:
    amounts = [Decimal("0.1"), Decimal("0.2"), Decimal("0.3"), Decimal("1.4")]
    for amount in amounts:
        ledger.spend("fury", amount, now=NOON)
    for amount in reversed(amounts):
        ledger.spend("mason", amount, now=NOON)

    assert ledger.spent_today("fury", now=NOON) == Decimal("2.0")
    assert ledger.spent_today("fury", now=NOON) == ledger.spent_today("mason", now=NOON)


def test_concurrent_spends_are_not_lost(ledger: CostLedger) -> None:
    start = threading.Event()

    def worker() -> None:
        start.wait(timeout=5)
        for _ in range(10):
            ledger.spend("fury", Decimal("0.01"), now=NOON)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=30)

    assert ledger.spent_today("fury", now=NOON) == Decimal("0.80")


def test_try_spend_charges_only_within_budget(ledger: CostLedger) -> None:
    assert ledger.try_spend("mason", Decimal("0.6"), now=NOON) is True
    assert ledger.try_spend("mason", Decimal("0.5"), now=NOON) is False
    assert ledger.try_spend("mason", Decimal("0.4"), now=NOON) is True
    assert ledger.try_spend("mason", Decimal("0.000001"), now=NOON) is False

    assert ledger.spent_today("mason", now=NOON) == Decimal(1)
    assert ledger.remaining_budget("mason", now=NOON) == Decimal(0)


def test_try_spend_rejects_amount_larger_than_budget(ledger: CostLedger) -> None:
    assert ledger.try_spend("mason", Decimal("1.5"), now=NOON) is False
    assert ledger.snapshot(now=NOON) == {}


def test_concurrent_try_spend_never_overruns_budget(ledger: CostLedger) -> None:
    barrier = threading.Barrier(8)
    admitted: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait(timeout=5)
        result = ledger.try_spend("mason", Decimal("0.25"), now=NOON)
        with lock:
            admitted.append(result)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert admitted.count(True) == 4
    assert ledger.spent_today("mason", now=NOON) == Decimal(1)
    assert ledger.remaining_budget("mason", now=NOON) == Decimal(0)


def test_refund_returns_charge_without_going_negative(ledger: CostLedger) -> None:
    assert ledger.try_spend("fury", Decimal(3), now=NOON)

    ledger.refund("fury", Decimal(2), now=NOON)
    assert ledger.spent_today("fury", now=NOON) == Decimal(1)

    ledger.refund("fury", Decimal(5), now=NOON)
    assert ledger.spent_today("fury", now=NOON) == Decimal(0)


def test_spend_rejects_negative_amounts_and_unknown_agents(ledger: CostLedger) -> None:
    with pytest.raises(ValueError):
        ledger.spend("fury", Decimal("-1"), now=NOON)
    with pytest.raises(UnknownAgent):
        ledger.spend("ghost", Decimal(1), now=NOON)
    with pytest.raises(UnknownAgent):
        ledger.spent_today("ghost", now=NOON)


def test_spend_is_partitioned_by_local_date(ledger: CostLedger) -> None:
    yesterday = NOON - timedelta(days=1)
    ledger.spend("fury", Decimal(9), now=yesterday)

    assert ledger.spent_today("fury", now=NOON) == Decimal(0)
    assert ledger.has_budget("fury", Decimal(10), now=NOON)
    assert ledger.spent_today("fury", now=yesterday) == Decimal(9)


def test_reset_daily_runs_once_per_date_and_keeps_today(ledger: CostLedger) -> None:
    yesterday = NOON - timedelta(days=1)
    ledger.spend("fury", Decimal(3), now=yesterday)
    ledger.spend("fury", Decimal(1), now=NOON - timedelta(hours=11))

    assert ledger.reset_daily(now=NOON) is True
    assert ledger.reset_daily(now=NOON + timedelta(hours=1)) is False

    assert ledger.spent_today("fury", now=yesterday) == Decimal(0)
    assert ledger.spent_today("fury", now=NOON) == Decimal(1)
    assert ledger.reset_daily(now=NOON + timedelta(days=1)) is True
    assert ledger.spent_today("fury", now=NOON) == Decimal(0)


def test_budget_alerts_follow_warning_and_critical_thresholds(ledger: CostLedger) -> None:
    ledger.spend("fury", Decimal("7.49"), now=NOON)
    assert ledger.budget_alerts(now=NOON) == []

    ledger.spend("fury", Decimal("0.01"), now=NOON)
    ledger.spend("mason", Decimal("0.9"), now=NOON)
    alerts = {alert.agent_id: alert for alert in ledger.budget_alerts(now=NOON)}

    assert set(alerts) == {"fury", "mason"}
    assert alerts["fury"].severity is AlertSeverity.WARNING
    assert alerts["fury"].percentage == Decimal("75.00")
    assert alerts["fury"].message == "fury has used 75.00% of its daily budget"
    assert alerts["mason"].severity is AlertSeverity.CRITICAL
    assert alerts["mason"].budget == Decimal(1)

    ledger.spend("fury", Decimal("1.5"), now=NOON)
    [fury] = [alert for alert in ledger.budget_alerts(now=NOON) if alert.agent_id == "fury"]
    assert fury.severity is AlertSeverity.CRITICAL
    assert fury.percentage == Decimal("90.00")


def test_budget_alerts_only_consider_today(ledger: CostLedger) -> None:
    ledger.spend("mason", Decimal(1), now=NOON - timedelta(days=1))

    assert ledger.budget_alerts(now=NOON) == []


def test_init_returns_today_snapshot(ledger: CostLedger) -> None:
    ledger.spend("mason", Decimal("0.75"), now=NOON)

    assert ledger.init(now=NOON) == {"mason": Decimal("0.75")}
