"""Per-agent, per-day spend counters with database-side atomic increments."""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from decimal import Decimal

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import col, select

from mission_control.squad.clock import business_date
from mission_control.squad.models import AlertSeverity, BudgetAlert
from mission_control.squad.registry import AgentRegistry
from mission_control.storage.common import from_micros, to_db_datetime, to_micros, utc_now
from mission_control.storage.sqlmodel_models import CostCounter, LedgerReset
from mission_control.storage.store import DocumentStore

logger = logging.getLogger(__name__)

WARNING_PERCENT = Decimal(75)
CRITICAL_PERCENT = Decimal(90)


class CostLedger:
    """Daily budget enforcement partitioned by ``(agent_id, local date)``.

    Counters are keyed by the local business date, so yesterday's spend never
    counts against today even if a midnight reset is missed.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        registry: AgentRegistry,
        tz: tzinfo | None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.tz = tz

    def init(self, *, now: datetime | None = None) -> dict[str, Decimal]:
        """Load today's totals; returns the snapshot for logging/inspection."""

        totals = self.snapshot(now=now)
        logger.info(
            "Cost ledger loaded for %s: %s",
            business_date(self.tz, now).isoformat(),
            ", ".join(f"{agent}=${amount:.4f}" for agent, amount in sorted(totals.items()))
            or "no spend",
        )
        return totals

    def close(self) -> None:
        """Counters are committed on every increment; nothing to flush."""

    def spend(self, agent_id: str, amount: Decimal, *, now: datetime | None = None) -> None:
        """Atomically add ``amount`` to today's running total for ``agent_id``."""

        self.registry.get(agent_id)
        if amount < 0:
            raise ValueError(f"Spend amount must be >= 0, got {amount}")
        day = business_date(self.tz, now)
        timestamp = to_db_datetime(now or utc_now())
        statement = sqlite_insert(CostCounter).values(
            agent_id=agent_id,
            business_date=day,
            spent_micros=to_micros(amount),
            updated_at=timestamp,
        )
        statement = statement.on_conflict_do_update(
            index_elements=["agent_id", "business_date"],
            set_={
                "spent_micros": col(CostCounter.spent_micros) + statement.excluded.spent_micros,
                "updated_at": statement.excluded.updated_at,
            },
        )
        with self.store.session() as session:
            session.exec(statement)  # type: ignore[call-overload]
            session.commit()
        logger.debug("Charged %s $%s for %s", agent_id, amount, day.isoformat())

    def try_spend(self, agent_id: str, amount: Decimal, *, now: datetime | None = None) -> bool:
        """Charge ``amount`` only if it fits today's remaining budget.

        Admission and charge are one upsert guarded by the budget, so
        concurrent callers can never push the total past it. Returns whether
        the charge was applied.
        """

        budget = self.registry.get(agent_id).cost_profile.daily_budget
        if amount < 0:
            raise ValueError(f"Spend amount must be >= 0, got {amount}")
        micros = to_micros(amount)
        budget_micros = to_micros(budget)
        if micros > budget_micros:
            return False
        day = business_date(self.tz, now)
        statement = sqlite_insert(CostCounter).values(
            agent_id=agent_id,
            business_date=day,
            spent_micros=micros,
            updated_at=to_db_datetime(now or utc_now()),
        )
        spent = col(CostCounter.spent_micros)
        statement = statement.on_conflict_do_update(
            index_elements=["agent_id", "business_date"],
            set_={
                "spent_micros": spent + statement.excluded.spent_micros,
                "updated_at": statement.excluded.updated_at,
            },
            where=spent + statement.excluded.spent_micros <= budget_micros,
        )
        with self.store.session() as session:
            result = session.exec(statement)  # type: ignore[call-overload]
            session.commit()
        if result.rowcount != 1:
            return False
        logger.debug("Charged %s $%s for %s", agent_id, amount, day.isoformat())
        return True

    def refund(self, agent_id: str, amount: Decimal, *, now: datetime | None = None) -> None:
        """Return a charge taken by :meth:`try_spend`; never drops below zero."""

        self.registry.get(agent_id)
        day = business_date(self.tz, now)
        spent = col(CostCounter.spent_micros)
        with self.store.session() as session:
            session.exec(  # type: ignore[call-overload]
                sa_update(CostCounter)
                .where(
                    col(CostCounter.agent_id) == agent_id,
                    col(CostCounter.business_date) == day,
                )
                .values(
                    spent_micros=func.max(spent - to_micros(amount), 0),
                    updated_at=to_db_datetime(now or utc_now()),
                ),
            )
            session.commit()
        logger.debug("Refunded %s $%s for %s", agent_id, amount, day.isoformat())

    def spent_today(self, agent_id: str, *, now: datetime | None = None) -> Decimal:
        self.registry.get(agent_id)
        day = business_date(self.tz, now)
        with self.store.session() as session:
            micros = session.exec(
                select(CostCounter.spent_micros).where(
                    CostCounter.agent_id == agent_id,
                    CostCounter.business_date == day,
                ),
            ).one_or_none()
        return from_micros(micros)

    def remaining_budget(self, agent_id: str, *, now: datetime | None = None) -> Decimal:
        budget = self.registry.get(agent_id).cost_profile.daily_budget
        return max(budget - self.spent_today(agent_id, now=now), Decimal(0))

    def has_budget(self, agent_id: str, amount: Decimal, *, now: datetime | None = None) -> bool:
        return self.remaining_budget(agent_id, now=now) >= amount

    def snapshot(self, *, now: datetime | None = None) -> dict[str, Decimal]:
        day = business_date(self.tz, now)
        with self.store.session() as session:
            rows = session.exec(
                select(CostCounter).where(CostCounter.business_date == day),
            ).all()
        return {row.agent_id: from_micros(row.spent_micros) for row in rows}

    def budget_alerts(self, *, now: datetime | None = None) -> list[BudgetAlert]:
        """Active agents at or above 75% (warning) or 90% (critical) of today's budget."""

        spent_by_agent = self.snapshot(now=now)
        alerts = []
        for agent in self.registry.active():
            budget = agent.cost_profile.daily_budget
            spent = spent_by_agent.get(agent.id, Decimal(0))
            if budget <= 0 or not spent:
                continue
            percentage = (spent * 100 / budget).quantize(Decimal("0.01"))
            if percentage >= CRITICAL_PERCENT:
                severity = AlertSeverity.CRITICAL
            elif percentage >= WARNING_PERCENT:
                severity = AlertSeverity.WARNING
            else:
                continue
            alerts.append(
                BudgetAlert(
                    agent_id=agent.id,
                    severity=severity,
                    spent=spent,
                    budget=budget,
                    percentage=percentage,
                ),
            )
        return alerts

    def reset_daily(self, *, now: datetime | None = None) -> bool:
        """Clear the running totals of previous local dates, once per date.

        Today's counter is kept: the first sweep of a day may run after that
        day's first charge. Returns False when a reset already ran today. The
        reset marker and the counter wipe commit in one transaction, so
        concurrent sweeps cannot both apply it.
        """

        day = business_date(self.tz, now)
        with self.store.session() as session:
            marker = session.exec(  # type: ignore[call-overload]
                sqlite_insert(LedgerReset)
                .values(business_date=day, reset_at=to_db_datetime(now or utc_now()))
                .on_conflict_do_nothing(index_elements=["business_date"]),
            )
            if marker.rowcount != 1:
                session.rollback()
                return False
            session.exec(  # type: ignore[call-overload]
                sa_delete(CostCounter).where(col(CostCounter.business_date) < day),
            )
            session.commit()
        logger.info("Daily cost ledger reset for %s", day.isoformat())
        return True
