"""SQLModel ORM tables for the squad store."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Column, Date, DateTime, Index, PrimaryKeyConstraint, Text
from sqlmodel import Field, SQLModel


class AgentRecord(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]

    agent_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    is_online: bool = False
    last_heartbeat: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    last_activity: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentTask(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_agent_status", "agent_id", "status"),)

    task_id: str = Field(primary_key=True)
    agent_id: str = Field(index=True)
    status: str = Field(index=True)
    description: str = Field(sa_column=Column(Text, nullable=False))
    context: str | None = Field(default=None, sa_column=Column(Text))
    deliverables_json: str | None = Field(default=None, sa_column=Column(Text))
    area_id: str | None = Field(default=None, index=True)
    estimated_tokens: int = 0
    estimated_cost_micros: int = 0
    actual_cost_micros: int | None = None
    max_duration_minutes: int | None = None
    progress: str | None = None
    result: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    exit_code: int | None = None
    process_id: int | None = None
    escalation_reason: str | None = None
    started_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ActivityRecord(SQLModel, table=True):
    __tablename__ = "activities"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_activities_agent_time", "agent_id", "timestamp"),)

    event_id: str = Field(primary_key=True)
    timestamp: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    actor: str = Field(index=True)
    actor_type: str
    category: str = Field(index=True)
    action: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    cost_micros: int | None = None
    agent_id: str | None = None
    area_id: str | None = Field(default=None, index=True)
    task_id: str | None = Field(default=None, index=True)
    session_id: str = "unknown"


class CostCounter(SQLModel, table=True):
    __tablename__ = "cost_counters"  # type: ignore[bad-override]
    __table_args__ = (
        PrimaryKeyConstraint("agent_id", "business_date", name="pk_cost_counters"),
    )

    agent_id: str
    business_date: date = Field(sa_column=Column(Date, nullable=False))
    spent_micros: int = 0
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class LedgerReset(SQLModel, table=True):
    __tablename__ = "ledger_resets"  # type: ignore[bad-override]

    business_date: date = Field(sa_column=Column(Date, primary_key=True))
    reset_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChangeEntry(SQLModel, table=True):
    __tablename__ = "changes"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_changes_collection_seq", "collection", "seq"),
        {"sqlite_autoincrement": True},
    )

    seq: int | None = Field(default=None, primary_key=True)
    collection: str
    doc_id: str
    kind: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
