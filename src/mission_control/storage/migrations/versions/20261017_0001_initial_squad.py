"""Initial squad store: liveness, tasks, activities, ledger and change journal."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "agents",
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("agent_id"),
    )
    op.create_index("ix_agents_status", "agents", ["status"], unique=False)
    op.create_index("ix_agents_last_heartbeat", "agents", ["last_heartbeat"], unique=False)

    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("deliverables_json", sa.Text(), nullable=True),
        sa.Column("area_id", sa.String(), nullable=True),
        sa.Column("estimated_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_cost_micros", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("actual_cost_micros", sa.Integer(), nullable=True),
        sa.Column("max_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("progress", sa.String(), nullable=True),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("exit_code", sa.Integer(), nullable=True),
        sa.Column("process_id", sa.Integer(), nullable=True),
        sa.Column("escalation_reason", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_agent_id", "tasks", ["agent_id"], unique=False)
    op.create_index("ix_tasks_status", "tasks", ["status"], unique=False)
    op.create_index("ix_tasks_area_id", "tasks", ["area_id"], unique=False)
    op.create_index("ix_tasks_started_at", "tasks", ["started_at"], unique=False)
    op.create_index("idx_tasks_agent_status", "tasks", ["agent_id", "status"], unique=False)

    op.create_table(
        "activities",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("cost_micros", sa.Integer(), nullable=True),
        sa.Column("agent_id", sa.String(), nullable=True),
        sa.Column("area_id", sa.String(), nullable=True),
        sa.Column("task_id", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=False, server_default="unknown"),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_activities_timestamp", "activities", ["timestamp"], unique=False)
    op.create_index("ix_activities_actor", "activities", ["actor"], unique=False)
    op.create_index("ix_activities_category", "activities", ["category"], unique=False)
    op.create_index("ix_activities_area_id", "activities", ["area_id"], unique=False)
    op.create_index("ix_activities_task_id", "activities", ["task_id"], unique=False)
    op.create_index(
        "idx_activities_agent_time",
        "activities",
        ["agent_id", "timestamp"],
        unique=False,
    )

    op.create_table(
        "cost_counters",
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("spent_micros", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("agent_id", "business_date", name="pk_cost_counters"),
    )

    op.create_table(
        "ledger_resets",
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("business_date"),
    )

    op.create_table(
        "changes",
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("collection", sa.String(), nullable=False),
        sa.Column("doc_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "idx_changes_collection_seq",
        "changes",
        ["collection", "seq"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_changes_collection_seq", table_name="changes")
    op.drop_table("changes")
    op.drop_table("ledger_resets")
    op.drop_table("cost_counters")
    op.drop_index("idx_activities_agent_time", table_name="activities")
    op.drop_index("ix_activities_task_id", table_name="activities")
    op.drop_index("ix_activities_area_id", table_name="activities")
    op.drop_index("ix_activities_category", table_name="activities")
    op.drop_index("ix_activities_actor", table_name="activities")
    op.drop_index("ix_activities_timestamp", table_name="activities")
    op.drop_table("activities")
    op.drop_index("idx_tasks_agent_status", table_name="tasks")
    op.drop_index("ix_tasks_started_at", table_name="tasks")
    op.drop_index("ix_tasks_area_id", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_agent_id", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_agents_last_heartbeat", table_name="agents")
    op.drop_index("ix_agents_status", table_name="agents")
    op.drop_table("agents")
