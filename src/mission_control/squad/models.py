"""Domain models for agents, tasks, activity events and cost rollups."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

SYSTEM_ACTOR = "system"


class Capability(str, Enum):
    """Tools an agent may use."""

    READ_FILES = "read_files"
    WRITE_FILES = "write_files"
    EDIT_FILES = "edit_files"
    WEB_SEARCH = "web_search"
    WEB_FETCH = "web_fetch"
    EXEC_COMMAND = "exec_command"
    SPAWN_SUBAGENTS = "spawn_subagents"
    SEND_MESSAGES = "send_messages"
    BROWSER_AUTOMATION = "browser_automation"
    DATABASE_READ = "database_read"
    DATABASE_WRITE = "database_write"


class EscalationTrigger(str, Enum):
    """Closed set of conditions that may route work to the controller."""

    COST_EXCEEDED = "cost_exceeded"
    COMPLEX_REASONING_NEEDED = "complex_reasoning_needed"
    UNCLEAR_TASK = "unclear_task"
    SAFETY_CONCERN = "safety_concern"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ESCALATED = "escalated"


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.ESCALATED},
)


class AgentStatus(str, Enum):
    """Liveness status of one agent."""

    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    OFFLINE = "offline"


class ActorType(str, Enum):
    MAIN = "main"
    SUBAGENT = "subagent"
    SYSTEM = "system"


class ActivityCategory(str, Enum):
    FILE = "file"
    WEB = "web"
    TOOL = "tool"
    AGENT = "agent"
    COMMUNICATION = "communication"
    SYSTEM = "system"
    TASK = "task"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class ModelSettings:
    """LLM provider settings the executor uses for one agent."""

    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass(slots=True, frozen=True)
class CostProfile:
    """Per-agent pricing and daily budget in USD."""

    estimated_cost_per_1k_tokens: Decimal
    daily_budget: Decimal


@dataclass(slots=True, frozen=True)
class AgentDefinition:
    """Immutable catalogue entry for one agent."""

    id: str
    display_name: str
    role: str
    capabilities: frozenset[Capability]
    cost_profile: CostProfile
    escalation_triggers: frozenset[EscalationTrigger]
    is_controller: bool = False
    title: str = ""
    description: str = ""
    personality: str = ""
    model: ModelSettings | None = None
    active: bool = True


@dataclass(slots=True)
class SpawnRequest:
    """Unit of work a caller asks an agent to perform."""

    description: str
    context: str | None = None
    deliverables: tuple[str, ...] = ()
    estimated_tokens: int | None = None
    max_duration_minutes: int | None = None
    area_id: str | None = None
    parent_task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for spawner, executor and CLI."""

    task_id: str
    agent_id: str
    status: TaskStatus
    description: str
    context: str | None
    deliverables: tuple[str, ...]
    area_id: str | None
    estimated_tokens: int
    estimated_cost: Decimal
    actual_cost: Decimal | None
    max_duration_minutes: int | None
    progress: str | None
    result: str | None
    error: str | None
    exit_code: int | None
    process_id: int | None
    escalation_reason: str | None
    started_at: datetime
    completed_at: datetime | None
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


@dataclass(slots=True)
class ActivityEvent:
    """One audit log entry. Never mutated after it is recorded."""

    actor: str
    actor_type: ActorType
    category: ActivityCategory
    action: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)
    cost: Decimal | None = None
    agent_id: str | None = None
    area_id: str | None = None
    task_id: str | None = None
    session_id: str = "unknown"
    event_id: str | None = None
    timestamp: datetime | None = None

    @property
    def cost_agent(self) -> str:
        """Agent the event's cost is attributed to."""

        return self.agent_id or self.actor


@dataclass(slots=True)
class AgentLivenessRecord:
    """Liveness state owned by the monitor."""

    agent_id: str
    status: AgentStatus
    last_heartbeat: datetime | None
    is_online: bool
    last_activity: datetime | None = None


@dataclass(slots=True)
class CostRollup:
    """Windowed cost totals derived from activity events."""

    today_cost: Decimal = Decimal(0)
    week_cost: Decimal = Decimal(0)
    month_cost: Decimal = Decimal(0)
    cost_by_agent: dict[str, Decimal] = field(default_factory=dict)
    cost_by_area: dict[str, Decimal] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class BudgetAlert:
    """Agent whose spend today crossed an alert threshold of its daily budget."""

    agent_id: str
    severity: AlertSeverity
    spent: Decimal
    budget: Decimal
    percentage: Decimal

    @property
    def message(self) -> str:
        return f"{self.agent_id} has used {self.percentage}% of its daily budget"
