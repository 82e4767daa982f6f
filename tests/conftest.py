"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from mission_control.config import ExecutorSettings, Settings
from mission_control.squad.activity import ActivityLog
from mission_control.squad.escalation import EscalationEvaluator
from mission_control.squad.executor.base import (
    ExecutorHandle,
    ExecutorLaunchError,
    LaunchRequest,
)
from mission_control.squad.ledger import CostLedger
from mission_control.squad.liveness import LivenessMonitor
from mission_control.squad.models import (
    AgentDefinition,
    Capability,
    CostProfile,
    EscalationTrigger,
)
from mission_control.squad.registry import AgentRegistry
from mission_control.squad.runtime import SquadRuntime
from mission_control.squad.spawner import TaskSpawner
from mission_control.squad.tasks import TaskRepository
from mission_control.storage.store import DocumentStore

UTC_ZONE = ZoneInfo("UTC")


def squad_definitions() -> list[AgentDefinition]:
    return [
        AgentDefinition(
            id="garion",
            display_name="Garion",
            role="Master Controller",
            capabilities=frozenset(),
            cost_profile=CostProfile(
                estimated_cost_per_1k_tokens=Decimal("3.0"),
                daily_budget=Decimal("10"),
            ),
            escalation_triggers=frozenset(),
            is_controller=True,
        ),
        AgentDefinition(
            id="fury",
            display_name="Fury",
            role="Builder",
            capabilities=frozenset({Capability.READ_FILES, Capability.WRITE_FILES}),
            cost_profile=CostProfile(
                estimated_cost_per_1k_tokens=Decimal("1.0"),
                daily_budget=Decimal("10"),
            ),
            escalation_triggers=frozenset(
                {EscalationTrigger.COST_EXCEEDED, EscalationTrigger.UNCLEAR_TASK},
            ),
        ),
        AgentDefinition(
            id="mason",
            display_name="Mason",
            role="Researcher",
            capabilities=frozenset({Capability.WEB_SEARCH}),
            cost_profile=CostProfile(
                estimated_cost_per_1k_tokens=Decimal("0.5"),
                daily_budget=Decimal("1"),
            ),
            escalation_triggers=frozenset({EscalationTrigger.SAFETY_CONCERN}),
        ),
        AgentDefinition(
            id="dormant",
            display_name="Dormant",
            role="Future",
            capabilities=frozenset(),
            cost_profile=CostProfile(
                estimated_cost_per_1k_tokens=Decimal("1.0"),
                daily_budget=Decimal("5"),
            ),
            escalation_triggers=frozenset(),
            active=False,
        ),
    ]


@dataclass
class RecordingExecutor:
    """Executor double that records launches instead of starting processes."""

    fail_with: str | None = None
    next_pid: int = 4242
    requests: list[LaunchRequest] = field(default_factory=list)

    def launch(self, request: LaunchRequest) -> ExecutorHandle:
        if self.fail_with is not None:
            raise ExecutorLaunchError(self.fail_with)
        self.requests.append(request)
        return ExecutorHandle(
            task_id=request.task_id,
            agent_id=request.agent_id,
            process_id=self.next_pid,
        )


@pytest.fixture()
def registry() -> AgentRegistry:
    return AgentRegistry(squad_definitions())


@pytest.fixture()
def store(tmp_path: Path):
    document_store = DocumentStore(tmp_path / "squad.db")
    document_store.init_schema()
    yield document_store
    document_store.close()


@pytest.fixture()
def ledger(store: DocumentStore, registry: AgentRegistry) -> CostLedger:
    return CostLedger(store=store, registry=registry, tz=UTC_ZONE)


@pytest.fixture()
def activity_log(store: DocumentStore, registry: AgentRegistry) -> ActivityLog:
    return ActivityLog(store=store, registry=registry)


@pytest.fixture()
def task_repository(store: DocumentStore) -> TaskRepository:
    return TaskRepository(store)


@pytest.fixture()
def liveness(store: DocumentStore, registry: AgentRegistry) -> LivenessMonitor:
    monitor = LivenessMonitor(store=store)
    monitor.register_agents(registry)
    return monitor


@pytest.fixture()
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture()
def spawner(  # noqa: PLR0913
    registry: AgentRegistry,
    ledger: CostLedger,
    activity_log: ActivityLog,
    task_repository: TaskRepository,
    executor: RecordingExecutor,
) -> TaskSpawner:
    return TaskSpawner(
        registry=registry,
        ledger=ledger,
        evaluator=EscalationEvaluator(registry),
        activity_log=activity_log,
        tasks=task_repository,
        executor=executor,
    )


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "runtime.db",
        executor=ExecutorSettings(step_delay_seconds=0.0, workdir=tmp_path / "work"),
    )


@pytest.fixture()
def runtime(settings: Settings, registry: AgentRegistry, executor: RecordingExecutor):
    squad = SquadRuntime.from_settings(settings, registry=registry, executor=executor)
    yield squad
    squad.close()
