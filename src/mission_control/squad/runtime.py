"""Assemble squad components from :class:`Settings`."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta, tzinfo

from mission_control.config import Settings
from mission_control.squad.activity import ActivityLog
from mission_control.squad.clock import resolve_timezone
from mission_control.squad.escalation import EscalationEvaluator
from mission_control.squad.executor.base import ExecutorBackend
from mission_control.squad.executor.subprocess_backend import SubprocessExecutorBackend
from mission_control.squad.ledger import CostLedger
from mission_control.squad.liveness import LivenessMonitor
from mission_control.squad.registry import AgentRegistry, load_registry
from mission_control.squad.spawner import TaskSpawner
from mission_control.squad.sweeps import SweepScheduler
from mission_control.squad.tasks import TaskRepository
from mission_control.storage.store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SquadRuntime:
    """Wired set of squad services sharing one store."""

    settings: Settings
    store: DocumentStore
    registry: AgentRegistry
    tz: tzinfo | None
    ledger: CostLedger
    evaluator: EscalationEvaluator
    activity_log: ActivityLog
    tasks: TaskRepository
    liveness: LivenessMonitor
    spawner: TaskSpawner
    sweeps: SweepScheduler

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        registry: AgentRegistry | None = None,
        executor: ExecutorBackend | None = None,
        init_schema: bool = True,
    ) -> SquadRuntime:
        store = DocumentStore(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
        if init_schema:
            store.init_schema()
        registry = registry or load_registry(settings.agents_file)
        tz = resolve_timezone(settings.budget.timezone)
        ledger = CostLedger(store=store, registry=registry, tz=tz)
        evaluator = EscalationEvaluator(registry)
        activity_log = ActivityLog(store=store, registry=registry)
        tasks = TaskRepository(store)
        liveness = LivenessMonitor(
            store=store,
            heartbeat_interval_seconds=settings.liveness.heartbeat_interval_seconds,
            staleness_threshold_seconds=settings.liveness.staleness_threshold_seconds,
        )
        liveness.register_agents(registry)
        spawner = TaskSpawner(
            registry=registry,
            ledger=ledger,
            evaluator=evaluator,
            activity_log=activity_log,
            tasks=tasks,
            executor=executor or _default_executor(settings),
            default_estimated_tokens=settings.budget.default_estimated_tokens,
        )
        sweeps = SweepScheduler(
            store=store,
            liveness=liveness,
            ledger=ledger,
            interval_seconds=settings.liveness.sweep_interval_seconds,
            change_retention=timedelta(hours=settings.liveness.change_retention_hours),
        )
        ledger.init()
        return cls(
            settings=settings,
            store=store,
            registry=registry,
            tz=tz,
            ledger=ledger,
            evaluator=evaluator,
            activity_log=activity_log,
            tasks=tasks,
            liveness=liveness,
            spawner=spawner,
            sweeps=sweeps,
        )

    def close(self) -> None:
        self.sweeps.stop()
        self.ledger.close()
        self.store.close()


@contextmanager
def open_runtime(
    settings: Settings,
    *,
    registry: AgentRegistry | None = None,
    executor: ExecutorBackend | None = None,
) -> Iterator[SquadRuntime]:
    runtime = SquadRuntime.from_settings(settings, registry=registry, executor=executor)
    try:
        yield runtime
    finally:
        runtime.close()


def _default_executor(settings: Settings) -> SubprocessExecutorBackend:
    env = {
        "MISSION_CONTROL_DB_PATH": str(settings.db_path.resolve()),
        "MISSION_CONTROL_LOG_LEVEL": settings.log_level,
        "MISSION_CONTROL_EXECUTOR_STEP_DELAY_SECONDS": str(settings.executor.step_delay_seconds),
    }
    if settings.agents_file is not None:
        env["MISSION_CONTROL_AGENTS_FILE"] = str(settings.agents_file.resolve())
    if settings.budget.timezone:
        env["MISSION_CONTROL_TIMEZONE"] = settings.budget.timezone
    if settings.executor.heartbeat_url:
        env["MISSION_CONTROL_HEARTBEAT_URL"] = settings.executor.heartbeat_url
    return SubprocessExecutorBackend(
        command_template=settings.executor.command_template,
        workdir=settings.executor.workdir,
        env=env,
    )
