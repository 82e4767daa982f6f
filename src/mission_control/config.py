"""Runtime configuration for the agent squad core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_EXECUTOR_COMMAND = (
    "{python} -m mission_control.squad.executor.runner --task-id {task_id} --agent-id {agent_id}"
)


@dataclass(slots=True)
class LivenessSettings:
    """Heartbeat cadence and staleness policy."""

    heartbeat_interval_seconds: int = 30
    staleness_threshold_seconds: int = 90
    sweep_interval_seconds: int = 15
    change_retention_hours: int = 48


@dataclass(slots=True)
class BudgetSettings:
    """Cost estimation defaults and day-boundary policy."""

    default_estimated_tokens: int = 2_000
    timezone: str | None = None


@dataclass(slots=True)
class ExecutorSettings:
    """External executor process settings."""

    command_template: str = DEFAULT_EXECUTOR_COMMAND
    step_delay_seconds: float = 0.5
    heartbeat_url: str | None = None
    workdir: Path = Path(".")


@dataclass(slots=True)
class ApiSettings:
    """Heartbeat/dashboard HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".mission_control.db")
    agents_file: Path | None = None
    log_level: str = "INFO"
    sqlite_busy_timeout_ms: int = 5_000
    liveness: LivenessSettings = field(default_factory=LivenessSettings)
    budget: BudgetSettings = field(default_factory=BudgetSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        agents_file = os.getenv("MISSION_CONTROL_AGENTS_FILE", "").strip()
        heartbeat_url = os.getenv("MISSION_CONTROL_HEARTBEAT_URL", "").strip()
        timezone = os.getenv("MISSION_CONTROL_TIMEZONE", "").strip()
        settings = cls(
            db_path=db_path or Path(os.getenv("MISSION_CONTROL_DB_PATH", ".mission_control.db")),
            agents_file=Path(agents_file) if agents_file else None,
            log_level=os.getenv("MISSION_CONTROL_LOG_LEVEL", "INFO").upper(),
            sqlite_busy_timeout_ms=int(
                os.getenv("MISSION_CONTROL_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            liveness=LivenessSettings(
                heartbeat_interval_seconds=int(
                    os.getenv("MISSION_CONTROL_HEARTBEAT_INTERVAL_SECONDS", "30"),
                ),
                staleness_threshold_seconds=int(
                    os.getenv("MISSION_CONTROL_STALENESS_THRESHOLD_SECONDS", "90"),
                ),
                sweep_interval_seconds=int(
                    os.getenv("MISSION_CONTROL_SWEEP_INTERVAL_SECONDS", "15"),
                ),
                change_retention_hours=int(
                    os.getenv("MISSION_CONTROL_CHANGE_RETENTION_HOURS", "48"),
                ),
            ),
            budget=BudgetSettings(
                default_estimated_tokens=int(
                    os.getenv("MISSION_CONTROL_DEFAULT_ESTIMATED_TOKENS", "2000"),
                ),
                timezone=timezone or None,
            ),
            executor=ExecutorSettings(
                command_template=os.getenv(
                    "MISSION_CONTROL_EXECUTOR_COMMAND",
                    DEFAULT_EXECUTOR_COMMAND,
                ),
                step_delay_seconds=float(
                    os.getenv("MISSION_CONTROL_EXECUTOR_STEP_DELAY_SECONDS", "0.5"),
                ),
                heartbeat_url=heartbeat_url or None,
                workdir=Path(os.getenv("MISSION_CONTROL_EXECUTOR_WORKDIR", ".")),
            ),
            api=ApiSettings(
                host=os.getenv("MISSION_CONTROL_API_HOST", "127.0.0.1"),
                port=int(os.getenv("MISSION_CONTROL_API_PORT", "8000")),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error on inconsistent values."""

        liveness = self.liveness
        if liveness.heartbeat_interval_seconds <= 0:
            raise ValueError("MISSION_CONTROL_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if liveness.staleness_threshold_seconds <= liveness.heartbeat_interval_seconds:
            raise ValueError(
                "MISSION_CONTROL_STALENESS_THRESHOLD_SECONDS must exceed the heartbeat "
                f"interval ({liveness.heartbeat_interval_seconds}s); "
                f"got {liveness.staleness_threshold_seconds}s.",
            )
        if liveness.sweep_interval_seconds <= 0:
            raise ValueError("MISSION_CONTROL_SWEEP_INTERVAL_SECONDS must be > 0.")
        if liveness.change_retention_hours <= 0:
            raise ValueError("MISSION_CONTROL_CHANGE_RETENTION_HOURS must be > 0.")
        if self.budget.default_estimated_tokens <= 0:
            raise ValueError("MISSION_CONTROL_DEFAULT_ESTIMATED_TOKENS must be > 0.")
        if self.executor.step_delay_seconds < 0:
            raise ValueError("MISSION_CONTROL_EXECUTOR_STEP_DELAY_SECONDS must be >= 0.")
        if "{task_id}" not in self.executor.command_template:
            raise ValueError("MISSION_CONTROL_EXECUTOR_COMMAND must include {task_id}.")
        if "{agent_id}" not in self.executor.command_template:
            raise ValueError("MISSION_CONTROL_EXECUTOR_COMMAND must include {agent_id}.")
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid MISSION_CONTROL_LOG_LEVEL: {self.log_level!r}")
