"""Backend interface for launching task executors."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from mission_control.errors import MissionControlError

ExitCallback = Callable[[str, int], None]


class ExecutorLaunchError(MissionControlError):
    """Executor process could not be started."""


@dataclass(slots=True)
class LaunchRequest:
    """Inputs required to start one executor."""

    task_id: str
    agent_id: str
    on_exit: ExitCallback | None = None


@dataclass(slots=True, frozen=True)
class ExecutorHandle:
    """Identity of a launched executor."""

    task_id: str
    agent_id: str
    process_id: int | None


class ExecutorBackend(Protocol):
    """Protocol implemented by executor launchers."""

    def launch(self, request: LaunchRequest) -> ExecutorHandle:
        """Start an executor without waiting for it to finish."""
