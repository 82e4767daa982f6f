"""Detached subprocess launcher with a supervising watcher thread."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import threading
from pathlib import Path

from mission_control.squad.executor.base import (
    ExecutorHandle,
    ExecutorLaunchError,
    LaunchRequest,
)

logger = logging.getLogger(__name__)


class SubprocessExecutorBackend:
    """Start the executor command template in its own session.

    The core never blocks on the child; a daemon thread waits for exit and
    reports the exit code through ``request.on_exit``.
    """

    def __init__(
        self,
        *,
        command_template: str,
        workdir: Path,
        env: dict[str, str] | None = None,
    ) -> None:
        self.command_template = command_template
        self.workdir = workdir
        self.env = env or {}
        self._watchers: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def launch(self, request: LaunchRequest) -> ExecutorHandle:
        argv = build_run_args(
            command_template=self.command_template,
            task_id=request.task_id,
            agent_id=request.agent_id,
        )
        env = os.environ.copy()
        env.update(self.env)
        env["MISSION_CONTROL_TASK_ID"] = request.task_id
        env["MISSION_CONTROL_AGENT_ID"] = request.agent_id
        try:
            self.workdir.mkdir(parents=True, exist_ok=True)
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=self.workdir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError as error:
            raise ExecutorLaunchError(f"Executor command not found: {argv[0]}") from error
        except OSError as error:
            raise ExecutorLaunchError(f"Executor failed to start: {error}") from error

        logger.info(
            "Started executor for task %s (%s), pid %s",
            request.task_id,
            request.agent_id,
            process.pid,
        )
        watcher = threading.Thread(
            target=self._watch,
            args=(process, request),
            daemon=True,
            name=f"executor-watch-{request.task_id[:8]}",
        )
        with self._lock:
            self._watchers[request.task_id] = watcher
        watcher.start()
        return ExecutorHandle(
            task_id=request.task_id,
            agent_id=request.agent_id,
            process_id=process.pid,
        )

    def join(self, timeout: float | None = None) -> None:
        """Wait for every watcher thread; used by tests and orderly shutdown."""

        with self._lock:
            watchers = list(self._watchers.values())
        for watcher in watchers:
            watcher.join(timeout=timeout)

    def _watch(self, process: subprocess.Popen[bytes], request: LaunchRequest) -> None:
        exit_code = process.wait()
        logger.info("Executor for task %s exited with code %s", request.task_id, exit_code)
        try:
            if request.on_exit is not None:
                request.on_exit(request.task_id, exit_code)
        except Exception:
            logger.exception("Exit reconciliation failed for task %s", request.task_id)
        finally:
            with self._lock:
                self._watchers.pop(request.task_id, None)


def build_run_args(*, command_template: str, task_id: str, agent_id: str) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise ExecutorLaunchError("Executor command template is empty.")
    try:
        rendered = stripped.format(
            python=shlex.quote(sys.executable),
            task_id=shlex.quote(task_id),
            agent_id=shlex.quote(agent_id),
        )
    except KeyError as error:
        raise ExecutorLaunchError(
            f"Unsupported command template placeholder: {error}",
        ) from error
    argv = shlex.split(rendered)
    if not argv:
        raise ExecutorLaunchError("Executor command template rendered empty command.")
    return argv
