"""HTTP heartbeat sender used by executors running outside the core process."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
HEARTBEAT_PATH = "/api/agents/heartbeat"


@dataclass(slots=True)
class HeartbeatResult:
    """Outcome of one heartbeat post."""

    agent_id: str
    status_code: int
    is_success: bool
    timestamp_ms: int | None = None
    error: str | None = None


class HeartbeatClient:
    """Post ``{agentId, status}`` heartbeats; transport failures are never raised."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=2.0),
            transport=transport,
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def send(self, agent_id: str, status: str | None = None) -> HeartbeatResult:
        payload: dict[str, str] = {"agentId": agent_id}
        if status:
            payload["status"] = status
        try:
            response = self._client.post(HEARTBEAT_PATH, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Heartbeat for %s failed: %s", agent_id, exc)
            return HeartbeatResult(
                agent_id=agent_id,
                status_code=0,
                is_success=False,
                error=str(exc),
            )
        if not response.is_success:
            logger.warning(
                "Heartbeat for %s rejected: HTTP %s",
                agent_id,
                response.status_code,
            )
            return HeartbeatResult(
                agent_id=agent_id,
                status_code=response.status_code,
                is_success=False,
                error=f"HTTP {response.status_code}",
            )
        try:
            timestamp_ms = response.json().get("timestamp")
        except ValueError:
            timestamp_ms = None
        return HeartbeatResult(
            agent_id=agent_id,
            status_code=response.status_code,
            is_success=True,
            timestamp_ms=timestamp_ms,
        )

    def start(self, agent_id: str, *, interval_seconds: float = 30.0) -> None:
        """Send heartbeats on a daemon thread until :meth:`stop`."""

        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(agent_id, interval_seconds),
            daemon=True,
            name=f"heartbeat-{agent_id}",
        )
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=DEFAULT_TIMEOUT_SECONDS * 2)
        self._thread = None

    def close(self) -> None:
        self.stop()
        self._client.close()

    def __enter__(self) -> HeartbeatClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _loop(self, agent_id: str, interval_seconds: float) -> None:
        while not self._stop.is_set():
            self.send(agent_id)
            self._stop.wait(timeout=interval_seconds)
