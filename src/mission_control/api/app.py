"""FastAPI application exposing the heartbeat endpoint and squad read models."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from mission_control import __version__
from mission_control.config import Settings
from mission_control.squad.aggregator import compute_rollup
from mission_control.squad.models import AgentLivenessRecord, BudgetAlert
from mission_control.squad.registry import UnknownAgent
from mission_control.squad.runtime import SquadRuntime

logger = logging.getLogger(__name__)


class HeartbeatBody(BaseModel):
    agentId: str | None = None  # noqa: N815
    status: str | None = None


def create_app(
    settings: Settings | None = None,
    *,
    runtime: SquadRuntime | None = None,
    run_sweeps: bool = False,
) -> FastAPI:
    """Build the app around an existing runtime, or one opened on startup."""

    owns_runtime = runtime is None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.runtime is None:
            app.state.runtime = SquadRuntime.from_settings(settings or Settings.from_env())
        if run_sweeps:
            app.state.runtime.sweeps.start()
        logger.info("Mission control API ready")
        yield
        if owns_runtime:
            app.state.runtime.close()
            app.state.runtime = None
        else:
            app.state.runtime.sweeps.stop()

    app = FastAPI(
        title="Mission Control",
        description="Agent squad liveness, tasks and cost tracking.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.post("/api/agents/heartbeat")
    async def api_agent_heartbeat(request: Request) -> JSONResponse:
        try:
            body = HeartbeatBody.model_validate(await request.json())
        except (ValueError, ValidationError):
            return _error(400, "Request body must be a JSON object")
        if not body.agentId:
            return _error(400, "agentId is required")
        runtime: SquadRuntime = request.app.state.runtime
        try:
            record = await run_in_threadpool(runtime.liveness.heartbeat, body.agentId, body.status)
        except UnknownAgent:
            return _error(404, "Agent not found")
        except SQLAlchemyError:
            logger.exception("Heartbeat persistence failed for %s", body.agentId)
            return _error(500, "Internal server error")
        assert record.last_heartbeat is not None
        return JSONResponse(
            {"success": True, "timestamp": int(record.last_heartbeat.timestamp() * 1000)},
        )

    @app.get("/api/agents")
    async def api_agents(request: Request) -> list[dict[str, Any]]:
        runtime: SquadRuntime = request.app.state.runtime
        records = await run_in_threadpool(runtime.liveness.all)
        return [_liveness_payload(record) for record in records]

    @app.get("/api/costs")
    async def api_costs(request: Request) -> dict[str, Any]:
        runtime: SquadRuntime = request.app.state.runtime
        rollup = await run_in_threadpool(compute_rollup, runtime.store, tz=runtime.tz)
        alerts = await run_in_threadpool(runtime.ledger.budget_alerts)
        return {
            "todayCost": str(rollup.today_cost),
            "weekCost": str(rollup.week_cost),
            "monthCost": str(rollup.month_cost),
            "costByAgent": {agent: str(cost) for agent, cost in rollup.cost_by_agent.items()},
            "costByArea": {area: str(cost) for area, cost in rollup.cost_by_area.items()},
            "alerts": [_alert_payload(alert) for alert in alerts],
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _liveness_payload(record: AgentLivenessRecord) -> dict[str, Any]:
    return {
        "agentId": record.agent_id,
        "status": record.status.value,
        "isOnline": record.is_online,
        "lastHeartbeat": record.last_heartbeat.isoformat() if record.last_heartbeat else None,
        "lastActivity": record.last_activity.isoformat() if record.last_activity else None,
    }


def _alert_payload(alert: BudgetAlert) -> dict[str, Any]:
    return {
        "agentId": alert.agent_id,
        "severity": alert.severity.value,
        "message": alert.message,
        "currentCost": str(alert.spent),
        "budget": str(alert.budget),
        "percentage": str(alert.percentage),
    }
