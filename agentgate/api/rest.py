"""Operator API (gateway mode).

Endpoints:
  GET    /health                - Health check (DB connectivity)
  GET    /runs                  - Active runs
  DELETE /runs/{run_id}         - Interrupt a run
  GET    /channels              - Status of every tracked channel
  GET    /channels/{identifier} - Status of one channel
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from agentgate.api.runs import RunSupervisor
from agentgate.channels.manager import ChannelsManager
from agentgate.storage.database import Database

logger = logging.getLogger(__name__)


def create_app(
    supervisor: RunSupervisor,
    channels: ChannelsManager,
    database: Database,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)
        return JSONResponse(
            {
                "status": "healthy",
                "active_runs": supervisor.count(),
                "channels": channels.task_count(),
            }
        )

    async def list_runs(request: Request) -> JSONResponse:
        """GET /runs - Active runs."""
        runs = [run.to_dict() for run in supervisor.active()]
        return JSONResponse({"runs": runs, "count": len(runs)})

    async def interrupt_run(request: Request) -> JSONResponse:
        """DELETE /runs/{run_id} - Interrupt a run."""
        run_id = request.path_params["run_id"]
        if not supervisor.interrupt(run_id):
            return JSONResponse({"error": f"Run {run_id} not found"}, status_code=404)
        logger.info("Run %s interrupted via operator API", run_id)
        return JSONResponse({"status": "interrupted", "run_id": run_id})

    async def list_channels(request: Request) -> JSONResponse:
        """GET /channels - Status of every tracked channel."""
        return JSONResponse({"channels": channels.all_statuses()})

    async def channel_status(request: Request) -> JSONResponse:
        """GET /channels/{identifier} - Status of one channel."""
        identifier = request.path_params["identifier"]
        status = channels.status(identifier)
        if status is None:
            return JSONResponse({"error": f"Channel {identifier} is not running"}, status_code=404)
        return JSONResponse(status)

    routes = [
        Route("/health", health),
        Route("/runs", list_runs),
        Route("/runs/{run_id}", interrupt_run, methods=["DELETE"]),
        Route("/channels", list_channels),
        Route("/channels/{identifier}", channel_status),
    ]

    return Starlette(routes=routes)
