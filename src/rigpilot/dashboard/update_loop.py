"""Periodic WebSocket update loop pushing fleet summaries to the dashboard.

Per-rig metrics and status changes reach clients as they happen through the
event bus; this loop adds a fleet-wide summary every few seconds.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import FastAPI

log = structlog.get_logger(__name__)


async def dashboard_update_loop(app: FastAPI) -> None:
    """Periodically broadcast the fleet summary and orchestrator status.

    Runs until the application shuts down. Skips the work entirely while
    no WebSocket client is connected.

    Args:
        app: The FastAPI application with state containing hub and orchestrator.
    """
    update_interval = getattr(app.state, "update_interval", 7)

    log.info("dashboard_update_loop_started", interval=update_interval)

    while True:
        try:
            await asyncio.sleep(update_interval)

            hub = app.state.hub
            if not hub.connections:
                continue

            orchestrator = app.state.orchestrator
            await hub.send_json("fleet_summary", orchestrator.fleet_summary())
            await hub.send_json("status", orchestrator.get_status())

        except asyncio.CancelledError:
            log.info("dashboard_update_loop_cancelled")
            break
        except Exception:
            log.warning("dashboard_update_loop_error", exc_info=True)
            # Continue loop on error -- don't crash the update loop
            await asyncio.sleep(1)
