"""WebSocket push of rig events and fleet summaries to dashboard clients.

Every message is a JSON object ``{"type": <kind>, "data": {...}}`` where kind is
an event kind (``rig_status_changed``, ``rig_metrics_updated``,
``btc_rate_changed``) or a periodic ``fleet_summary`` / ``status``.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from rigpilot.dashboard.routes.api import to_jsonable
from rigpilot.events import Event

log = structlog.get_logger(__name__)

router = APIRouter()


class DashboardHub:
    """Connected dashboard clients. Doubles as an EventBus subscriber."""

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.connections.append(ws)
        log.info("dashboard_client_joined", clients=len(self.connections))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("dashboard_client_left", clients=len(self.connections))

    async def broadcast(self, message: str) -> None:
        """Send one text frame to every client; a client that fails is dropped."""
        for ws in list(self.connections):
            try:
                await ws.send_text(message)
            except Exception as e:
                self.connections.remove(ws)
                log.warning("dashboard_client_dropped", error=str(e), clients=len(self.connections))

    async def send_json(self, kind: str, data: object) -> None:
        if not self.connections:
            return
        await self.broadcast(json.dumps({"type": kind, "data": to_jsonable(data)}))

    async def on_event(self, event: Event) -> None:
        await self.send_json(event.kind, event)


hub = DashboardHub()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Join the hub and receive the current fleet summary right away."""
    ws_hub: DashboardHub = websocket.app.state.hub
    await ws_hub.connect(websocket)
    try:
        orchestrator = getattr(websocket.app.state, "orchestrator", None)
        if orchestrator is not None:
            await websocket.send_text(json.dumps({
                "type": "fleet_summary",
                "data": to_jsonable(orchestrator.fleet_summary()),
            }))
        # Client frames are ignored; reading detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        ws_hub.disconnect(websocket)
