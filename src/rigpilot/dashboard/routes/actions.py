"""POST endpoints for owner commands and tariff updates."""

from __future__ import annotations

from decimal import Decimal

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rigpilot.config import RuntimeConfig
from rigpilot.dashboard.routes.api import to_jsonable
from rigpilot.exceptions import NotSyncedError, RequestFailedError
from rigpilot.models import PowerMode

log = structlog.get_logger(__name__)

router = APIRouter()


class PowerRequest(BaseModel):
    on: bool


class AutopilotRequest(BaseModel):
    enabled: bool


class MinProfitabilityRequest(BaseModel):
    value: Decimal


class PowerModeRequest(BaseModel):
    mode: PowerMode


class TariffRequest(BaseModel):
    cost_per_kwh: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


def _unknown_rig(rig_id: str) -> JSONResponse:
    return JSONResponse(content={"error": f"unknown rig {rig_id}"}, status_code=404)


def _command_failed(action: str, rig_id: str, error: Exception) -> JSONResponse:
    log.error("dashboard_command_failed", action=action, rig_id=rig_id, error=str(error))
    status = getattr(error, "status", None)
    return JSONResponse(
        content={"error": str(error), "status": status},
        status_code=502,
    )


@router.post("/rigs/{rig_id}/power")
async def set_power(request: Request, rig_id: str, body: PowerRequest) -> JSONResponse:
    """Manually start or stop a rig."""
    try:
        controller = request.app.state.orchestrator.get_controller(rig_id)
    except KeyError:
        return _unknown_rig(rig_id)
    try:
        await controller.set_power(body.on)
    except (RequestFailedError, NotSyncedError) as e:
        return _command_failed("power", rig_id, e)
    log.info("rig_power_set_via_dashboard", rig_id=rig_id, on=body.on)
    return JSONResponse(content={"rig_id": rig_id, "on": body.on})


@router.post("/rigs/{rig_id}/autopilot")
async def set_autopilot(request: Request, rig_id: str, body: AutopilotRequest) -> JSONResponse:
    """Enable (and start) or disable (and stop) a rig's autopilot."""
    try:
        controller = request.app.state.orchestrator.get_controller(rig_id)
    except KeyError:
        return _unknown_rig(rig_id)
    try:
        await controller.set_autopilot(body.enabled)
    except (RequestFailedError, NotSyncedError) as e:
        return _command_failed("autopilot", rig_id, e)
    return JSONResponse(content={"rig_id": rig_id, "autopilot_enabled": body.enabled})


@router.post("/rigs/{rig_id}/min-profitability")
async def set_min_profitability(
    request: Request, rig_id: str, body: MinProfitabilityRequest
) -> JSONResponse:
    """Change the stop threshold; the rig re-benchmarks under the new value."""
    try:
        controller = request.app.state.orchestrator.get_controller(rig_id)
    except KeyError:
        return _unknown_rig(rig_id)
    try:
        await controller.set_min_profitability(body.value)
    except (RequestFailedError, NotSyncedError) as e:
        return _command_failed("min_profitability", rig_id, e)
    return JSONResponse(content={"rig_id": rig_id, "min_profitability": str(body.value)})


@router.post("/rigs/{rig_id}/power-mode")
async def set_power_mode(request: Request, rig_id: str, body: PowerModeRequest) -> JSONResponse:
    try:
        controller = request.app.state.orchestrator.get_controller(rig_id)
    except KeyError:
        return _unknown_rig(rig_id)
    try:
        await controller.set_power_mode(body.mode)
    except (RequestFailedError, NotSyncedError) as e:
        return _command_failed("power_mode", rig_id, e)
    return JSONResponse(content={"rig_id": rig_id, "power_mode": body.mode.value})


@router.post("/tariff")
async def set_tariff(request: Request, body: TariffRequest) -> JSONResponse:
    """Override the tariff at runtime. Takes effect on each rig's next tick."""
    orchestrator = request.app.state.orchestrator
    current = orchestrator.runtime_config or RuntimeConfig()
    orchestrator.runtime_config = RuntimeConfig(
        cost_per_kwh=body.cost_per_kwh if body.cost_per_kwh is not None else current.cost_per_kwh,
        currency=body.currency.upper() if body.currency is not None else current.currency,
    )
    tariff = orchestrator.current_tariff()
    log.info("tariff_updated_via_dashboard", cost_per_kwh=str(tariff.cost_per_kwh), currency=tariff.currency)
    return JSONResponse(content=to_jsonable({
        "cost_per_kwh": tariff.cost_per_kwh,
        "currency": tariff.currency,
    }))
