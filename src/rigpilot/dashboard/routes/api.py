"""JSON API endpoints for rig, fleet, rate and status data."""

from __future__ import annotations

import dataclasses
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rigpilot.models import RigMetrics

log = structlog.get_logger(__name__)

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_decimal_to_str(item) for item in obj]
    return obj


def to_jsonable(obj: Any) -> Any:
    """Dataclasses (rig metrics, events) and plain dicts -> JSON-safe values."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        obj = dataclasses.asdict(obj)
    return _decimal_to_str(obj)


def metrics_to_dict(metrics: RigMetrics) -> dict:
    return to_jsonable(metrics)


@router.get("/rigs")
async def get_rigs(request: Request) -> JSONResponse:
    """Latest metrics of every rig, plus rigs that have not reported yet."""
    orchestrator = request.app.state.orchestrator
    result = []
    for controller in orchestrator.controllers:
        if controller.metrics is not None:
            result.append(metrics_to_dict(controller.metrics))
        else:
            result.append({
                "rig_id": controller.rig_id,
                "name": controller.name,
                "autopilot_enabled": controller.autopilot_enabled,
                "min_profitability": str(controller.min_profitability),
                "status": None,
            })
    return JSONResponse(content=result)


@router.get("/rigs/{rig_id}")
async def get_rig(request: Request, rig_id: str) -> JSONResponse:
    orchestrator = request.app.state.orchestrator
    try:
        controller = orchestrator.get_controller(rig_id)
    except KeyError:
        return JSONResponse(content={"error": f"unknown rig {rig_id}"}, status_code=404)

    if controller.metrics is None:
        return JSONResponse(content={
            "rig_id": controller.rig_id,
            "name": controller.name,
            "status": None,
        })
    return JSONResponse(content=metrics_to_dict(controller.metrics))


@router.get("/fleet")
async def get_fleet(request: Request) -> JSONResponse:
    """Fleet totals: rigs mining as "n/total", summed rates and meters."""
    orchestrator = request.app.state.orchestrator
    return JSONResponse(content=to_jsonable(orchestrator.fleet_summary()))


@router.get("/rate")
async def get_rate(request: Request) -> JSONResponse:
    """BTC price in the tariff currency."""
    orchestrator = request.app.state.orchestrator
    rate_cache = request.app.state.rate_cache
    currency = orchestrator.current_tariff().currency
    rate = rate_cache.get_rate(currency)
    if rate is None:
        return JSONResponse(content={"currency": currency, "price": None})
    return JSONResponse(content={
        "currency": rate.currency,
        "symbol": rate.symbol,
        "price": str(rate.instant_price),
        "mbtc_price": str(rate.mbtc_price),
        "updated_at": rate_cache.updated_at,
    })


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    orchestrator = request.app.state.orchestrator
    return JSONResponse(content=to_jsonable(orchestrator.get_status()))
