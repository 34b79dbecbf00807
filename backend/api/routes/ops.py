"""
Operational endpoints for the live refresh and provider health.

GET  /v1/ops/status   — Scheduler state and per-provider health.
POST /v1/ops/refresh  — Run one refresh pass now (skipped if one is running).
POST /v1/ops/start    — Start the periodic refresh.
POST /v1/ops/stop     — Stop the periodic refresh.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from api.dependencies import get_facade
from api.facade import QueryFacade

router = APIRouter(prefix="/v1/ops", tags=["ops"])


@router.get("/status")
async def ops_status(facade: QueryFacade = Depends(get_facade)) -> dict[str, Any]:
    return facade.status()


@router.post("/refresh")
async def ops_refresh(facade: QueryFacade = Depends(get_facade)) -> dict[str, Any]:
    report = await facade.refresh()
    return report.as_dict()


@router.post("/start")
async def ops_start(facade: QueryFacade = Depends(get_facade)) -> dict[str, Any]:
    await facade.start()
    return facade.status()["scheduler"]


@router.post("/stop")
async def ops_stop(facade: QueryFacade = Depends(get_facade)) -> dict[str, Any]:
    await facade.stop()
    return facade.status()["scheduler"]
