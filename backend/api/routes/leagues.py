"""
League REST endpoints.

GET /v1/leagues?sport=football — League catalogue from the healthiest provider.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_facade
from api.facade import QueryFacade

router = APIRouter(prefix="/v1/leagues", tags=["leagues"])


@router.get("")
async def list_leagues(
    sport: Optional[str] = None,
    facade: QueryFacade = Depends(get_facade),
) -> dict[str, Any]:
    leagues = await facade.get_leagues(sport)
    return {
        "leagues": [league.model_dump(mode="json") for league in leagues],
    }
