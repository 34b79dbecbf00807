"""
Match REST endpoints.

GET /v1/matches                — Paginated listing (status/search/source routing).
GET /v1/matches/search         — Free-text search across providers.
GET /v1/matches/{external_id}  — One match by provider-qualified id.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from shared.models.domain import MatchPage

from api.dependencies import get_facade
from api.facade import QueryFacade

router = APIRouter(prefix="/v1/matches", tags=["matches"])


def _query_params(
    sport: Optional[str] = None,
    status: Optional[str] = None,
    league: Optional[str] = None,
    team: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[str] = Query(default=None, alias="dateFrom"),
    date_to: Optional[str] = Query(default=None, alias="dateTo"),
    page: Optional[str] = None,
    limit: Optional[str] = None,
    source: Optional[str] = None,
) -> dict[str, Any]:
    # Raw strings on purpose: MatchQuery.from_params owns validation and its 400 body.
    return {
        "sport": sport,
        "status": status,
        "league": league,
        "team": team,
        "search": search,
        "dateFrom": date_from,
        "dateTo": date_to,
        "page": page,
        "limit": limit,
        "source": source,
    }


def _page_body(page: MatchPage) -> dict[str, Any]:
    return page.model_dump(mode="json", by_alias=True)


@router.get("")
async def list_matches(
    params: dict[str, Any] = Depends(_query_params),
    facade: QueryFacade = Depends(get_facade),
) -> dict[str, Any]:
    """
    List matches.

    source=auto reads the persisted store unless a search text or the live
    status is requested; source=api always asks the providers.
    """
    return _page_body(await facade.list_matches(params))


@router.get("/search")
async def search_matches(
    q: str = Query(min_length=1),
    params: dict[str, Any] = Depends(_query_params),
    facade: QueryFacade = Depends(get_facade),
) -> dict[str, Any]:
    params["search"] = q
    return _page_body(await facade.search_matches(params))


@router.get("/{external_id}")
async def get_match(
    external_id: str,
    facade: QueryFacade = Depends(get_facade),
) -> dict[str, Any]:
    match = await facade.get_match(external_id)
    if match is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return match.model_dump(mode="json")
