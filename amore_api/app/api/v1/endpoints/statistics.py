"""
Statistics endpoint for API v1.
"""

from fastapi import APIRouter, Depends, Query

from amore_api.app.schemas.like import StatsRead
from amore_api.app.services import Services, get_services


router = APIRouter()


@router.get("/", response_model=StatsRead)
async def get_stats(
    top: int = Query(10, ge=0, le=100),
    services: Services = Depends(get_services),
) -> StatsRead:
    return await services.matches.stats(top=top)
