"""
Boat endpoints for API v1.
"""

from typing import List

from fastapi import APIRouter, Depends

from amore_api.app.schemas.like import BoatSummary
from amore_api.app.schemas.member import MemberRead
from amore_api.app.services import Services, get_services


router = APIRouter()


@router.get("/", response_model=List[BoatSummary])
async def list_boats(services: Services = Depends(get_services)) -> List[BoatSummary]:
    """List boats with their captains and crew sizes."""
    return services.directory.boats()


@router.get("/{query}", response_model=List[MemberRead])
async def boat_crew(query: str, services: Services = Depends(get_services)) -> List[MemberRead]:
    """Members whose boat or captain name contains ``query``."""
    return [MemberRead.from_member(m) for m in services.directory.members_by_boat_or_captain(query)]
