"""
Member endpoints for API v1.

Read-only views of the roster and of each member's likes.  Everything
is served from the in-memory roster; like lists come from the like
store.  Who liked whom is only shown with the admin token; the likers
view gives a count and boat names.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from amore_api.app.core.security import require_admin_token
from amore_api.app.schemas.like import LikersSummary
from amore_api.app.schemas.member import Member, MemberRead
from amore_api.app.services import Services, get_services


router = APIRouter()


def _member_or_404(handle: str, services: Services) -> Member:
    member = services.roster.lookup(handle)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    return member


@router.get("/", response_model=List[MemberRead])
async def list_members(services: Services = Depends(get_services)) -> List[MemberRead]:
    """List every member ordered by display name."""
    return [MemberRead.from_member(m) for m in services.directory.all_members()]


@router.get("/search", response_model=List[MemberRead])
async def search_members(
    q: str = Query(..., min_length=1, description="Handle, name or city"),
    services: Services = Depends(get_services),
) -> List[MemberRead]:
    return [MemberRead.from_member(m) for m in services.directory.search_members(q)]


@router.get("/{handle}", response_model=MemberRead)
async def get_member(handle: str, services: Services = Depends(get_services)) -> MemberRead:
    return MemberRead.from_member(_member_or_404(handle, services))


@router.get("/{handle}/likes", response_model=List[MemberRead])
async def get_member_likes(
    handle: str,
    current_user: dict = Depends(require_admin_token),
    services: Services = Depends(get_services),
) -> List[MemberRead]:
    """Members this member has liked.  Admin only: it reveals who likes whom."""
    member = _member_or_404(handle, services)
    return [MemberRead.from_member(m) for m in await services.matches.likes_of(member.username)]


@router.get("/{handle}/likers", response_model=LikersSummary)
async def get_member_likers(handle: str, services: Services = Depends(get_services)) -> LikersSummary:
    """How many members like this member, without revealing who."""
    member = _member_or_404(handle, services)
    return await services.matches.likers_summary(member.username)


@router.get("/{handle}/matches", response_model=List[MemberRead])
async def get_member_matches(
    handle: str,
    current_user: dict = Depends(require_admin_token),
    services: Services = Depends(get_services),
) -> List[MemberRead]:
    member = _member_or_404(handle, services)
    return [MemberRead.from_member(m) for m in await services.matches.matches_of(member.username)]
