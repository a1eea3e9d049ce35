"""
Top-level router for version 1 of the admin API.
"""

from fastapi import APIRouter

from .endpoints import boats, members, roster, statistics

router = APIRouter()

router.include_router(members.router, prefix="/members", tags=["members"])
router.include_router(boats.router, prefix="/boats", tags=["boats"])
router.include_router(statistics.router, prefix="/stats", tags=["statistics"])
router.include_router(roster.router, prefix="/roster", tags=["roster"])
