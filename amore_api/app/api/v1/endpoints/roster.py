"""
Roster administration for API v1.

Reloading re-reads the whole ``members`` table into the in-memory
roster, e.g. after ``import_roster.py`` added people.  Requires the
static admin token.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from amore_api.app.core.security import require_admin_token
from amore_api.app.services import Services, get_services


router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/reload")
async def reload_roster(
    current_user: dict = Depends(require_admin_token),
    services: Services = Depends(get_services),
) -> Dict[str, int]:
    count = await services.roster.load_all()
    logger.info("Roster reloaded via admin API")
    return {"members": count}
