"""
Like/match rules.

``LikeService`` is the one place that decides what liking means, so the
``/like`` command and the inline like button behave the same.  It
keeps no state of its own; everything lives in the :class:`LikeStore`.

A match is not stored.  It is observed whenever both directed edges
exist, read with two independent queries.  A toggle landing between
those two reads can hide a match for one call; the next check sees it.
"""

import logging

from amore_api.app.schemas.like import LikeOutcome
from amore_api.app.schemas.member import normalize_handle
from amore_api.app.services.like_store import LikeStore


logger = logging.getLogger(__name__)


class LikeService:
    def __init__(self, store: LikeStore) -> None:
        self.store = store

    async def toggle_like(self, from_handle: str, to_handle: str, like: bool) -> LikeOutcome:
        """Add (``like=True``) or remove the edge ``from -> to``.

        Liking or unliking yourself is rejected without touching the
        store.  Both directions are idempotent.
        """
        source = normalize_handle(from_handle)
        target = normalize_handle(to_handle)
        if source == target:
            return LikeOutcome.REJECTED_SELF
        if like:
            await self.store.add_edge(source, target)
        else:
            await self.store.remove_edge(source, target)
        logger.info("%s %s %s", source, "liked" if like else "unliked", target)
        return LikeOutcome.APPLIED

    async def is_match(self, a: str, b: str) -> bool:
        a = normalize_handle(a)
        b = normalize_handle(b)
        return await self.store.has_edge(a, b) and await self.store.has_edge(b, a)
