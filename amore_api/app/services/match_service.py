"""
Command-facing like and match operations.

``MatchService`` is what the bot and the admin API call.  It resolves
handles against the roster, runs the like rules from
:class:`LikeService` and decides who to notify.  Notification itself is
an injected coroutine; the service never talks to Telegram.

Notifications are best effort and sent at most once per new edge: a
like that already existed is not announced again, and a failing
notifier is logged without failing the like.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Awaitable, Callable, List, Optional

from amore_api.app.schemas.like import LikeOutcome, LikersSummary, MemberStat, StatsRead, ToggleResult
from amore_api.app.schemas.member import Member, normalize_handle
from amore_api.app.services.like_service import LikeService
from amore_api.app.services.roster_service import RosterService


logger = logging.getLogger(__name__)

# notifier(actor, target)
Notifier = Callable[[Member, Member], Awaitable[None]]


class MatchService:
    def __init__(
        self,
        roster: RosterService,
        likes: LikeService,
        on_like: Optional[Notifier] = None,
        on_match: Optional[Notifier] = None,
    ) -> None:
        self.roster = roster
        self.likes = likes
        self.on_like = on_like
        self.on_match = on_match

    def resolve_identity(self, raw_handle: str) -> Optional[Member]:
        return self.roster.lookup(raw_handle)

    async def request_like_toggle(self, from_handle: str, to_handle: str, liked: bool) -> ToggleResult:
        actor = normalize_handle(from_handle)
        target = self.roster.lookup(to_handle)
        if target is None:
            return ToggleResult(outcome=LikeOutcome.TARGET_UNKNOWN)
        if target.username == actor:
            return ToggleResult(outcome=LikeOutcome.REJECTED_SELF, target=target)

        existed = liked and await self.likes.store.has_edge(actor, target.username)
        outcome = await self.likes.toggle_like(actor, target.username, liked)
        is_match = await self.likes.is_match(actor, target.username)
        created = liked and not existed
        result = ToggleResult(
            outcome=outcome,
            target=target,
            liked=liked,
            created=created,
            is_match=is_match,
            became_mutual=created and is_match,
        )
        if result.became_mutual:
            logger.info("New match: %s <-> %s", actor, target.username)
        await self._notify(result, self.roster.lookup(actor))
        return result

    async def _notify(self, result: ToggleResult, actor: Optional[Member]) -> None:
        if actor is None or not result.created:
            return
        notifier = self.on_match if result.became_mutual else self.on_like
        if notifier is None:
            return
        try:
            await notifier(actor, result.target)
        except Exception:
            logger.exception(
                "Failed to notify about %s -> %s", actor.username, result.target.username
            )

    async def request_match_check(self, a: str, b: str) -> bool:
        return await self.likes.is_match(a, b)

    async def liked_handles(self, handle: str) -> List[str]:
        return [h async for h in self.likes.store.edges_from(normalize_handle(handle))]

    async def likes_of(self, handle: str) -> List[Member]:
        """Members ``handle`` has liked.  Handles no longer on the roster are skipped."""
        return self._resolve(await self.liked_handles(handle))

    async def likers_summary(self, handle: str) -> LikersSummary:
        """How many members like ``handle`` and which boats they are from."""
        likers = [h async for h in self.likes.store.edges_to(normalize_handle(handle))]
        boats = {m.boat_name for m in self._resolve(likers)}
        return LikersSummary(count=len(likers), boats=sorted(boats))

    async def matches_of(self, handle: str) -> List[Member]:
        username = normalize_handle(handle)
        mine = set(await self.liked_handles(username))
        candidates = [h async for h in self.likes.store.edges_to(username) if h in mine]
        # a half-written like is listed one-sided but is not a match
        mutual = [h for h in candidates if await self.likes.is_match(username, h)]
        return self._resolve(mutual)

    async def stats(self, top: int = 10) -> StatsRead:
        sent: Counter = Counter()
        received: Counter = Counter()
        edges = set()
        async for like in self.likes.store.all_edges():
            source, target = like.from_handle, like.to_handle
            sent[source] += 1
            received[target] += 1
            edges.add((source, target))
        matched: Counter = Counter()
        for source, target in edges:
            if (target, source) in edges:
                matched[source] += 1
        members = self.roster.members()
        rows = [
            MemberStat(
                member=username,
                likes_sent=sent[username],
                likes_received=received[username],
                matches=matched[username],
            )
            for username in set(sent) | set(received)
        ]
        rows.sort(key=lambda s: (-s.likes_received, -s.matches, s.member))
        return StatsRead(
            members=len(members),
            active_members=sum(1 for m in members if m.user_id is not None or m.chat_id is not None),
            likes=len(edges),
            matches=sum(matched.values()) // 2,
            top=rows[:top],
        )

    def _resolve(self, handles: List[str]) -> List[Member]:
        members = []
        for handle in handles:
            member = self.roster.lookup(handle)
            if member is not None:
                members.append(member)
        return members
