"""
Roster of authorised members.

Reads never touch the database: the whole ``members`` table is loaded
into a :class:`RosterCache` keyed by normalized handle, and every user
facing command resolves identities against it.  The cache is refreshed
only by an explicit full reload (bot start, ``/reload``, admin API).

Writes go through :meth:`RosterService.update`, which owns the
optimistic-concurrency policy: a conflicting write is retried exactly
once on top of the freshly stored row, re-applying only the fields the
caller changed.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from amore_api.app.schemas.member import MalformedGroupKeyError, Member, normalize_handle
from amore_api.app.services.member_table import MemberTable, WriteResult, WriteStatus, row_to_member


logger = logging.getLogger(__name__)

MemberLoader = Callable[[], Awaitable[Iterable[Member]]]

# Fields a write may carry.  Handle and boat/captain are never written.
MUTABLE_FIELDS = (
    "real_name",
    "chat_id",
    "user_id",
    "photo",
    "photo_file_id",
    "instagram",
    "bio",
    "city",
)
# Filled in lazily on first contact and never reset to None.
IDENTIFIER_FIELDS = ("user_id", "chat_id")


class RosterError(Exception):
    """Base class for roster failures."""


class MemberWriteError(RosterError):
    """A member write did not persist, including after the single retry."""

    def __init__(self, handle: str, result: WriteResult) -> None:
        super().__init__(f"Failed to persist member {handle}: {result.status.value} ({result.error})")
        self.handle = handle
        self.result = result

    @property
    def conflict(self) -> bool:
        return self.result.status is WriteStatus.CONFLICT


class RosterCache:
    """In-memory roster index with an injected loader."""

    def __init__(self, loader: MemberLoader) -> None:
        self._loader = loader
        self._members: Dict[str, Member] = {}

    async def load_all(self) -> int:
        """Invalidate the index and rebuild it from the loader.

        The new index is built aside and swapped in at once, so readers
        see either the old roster or the new one.  When two records
        normalize to the same handle the later one wins.
        """
        index: Dict[str, Member] = {}
        for member in await self._loader():
            index[member.username] = member
        self._members = index
        return len(index)

    def lookup(self, handle: str) -> Optional[Member]:
        return self._members.get(normalize_handle(handle))

    def is_known(self, handle: str) -> bool:
        return normalize_handle(handle) in self._members

    def put(self, member: Member) -> None:
        self._members[member.username] = member

    def members(self) -> List[Member]:
        return list(self._members.values())

    def __len__(self) -> int:
        return len(self._members)


def merge_mutable(fresh: Member, mine: Member, fields: Iterable[str]) -> Member:
    """Re-apply ``fields`` from ``mine`` onto the freshly stored ``fresh``."""
    update = {}
    for field in fields:
        value = getattr(mine, field)
        if field in IDENTIFIER_FIELDS and value is None:
            continue
        update[field] = value
    return fresh.model_copy(update=update)


class RosterService:
    """Roster lookups and conditional member updates."""

    def __init__(self, table: Optional[MemberTable] = None, cache: Optional[RosterCache] = None) -> None:
        self.table = table or MemberTable()
        self.cache = cache or RosterCache(self._load_from_table)

    async def _load_from_table(self) -> List[Member]:
        members = []
        skipped = 0
        async for row in self.table.iter_rows():
            try:
                members.append(row_to_member(row))
            except MalformedGroupKeyError as exc:
                skipped += 1
                logger.warning("Skipping roster row %s: %s", row["row_key"], exc)
        if skipped:
            logger.warning("Skipped %d malformed roster rows", skipped)
        return members

    async def load_all(self) -> int:
        count = await self.cache.load_all()
        logger.info("Roster loaded: %d members", count)
        return count

    def lookup(self, handle: str) -> Optional[Member]:
        return self.cache.lookup(handle)

    def is_known(self, handle: str) -> bool:
        return self.cache.is_known(handle)

    def members(self) -> List[Member]:
        return self.cache.members()

    async def update(self, member: Member, fields: Optional[Iterable[str]] = None) -> Member:
        """Persist ``member`` and refresh its roster entry.

        ``fields`` names the attributes the caller changed; it defaults
        to every mutable field.  On a stale etag the stored row is read
        again, those fields are applied on top of it and the write is
        retried once.  Any other outcome raises :class:`MemberWriteError`.
        """
        changed = [f for f in (fields or MUTABLE_FIELDS) if f in MUTABLE_FIELDS]
        result = await self.table.replace(member)
        if result.status is WriteStatus.CONFLICT:
            logger.warning("Write conflict for member %s, retrying on fresh copy", member.username)
            try:
                fresh = await self.table.get(member.handle)
            except MalformedGroupKeyError as exc:
                result = WriteResult(WriteStatus.FAILURE, error=str(exc))
            else:
                if fresh is None:
                    result = WriteResult(WriteStatus.FAILURE, error="member no longer stored")
                else:
                    result = await self.table.replace(merge_mutable(fresh, member, changed))
        if not result.ok:
            logger.error("Member %s not saved: %s (%s)", member.username, result.status.value, result.error)
            raise MemberWriteError(member.username, result)
        self.cache.put(result.member)
        return result.member
