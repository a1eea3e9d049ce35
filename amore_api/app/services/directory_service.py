"""
Search and grouping over the in-memory roster.

All queries are answered from the roster cache; none of them touch the
database.  Matching is case-insensitive substring matching.
"""

from collections import defaultdict
from typing import List

from amore_api.app.schemas.like import BoatSummary
from amore_api.app.schemas.member import Member, normalize_handle
from amore_api.app.services.roster_service import RosterService


def _by_name(member: Member) -> str:
    return (member.real_name or member.telegram).lower()


class DirectoryService:
    def __init__(self, roster: RosterService) -> None:
        self.roster = roster

    def all_members(self) -> List[Member]:
        return sorted(self.roster.members(), key=_by_name)

    def search_members(self, query: str) -> List[Member]:
        """Find members by handle, display name or city.

        An exact handle hit (with or without "@") returns just that
        member.
        """
        q = normalize_handle(query)
        if not q:
            return []
        exact = self.roster.lookup(q)
        if exact is not None:
            return [exact]
        return [
            m for m in self.all_members()
            if q in (m.real_name or "").lower() or q in (m.city or "").lower()
        ]

    def members_by_boat_or_captain(self, query: str) -> List[Member]:
        q = (query or "").strip().lower()
        if not q:
            return []
        found = [
            m for m in self.roster.members()
            if q in m.boat_name.lower() or q in m.captain_name.lower()
        ]
        return sorted(found, key=lambda m: (m.boat_name.lower(), _by_name(m)))

    def boats(self) -> List[BoatSummary]:
        groups = defaultdict(list)
        for member in self.roster.members():
            groups[member.group_key].append(member)
        return [
            BoatSummary(
                group_key=key,
                boat_name=members[0].boat_name,
                captain_name=members[0].captain_name,
                member_count=len(members),
            )
            for key, members in sorted(groups.items())
        ]
