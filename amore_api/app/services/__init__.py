"""
Service layer.

Each service encapsulates the logic of one concern: the roster and its
cache, the like relation, like/match rules, directory queries and
profile edits.  :func:`build_services` wires them together; the bot and
the admin API share one instance per process through
:func:`get_services`.
"""

from dataclasses import dataclass
from typing import Optional

from .directory_service import DirectoryService
from .like_service import LikeService
from .like_store import LikeStore
from .match_service import MatchService, Notifier
from .profile_service import ProfileService
from .roster_service import RosterService


@dataclass
class Services:
    roster: RosterService
    likes: LikeService
    matches: MatchService
    directory: DirectoryService
    profiles: ProfileService


def build_services(on_like: Optional[Notifier] = None, on_match: Optional[Notifier] = None) -> Services:
    roster = RosterService()
    likes = LikeService(LikeStore())
    return Services(
        roster=roster,
        likes=likes,
        matches=MatchService(roster, likes, on_like=on_like, on_match=on_match),
        directory=DirectoryService(roster),
        profiles=ProfileService(roster),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Return the process-wide services, building them on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services
