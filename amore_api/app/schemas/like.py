"""
Pydantic models for likes, matches and statistics.

A like is a directed edge between two normalized handles.  A match is
never stored: it holds while both directed edges exist.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .member import Member


class Like(BaseModel):
    from_handle: str
    to_handle: str


class LikeOutcome(str, Enum):
    APPLIED = "applied"
    REJECTED_SELF = "rejected_self"
    TARGET_UNKNOWN = "target_unknown"


class ToggleResult(BaseModel):
    """What a like/unlike request did.

    ``created`` is true only when a like edge that did not exist before
    was written; ``became_mutual`` when that new edge completed a match.
    Notifications are driven from these two flags so a repeated like
    does not notify anyone again.
    """

    outcome: LikeOutcome
    target: Optional[Member] = None
    liked: bool = False
    created: bool = False
    is_match: bool = False
    became_mutual: bool = False


class LikersSummary(BaseModel):
    count: int = 0
    boats: List[str] = Field(default_factory=list)


class MemberStat(BaseModel):
    member: str
    likes_sent: int = 0
    likes_received: int = 0
    matches: int = 0


class StatsRead(BaseModel):
    """Bot-wide statistics."""

    members: int
    active_members: int
    likes: int
    matches: int
    top: List[MemberStat] = Field(default_factory=list)


class BoatSummary(BaseModel):
    group_key: str
    boat_name: str
    captain_name: str
    member_count: int
