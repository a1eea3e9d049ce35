"""
Command-facing like/match tests: outcomes, notifications, listings and
statistics.
"""

import sqlite3

import pytest

from amore_api.app.schemas.like import LikeOutcome
from amore_api.app.services.like_store import LikeStoreError, Projection


class Recorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, actor, target):
        self.calls.append((actor.username, target.username))


@pytest.fixture
def notified(services):
    on_like, on_match = Recorder(), Recorder()
    services.matches.on_like = on_like
    services.matches.on_match = on_match
    return on_like, on_match


class TestLikeToggle:
    @pytest.mark.parametrize("raw", ["carol", "@Carol", " @CAROL "])
    async def test_resolve_identity(self, services, raw):
        assert services.matches.resolve_identity(raw).real_name == "Carol Lee"

    async def test_unknown_target(self, services):
        result = await services.matches.request_like_toggle("alice", "@nobody", True)

        assert result.outcome is LikeOutcome.TARGET_UNKNOWN
        assert result.target is None

    async def test_self_like_rejected(self, services):
        result = await services.matches.request_like_toggle("alice", "@ALICE", True)

        assert result.outcome is LikeOutcome.REJECTED_SELF
        assert not await services.likes.store.has_edge("alice", "alice")

    async def test_like_applied(self, services):
        result = await services.matches.request_like_toggle("alice", "@Bob", True)

        assert result.outcome is LikeOutcome.APPLIED
        assert result.target.username == "bob"
        assert result.created
        assert not result.is_match
        assert await services.matches.request_match_check("alice", "bob") is False

    async def test_mutual_like(self, services):
        await services.matches.request_like_toggle("alice", "bob", True)
        result = await services.matches.request_like_toggle("bob", "alice", True)

        assert result.is_match and result.became_mutual
        assert await services.matches.request_match_check("alice", "bob")
        assert await services.matches.request_match_check("bob", "alice")

    async def test_store_failure_propagates(self, services, monkeypatch):
        async def failing(*args):
            raise LikeStoreError(Projection.BY_SOURCE, "alice", "bob", OSError("disk full"))

        monkeypatch.setattr(services.likes.store, "add_edge", failing)

        with pytest.raises(LikeStoreError):
            await services.matches.request_like_toggle("alice", "bob", True)


class TestNotifications:
    async def test_new_like_notifies_target_once(self, services, notified):
        on_like, on_match = notified

        await services.matches.request_like_toggle("alice", "bob", True)
        await services.matches.request_like_toggle("alice", "bob", True)

        assert on_like.calls == [("alice", "bob")]
        assert on_match.calls == []

    async def test_match_notifies_once(self, services, notified):
        on_like, on_match = notified
        await services.matches.request_like_toggle("alice", "bob", True)

        result = await services.matches.request_like_toggle("bob", "alice", True)
        await services.matches.request_like_toggle("bob", "alice", True)

        assert result.became_mutual
        assert on_match.calls == [("bob", "alice")]
        assert on_like.calls == [("alice", "bob")]

    async def test_unlike_notifies_nobody(self, services, notified):
        on_like, on_match = notified
        await services.matches.request_like_toggle("alice", "bob", True)

        await services.matches.request_like_toggle("alice", "bob", False)

        assert on_like.calls == [("alice", "bob")]
        assert on_match.calls == []

    async def test_rematch_after_unlike_notifies_again(self, services, notified):
        _, on_match = notified
        await services.matches.request_like_toggle("alice", "bob", True)
        await services.matches.request_like_toggle("bob", "alice", True)
        await services.matches.request_like_toggle("alice", "bob", False)
        await services.matches.request_like_toggle("alice", "bob", True)

        assert on_match.calls == [("bob", "alice"), ("alice", "bob")]

    async def test_failing_notifier_does_not_fail_like(self, services):
        async def broken(actor, target):
            raise RuntimeError("telegram is down")

        services.matches.on_like = broken

        result = await services.matches.request_like_toggle("alice", "bob", True)

        assert result.outcome is LikeOutcome.APPLIED
        assert await services.likes.store.has_edge("alice", "bob")


class TestListings:
    async def test_likes_likers_and_matches(self, services):
        toggle = services.matches.request_like_toggle
        await toggle("alice", "bob", True)
        await toggle("alice", "carol", True)
        await toggle("bob", "alice", True)
        await toggle("dave", "alice", True)

        liked = await services.matches.likes_of("@Alice")
        assert sorted(m.username for m in liked) == ["bob", "carol"]

        summary = await services.matches.likers_summary("alice")
        assert summary.count == 2
        assert summary.boats == ["Salty Kiss", "Sea Breeze"]

        matches = await services.matches.matches_of("alice")
        assert [m.username for m in matches] == ["bob"]

    async def test_half_written_like_is_not_a_match(self, services, monkeypatch):
        store = services.likes.store
        await services.matches.request_like_toggle("bob", "alice", True)
        original = store._write_projection

        def failing(projection, sql, params):
            if projection is Projection.BY_DESTINATION:
                raise sqlite3.OperationalError("disk I/O error")
            original(projection, sql, params)

        monkeypatch.setattr(store, "_write_projection", failing)
        with pytest.raises(LikeStoreError):
            await services.matches.request_like_toggle("alice", "bob", True)

        assert await services.matches.request_match_check("alice", "bob") is False
        assert await services.matches.matches_of("alice") == []
        assert await services.matches.matches_of("bob") == []
        stats = await services.matches.stats()
        assert (stats.likes, stats.matches) == (1, 0)

    async def test_members_missing_from_roster_are_skipped(self, services):
        await services.likes.store.add_edge("alice", "ghost")

        assert await services.matches.likes_of("alice") == []

    async def test_stats(self, services):
        toggle = services.matches.request_like_toggle
        await toggle("alice", "bob", True)
        await toggle("bob", "alice", True)
        await toggle("carol", "alice", True)
        await services.profiles.backfill_identifiers("alice", 1, 1)

        stats = await services.matches.stats()

        assert stats.members == 4
        assert stats.active_members == 1
        assert stats.likes == 3
        assert stats.matches == 1
        assert stats.top[0].member == "alice"
        assert stats.top[0].likes_received == 2
        assert stats.top[0].matches == 1
