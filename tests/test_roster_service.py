"""
Roster cache and conditional update tests.

Covers:
- Handle normalization on lookup
- Full-refresh reloads and duplicate handles
- Skipping malformed group keys at load time
- Optimistic-concurrency writes: success, one conflict, two conflicts
"""

import pytest

from amore_api.app.core.db import get_connection
from amore_api.app.schemas.member import Member
from amore_api.app.services.member_table import MemberTable, WriteResult, WriteStatus
from amore_api.app.services.roster_service import (
    MemberWriteError,
    RosterCache,
    RosterService,
    merge_mutable,
)


def make_member(handle, **kwargs):
    kwargs.setdefault("boat_name", "Salty Kiss")
    kwargs.setdefault("captain_name", "Valera")
    return Member(handle=handle, **kwargs)


def stored_etag(handle):
    conn = get_connection()
    try:
        return conn.execute("SELECT etag FROM members WHERE row_key = ?", (handle,)).fetchone()["etag"]
    finally:
        conn.close()


class TestRosterCache:
    async def test_lookup_normalizes_handle(self):
        async def loader():
            return [make_member("@Alice", real_name="Alice")]

        cache = RosterCache(loader)
        await cache.load_all()

        found = [cache.lookup(h) for h in ("@Alice", "alice", "ALICE", "  @alice ")]
        assert all(m is not None and m.real_name == "Alice" for m in found)
        assert cache.is_known("@ALICE")
        assert not cache.is_known("bob")
        assert cache.lookup("bob") is None

    async def test_reload_is_full_refresh(self):
        batches = [
            [make_member("alice"), make_member("bob")],
            [make_member("carol")],
        ]

        async def loader():
            return batches.pop(0)

        cache = RosterCache(loader)
        assert await cache.load_all() == 2
        assert await cache.load_all() == 1
        assert not cache.is_known("alice")
        assert cache.is_known("carol")
        assert len(cache) == 1

    async def test_last_duplicate_wins(self):
        async def loader():
            return [make_member("Dup", real_name="first"), make_member("@dup", real_name="second")]

        cache = RosterCache(loader)
        assert await cache.load_all() == 1
        assert cache.lookup("dup").real_name == "second"


class TestRosterLoad:
    async def test_loads_seeded_members(self, seeded):
        roster = RosterService()

        assert await roster.load_all() == 4
        alice = roster.lookup("alice")
        assert alice.boat_name == "Salty Kiss"
        assert alice.captain_name == "Valera"
        assert alice.handle == "@Alice"
        assert alice.etag

    @pytest.mark.parametrize(
        "partition_key",
        ["No Captain", "Boat (Cap) (Other)", "Boat (Smith, John)", "Boat ((Nested))", " (Valera)"],
    )
    async def test_malformed_group_keys_are_skipped(self, seeded, partition_key):
        conn = get_connection()
        try:
            conn.execute(
                "INSERT INTO members (row_key, partition_key, etag) VALUES (?, ?, ?)",
                ("broken", partition_key, "x"),
            )
            conn.commit()
        finally:
            conn.close()

        roster = RosterService()
        assert await roster.load_all() == 4
        assert not roster.is_known("broken")


class TestRosterUpdate:
    async def test_update_persists_and_refreshes_cache(self, seeded):
        roster = RosterService()
        await roster.load_all()
        alice = roster.lookup("alice")

        saved = await roster.update(alice.model_copy(update={"bio": "Loves cats"}), fields=["bio"])

        assert saved.bio == "Loves cats"
        assert saved.etag != alice.etag
        assert roster.lookup("alice").bio == "Loves cats"
        assert (await MemberTable().get("@Alice")).bio == "Loves cats"
        assert stored_etag("@Alice") == saved.etag

    async def test_stale_token_merges_only_changed_fields(self, seeded):
        roster = RosterService()
        await roster.load_all()
        stale = roster.lookup("alice")

        # Someone else saves a city change and the organisers move Alice
        # to another boat while our copy is still in hand.
        await roster.update(stale.model_copy(update={"city": "Madrid"}), fields=["city"])
        conn = get_connection()
        try:
            conn.execute(
                "UPDATE members SET partition_key = ?, etag = ? WHERE row_key = ?",
                ("Sun Dancer (Maya)", "moved", "@Alice"),
            )
            conn.commit()
        finally:
            conn.close()

        saved = await roster.update(stale.model_copy(update={"bio": "Sailor"}), fields=["bio"])

        assert saved.bio == "Sailor"
        assert saved.city == "Madrid"
        assert saved.boat_name == "Sun Dancer"
        assert saved.captain_name == "Maya"
        stored = await MemberTable().get("@Alice")
        assert (stored.bio, stored.city, stored.boat_name) == ("Sailor", "Madrid", "Sun Dancer")

    async def test_stale_token_keeps_filled_identifiers(self, seeded):
        roster = RosterService()
        await roster.load_all()
        stale = roster.lookup("alice")
        await roster.update(stale.model_copy(update={"user_id": 42, "chat_id": 4242}),
                            fields=["user_id", "chat_id"])

        saved = await roster.update(stale.model_copy(update={"real_name": "Ally"}))

        assert saved.real_name == "Ally"
        assert saved.user_id == 42
        assert saved.chat_id == 4242

    async def test_conflict_twice_raises(self, seeded):
        class AlwaysConflicting(MemberTable):
            calls = 0

            async def replace(self, member):
                type(self).calls += 1
                return WriteResult(WriteStatus.CONFLICT, error="etag mismatch")

        roster = RosterService(table=AlwaysConflicting())
        await roster.load_all()
        alice = roster.lookup("alice")

        with pytest.raises(MemberWriteError) as exc_info:
            await roster.update(alice.model_copy(update={"bio": "x"}), fields=["bio"])

        assert exc_info.value.conflict
        assert AlwaysConflicting.calls == 2
        # A failed write does not leak into the cache.
        assert roster.lookup("alice").bio is None

    async def test_conflict_once_then_success(self, seeded):
        class ConflictOnce(MemberTable):
            calls = 0

            async def replace(self, member):
                type(self).calls += 1
                if type(self).calls == 1:
                    return WriteResult(WriteStatus.CONFLICT, error="etag mismatch")
                return await super().replace(member)

        roster = RosterService(table=ConflictOnce())
        await roster.load_all()

        saved = await roster.update(roster.lookup("bob").model_copy(update={"bio": "hi"}), fields=["bio"])

        assert saved.bio == "hi"
        assert ConflictOnce.calls == 2

    async def test_vanished_member_is_write_failure(self, seeded):
        roster = RosterService()
        await roster.load_all()
        conn = get_connection()
        try:
            conn.execute("DELETE FROM members WHERE row_key = 'bob'")
            conn.commit()
        finally:
            conn.close()

        with pytest.raises(MemberWriteError) as exc_info:
            await roster.update(roster.lookup("bob").model_copy(update={"bio": "hi"}))

        assert not exc_info.value.conflict
        assert exc_info.value.result.status is WriteStatus.FAILURE

    async def test_conflict_on_malformed_stored_row_is_write_failure(self, seeded):
        roster = RosterService()
        await roster.load_all()
        conn = get_connection()
        try:
            conn.execute(
                "UPDATE members SET partition_key = ?, etag = ? WHERE row_key = 'bob'",
                ("Boat (Smith, John)", "edited"),
            )
            conn.commit()
        finally:
            conn.close()

        with pytest.raises(MemberWriteError) as exc_info:
            await roster.update(roster.lookup("bob").model_copy(update={"bio": "hi"}), fields=["bio"])

        assert not exc_info.value.conflict
        assert exc_info.value.result.status is WriteStatus.FAILURE
        assert "Malformed group key" in exc_info.value.result.error


def test_merge_mutable_only_touches_named_fields():
    fresh = make_member("alice", boat_name="New Boat", bio="fresh bio", city="Madrid", user_id=1, etag="t2")
    mine = make_member("alice", bio="my bio", city="Lisbon", user_id=None, etag="t1")

    merged = merge_mutable(fresh, mine, ["bio", "user_id"])

    assert merged.bio == "my bio"
    assert merged.city == "Madrid"
    assert merged.user_id == 1
    assert merged.boat_name == "New Boat"
    assert merged.etag == "t2"
