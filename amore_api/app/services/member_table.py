"""
Durable member rows.

``MemberTable`` is the only code that touches the ``members`` table.
Its write primitive, :meth:`MemberTable.replace`, is a conditional
update: it succeeds only when the caller's ``etag`` still matches the
stored one, and reports the result as a :class:`WriteResult` instead
of raising.  Deciding what to do about a conflict is left to the
roster service.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from amore_api.app.core.db import get_connection
from amore_api.app.schemas.member import Member, format_group_key, parse_group_key


logger = logging.getLogger(__name__)


class WriteStatus(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"
    FAILURE = "failure"


@dataclass
class WriteResult:
    status: WriteStatus
    member: Optional[Member] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.OK


def new_etag() -> str:
    return uuid.uuid4().hex


def row_to_member(row: sqlite3.Row) -> Member:
    """Build a :class:`Member` from a ``members`` row.

    Raises :class:`MalformedGroupKeyError` when ``partition_key`` is not
    a valid ``"<Boat> (<Captain>)"`` composite.
    """
    boat_name, captain_name = parse_group_key(row["partition_key"])
    return Member(
        handle=row["row_key"],
        boat_name=boat_name,
        captain_name=captain_name,
        user_id=row["user_id"],
        chat_id=row["chat_id"],
        real_name=row["real_name"],
        photo=row["photo"],
        photo_file_id=row["photo_file_id"],
        instagram=row["instagram"],
        bio=row["info"],
        city=row["city"],
        etag=row["etag"],
    )


class MemberTable:
    """Access to the ``members`` table."""

    async def iter_rows(self) -> AsyncIterator[sqlite3.Row]:
        """Yield every stored row in storage order."""
        conn = get_connection()
        try:
            rows = conn.execute("SELECT * FROM members").fetchall()
        finally:
            conn.close()
        for row in rows:
            yield row

    async def get(self, handle: str) -> Optional[Member]:
        """Read one member by its stored handle (the table's primary key)."""
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM members WHERE row_key = ?", (handle,)
            ).fetchone()
        finally:
            conn.close()
        return row_to_member(row) if row else None

    async def replace(self, member: Member) -> WriteResult:
        """Write the mutable columns of ``member`` if its etag is current.

        The group key and handle are never part of the update.  On
        success a fresh etag is stored and returned on the result's
        member.
        """
        etag = new_etag()
        conn = get_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE members
                SET user_id = ?, chat_id = ?, real_name = ?, photo = ?,
                    photo_file_id = ?, instagram = ?, info = ?, city = ?,
                    etag = ?, updated_at = CURRENT_TIMESTAMP
                WHERE row_key = ? AND etag = ?
                """,
                (
                    member.user_id,
                    member.chat_id,
                    member.real_name,
                    member.photo,
                    member.photo_file_id,
                    member.instagram,
                    member.bio,
                    member.city,
                    etag,
                    member.handle,
                    member.etag,
                ),
            )
            if cursor.rowcount == 1:
                conn.commit()
                return WriteResult(WriteStatus.OK, member.model_copy(update={"etag": etag}))
            exists = conn.execute(
                "SELECT 1 FROM members WHERE row_key = ?", (member.handle,)
            ).fetchone()
        except sqlite3.Error as exc:
            logger.error("Failed to write member %s: %s", member.handle, exc)
            return WriteResult(WriteStatus.FAILURE, error=str(exc))
        finally:
            conn.close()
        if exists:
            return WriteResult(WriteStatus.CONFLICT, error="etag mismatch")
        return WriteResult(WriteStatus.FAILURE, error="member no longer stored")

    async def upsert(self, member: Member) -> Member:
        """Insert or overwrite a roster row (used by the importer).

        Numeric Telegram ids are kept when the imported row has none, and
        the cached photo reference survives as long as the photo did not
        change.
        """
        etag = new_etag()
        conn = get_connection()
        try:
            conn.execute(
                """
                INSERT INTO members (row_key, partition_key, user_id, chat_id, real_name,
                                     photo, photo_file_id, instagram, info, city, etag)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(row_key) DO UPDATE SET
                    partition_key = excluded.partition_key,
                    user_id = COALESCE(excluded.user_id, members.user_id),
                    chat_id = COALESCE(excluded.chat_id, members.chat_id),
                    real_name = excluded.real_name,
                    photo = excluded.photo,
                    photo_file_id = CASE
                        WHEN excluded.photo IS members.photo
                        THEN COALESCE(excluded.photo_file_id, members.photo_file_id)
                        ELSE excluded.photo_file_id
                    END,
                    instagram = excluded.instagram,
                    info = excluded.info,
                    city = excluded.city,
                    etag = excluded.etag,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    member.handle,
                    format_group_key(member.boat_name, member.captain_name),
                    member.user_id,
                    member.chat_id,
                    member.real_name,
                    member.photo,
                    member.photo_file_id,
                    member.instagram,
                    member.bio,
                    member.city,
                    etag,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return member.model_copy(update={"etag": etag})
