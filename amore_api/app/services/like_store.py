"""
Durable storage for the like relation.

Each like ``A -> B`` is kept in two projections: ``likes_from`` keyed by
the liker and ``likes_to`` keyed by the liked member.  Both are written
by a single internal path, one commit per projection.  There is no
transaction spanning the two commits: if the second one fails the
relation is left half-written and :class:`LikeStoreError` is raised.
Such an edge is invisible to :meth:`LikeStore.has_edge` and
:meth:`LikeStore.all_edges`, which only report a like both projections
agree on.

The two commits run back to back without yielding to the event loop,
so cancelling the calling task cannot split them.
"""

from __future__ import annotations

import logging
import sqlite3
from enum import Enum
from typing import AsyncIterator, List, Tuple

from amore_api.app.core.db import get_connection
from amore_api.app.schemas.like import Like


logger = logging.getLogger(__name__)


class Projection(str, Enum):
    BY_SOURCE = "likes_from"
    BY_DESTINATION = "likes_to"


class LikeStoreError(Exception):
    """A projection write failed; earlier projections may already be written."""

    def __init__(self, projection: Projection, from_handle: str, to_handle: str, cause: Exception) -> None:
        super().__init__(
            f"Writing {projection.value} for like {from_handle} -> {to_handle} failed: {cause}"
        )
        self.projection = projection
        self.from_handle = from_handle
        self.to_handle = to_handle


_ADD = {
    Projection.BY_SOURCE: "INSERT OR IGNORE INTO likes_from (from_handle, to_handle) VALUES (?, ?)",
    Projection.BY_DESTINATION: "INSERT OR IGNORE INTO likes_to (to_handle, from_handle) VALUES (?, ?)",
}
_REMOVE = {
    Projection.BY_SOURCE: "DELETE FROM likes_from WHERE from_handle = ? AND to_handle = ?",
    Projection.BY_DESTINATION: "DELETE FROM likes_to WHERE to_handle = ? AND from_handle = ?",
}


class LikeStore:
    """Directed like edges between normalized handles."""

    async def add_edge(self, from_handle: str, to_handle: str) -> None:
        """Store ``from -> to``.  Adding an existing edge changes nothing."""
        self._write(_ADD, from_handle, to_handle)

    async def remove_edge(self, from_handle: str, to_handle: str) -> None:
        """Drop ``from -> to``.  Removing a missing edge is not an error."""
        self._write(_REMOVE, from_handle, to_handle)

    def _write(self, statements: dict, from_handle: str, to_handle: str) -> None:
        for projection in (Projection.BY_SOURCE, Projection.BY_DESTINATION):
            if projection is Projection.BY_SOURCE:
                params = (from_handle, to_handle)
            else:
                params = (to_handle, from_handle)
            try:
                self._write_projection(projection, statements[projection], params)
            except sqlite3.Error as exc:
                logger.error(
                    "Like %s -> %s left partially written: %s failed (%s)",
                    from_handle, to_handle, projection.value, exc,
                )
                raise LikeStoreError(projection, from_handle, to_handle, exc) from exc

    def _write_projection(self, projection: Projection, sql: str, params: Tuple[str, str]) -> None:
        conn = get_connection()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    async def has_edge(self, from_handle: str, to_handle: str) -> bool:
        conn = get_connection()
        try:
            row = conn.execute(
                """
                SELECT 1 FROM likes_from f
                JOIN likes_to t ON t.to_handle = f.to_handle AND t.from_handle = f.from_handle
                WHERE f.from_handle = ? AND f.to_handle = ?
                """,
                (from_handle, to_handle),
            ).fetchone()
        finally:
            conn.close()
        return row is not None

    async def edges_from(self, handle: str) -> AsyncIterator[str]:
        """Yield the handles ``handle`` likes, in storage order."""
        for value in self._query("SELECT to_handle FROM likes_from WHERE from_handle = ?", handle):
            yield value

    async def edges_to(self, handle: str) -> AsyncIterator[str]:
        """Yield the handles that like ``handle``, in storage order."""
        for value in self._query("SELECT from_handle FROM likes_to WHERE to_handle = ?", handle):
            yield value

    async def all_edges(self) -> AsyncIterator[Like]:
        """Yield every like both projections agree on."""
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT f.from_handle, f.to_handle FROM likes_from f
                JOIN likes_to t ON t.to_handle = f.to_handle AND t.from_handle = f.from_handle
                """
            ).fetchall()
        finally:
            conn.close()
        for row in rows:
            yield Like(from_handle=row["from_handle"], to_handle=row["to_handle"])

    def _query(self, sql: str, handle: str) -> List[str]:
        conn = get_connection()
        try:
            return [row[0] for row in conn.execute(sql, (handle,)).fetchall()]
        finally:
            conn.close()
