#!/usr/bin/env python3
"""
Import or update roster members in the Amore SQLite database.

The CSV file needs a header row with at least ``boat``, ``captain`` and
``telegram`` columns; ``name``, ``photo``, ``city``, ``instagram`` and
``bio`` are optional.  Existing members (same Telegram handle) are
updated; Telegram ids and likes are kept.  Rows with a boat or captain
name that cannot round-trip through the "<Boat> (<Captain>)" group key
are rejected.

Usage:
    python import_roster.py --db ./amore.db --csv roster.csv

Run ``/reload`` in the bot (or POST /api/v1/roster/reload) afterwards so
the running process picks up the changes.
"""

import argparse
import asyncio
import csv
import os
import sys

from amore_api.app.core.config import settings
from amore_api.app.core.db import init_db
from amore_api.app.schemas.member import MalformedGroupKeyError, Member, format_group_key, parse_group_key
from amore_api.app.services.member_table import MemberTable


REQUIRED_COLUMNS = {"boat", "captain", "telegram"}


def row_to_member(row: dict) -> Member:
    boat = (row.get("boat") or "").strip()
    captain = (row.get("captain") or "").strip()
    handle = (row.get("telegram") or "").strip()
    if not handle:
        raise ValueError("empty telegram handle")
    # Reject names the stored group key could not be parsed back into.
    if parse_group_key(format_group_key(boat, captain)) != (boat, captain):
        raise MalformedGroupKeyError(format_group_key(boat, captain))
    return Member(
        handle=handle,
        boat_name=boat,
        captain_name=captain,
        real_name=(row.get("name") or "").strip() or None,
        photo=(row.get("photo") or "").strip() or None,
        city=(row.get("city") or "").strip() or None,
        instagram=(row.get("instagram") or "").strip().lstrip("@") or None,
        bio=(row.get("bio") or "").strip() or None,
    )


async def import_rows(rows) -> tuple[int, int]:
    table = MemberTable()
    imported = failed = 0
    for line_no, row in enumerate(rows, start=2):
        try:
            member = row_to_member(row)
        except ValueError as exc:
            print(f"[!] line {line_no}: {exc}", file=sys.stderr)
            failed += 1
            continue
        await table.upsert(member)
        imported += 1
    return imported, failed


def main():
    ap = argparse.ArgumentParser(description="Import Amore roster members from CSV (SQLite).")
    ap.add_argument("--db", required=True, help="Path to SQLite DB file (e.g., ./amore.db)")
    ap.add_argument("--csv", required=True, help="CSV file with boat,captain,telegram[,name,photo,city,instagram,bio]")
    args = ap.parse_args()

    if not os.path.exists(args.csv):
        print(f"[!] CSV not found: {args.csv}", file=sys.stderr)
        sys.exit(1)

    settings.database_url = os.path.abspath(args.db)
    init_db()

    with open(args.csv, newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        missing = REQUIRED_COLUMNS - set(reader.fieldnames or [])
        if missing:
            print(f"[!] Missing columns: {', '.join(sorted(missing))}", file=sys.stderr)
            sys.exit(1)
        imported, failed = asyncio.run(import_rows(reader))

    print(f"[+] Imported {imported} members, {failed} rows rejected")
    if failed:
        sys.exit(2)


if __name__ == "__main__":
    main()
