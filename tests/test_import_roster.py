"""
CSV roster import tests.
"""

import sys

import pytest

import import_roster
from amore_api.app.core.config import settings
from amore_api.app.services.member_table import MemberTable
from amore_api.app.services.roster_service import RosterService


def test_row_to_member():
    member = import_roster.row_to_member(
        {"boat": " Salty Kiss ", "captain": "Valera", "telegram": "@Eve", "instagram": "@eve", "city": ""}
    )

    assert member.group_key == "Salty Kiss (Valera)"
    assert member.username == "eve"
    assert member.instagram == "eve"
    assert member.city is None


@pytest.mark.parametrize(
    "row",
    [
        {"boat": "Salty Kiss", "captain": "Smith, John", "telegram": "eve"},
        {"boat": "Salty (Kiss)", "captain": "Valera", "telegram": "eve"},
        {"boat": "", "captain": "Valera", "telegram": "eve"},
        {"boat": "Salty Kiss", "captain": "Valera", "telegram": "  "},
    ],
)
def test_row_to_member_rejects(row):
    with pytest.raises(ValueError):
        import_roster.row_to_member(row)


async def test_import_updates_without_losing_ids(seeded):
    table = MemberTable()
    alice = await table.get("@Alice")
    alice.user_id, alice.chat_id = 11, 110
    assert (await table.replace(alice)).ok

    imported, failed = await import_roster.import_rows([
        {"boat": "Sun Dancer", "captain": "Maya", "telegram": "@Alice", "name": "Alice J."},
        {"boat": "Sun Dancer", "captain": "Maya", "telegram": "erin", "name": "Erin"},
        {"boat": "Broken", "captain": "A, B", "telegram": "frank"},
    ])

    assert (imported, failed) == (2, 1)
    roster = RosterService()
    assert await roster.load_all() == 5
    moved = roster.lookup("alice")
    assert (moved.boat_name, moved.real_name) == ("Sun Dancer", "Alice J.")
    assert (moved.user_id, moved.chat_id) == (11, 110)
    assert roster.is_known("erin")


def test_main(tmp_path, monkeypatch, capsys):
    csv_path = tmp_path / "roster.csv"
    csv_path.write_text("boat,captain,telegram,name\nSea Breeze,Tom,@gina,Gina\n", encoding="utf-8")
    db_path = tmp_path / "import.db"
    monkeypatch.setattr(settings, "database_url", settings.database_url)
    monkeypatch.setattr(sys, "argv", ["import_roster.py", "--db", str(db_path), "--csv", str(csv_path)])

    import_roster.main()

    assert "Imported 1 members, 0 rows rejected" in capsys.readouterr().out
    assert db_path.exists()


def test_main_missing_columns(tmp_path, monkeypatch):
    csv_path = tmp_path / "roster.csv"
    csv_path.write_text("boat,telegram\nSea Breeze,@gina\n", encoding="utf-8")
    monkeypatch.setattr(settings, "database_url", settings.database_url)
    monkeypatch.setattr(sys, "argv", ["import_roster.py", "--db", str(tmp_path / "x.db"), "--csv", str(csv_path)])

    with pytest.raises(SystemExit) as exc_info:
        import_roster.main()

    assert exc_info.value.code == 1
