"""
Pytest configuration.

Every test gets its own SQLite file: ``settings.database_url`` is pointed
at a temporary path and the migrations are applied to it.
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent.absolute()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from amore_api.app.core.config import settings  # noqa: E402
from amore_api.app.core.db import init_db  # noqa: E402
from amore_api.app.schemas.member import Member  # noqa: E402
from amore_api.app.services import build_services  # noqa: E402
from amore_api.app.services.member_table import MemberTable  # noqa: E402


ROSTER = [
    Member(handle="@Alice", boat_name="Salty Kiss", captain_name="Valera",
           real_name="Alice Johnson", city="Lisbon"),
    Member(handle="bob", boat_name="Salty Kiss", captain_name="Valera",
           real_name="Bob Miller", city="Porto"),
    Member(handle="Carol", boat_name="Sun Dancer", captain_name="Maya",
           real_name="Carol Lee", city="Lisbon", photo="https://example.com/carol.jpg"),
    Member(handle="dave", boat_name="Sea Breeze", captain_name="Tom",
           real_name="Dave Stone"),
]


@pytest.fixture
def db(tmp_path, monkeypatch):
    """A fresh, migrated database file."""
    path = tmp_path / "amore.db"
    monkeypatch.setattr(settings, "database_url", str(path))
    init_db()
    return path


@pytest.fixture
async def seeded(db):
    table = MemberTable()
    return [await table.upsert(member) for member in ROSTER]


@pytest.fixture
async def services(seeded):
    built = build_services()
    await built.roster.load_all()
    return built
