"""
Simple configuration management.

The ``Settings`` dataclass reads configuration directly from
environment variables.  Defaults are provided for all fields so the
services can be imported (and tested) without any environment set up.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "Amore Directory API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")

    # Path to the SQLite database.  A relative path is resolved against
    # the project root by the ``db`` module.
    database_url: str = os.getenv("DATABASE_URL", "amore.db")

    telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Comma-separated Telegram user ids allowed to run /reload and
    # /broadcast.
    admin_user_ids: str = os.getenv("ADMIN_USER_IDS", "")

    # Static bearer token for the mutating admin API endpoints.  When
    # empty those endpoints always answer 401.
    admin_api_token: str = os.getenv("ADMIN_API_TOKEN", "")
    admin_host: str = os.getenv("ADMIN_HOST", "0.0.0.0")
    admin_port: int = int(os.getenv("ADMIN_PORT", "8000"))

    # How many profile cards /find sends before summarising the rest.
    search_result_limit: int = int(os.getenv("SEARCH_RESULT_LIMIT", "10"))

    def admin_ids(self) -> set[int]:
        """Return the parsed set of administrator Telegram user ids."""
        ids = set()
        for part in self.admin_user_ids.split(","):
            part = part.strip()
            if part.lstrip("-").isdigit():
                ids.add(int(part))
        return ids


# Instantiate settings once so other modules can import it without
# repeatedly reading environment variables.
settings = Settings()
