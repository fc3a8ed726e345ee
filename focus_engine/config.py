"""Runtime configuration, read from the environment (and an optional .env file)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DB_PATH = Path.home() / ".focus-engine" / "focus.db"
SERVER_PORT = 7788
POLL_INTERVAL_SECONDS = 5  # active-session refetch interval while the focus view is open
EVENT_RETENTION_DAYS = 30


@dataclass
class Config:
    db_path: Path = DEFAULT_DB_PATH
    host: str = "0.0.0.0"
    port: int = SERVER_PORT
    api_url: str = f"http://localhost:{SERVER_PORT}"
    user_id: str = "local"
    poll_interval: int = POLL_INTERVAL_SECONDS
    http_timeout: float = 5.0
    event_retention_days: int = EVENT_RETENTION_DAYS
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


def load_config(env_file: Path | None = None) -> Config:
    """Build a Config from FOCUS_* environment variables.

    A .env file next to the working directory is loaded first; values
    already present in the environment win.
    """
    load_dotenv(env_file or Path.cwd() / ".env")

    port = int(os.environ.get("FOCUS_API_PORT", SERVER_PORT))
    return Config(
        db_path=Path(os.environ.get("FOCUS_API_DB", str(DEFAULT_DB_PATH))).expanduser(),
        host=os.environ.get("FOCUS_API_HOST", "0.0.0.0"),
        port=port,
        api_url=os.environ.get("FOCUS_API_URL", f"http://localhost:{port}").rstrip("/"),
        user_id=os.environ.get("FOCUS_USER_ID", "local"),
        poll_interval=int(os.environ.get("FOCUS_POLL_INTERVAL", POLL_INTERVAL_SECONDS)),
        http_timeout=float(os.environ.get("FOCUS_HTTP_TIMEOUT", 5.0)),
        event_retention_days=int(
            os.environ.get("FOCUS_EVENT_RETENTION_DAYS", EVENT_RETENTION_DAYS)
        ),
        cors_origins=[
            o.strip() for o in os.environ.get("FOCUS_CORS_ORIGINS", "*").split(",") if o.strip()
        ],
    )
