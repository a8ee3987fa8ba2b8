"""Runtime configuration.

Values are read from the environment (a local ``.env`` file is loaded first)
so the same code runs in development, in tests and behind a process manager.
"""

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Database ---

DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_NAME = os.getenv("DB_NAME", "classroom_db")

# DATABASE_URL wins over the individual DB_* settings (tests point it at SQLite)
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
SQL_ECHO: bool = _get_bool("SQL_ECHO", False)

# --- Sessions ---

SESSION_SECRET: str = os.getenv("SESSION_SECRET", "change-me-in-production")
SESSION_ALGORITHM: str = os.getenv("SESSION_ALGORITHM", "HS256")
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", str(14 * 24 * 60 * 60)))
SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "session")

# --- Uploads ---

UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
UPLOAD_URL_PREFIX: str = os.getenv("UPLOAD_URL_PREFIX", "/uploads")
MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
CHAT_ATTACHMENT_MAX_BYTES: int = int(os.getenv("CHAT_ATTACHMENT_MAX_BYTES", str(5 * 1024 * 1024)))

# --- Timeouts for the suspension points (seconds) ---

UPLOAD_TIMEOUT_SECONDS: float = float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "30"))
PERSISTENCE_TIMEOUT_SECONDS: float = float(os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "10"))

# --- Realtime ---

# Refuse joinRoom for classrooms the session user does not belong to
VERIFY_ROOM_MEMBERSHIP: bool = _get_bool("VERIFY_ROOM_MEMBERSHIP", True)
# Push a fileAdded event to the room after a successful deposit
BROADCAST_FILE_EVENTS: bool = _get_bool("BROADCAST_FILE_EVENTS", False)

# --- API server ---

API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

_CORS_ALLOWED_ORIGINS_STR: str = os.getenv("CORS_ALLOWED_ORIGINS", "*")
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]
