"""
Configuration module for the MentorConnect relay.
Every setting can be overridden from the environment.
"""

import os
from typing import Any, Dict, List


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration class."""

    # JWT Configuration
    JWT_SECRET = os.environ.get("JWT_SECRET", "default-secret-key-change-in-production")
    JWT_ALGORITHM = "HS256"

    # Server Configuration
    DEFAULT_HOST = os.environ.get("MENTORCONNECT_HOST", "localhost")
    DEFAULT_SERVER_PORT = int(os.environ.get("MENTORCONNECT_WS_PORT", "8765"))
    DEFAULT_API_PORT = int(os.environ.get("MENTORCONNECT_API_PORT", "8766"))

    # SQLite database (messages, online flags)
    SQLITE_DB_FILE = os.environ.get("MENTORCONNECT_DB", "mentorconnect.db")

    # When set, identify events must carry a signed token instead of a bare user id
    REQUIRE_TOKEN = _env_flag("MENTORCONNECT_REQUIRE_TOKEN")

    # Default page size for history fetches
    HISTORY_LIMIT = 50

    # Frontend origins allowed by the HTTP API
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.environ.get("MENTORCONNECT_CORS_ORIGINS", "http://localhost:5173").split(",")
        if origin.strip()
    ]

    @classmethod
    def get_config(cls) -> Dict[str, Any]:
        """Get all configuration values as a dictionary."""
        return {
            "JWT_SECRET": cls.JWT_SECRET,
            "JWT_ALGORITHM": cls.JWT_ALGORITHM,
            "DEFAULT_HOST": cls.DEFAULT_HOST,
            "DEFAULT_SERVER_PORT": cls.DEFAULT_SERVER_PORT,
            "DEFAULT_API_PORT": cls.DEFAULT_API_PORT,
            "SQLITE_DB_FILE": cls.SQLITE_DB_FILE,
            "REQUIRE_TOKEN": cls.REQUIRE_TOKEN,
            "HISTORY_LIMIT": cls.HISTORY_LIMIT,
            "CORS_ORIGINS": list(cls.CORS_ORIGINS),
        }


# Create config instance
config = Config()
