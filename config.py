"""
Runtime configuration

Values come from the environment, with a local .env file loaded first
(noop if not present).
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_NAME = "world_priorities_local"


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    database_name: str = DEFAULT_DATABASE_NAME
    admin_emails: FrozenSet[str] = field(default_factory=frozenset)
    environment: str = "production"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000
    session_ttl_hours: float = 24.0


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        database_name=os.getenv("DATABASE_NAME") or DEFAULT_DATABASE_NAME,
        admin_emails=frozenset(e.lower() for e in _split(os.getenv("ADMIN_EMAILS"))),
        environment=os.getenv("ENVIRONMENT", "production"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_split(os.getenv("CORS_ORIGINS")) or ["*"],
        port=int(os.getenv("PORT", 8000)),
        session_ttl_hours=float(os.getenv("SESSION_TTL_HOURS", 24)),
    )
