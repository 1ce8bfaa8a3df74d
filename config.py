"""
Application settings

Read once from the environment and frozen afterwards. The signing secret in
particular is never mutated at runtime.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict

from errors import ConfigurationError


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "todo_api"
    jwt_secret: str
    token_ttl_seconds: Optional[int] = None
    revoke_sessions_on_password_change: bool = False
    port: int = 8000


@lru_cache()
def get_settings() -> Settings:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise ConfigurationError("JWT_SECRET is not set")

    ttl = os.getenv("TOKEN_TTL_SECONDS")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "todo_api"),
        jwt_secret=secret,
        token_ttl_seconds=int(ttl) if ttl else None,
        revoke_sessions_on_password_change=_env_flag("REVOKE_SESSIONS_ON_PASSWORD_CHANGE"),
        port=int(os.getenv("PORT", 8000)),
    )
