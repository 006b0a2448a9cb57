"""
Process configuration.

Settings are read from the environment (and a local .env file) once at
startup and handed to the components that need them.
"""
import logging
import os
import secrets
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "ecommerce"
    jwt_secret: str = ""
    jwt_expires_in: Optional[int] = None
    api_url: str = "/api/v1"
    upload_dir: str = "public/uploads"
    bcrypt_rounds: int = 10
    global_auth: bool = False
    expose_errors: bool = True
    log_level: str = "INFO"
    port: int = 8000


def load_settings() -> Settings:
    load_dotenv()

    secret = os.getenv("JWT_SECRET")
    if not secret:
        secret = secrets.token_urlsafe(32)
        logger.warning("JWT_SECRET is not set, using a random key; tokens will not survive a restart")

    expires_in = os.getenv("JWT_EXPIRES_IN")

    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        database_name=os.getenv("DATABASE_NAME", Settings.database_name),
        jwt_secret=secret,
        jwt_expires_in=int(expires_in) if expires_in else None,
        api_url=os.getenv("API_URL", Settings.api_url).rstrip("/"),
        upload_dir=os.getenv("UPLOAD_DIR", Settings.upload_dir),
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", Settings.bcrypt_rounds)),
        global_auth=_as_bool(os.getenv("GLOBAL_AUTH")),
        expose_errors=_as_bool(os.getenv("EXPOSE_ERRORS"), default=True),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level).upper(),
        port=int(os.getenv("PORT", Settings.port)),
    )
