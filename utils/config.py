from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _float_env(var_name: str, default: float) -> float:
    """Convert env var to float without failing app import."""
    raw = os.getenv(var_name)
    try:
        return float(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


def _int_env(var_name: str, default: int) -> int:
    raw = os.getenv(var_name)
    try:
        return int(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


def _bool_env(var_name: str, default: bool) -> bool:
    raw = os.getenv(var_name)
    if raw is None:
        return default
    return str(raw).strip().lower() not in {"0", "false", "no", ""}


@dataclass(frozen=True)
class Settings:
    DB_HOST: str = "db"
    DB_PORT: int = 3306
    DB_USER: str = "plantlog"
    DB_PASS: str = "plantlog"
    DB_NAME: str = "plantlog"
    DB_ECHO: bool = False
    DATABASE_URL: str = ""

    TOKEN_SECRET: str = "change-me"
    JWT_EXPIRE_MINUTES: int = 60
    REFRESH_TTL_DAYS: int = 90

    AWS_REGION: str = "us-east-1"
    ACCESS_KEY: str = ""
    SECRET_KEY: str = ""
    S3_BUCKET: str = ""
    AWS_ACL: str = ""
    S3_ENDPOINT_URL: str = ""
    UPLOAD_MAX_WORKERS: int = 5

    REDISHOST: str = "localhost"
    REDISPORT: int = 6379
    REDISPASSWORD: str = ""
    CACHE_TTL_SECONDS: int = 300

    REQUEST_TIMEOUT: float = 15.0
    UPLOAD_DIR: str = "uploads"
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    ALLOWED_IMAGE_EXT: frozenset = field(
        default_factory=lambda: frozenset({".jpg", ".jpeg", ".png", ".webp"})
    )

    @property
    def DB_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+pymysql://{self.DB_USER}:{self.DB_PASS}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            "?charset=utf8mb4"
        )

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            DB_HOST=os.getenv("DB_HOST", "db"),
            DB_PORT=_int_env("DB_PORT", 3306),
            DB_USER=os.getenv("DB_USER", "plantlog"),
            DB_PASS=os.getenv("DB_PASS", "plantlog"),
            DB_NAME=os.getenv("DB_NAME", "plantlog"),
            DB_ECHO=_bool_env("DB_ECHO", False),
            DATABASE_URL=os.getenv("DATABASE_URL", ""),
            TOKEN_SECRET=os.getenv("TOKEN_SECRET", "change-me"),
            JWT_EXPIRE_MINUTES=_int_env("JWT_EXPIRE_MINUTES", 60),
            REFRESH_TTL_DAYS=_int_env("REFRESH_TTL_DAYS", 90),
            AWS_REGION=os.getenv("AWS_REGION", "us-east-1"),
            ACCESS_KEY=os.getenv("ACCESS_KEY", ""),
            SECRET_KEY=os.getenv("SECRET_KEY", ""),
            S3_BUCKET=os.getenv("S3_BUCKET", ""),
            AWS_ACL=os.getenv("AWS_ACL", ""),
            S3_ENDPOINT_URL=os.getenv("S3_ENDPOINT_URL", ""),
            UPLOAD_MAX_WORKERS=max(1, _int_env("UPLOAD_MAX_WORKERS", 5)),
            REDISHOST=os.getenv("REDISHOST", "localhost"),
            REDISPORT=_int_env("REDISPORT", 6379),
            REDISPASSWORD=os.getenv("REDISPASSWORD", ""),
            CACHE_TTL_SECONDS=_int_env("CACHE_TTL_SECONDS", 300),
            REQUEST_TIMEOUT=_float_env("REQUEST_TIMEOUT", 15.0),
            UPLOAD_DIR=os.getenv("UPLOAD_DIR", "uploads"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
            PORT=_int_env("PORT", 8000),
        )


def load_settings() -> Settings:
    """
    Load `<ENV>.env` (ENV defaults to "develop") and build the Settings.
    A missing env file is fine: real environment variables still apply.
    """
    current_env = os.getenv("ENV") or "develop"
    logger.info("using %s environment variables", current_env)
    load_dotenv(f"{current_env}.env")
    return Settings.from_env()
