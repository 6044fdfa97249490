from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine.url import make_url


DEV_DEFAULT_SECRET_KEY = "dev_secret_key_DO_NOT_USE_IN_PRODUCTION_generate_with_secrets_module"
DEV_DEFAULT_JWT_SECRET = "dev_jwt_secret_DO_NOT_USE_IN_PRODUCTION_generate_with_secrets_module"
DEFAULT_DB_PASSWORDS = {
    "postgres",
    "password",
    "changeme",
    "",
}
SECRET_FILE_KEYS = ("SECRET_KEY", "JWT_SECRET", "DATABASE_URL", "REDIS_URL")
SUPPORTED_EXPORT_FORMATS = ("json", "xml", "csv", "xls")


def _load_secret_files() -> dict[str, str | None]:
    """
    Allow secrets to come from file paths referenced via {NAME}_FILE env vars
    (Docker/K8s secrets). Returns a partial settings dict.
    """
    values: dict[str, str | None] = {}
    for key in SECRET_FILE_KEYS:
        path = os.getenv(f"{key}_FILE")
        if not path:
            continue
        try:
            content = Path(path).read_text().strip()
        except FileNotFoundError as exc:
            raise ValueError(f"{key}_FILE points to missing file: {path}") from exc
        values[key] = content
    return values


def _split_list(value: Any) -> Any:
    """Accept a JSON array or a comma-separated string for list settings."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [v.strip() for v in value.split(",") if v.strip()]
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]
        if isinstance(parsed, str):
            return [parsed.strip()] if parsed.strip() else []
        return []
    return value


class Settings(BaseSettings):
    """Admin application configuration with production safety checks."""

    # Environment / mode
    ENVIRONMENT: str = "development"  # development | test | staging | production
    DEBUG: bool = False  # re-raise model manager failures instead of flashing them
    STRICT_MODE: bool = True

    # Secrets
    SECRET_KEY: str = DEV_DEFAULT_SECRET_KEY
    JWT_SECRET: str = DEV_DEFAULT_JWT_SECRET

    # Database
    DATABASE_URL: str = "sqlite:///./crudadmin.db"

    # Redis / rate limiting
    REDIS_URL: Optional[str] = None

    # Auth / JWT
    ALLOW_DEV_LOGIN: bool = False
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_ISSUER: str = "crudadmin"
    JWT_AUDIENCE: str = "crudadmin-users"
    ACCESS_TOKEN_COOKIE: str = "access_token"

    # Sessions / CSRF
    REQUIRE_CSRF_TOKEN: bool = True
    SESSION_COOKIE_NAME: str = "crudadmin_session"
    SESSION_HTTPS_ONLY: bool = False
    SESSION_MAX_AGE_SECONDS: int = 14 * 24 * 3600

    # Admin surface
    ADMIN_ROUTE_PREFIX: str = "/admin"
    ADMIN_TITLE: str = "Admin"
    ADMIN_ACCESS_ROLE: str = "ROLE_ADMIN"
    SUPER_ADMIN_ROLE: str = "ROLE_SUPER_ADMIN"
    ROLE_HIERARCHY: Dict[str, List[str]] = Field(
        default_factory=lambda: {"ROLE_SUPER_ADMIN": ["ROLE_ADMIN"], "ROLE_ADMIN": ["ROLE_USER"]}
    )
    TEMPLATE_DIRS: List[str] = []
    DEFAULT_PER_PAGE: int = 32
    MAX_PER_PAGE: int = 256
    EXPORT_FORMATS: List[str] = list(SUPPORTED_EXPORT_FORMATS)

    # Rate limiting / metrics
    RATE_LIMIT_PER_MINUTE: int = 240
    ADMIN_RATE_LIMIT_PER_MINUTE: int = 120
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 20
    METRICS_ALLOW_ALL: bool = False

    _env_file = ".env" if (os.getenv("ENVIRONMENT") or "development").lower() != "production" else None

    model_config = SettingsConfigDict(
        env_file=_env_file,
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        # Read *_FILE secrets before environment variables for predictable overrides.
        return (
            init_settings,
            _load_secret_files,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # ----- Field-level validation -------------------------------------------------

    @field_validator("SECRET_KEY", "JWT_SECRET")
    @classmethod
    def validate_secret_length(cls, value: str, info: ValidationInfo) -> str:
        if not value:
            raise ValueError(f"{info.field_name} must be set")
        if len(value) < 32:
            raise ValueError(f"{info.field_name} must be at least 32 characters long")
        return value

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        value = value.lower()
        if value not in {"development", "test", "staging", "production"}:
            raise ValueError("ENVIRONMENT must be one of: development, test, staging, production")
        return value

    @field_validator("ADMIN_ROUTE_PREFIX")
    @classmethod
    def normalize_route_prefix(cls, value: str) -> str:
        value = "/" + value.strip().strip("/")
        return "" if value == "/" else value

    @field_validator("TEMPLATE_DIRS", "EXPORT_FORMATS", mode="before")
    @classmethod
    def parse_list(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("EXPORT_FORMATS")
    @classmethod
    def validate_export_formats(cls, value: List[str]) -> List[str]:
        normalized: list[str] = []
        for fmt in value:
            fmt = fmt.strip().lower()
            if fmt not in SUPPORTED_EXPORT_FORMATS:
                raise ValueError(f"Unsupported export format '{fmt}'; choose from {', '.join(SUPPORTED_EXPORT_FORMATS)}")
            if fmt not in normalized:
                normalized.append(fmt)
        return normalized

    @field_validator("ROLE_HIERARCHY", mode="before")
    @classmethod
    def parse_role_hierarchy(cls, value: Any) -> Any:
        if isinstance(value, str):
            parsed = json.loads(value)
            if not isinstance(parsed, dict):
                raise ValueError("ROLE_HIERARCHY must be a JSON object")
            return parsed
        return value

    @field_validator("DEFAULT_PER_PAGE", "MAX_PER_PAGE")
    @classmethod
    def validate_page_size(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return value

    # ----- Cross-field / production invariants -----------------------------------

    @model_validator(mode="after")
    def validate_pagination(self) -> "Settings":
        if self.DEFAULT_PER_PAGE > self.MAX_PER_PAGE:
            raise ValueError("DEFAULT_PER_PAGE cannot exceed MAX_PER_PAGE")
        return self

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        """Enforce strong invariants when running in production."""
        if self.ENVIRONMENT != "production":
            return self

        if self.ALLOW_DEV_LOGIN:
            raise ValueError("ALLOW_DEV_LOGIN must be false in production")

        if self.DEBUG:
            raise ValueError("DEBUG must be false in production")

        if self.DATABASE_URL.startswith("sqlite:"):
            raise ValueError(
                "SQLite (DATABASE_URL starting with 'sqlite:') is not allowed in production; use PostgreSQL instead."
            )

        url = make_url(self.DATABASE_URL)
        if (url.password or "") in DEFAULT_DB_PASSWORDS:
            raise ValueError(
                "Default/blank database password is not allowed in production. Set a strong password in DATABASE_URL."
            )

        if self.SECRET_KEY == DEV_DEFAULT_SECRET_KEY:
            raise ValueError("Default SECRET_KEY is not allowed in production")
        if self.JWT_SECRET == DEV_DEFAULT_JWT_SECRET:
            raise ValueError("Default JWT_SECRET is not allowed in production")

        if not self.REQUIRE_CSRF_TOKEN:
            raise ValueError("REQUIRE_CSRF_TOKEN must be true in production")

        if not self.SESSION_HTTPS_ONLY:
            raise ValueError("SESSION_HTTPS_ONLY must be true in production")
        return self

    @property
    def is_production_like(self) -> bool:
        return self.ENVIRONMENT in {"staging", "production"}


settings = Settings()
