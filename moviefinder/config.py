"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MovieFinder", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    app_url: HttpUrl | None = Field(default=None, alias="APP_URL")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")
    tmdb_max_pages: int = Field(default=5, alias="TMDB_MAX_PAGES", ge=1, le=20)

    omdb_api_key: str | None = Field(default=None, alias="OMDB_API_KEY")
    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com", alias="OMDB_API_URL"
    )

    groq_api_key: str | None = Field(default=None, alias="GROQ_API_KEY")
    groq_model: str = Field(default="llama-3.3-70b-versatile", alias="GROQ_MODEL")
    groq_api_url: HttpUrl = Field(
        default="https://api.groq.com/openai/v1", alias="GROQ_API_URL"
    )
    recommendation_count: int = Field(
        default=20, alias="RECOMMENDATION_COUNT", ge=1, le=30
    )

    google_client_id: str | None = Field(default=None, alias="AUTH_GOOGLE_ID")
    google_client_secret: str | None = Field(
        default=None, alias="AUTH_GOOGLE_SECRET"
    )
    google_redirect_uri: HttpUrl | None = Field(
        default=None, alias="AUTH_GOOGLE_REDIRECT_URI"
    )
    google_authorize_url: HttpUrl = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth",
        alias="AUTH_GOOGLE_AUTHORIZE_URL",
    )
    google_token_url: HttpUrl = Field(
        default="https://oauth2.googleapis.com/token", alias="AUTH_GOOGLE_TOKEN_URL"
    )
    google_userinfo_url: HttpUrl = Field(
        default="https://openidconnect.googleapis.com/v1/userinfo",
        alias="AUTH_GOOGLE_USERINFO_URL",
    )

    session_secret: str = Field(
        default="change-me-in-production", alias="SESSION_SECRET", min_length=8
    )
    session_max_age_seconds: int = Field(
        default=30 * 24 * 3600, alias="SESSION_MAX_AGE", ge=300
    )
    password_reset_ttl_seconds: int = Field(
        default=600, alias="PASSWORD_RESET_TTL", ge=60, le=86_400
    )
    bcrypt_rounds: int = Field(default=10, alias="BCRYPT_ROUNDS", ge=4, le=16)

    database_url: str = Field(
        default="sqlite+aiosqlite:///./moviefinder.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "tmdb_api_key",
        "omdb_api_key",
        "groq_api_key",
        "google_client_id",
        "google_client_secret",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        """Treat blank credentials as missing."""

        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @property
    def google_login_available(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def public_base_url(self) -> str:
        """Base URL used when building links sent outside the request cycle."""

        if self.app_url:
            return str(self.app_url).rstrip("/")
        return f"http://localhost:{self.server_port}"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
