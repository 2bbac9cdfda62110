"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_GENRES: tuple[str, ...] = (
    "Romance",
    "Horror",
    "Drama",
    "Action",
    "Mystery",
    "Fantasy",
    "Thriller",
    "Western",
    "Sci-Fi",
    "Adventure",
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Cinema Guru", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    github_client_id: str | None = Field(default=None, alias="AUTH_GITHUB_ID")
    github_client_secret: str | None = Field(
        default=None, alias="AUTH_GITHUB_SECRET"
    )
    auth_redirect_uri: HttpUrl | None = Field(
        default=None, alias="AUTH_REDIRECT_URI"
    )
    github_authorize_url: HttpUrl = Field(
        default="https://github.com/login/oauth/authorize",
        alias="GITHUB_AUTHORIZE_URL",
    )
    github_token_url: HttpUrl = Field(
        default="https://github.com/login/oauth/access_token",
        alias="GITHUB_TOKEN_URL",
    )
    github_api_url: HttpUrl = Field(
        default="https://api.github.com", alias="GITHUB_API_URL"
    )

    session_cookie_name: str = Field(
        default="cinemaguru_session", alias="SESSION_COOKIE_NAME"
    )
    session_ttl_seconds: int = Field(
        default=2_592_000, alias="SESSION_TTL", ge=300
    )

    page_size: int = Field(default=6, alias="PAGE_SIZE", ge=1, le=100)
    exact_totals: bool = Field(default=True, alias="EXACT_TOTALS")
    genres: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_GENRES, alias="GENRES"
    )
    catalog_seed_file: str | None = Field(default=None, alias="CATALOG_SEED_FILE")

    api_base_url: HttpUrl = Field(
        default="http://127.0.0.1:3000", alias="API_BASE_URL"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinemaguru.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("genres", mode="before")
    @classmethod
    def _parse_genres(cls, value: object) -> tuple[str, ...]:
        """Normalise featured genre selections from environment values."""

        if value is None:
            return DEFAULT_GENRES
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("GENRES must be a string or iterable of strings")

        cleaned: list[str] = []
        seen: set[str] = set()
        for entry in raw_values:
            if not entry or entry.lower() in seen:
                continue
            seen.add(entry.lower())
            cleaned.append(entry)
        if not cleaned:
            return DEFAULT_GENRES
        return tuple(cleaned)

    @field_validator("catalog_seed_file", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @property
    def github_login_enabled(self) -> bool:
        """Return whether OAuth credentials are configured."""

        return bool(self.github_client_id and self.github_client_secret)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
