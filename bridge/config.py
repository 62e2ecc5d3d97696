"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SortOrder = Literal["none", "random", "smart", "smartish"]

SORT_ORDERS: tuple[str, ...] = ("none", "random", "smart", "smartish")

_SORT_ORDER_ALIASES: dict[str, str] = {
    "zero": "none",
    "off": "none",
    "shuffle": "random",
    "genre": "smart",
}


def normalize_sort_order(value: object) -> str:
    """Return the canonical sort order name for a configured value."""

    if value is None:
        return "random"
    lowered = str(value).strip().lower()
    if not lowered:
        return "random"
    lowered = _SORT_ORDER_ALIASES.get(lowered, lowered)
    if lowered not in SORT_ORDERS:
        raise ValueError(
            "sort order must be one of 'none', 'random', 'smart' or 'smartish'"
        )
    return lowered


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MediaBridge", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    jellyfin_url: HttpUrl = Field(
        default="http://localhost:8096", alias="JELLYFIN_URL"
    )
    jellyfin_api_key: str | None = Field(default=None, alias="JELLYFIN_API_KEY")

    library_directory: Path = Field(
        default=Path("/data/mediabridge"), alias="LIBRARY_DIRECTORY"
    )
    sort_order: SortOrder = Field(default="random", alias="SORT_ORDER")
    mark_media_played: bool = Field(default=False, alias="MARK_MEDIA_PLAYED")
    use_network_folders: bool = Field(default=False, alias="USE_NETWORK_FOLDERS")
    add_duplicate_content: bool = Field(
        default=False, alias="ADD_DUPLICATE_CONTENT"
    )

    catalog_cache_seconds: int = Field(
        default=60, alias="CATALOG_CACHE_TTL", ge=0, le=3_600
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("sort_order", mode="before")
    @classmethod
    def _parse_sort_order(cls, value: object) -> str:
        """Accept the aliases used by older configurations."""

        return normalize_sort_order(value)

    @field_validator("library_directory", mode="before")
    @classmethod
    def _expand_library_directory(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("LIBRARY_DIRECTORY may not be blank")
            return Path(value).expanduser()
        return value

    @property
    def duplicates_by_folder(self) -> bool:
        """Whether the same title may live in several network folders."""

        return self.use_network_folders and self.add_duplicate_content

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
