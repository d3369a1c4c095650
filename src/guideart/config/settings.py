"""
Application settings and configuration management.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

from guideart import __version__

DEFAULT_POSTER_CATEGORIES: list[str] = [
    "Poster Art",
    "Box Art",
    "Banner-L1",
    "Banner-L2",
    "VOD Art",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = Field(default="guideart")
    app_version: str = Field(default=__version__)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Schedules Direct
    sd_username: str = Field(default="")
    sd_password: str = Field(default="")
    sd_base_url: str = Field(default="https://json.schedulesdirect.org/20141201/")

    # Storage
    cache_file: Path = Field(default=Path("./cache/guide_cache.json"))
    image_dir: Path = Field(default=Path("./cache/images"))

    # Poster selection
    poster_aspect: str = Field(default="2x3")
    poster_categories: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_POSTER_CATEGORIES)
    )

    # Image cache lifetime
    image_cache_ttl_days: int = Field(default=30)
    eviction_interval_hours: int = Field(default=24)

    # Performance
    request_timeout: float = Field(default=20.0)
    download_wait_timeout: float = Field(default=60.0)
    throttle_pause_seconds: int = Field(default=900)

    # Server
    server_host: str = Field(default="127.0.0.1")
    server_port: int = Field(default=8080)

    @field_validator("poster_categories", mode="before")
    @classmethod
    def parse_poster_categories(cls, v: str | list[str]) -> list[str]:
        """Parse poster categories from comma-separated string or list."""
        if isinstance(v, str):
            return [category.strip() for category in v.split(",") if category.strip()]
        return v

    @field_validator("cache_file", "image_dir", mode="before")
    @classmethod
    def ensure_path(cls, v: str | Path) -> Path:
        """Ensure file and directory paths are Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("poster_aspect")
    @classmethod
    def validate_poster_aspect(cls, v: str) -> str:
        """Validate poster aspect ("all" or a WxH label such as 2x3)."""
        value = v.strip().lower()
        if value in ("", "all"):
            return "all"
        width, sep, height = value.partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            raise ValueError(f"Invalid poster aspect: {v}")
        return value

    @field_validator("image_cache_ttl_days", "eviction_interval_hours")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Reject negative durations (0 disables the feature)."""
        if v < 0:
            raise ValueError("Value must be zero or positive")
        return v

    def create_directories(self) -> None:
        """Create required directories if they don't exist."""
        for directory in [self.cache_file.parent, self.image_dir]:
            directory.mkdir(parents=True, exist_ok=True)

    def _sidecar(self, suffix: str) -> Path:
        """Path next to the cache file sharing its stem."""
        return self.cache_file.with_name(self.cache_file.stem + suffix)

    @property
    def index_file(self) -> Path:
        """Program -> image index sidecar."""
        return self._sidecar(".imgindex.json")

    @property
    def token_file(self) -> Path:
        """Persisted upstream token sidecar."""
        return self._sidecar(".token.json")

    @property
    def blocklist_file(self) -> Path:
        """Blocked image ids sidecar."""
        return self._sidecar(".imgblock.txt")

    @property
    def overrides_file(self) -> Path:
        """Title -> image override list, stored beside the index."""
        return self.index_file.parent / "overrides.txt"

    @property
    def has_credentials(self) -> bool:
        """Check if Schedules Direct credentials are configured."""
        return bool(self.sd_username and self.sd_password)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


# Global settings instance
settings = get_settings()
