from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("config.json")
DEFAULT_PORT = "8080"

DEFAULT_ALLOWED_TYPES: Tuple[str, ...] = (
    # Images
    "image/jpeg",
    "image/jpg",
    "image/pjpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "image/*",
    # Audio
    "audio/mpeg",
    "audio/ogg",
    "audio/wav",
    "audio/webm",
    "audio/aac",
)


class Settings(BaseSettings):
    max_file_size: int = Field(10 * 1024 * 1024, gt=0)
    api_key: str = Field(..., min_length=1)
    upload_dir: Path = Path("uploads")
    port: str = DEFAULT_PORT
    domain: str = Field(..., min_length=1)
    allowed_types: List[str] = Field(default_factory=list)

    # Retrieval URLs are served behind a TLS-terminating proxy.
    public_scheme: str = "https"

    cleanup_delay_seconds: float = Field(1.0, ge=0)
    exclusive_downloads: bool = True
    chunk_size: int = Field(64 * 1024, gt=0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @field_validator("upload_dir")
    @classmethod
    def _upload_dir_not_empty(cls, value: Path) -> Path:
        if not str(value).strip() or str(value) == ".":
            raise ValueError("upload_dir cannot be empty")
        return value

    @field_validator("port", mode="before")
    @classmethod
    def _default_port(cls, value: object) -> str:
        if value is None or str(value).strip() == "":
            return DEFAULT_PORT
        port = str(value).strip()
        number = port.lstrip(":")
        if not number.isdigit() or not 0 < int(number) < 65536:
            raise ValueError(f"invalid port {port!r}")
        return port

    @field_validator("domain", "api_key")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cannot be empty")
        return value

    @property
    def listen_port(self) -> int:
        return int(self.port.lstrip(":") or DEFAULT_PORT)

    @property
    def effective_allowed_types(self) -> Tuple[str, ...]:
        if self.allowed_types:
            return tuple(self.allowed_types)
        return DEFAULT_ALLOWED_TYPES


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build settings from a JSON config file layered over env/.env values.

    When ``path`` is omitted, ``config.json`` in the working directory is used
    if present; otherwise everything comes from the environment.
    """
    overrides: dict = {}
    if path is not None and not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    source = path or (DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None)
    if source is not None:
        try:
            with source.open("r", encoding="utf-8") as f:
                overrides = json.load(f) or {}
        except json.JSONDecodeError as exc:
            raise ConfigError(f"error parsing config file {source}: {exc}") from exc
        if not isinstance(overrides, dict):
            raise ConfigError(f"config file {source} must contain a JSON object")

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
