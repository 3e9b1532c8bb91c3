import base64
import binascii
import os
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Dict

import humanfriendly
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()


class Config(BaseModel):
    # Media storage
    MEDIA_ROOT: Path
    PUBLIC_KEYS: Dict[str, bytes]

    # Chunked uploads
    CHUNK_SIZE_CAP: int = Field(1_000_000, gt=0)
    DEFAULT_CHUNK_SIZE: int = Field(750_000, gt=0)
    MAX_UPLOAD_SIZE: int = Field(100 * 1024 * 1024, gt=0)
    SESSION_TTL_MS: int = Field(30 * 60 * 1000, gt=0)
    SWEEP_INTERVAL_MS: int = Field(60 * 1000, gt=0)
    SKEW_TOLERANCE_MS: int = Field(15 * 60 * 1000, ge=0)

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./fasbit.db"

    # JWT & Security
    JWT_SECRET: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALG: str = "HS256"
    ACCESS_TTL_MIN: int = 15

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("MEDIA_ROOT")
    @classmethod
    def _absolute_media_root(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError("MEDIA_ROOT must be an absolute path.")
        return value

    @field_validator("PUBLIC_KEYS")
    @classmethod
    def _ed25519_key_length(cls, value: Dict[str, bytes]) -> Dict[str, bytes]:
        if not value:
            raise ValueError("At least one client public key is required.")
        for client_id, key in value.items():
            if len(key) != 32:
                raise ValueError(f"Public key for '{client_id}' is not a 32-byte Ed25519 key.")
        return value


def parse_public_keys(raw: str) -> Dict[str, bytes]:
    """Parse ``client-1:BASE64,client-2:BASE64`` into a key table."""
    keys: Dict[str, bytes] = {}
    for entry in filter(None, (part.strip() for part in raw.split(","))):
        client_id, sep, key_b64 = entry.partition(":")
        if not sep or not client_id:
            raise ValueError(f"Malformed public key entry: '{entry}'")
        try:
            keys[client_id.strip()] = base64.b64decode(key_b64.strip(), validate=True)
        except binascii.Error as e:
            raise ValueError(f"Public key for '{client_id}' is not valid base64.") from e

    return keys


def load_config() -> Config:
    values = dict(
        MEDIA_ROOT=Path(os.environ["MEDIA_ROOT"]),
        PUBLIC_KEYS=parse_public_keys(os.environ["CLIENT_PUBLIC_KEYS"]),

        CHUNK_SIZE_CAP=humanfriendly.parse_size(os.getenv("CHUNK_SIZE_CAP", "1000000")),
        DEFAULT_CHUNK_SIZE=humanfriendly.parse_size(os.getenv("DEFAULT_CHUNK_SIZE", "750000")),
        MAX_UPLOAD_SIZE=humanfriendly.parse_size(os.getenv("MAX_UPLOAD_SIZE", "100MiB")),
        SESSION_TTL_MS=int(os.getenv("SESSION_TTL_MS", "1800000")),
        SWEEP_INTERVAL_MS=int(os.getenv("SWEEP_INTERVAL_MS", "60000")),
        SKEW_TOLERANCE_MS=int(os.getenv("SKEW_TOLERANCE_MS", "900000")),

        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./fasbit.db"),

        JWT_ALG=os.getenv("JWT_ALG", "HS256"),
        ACCESS_TTL_MIN=int(os.getenv("ACCESS_TTL_MIN", "15")),

        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
    if os.getenv("JWT_SECRET"):
        values["JWT_SECRET"] = os.environ["JWT_SECRET"]

    return Config(**values)


@lru_cache
def get_config() -> Config:
    return load_config()


__all__ = ["Config", "get_config", "load_config", "parse_public_keys"]
