from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Configuration for the chunk store service."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    backend: Literal["sqlite", "s3"] = Field(
        default="sqlite",
        validation_alias="BLOCKSTORE_BACKEND",
    )
    data_dir: Path = Field(
        default=Path("./blockstore-data"),
        validation_alias="BLOCKSTORE_DATA_DIR",
    )
    chunk_quantum: int = Field(
        default=128 * 1024,
        validation_alias="BLOCKSTORE_CHUNK_QUANTUM",
    )
    default_location_hint: str = Field(
        default="enam",
        validation_alias="BLOCKSTORE_DEFAULT_LOCATION_HINT",
    )
    s3_endpoint: str = Field(
        default="http://127.0.0.1:9000",
        validation_alias="BLOCKSTORE_S3_ENDPOINT",
    )
    s3_access_key: str = Field(
        default="minioadmin",
        validation_alias=AliasChoices(
            "BLOCKSTORE_S3_ACCESS_KEY",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    s3_secret_key: str = Field(
        default="minioadmin",
        validation_alias=AliasChoices(
            "BLOCKSTORE_S3_SECRET_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    s3_session_token: str | None = Field(
        default=None,
        validation_alias="BLOCKSTORE_S3_SESSION_TOKEN",
    )
    s3_region: str = Field(
        default="us-east-1",
        validation_alias="BLOCKSTORE_S3_REGION",
    )
    s3_bucket: str = Field(
        default="blockstore",
        validation_alias="BLOCKSTORE_S3_BUCKET",
    )
    s3_prefix: str = Field(
        default="",
        validation_alias="BLOCKSTORE_S3_PREFIX",
    )
    s3_addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="path",
        validation_alias="BLOCKSTORE_S3_ADDRESSING_STYLE",
    )

    @field_validator("chunk_quantum")
    @classmethod
    def _check_quantum(cls, value: int) -> int:
        if value <= 0:
            msg = "chunk quantum must be positive"
            raise ValueError(msg)
        return value


def load_settings_from_env() -> StoreSettings:
    """Load store settings from environment variables.

    Returns:
        StoreSettings instance populated from environment variables.
    """
    return StoreSettings()
