from __future__ import annotations

import logging
from typing import Literal

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .paths import extract_region


class GatewaySettings(BaseSettings):
    """Configuration for the download gateway."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    bucket_name: str = Field(validation_alias="BUCKET_NAME")
    b2_endpoint: str = Field(validation_alias="B2_ENDPOINT")
    access_key_id: str = Field(validation_alias="B2_APPLICATION_KEY_ID")
    secret_key: str = Field(validation_alias="B2_APPLICATION_KEY")
    gv_hostname: str = Field(
        validation_alias=AliasChoices("GV_HOSTNAME", "AUTH_HOSTNAME"),
    )
    gv_scheme: Literal["http", "https"] = Field(
        default="https",
        validation_alias="GV_SCHEME",
    )
    internal_folder: str = Field(
        default="files",
        validation_alias="GV_INTERNAL_FOLDER",
    )
    upload_folder: str = Field(
        default="",
        validation_alias="GV_FOLDER",
    )
    discord_webhook: AnyHttpUrl | None = Field(
        default=None,
        validation_alias="DISCORD_WEBHOOK",
    )
    allowed_headers: list[str] | None = Field(
        default=None,
        validation_alias="ALLOWED_HEADERS",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    download_suffix: str = Field(
        default="/download",
        validation_alias="DOWNLOAD_SUFFIX",
    )
    auth_strict: bool = Field(
        default=True,
        validation_alias="AUTH_STRICT",
    )
    auth_failure_mode: Literal["return", "passthrough"] = Field(
        default="return",
        validation_alias="AUTH_FAILURE_MODE",
    )
    range_retry_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="RANGE_RETRY_ATTEMPTS",
    )
    transient_retry_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="TRANSIENT_RETRY_ATTEMPTS",
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0,
        validation_alias="RETRY_DELAY",
    )
    provider_header_prefix: str = Field(
        default="cf-",
        validation_alias="PROVIDER_HEADER_PREFIX",
    )

    @field_validator("b2_endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        value = value.strip()
        extract_region(value)
        return value

    @field_validator("discord_webhook", mode="before")
    @classmethod
    def _blank_webhook(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("allowed_headers", mode="before")
    @classmethod
    def _parse_allowed_headers(cls, value: object) -> list[str] | None:
        if value is None:
            return None
        if isinstance(value, (list, tuple, set)):
            names = [str(item).strip().lower() for item in value]
        elif isinstance(value, str):
            names = [item.strip().lower() for item in value.split(",")]
        else:
            msg = "Invalid allowed headers format"
            raise ValueError(msg)
        return [name for name in names if name] or None

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"Unknown log level {value!r}"
            raise ValueError(msg)
        return level

    @field_validator("download_suffix")
    @classmethod
    def _check_download_suffix(cls, value: str) -> str:
        if not value.startswith("/"):
            value = f"/{value}"
        if value == "/":
            msg = "Download suffix must name a path segment"
            raise ValueError(msg)
        return value

    @property
    def region(self) -> str:
        """Region parsed from the B2 endpoint."""
        return extract_region(self.b2_endpoint)

    @property
    def webhook_url(self) -> str | None:
        if self.discord_webhook is None:
            return None
        return str(self.discord_webhook)

    @property
    def gv_origin(self) -> str:
        return f"{self.gv_scheme}://{self.gv_hostname}"


def load_settings_from_env() -> GatewaySettings:
    """Load gateway settings from environment variables.

    Returns:
        GatewaySettings instance populated from environment variables.

    Raises:
        pydantic.ValidationError: if a required variable is missing or the
            endpoint does not name a region.
    """
    return GatewaySettings()
