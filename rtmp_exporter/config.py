from pathlib import Path
from typing import Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .metadata import MetadataFormat


class Settings(BaseSettings):
    """Exporter settings, read from ``RTMP_EXPORTER_*`` variables or the command line."""

    model_config = SettingsConfigDict(env_prefix="RTMP_EXPORTER_", cli_kebab_case=True)

    app_name: str = "nginx-rtmp-exporter"
    scrape_url: AnyHttpUrl = Field(
        ..., description="The RTMP statistics endpoint of NGINX."
    )
    host: str = Field("127.0.0.1", description="The host to listen on.")
    port: int = Field(9114, ge=1, le=65535, description="The port to listen on.")
    metadata: Optional[Path] = Field(
        None, description="An optional path to a metadata file."
    )
    metadata_format: MetadataFormat = Field(
        MetadataFormat.JSON, description="The format of the metadata file (json or toml)."
    )
    fetch_timeout_seconds: float = Field(
        5.0, gt=0, description="Timeout for a single request to the statistics endpoint."
    )
    log_level: str = Field("info", description="Log level for the exporter's loggers.")

    @field_validator("metadata_format", mode="before")
    def normalise_format(cls, value: object) -> object:
        if isinstance(value, str):
            return value.lower()
        return value

    @field_validator("log_level")
    def ensure_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Unknown log level: {value}")
        return value
