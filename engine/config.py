"""Configuration management for the Music Box engine.

Loads and validates environment variables using Pydantic settings.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class MusicBoxConfig(BaseSettings):
    """Music Box configuration loaded from environment variables."""

    # Server settings
    env: Literal["development", "production", "test"] = Field(
        default="development", alias="MUSICBOX_ENV"
    )
    host: str = Field(default="127.0.0.1", alias="MUSICBOX_HOST")
    port: int = Field(default=8000, alias="MUSICBOX_PORT", ge=1024, le=65535)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", alias="MUSICBOX_LOG_LEVEL"
    )

    # Audio settings
    sample_rate: int = Field(default=44100, alias="MUSICBOX_SAMPLE_RATE", ge=8000, le=192000)
    block_size: int = Field(default=128, alias="MUSICBOX_BLOCK_SIZE", ge=32, le=4096)
    output_device: Optional[str] = Field(default=None, alias="MUSICBOX_OUTPUT_DEVICE")
    stream_latency: float = Field(default=0.1, alias="MUSICBOX_STREAM_LATENCY", gt=0.0, le=2.0)

    # Generative defaults
    graph_dataset_path: Optional[Path] = Field(default=None, alias="MUSICBOX_GRAPH_DATASET")
    default_bpm: float = Field(default=45.0, alias="MUSICBOX_DEFAULT_BPM", ge=20.0, le=300.0)
    default_mean_notes_per_bar: float = Field(
        default=6.0, alias="MUSICBOX_MEAN_NOTES_PER_BAR", gt=0.0, le=64.0
    )
    max_voices: int = Field(default=32, alias="MUSICBOX_MAX_VOICES", ge=1, le=256)

    # Export
    export_seed: Optional[int] = Field(default=None, alias="MUSICBOX_EXPORT_SEED")

    @field_validator("output_device")
    @classmethod
    def validate_output_device(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty device name as the system default."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def output_device_selector(self) -> Optional[int | str]:
        """Device index when the setting is numeric, otherwise the name."""
        if self.output_device is not None and self.output_device.isdigit():
            return int(self.output_device)
        return self.output_device

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


# Singleton configuration instance
_config: MusicBoxConfig | None = None


def get_config() -> MusicBoxConfig:
    """Get the global configuration instance.

    Returns:
        MusicBoxConfig: Configuration singleton
    """
    global _config
    if _config is None:
        _config = MusicBoxConfig()
    return _config
