"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import List, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator

from .domain.models import ViewMode
from .domain.palette import PALETTE

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class StoreConfig(BaseModel):
    """Connection settings for the hosted backend."""
    url: str = ""
    api_key: str = ""
    access_token: str = ""
    timeout_seconds: int = 30
    mock_data: Optional[Path] = None  # Seed file for --mock; bundled data if unset

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: int) -> int:
        """Ensure the request timeout is positive."""
        if value <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        return value

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError(f"store url must start with http:// or https://, got {value}")
        return value.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.url and self.api_key)


class SchedulingConfig(BaseModel):
    """Calendar behaviour."""
    display_shift_hours: int = 3
    revalidate_on_update: bool = False
    default_view: ViewMode = ViewMode.ALL

    @field_validator("display_shift_hours")
    @classmethod
    def validate_shift(cls, v: int) -> int:
        """Validate the display shift is between 0 and 23 hours."""
        if not 0 <= v <= 23:
            raise ValueError(f"display_shift_hours must be between 0 and 23, got {v}")
        return v


class AppConfig(BaseModel):
    """Application configuration."""
    store: StoreConfig = Field(default_factory=StoreConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    timezone: str = "America/Argentina/Buenos_Aires"
    palette: List[str] = Field(default_factory=lambda: list(PALETTE))
    log_level: str = "WARNING"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("palette")
    @classmethod
    def validate_palette(cls, value: List[str]) -> List[str]:
        """Ensure the palette has exactly eight distinct colours."""
        if len(value) != len(PALETTE):
            raise ValueError(f"palette must contain exactly {len(PALETTE)} colours, got {len(value)}")
        if len({color.lower() for color in value}) != len(value):
            raise ValueError("palette colours must be unique")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of agentdesk/)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
