"""Application settings and configuration management using Pydantic."""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Simulator settings loaded from the environment and ``.env``."""

    # Environment and deployment
    environment: str = "development"
    debug: bool = False

    # Instrument defaults
    default_symbol: str = "ECFM"
    default_anchor_price: float = 250.5
    default_timeframe: str = "1D"
    update_mode: str = "append"  # 'append', 'regenerate' or 'smoothed'

    # Generation settings
    price_floor: float = 0.01
    volume_cap: int = 1_000_000
    moving_average_window: int = 20
    random_seed: Optional[int] = None
    sparkline_points: int = 20

    # Streaming settings
    timeframe_settle_delay_ms: int = 300
    transition_steps: int = 10
    provider_poll_interval_ms: int = 1000

    # Alert settings
    alert_threshold_percent: float = 5.0
    alert_display_seconds: float = 5.0

    # Scheduler settings
    scheduler_max_workers: int = 1
    provider_max_workers: int = 2

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "structured"  # 'structured' or 'plain'
    log_file_enabled: bool = False
    log_file_path: str = "data/marketsim.log"
    log_max_file_size: str = "10MB"
    log_backup_count: int = 5

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",  # Ignore extra environment variables
    }

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment setting."""
        valid_environments = ["development", "testing", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v.lower()

    @field_validator("default_timeframe")
    @classmethod
    def validate_timeframe(cls, v):
        """Validate the default timeframe name."""
        valid_timeframes = ["1D", "1W", "1M", "3M", "1Y", "5Y"]
        if v.upper() not in valid_timeframes:
            raise ValueError(f"Timeframe must be one of: {valid_timeframes}")
        return v.upper()

    @field_validator("update_mode")
    @classmethod
    def validate_update_mode(cls, v):
        """Validate update mode."""
        valid_modes = ["append", "regenerate", "smoothed"]
        if v.lower() not in valid_modes:
            raise ValueError(f"Update mode must be one of: {valid_modes}")
        return v.lower()

    @field_validator("default_anchor_price")
    @classmethod
    def validate_anchor_price(cls, v):
        """Validate the initial anchor price."""
        if v < 0:
            raise ValueError("Anchor price must not be negative")
        return v

    @field_validator("price_floor")
    @classmethod
    def validate_price_floor(cls, v):
        """Validate price floor."""
        if v < 0:
            raise ValueError("Price floor must not be negative")
        return v

    @field_validator("alert_threshold_percent")
    @classmethod
    def validate_threshold(cls, v):
        """Validate alert threshold."""
        if v <= 0 or v > 100:
            raise ValueError("Alert threshold must be between 0 and 100 percent")
        return v

    @field_validator("transition_steps", "moving_average_window", "sparkline_points")
    @classmethod
    def validate_positive(cls, v):
        """Validate that counts are positive."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        valid_formats = ["structured", "plain"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration instance
    """
    return Settings()
