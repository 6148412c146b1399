"""Configuration and environment utilities."""

from ..config.logging import get_logger, setup_logging
from ..config.settings import get_settings


def initialize_application() -> None:
    """Initialize application configuration and logging."""
    settings = get_settings()

    # DEBUG only takes effect in development
    level = "DEBUG" if settings.debug and settings.is_development() else settings.log_level

    setup_logging(
        level=level,
        format_type=settings.log_format,
        file_enabled=settings.log_file_enabled,
        file_path=settings.log_file_path,
        max_file_size=settings.log_max_file_size,
        backup_count=settings.log_backup_count,
        environment=settings.environment,
    )

    logger = get_logger(__name__)
    logger.info(
        "Application initialized successfully",
        environment=settings.environment,
        debug=settings.debug,
        default_symbol=settings.default_symbol,
        log_level=level,
    )
