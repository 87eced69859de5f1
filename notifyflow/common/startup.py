"""Startup-time helpers for safe config logging."""

from notifyflow.common.config import settings
from notifyflow.common.logging import logger


_SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def redacted_settings(fields: list[str]) -> dict[str, object]:
    """Return selected settings with secret-like fields masked."""

    values = settings.model_dump()
    config: dict[str, object] = {}
    for field in fields:
        if field not in values:
            config[field] = "<unset>"
        elif any(marker in field for marker in _SECRET_MARKERS):
            config[field] = "<redacted>"
        else:
            config[field] = values[field]
    return config


def log_startup_config(service_name: str, fields: list[str]) -> None:
    """Log the settings a service depends on for quick troubleshooting."""

    config = {"service": service_name, **redacted_settings(fields)}
    logger.info("startup_config=%s", config)
