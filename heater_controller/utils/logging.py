"""Logging utilities with timezone support and service prefixes."""

import datetime
import logging
import zoneinfo
from typing import Any, Dict, Optional

import colorlog

LOG_COLORS: Dict[str, str] = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class TimezoneAwareFormatter(colorlog.ColoredFormatter):
    """Colored formatter that renders timestamps in a fixed timezone."""

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        timezone: str = "Europe/Prague",
        service_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the timezone-aware formatter.

        Args:
            fmt: Log format string
            datefmt: Date format string
            timezone: Timezone name (e.g., 'Europe/Prague')
            service_name: Service name for prefix (e.g., 'HEATER', 'MQTT')
            **kwargs: Additional arguments passed to ColoredFormatter
        """
        if service_name and fmt:
            fmt = fmt.replace("%(name)s", f"[{service_name.upper()}] %(name)s")
        elif service_name:
            fmt = (
                f"%(log_color)s%(asctime)s - [{service_name.upper()}] "
                f"%(name)s - %(levelname)s - %(message)s"
            )

        super().__init__(fmt, datefmt, **kwargs)
        self.timezone = zoneinfo.ZoneInfo(timezone)

    def formatTime(
        self, record: logging.LogRecord, datefmt: Optional[str] = None
    ) -> str:
        """Format time in the configured timezone."""
        local_time = datetime.datetime.fromtimestamp(record.created, tz=self.timezone)
        return local_time.strftime(datefmt or DATE_FORMAT)


def setup_root_logging(log_level: str = "INFO", timezone: str = "Europe/Prague") -> None:
    """Attach a colored handler to the root logger."""
    handler = colorlog.StreamHandler()
    handler.setFormatter(
        TimezoneAwareFormatter(
            "%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt=DATE_FORMAT,
            timezone=timezone,
            log_colors=LOG_COLORS,
        )
    )

    logger = logging.getLogger()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, log_level.upper()))


def configure_module_logger(
    module_name: str,
    service_name: str,
    timezone: str = "Europe/Prague",
    log_level: str = "INFO",
) -> logging.Logger:
    """Configure a logger for a module with service prefix.

    Args:
        module_name: Full module name (e.g., 'heater_controller.modules.base.HeaterController')
        service_name: Service name for prefix (e.g., 'HEATER')
        timezone: Timezone for timestamps
        log_level: Logging level

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(module_name)

    handler = colorlog.StreamHandler()
    handler.setFormatter(
        TimezoneAwareFormatter(
            fmt="%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt=DATE_FORMAT,
            timezone=timezone,
            service_name=service_name,
            log_colors=LOG_COLORS,
        )
    )

    # Replace handlers so re-created modules don't log twice
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.propagate = False

    return logger
