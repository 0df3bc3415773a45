import sys
import logging
from typing import Dict, Optional
from unicornctl import settings
from unicornctl.log.handler import LokiHandler


class MainFormatter(logging.Formatter):
    """A formatter that prints regular logs with context and server output raw."""

    def __init__(self) -> None:
        super().__init__('%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s')

    def format(self, record: logging.LogRecord) -> str:
        # Lines forwarded from the launched server come from 'proc.*' loggers.
        if record.name.startswith('proc.'):
            return record.getMessage()
        return super().format(record)


def setup_logging(console_level: int = logging.INFO, labels: Optional[Dict[str, str]] = None) -> None:
    """
    Configures the root logger for unicornctl.
    This sets up a console handler and, if enabled, a Loki handler, clearing
    any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param labels: Extra Loki stream labels (e.g. the command being run).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # Keep request internals out of the health check output
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    # --- Loki Handler (conditional) ---
    if settings.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=settings.LOKI_URL, org_id=settings.LOKI_ORG_ID or None, labels=labels)
            loki_handler.setLevel(logging.INFO)
            root_logger.addHandler(loki_handler)
            root_logger.debug(f"Grafana Loki logging handler initialized for {settings.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
