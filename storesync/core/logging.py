"""
Logging setup for StoreSync processes.
The API server, the queue worker and the scheduler each call this once at startup;
every record carries the process role so interleaved log files stay readable.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - [%(role)s] %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("pika", "urllib3")


class RoleFilter(logging.Filter):
    """Stamp each record with the process role (api, worker, scheduler, cli)."""

    def __init__(self, role: str):
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.role = self.role
        return True


def setup_logging(
    log_file: Optional[Path] = None,
    level: str = "INFO",
    role: str = "cli",
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3
) -> logging.Logger:
    """
    Configure the root logger: console always, rotating file when `log_file` is set.

    Replaces any handlers installed earlier, so calling it again (e.g. after
    reloading config) does not duplicate output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    role_filter = RoleFilter(role)

    handlers = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        handler.addFilter(role_filter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def setup_logging_from_config(config, role: str = "cli") -> logging.Logger:
    """Configure logging from the `general` config section."""
    return setup_logging(
        log_file=config.log_path,
        level=config.get('general', 'log_level', default='INFO'),
        role=role,
        max_bytes=config.get_int('general', 'log_max_bytes', default=5 * 1024 * 1024),
        backup_count=config.get_int('general', 'log_backup_count', default=3)
    )
