"""
Logging Setup
Configures root logging once: console output plus a UTF-8 log file
"""

import logging
from pathlib import Path

from appstore_settings import default_data_dir

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_CONFIGURED = False
_LOG_FILE = None


def get_default_log_file():
    return default_data_dir() / 'logs' / 'appstore.log'


def _build_handlers(log_file):
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    return [file_handler, console_handler]


def setup_logging(level=logging.INFO, log_file=None):
    """Configure root logging once and return the log file path.

    Args:
        level: int - Root log level
        log_file: Optional str/Path - Log file, <data>/logs/appstore.log by default

    Returns:
        Path - Log file in use
    """
    global _CONFIGURED, _LOG_FILE

    if _CONFIGURED:
        return _LOG_FILE

    target_log_file = Path(log_file) if log_file else get_default_log_file()
    target_log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    for handler in _build_handlers(target_log_file):
        root_logger.addHandler(handler)

    # urllib3 logs every connection at DEBUG
    logging.getLogger('urllib3').setLevel(max(level, logging.WARNING))

    _CONFIGURED = True
    _LOG_FILE = target_log_file
    return target_log_file


def reset_logging():
    """Detach the configured handlers so setup_logging can run again."""
    global _CONFIGURED, _LOG_FILE

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    _CONFIGURED = False
    _LOG_FILE = None
