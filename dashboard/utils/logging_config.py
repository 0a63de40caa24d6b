# dashboard/utils/logging_config.py

import logging
import os
import threading
from pathlib import Path

LOGGER_NAME = 'dashboard'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_configure_lock = threading.Lock()
_configured = False


def log_dir() -> Path:
    return Path(os.environ.get('DASHBOARD_LOG_DIR') or Path(__file__).parent.parent.parent / 'logs')


def _configure_service_logger(log_level: int) -> logging.Logger:
    """Attach the console and dashboard.log handlers once, on the package logger"""
    global _configured
    service_logger = logging.getLogger(LOGGER_NAME)
    with _configure_lock:
        # Also the Flask app logger, which may carry its own handler
        if _configured:
            return service_logger
        _configured = True

        service_logger.setLevel(log_level)
        formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        service_logger.addHandler(console_handler)

        try:
            directory = log_dir()
            os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(str(directory / 'dashboard.log'), encoding='utf-8')
            file_handler.setFormatter(formatter)
            service_logger.addHandler(file_handler)
        except OSError as e:
            service_logger.error(f"Failed to set up file logging: {e}")
            raise

    return service_logger


def setup_logging(name: str, log_level: int = logging.INFO) -> logging.Logger:
    """
    Get the logger of a dashboard component

    Every component logs through a child of the 'dashboard' logger, so all of
    them share one console handler and one logs/dashboard.log file.

    Args:
        name: Component name, becomes dashboard.<name>
        log_level: Level of the component logger (default: INFO)
    """
    _configure_service_logger(log_level)
    logger = logging.getLogger(f'{LOGGER_NAME}.{name}')
    logger.setLevel(log_level)
    return logger
