import csv
import logging
import os
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Third-party loggers that flood the file at INFO/DEBUG
NOISY_LOGGERS = [
    "urllib3.connectionpool",
    "selenium.webdriver.remote.remote_connection",
    "selenium.webdriver.common.selenium_manager",
    "schedule",
]

LOG_FORMAT = '%(asctime)s - %(filename)s:%(lineno)d - %(levelname)s - %(message)s'

# 10MB max, 5 backups = ~50MB per process
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

DETECTIONS_FILE = "detections.csv"
DETECTION_HEADERS = [
    "detected_at", "impostor_domain", "original_domain", "confidence",
    "has_address", "has_mail_exchange", "has_text", "registered_at",
]

_LEVEL_COLORS = {
    'WARNING': "\033[33m",   # Yellow
    'ERROR': "\033[31m",     # Red
    'CRITICAL': "\033[35m",  # Magenta
}


class ColoredFormatter(logging.Formatter):
    """Colors WARNING and above on the console; INFO stays plain."""

    def format(self, record):
        message = super().format(record)
        color = _LEVEL_COLORS.get(record.levelname)
        return f"{color}{message}\033[0m" if color else message


def _rotating_file_handler(log_dir: str, process_name: str, level) -> RotatingFileHandler:
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(log_dir, f'{process_name}.log'),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
    )
    handler.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)
    formatter.converter = time.localtime
    handler.setFormatter(formatter)
    return handler


def setup_logging(
        process_name: str,
        log_level=logging.INFO,
        log_dir: str = 'logs',
        info_modules: list[str] = None,
        console: bool = False,
):
    """
    Configure logging for one monitoring process.

    Sets up:
    - Rotating file handler at ``<log_dir>/<process_name>.log``
    - Optional colored console handler
    - WARNING level for chatty third-party loggers

    Args:
        process_name: Name used for the log file (e.g., 'all_jobs', 'web_server')
        log_level: Logging level for the root logger
        log_dir: Directory for log files
        info_modules: Module loggers kept at INFO even when the root is quieter
        console: Also log to stderr (handy when running interactively)

    Returns:
        logging.Logger: the configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_rotating_file_handler(log_dir, process_name, min(log_level, logging.INFO)))

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(ColoredFormatter(LOG_FORMAT))
        root_logger.addHandler(console_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    for module_name in info_modules or []:
        logging.getLogger(module_name).setLevel(logging.INFO)

    return root_logger


def append_csv_with_header(file_path: Path, headers: list[str], row: list) -> bool:
    """
    Append a row to a CSV file, writing headers first if the file is new/empty.

    Never raises: a ledger that cannot be written is logged and skipped.

    Returns:
        bool: True if the write succeeded
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not file_path.exists() or file_path.stat().st_size == 0
        with open(file_path, 'a', newline='') as f:
            writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
            if is_new:
                writer.writerow(headers)
            writer.writerow(row)
        return True
    except PermissionError as e:
        logger.error(f"Permission denied writing to {file_path}: {e}")
        logger.error(f"Fix with: sudo chown -R $USER:$USER {file_path.parent}")
    except OSError as e:
        logger.error(f"OS error writing CSV log {file_path.name}: {e}")
    return False


class DetectionLog:
    """Append-only CSV ledger of first detections, one row per impostor going live."""

    def __init__(self, log_dir: str = 'logs', file_name: str = DETECTIONS_FILE):
        self.path = Path(log_dir) / file_name

    def record(self, record: Dict[str, Any], detected_at: Optional[Any] = None) -> bool:
        resolution = record.get("resolution") or {}
        detected = detected_at or record.get("first_detected_at")
        row = [
            detected.isoformat() if hasattr(detected, "isoformat") else detected,
            record.get("impostor_domain"),
            record.get("original_domain"),
            record.get("confidence"),
            bool(resolution.get("has_address")),
            bool(resolution.get("has_mail_exchange")),
            bool(resolution.get("has_text")),
            record.get("registered_at"),
        ]
        return append_csv_with_header(self.path, DETECTION_HEADERS, row)
