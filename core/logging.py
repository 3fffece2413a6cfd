import logging
import os
import sys
import json
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# --- Constants ---
LOGGER_NAME = 'aiquery'
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

class JsonFormatter(logging.Formatter):
    """
    Formats log records as a JSON string.
    """
    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)

        return json.dumps(log_object)

def setup_logging(log_level=None, log_file: Optional[str] = None):
    """
    Configures the package logger.
    - Console: Human-readable plain text.
    - File: Machine-readable JSON, with rotation (only when a log file is given).

    Level and file default to the AIQUERY_LOG_LEVEL / AIQUERY_LOG_FILE
    environment variables so importing the package never needs settings.
    """
    log_level = log_level or os.environ.get('AIQUERY_LOG_LEVEL', 'INFO').upper()
    log_file = log_file or os.environ.get('AIQUERY_LOG_FILE')

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(log_level)
    package_logger.propagate = False

    # --- Formatters ---
    plain_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    json_formatter = JsonFormatter()

    # Clear existing handlers to avoid duplicates
    if package_logger.hasHandlers():
        package_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(plain_formatter)
    package_logger.addHandler(console_handler)

    # --- Rotating File Handler (JSON) ---
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)
        package_logger.addHandler(file_handler)

    return package_logger

# --- Initial Setup ---
# Initialize logging when the module is imported
logger = setup_logging()
