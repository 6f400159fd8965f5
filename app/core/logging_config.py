# app/core/logging_config.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from app.core.config import settings

MAX_LOG_BYTES = 10485760  # 10MB per file
LOG_BACKUPS = 5

FILE_FORMAT = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


def _rotating_handler(path: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: Optional[str] = None):
    """
    Configure application-wide logging with console and file handlers
    """
    log_dir = log_dir or settings.log_dir
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(logging.INFO)

    # Remove existing handlers to avoid duplicates on reload
    logger.handlers = []

    # ==========================================
    # 1. CONSOLE HANDLER (stdout)
    # ==========================================
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # ==========================================
    # 2. APP + ERROR FILES
    # ==========================================
    logger.addHandler(console_handler)
    logger.addHandler(_rotating_handler(os.path.join(log_dir, 'app.log'), logging.INFO, FILE_FORMAT))
    logger.addHandler(_rotating_handler(os.path.join(log_dir, 'error.log'), logging.ERROR, FILE_FORMAT))

    # ==========================================
    # 3. REDUCE NOISE FROM THIRD-PARTY LIBRARIES
    # ==========================================
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.error').setLevel(logging.INFO)
    logging.getLogger('multipart').setLevel(logging.WARNING)

    logger.info("=" * 50)
    logger.info(f"Logging system initialized ({settings.environment})")
    logger.info("=" * 50)

    return logger


def security_file_handler(log_dir: Optional[str] = None) -> RotatingFileHandler:
    """Handler for logs/security.log. One JSON document per line."""
    log_dir = log_dir or settings.log_dir
    os.makedirs(log_dir, exist_ok=True)
    return _rotating_handler(
        os.path.join(log_dir, 'security.log'),
        logging.INFO,
        logging.Formatter('%(message)s'),
    )
